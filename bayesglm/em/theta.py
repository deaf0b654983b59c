#  Copyright 2024 bayesglm developers
#
#  Licensed under the Apache License, Version 2.0 (the "License");
#  you may not use this file except in compliance with the License.
#  You may obtain a copy of the License at
#
#       http://www.apache.org/licenses/LICENSE-2.0
#
#  Unless required by applicable law or agreed to in writing, software
#  distributed under the License is distributed on an "AS IS" BASIS,
#  WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#  See the License for the specific language governing permissions and
#  limitations under the License.
"""SQUAREM accelerated EM estimation of the SPDE hyperparameters"""

# Authors: bayesglm developers

import logging
from collections import namedtuple

import numpy as np
import scipy.sparse
from sklearn.utils import assert_all_finite

from ..optimize.squarem import SquaremControl, squarem
from ..spde.precision import SpdePrior
from ..utils.sparse_cholesky import SparseCholesky
from .fixed_point import InitFixedPoint, ThetaFixedPoint

logger = logging.getLogger(__name__)

__all__ = [
    "ThetaEstimate",
    "find_theta",
    "initial_kp",
]

ThetaEstimate = namedtuple(
    "ThetaEstimate",
    ["theta", "kappa2", "phi", "sigma2", "mu", "convergence", "n_iter",
     "fpevals"])


def _as_prior(spde):
    if isinstance(spde, SpdePrior):
        return spde
    return SpdePrior.from_dict(spde)


def _run_control(control, tol, verbose):
    if control is None:
        control = SquaremControl()
    return control._replace(tol=tol, trace=verbose)


def initial_kp(theta, spde, w, n_sess, tol, verbose=False, control=None):
    """Find initial values of kappa2 and phi for one task

    Parameters
    ----------
    theta : array, shape=[2,]
        Starting (kappa2, phi).

    spde : SpdePrior or mapping with keys Cmat, Gmat, GtCinvG

    w : 1D array, shape=[n_spde * n_sess,]
        Point estimate of the task coefficients, session after session.

    n_sess : int
        Number of sessions.

    tol : float
        Tolerance of both the Brent search and the fixed-point iteration.

    verbose : bool, default: False
        Log every SQUAREM iteration at INFO level.

    control : SquaremControl, optional
        Further accelerator settings; its tol and trace are overridden.

    Returns
    -------
    theta : 1D array, shape=[2,]
        Initial (kappa2, phi).

    Raises
    ------
    NotPositiveDefiniteError
        The first fixed-point evaluation failed.
    """
    spde = _as_prior(spde)
    theta = np.asarray(theta, dtype=np.float64)
    if theta.shape != (2,):
        raise ValueError("theta must hold (kappa2, phi), got shape {}"
                         .format(theta.shape))
    assert_all_finite(theta)
    fixpt = InitFixedPoint(w, spde, n_sess, tol)
    result = squarem(fixpt, theta, _run_control(control, tol, verbose))
    if result.par is None:
        raise result.error
    logger.debug("Initial kappa2=%g phi=%g after %d evaluations",
                 result.par[0], result.par[1], result.fpevals)
    return result.par


def find_theta(theta, spde, y, X, QK, Psi, A, Vh, tol, verbose=False,
               control=None):
    """EM estimation of the hyperparameters of the spatial Bayesian GLM

    Parameters
    ----------
    theta : 1D array, shape=[2K+1,]
        Starting (kappa2_1..K, phi_1..K, sigma2).

    spde : SpdePrior or mapping with keys Cmat, Gmat, GtCinvG

    y : 1D array, shape=[n_obs,]
        Response of all sessions stacked.

    X : sparse matrix, shape=[n_obs, n_data * K * n_sess]
        Design matrix.

    QK : sparse matrix, shape=[nKs, nKs]
        Joint prior precision at the starting theta, with
        nKs = n_spde * K * n_sess. A CSC matrix is used as working buffer
        and overwritten in place; other formats are converted first.

    Psi : sparse matrix, shape=[n_data * K * n_sess, nKs]
        Basis mapping data locations to mesh vertices.

    A : sparse matrix, shape=[nKs, nKs]
        (X Psi)' (X Psi).

    Vh : 2D array, shape=[nKs, Ns]
        Rademacher probe vectors of the Hutchinson trace estimator.

    tol : float
        Tolerance of the Brent searches and of the EM iteration.

    verbose : bool, default: False
        Log every SQUAREM iteration at INFO level.

    control : SquaremControl, optional
        Further accelerator settings; its tol and trace are overridden.

    Returns
    -------
    ThetaEstimate
        The final theta, its kappa2, phi and sigma2 parts, the posterior
        mean mu of length nKs, whether the iteration converged, the number
        of SQUAREM iterations and of fixed-point evaluations.

    Raises
    ------
    NotPositiveDefiniteError
        A joint precision matrix failed to factorize before any EM update
        succeeded.
    """
    spde = _as_prior(spde)
    theta = np.asarray(theta, dtype=np.float64)
    assert_all_finite(theta)
    if theta.ndim != 1 or theta.size < 3 or theta.size % 2 != 1:
        raise ValueError("theta must be a vector of length 2K+1, got shape "
                         "{}".format(theta.shape))
    if np.any(theta <= 0):
        raise ValueError("All hyperparameters must be positive, got {}"
                         .format(theta))
    K = (theta.size - 1) // 2
    n_spde = spde.n_spde
    y = np.asarray(y, dtype=np.float64)
    A = scipy.sparse.csc_matrix(A, dtype=np.float64)
    if getattr(QK, "format", None) != "csc":
        QK = scipy.sparse.csc_matrix(QK, dtype=np.float64)
    Vh = np.asarray(Vh, dtype=np.float64)
    nKs = A.shape[0]
    if nKs % (n_spde * K) != 0:
        raise ValueError("A has {} rows, not a multiple of n_spde * K = {}"
                         .format(nKs, n_spde * K))
    if QK.shape != A.shape or Vh.shape[0] != nKs:
        raise ValueError("Shapes of QK {}, A {} and Vh {} do not match"
                         .format(QK.shape, A.shape, Vh.shape))

    Xpsi = scipy.sparse.csc_matrix(X @ Psi)
    XpsiY = Xpsi.T @ y
    Avh = A @ Vh
    yy = float(y @ y)

    chol = SparseCholesky()
    Sig_inv = (QK + A / theta[-1]).tocsc()
    chol.analyze_pattern(Sig_inv)
    chol.factorize(Sig_inv)
    logger.info("Initial theta: %s", theta)

    fixpt = ThetaFixedPoint(A, QK, chol, XpsiY, Xpsi, Vh, Avh, y, yy, spde,
                            tol)
    result = squarem(fixpt, theta, _run_control(control, tol, verbose))
    if result.par is None:
        raise result.error
    theta = result.par
    logger.info("Final theta: %s", theta)

    mu = fixpt.posterior_mean(theta)
    return ThetaEstimate(theta=theta, kappa2=theta[:K].copy(),
                         phi=theta[K:2 * K].copy(), sigma2=theta[2 * K],
                         mu=mu, convergence=result.convergence,
                         n_iter=result.n_iter, fpevals=result.fpevals)
