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
"""Fixed-point maps of the EM algorithm for the spatial Bayesian GLM

The model for the stacked response of all sessions is

.. math::
    y = X \\Psi w + \\epsilon,\\quad \\epsilon \\sim N(0, \\sigma^2 I),
    \\quad w_{k,s} \\sim N(0, (Q(\\kappa_k^2) / 4 \\pi \\phi_k)^{-1})

where w holds, session by session, the coefficient fields of the K tasks
on the mesh and Q is the SPDE precision. The hyperparameter vector is
theta = (kappa2_1..kappa2_K, phi_1..phi_K, sigma2).

`ThetaFixedPoint` performs one EM update of theta. The traces of products
with the posterior covariance are estimated with Hutchinson probes
[Hutchinson1990]_.
`InitFixedPoint` produces starting values of (kappa2, phi) for a single
task from a point estimate of its coefficients.

.. [Hutchinson1990] "A stochastic estimator of the trace of the influence
   matrix for Laplacian smoothing splines", M. F. Hutchinson,
   Communications in Statistics - Simulation and Computation, 19(2), 1990,
   433--450
"""

# Authors: bayesglm developers

import logging
import math

import numpy as np
import scipy.sparse

from ..optimize.brent import brent_minimize
from ..spde.precision import log_det_qt, make_qt, set_sparse_block_update
from ..utils.sparse_cholesky import NotPositiveDefiniteError
from ..utils.utils import hutchinson_trace, quad_form

logger = logging.getLogger(__name__)

__all__ = [
    "InitFixedPoint",
    "KAPPA2_BOUNDS",
    "ThetaFixedPoint",
    "kappa2_init_obj",
    "kappa2_obj",
    "make_joint_precision",
]

KAPPA2_BOUNDS = (0., 50.)


def kappa2_init_obj(kappa2, phi, spde, beta_hat, n_sess):
    """Objective minimized over kappa2 when initializing one task

    Parameters
    ----------
    kappa2 : float
        Range parameter.

    phi : float
        Scale parameter, held fixed.

    spde : SpdePrior

    beta_hat : 1D array, shape=[n_spde * n_sess,]
        Coefficient estimates of the task, session after session.

    n_sess : int

    Returns
    -------
    float
        sum_s w_s' Q(kappa2) w_s / (4 pi phi) - log|Q(kappa2)|^n_sess
    """
    n_spde = spde.n_spde
    Q = make_qt(kappa2, spde)
    wQw = 0.
    for ns in range(n_sess):
        wQw += quad_form(Q, beta_hat[ns * n_spde:(ns + 1) * n_spde])
    wQw /= 4. * math.pi * phi
    return wQw - log_det_qt(kappa2, spde, n_sess)


def kappa2_obj(kappa2, spde, a_star, b_star, n_sess):
    """M-step objective of kappa2: a* kappa2 + b* / kappa2 - log|Q|"""
    return (a_star * kappa2 + b_star / kappa2
            - log_det_qt(kappa2, spde, n_sess))


class InitFixedPoint:
    """Fixed-point map producing initial (kappa2, phi) for one task

    Parameters
    ----------
    w : 1D array, shape=[n_spde * n_sess,]
        Point estimate (e.g. least squares) of the task coefficients,
        session after session.

    spde : SpdePrior

    n_sess : int

    tol : float
        Tolerance of the Brent search over kappa2.
    """

    def __init__(self, w, spde, n_sess, tol):
        self.w = np.asarray(w, dtype=np.float64)
        self.spde = spde
        self.n_sess = n_sess
        self.tol = tol
        if self.w.size != spde.n_spde * n_sess:
            raise ValueError("w has length {}, expected n_spde * n_sess = {}"
                             .format(self.w.size, spde.n_spde * n_sess))

    def __call__(self, theta):
        theta = np.array(theta, dtype=np.float64)
        n_spde = self.spde.n_spde
        theta[0] = brent_minimize(
            kappa2_init_obj, KAPPA2_BOUNDS[0], KAPPA2_BOUNDS[1], self.tol,
            args=(theta[1], self.spde, self.w, self.n_sess))
        Q = make_qt(theta[0], self.spde)
        wQw = 0.
        for ns in range(self.n_sess):
            wQw += quad_form(Q, self.w[ns * n_spde:(ns + 1) * n_spde])
        theta[1] = wQw / (4. * math.pi * n_spde * self.n_sess)
        return theta


class ThetaFixedPoint:
    """One EM update of theta = (kappa2_1..K, phi_1..K, sigma2)

    The joint prior precision ``QK`` and the factorization handle ``chol``
    are working buffers: ``QK`` is overwritten in place, block by block,
    on every call and ``chol`` is refactorized. Both are owned by this
    object for the duration of an estimation run and must not be used
    concurrently.

    Parameters
    ----------
    A : sparse matrix, shape=[nKs, nKs]
        (X Psi)' (X Psi), with nKs = n_spde * K * n_sess.

    QK : scipy.sparse.csc_matrix, shape=[nKs, nKs]
        Block diagonal joint prior precision; its sparsity pattern is kept.

    chol : SparseCholesky
        Handle whose pattern has been analyzed on ``QK + A / sigma2``.

    XpsiY : 1D array, shape=[nKs,]
        (X Psi)' y.

    Xpsi : sparse matrix, shape=[n_obs, nKs]
        X Psi.

    Vh : 2D array, shape=[nKs, Ns]
        Rademacher probe vectors.

    Avh : 2D array, shape=[nKs, Ns]
        A Vh.

    y : 1D array, shape=[n_obs,]

    yy : float
        y' y.

    spde : SpdePrior

    tol : float
        Tolerance of the Brent searches over kappa2.
    """

    def __init__(self, A, QK, chol, XpsiY, Xpsi, Vh, Avh, y, yy, spde, tol):
        self.A = A
        self.QK = QK
        self.chol = chol
        self.XpsiY = XpsiY
        self.Xpsi = Xpsi
        self.Vh = Vh
        self.Avh = Avh
        self.y = y
        self.yy = yy
        self.spde = spde
        self.tol = tol
        self.n_spde = spde.n_spde
        self.nKs = A.shape[0]

    def _dims(self, theta):
        if theta.size < 3 or theta.size % 2 != 1:
            raise ValueError("theta must have length 2K+1, got {}"
                             .format(theta.size))
        K = (theta.size - 1) // 2
        n_sess, rem = divmod(self.nKs, self.n_spde * K)
        if rem != 0:
            raise ValueError("A has {} rows, not a multiple of "
                             "n_spde * K = {}".format(self.nKs,
                                                      self.n_spde * K))
        return K, n_sess

    def _update_precision(self, theta, K, n_sess):
        """Stamp Q(kappa2_k) / (4 pi phi_k) into every block of QK"""
        if not np.all(theta > 0):
            # extrapolated iterates can leave the parameter space
            raise NotPositiveDefiniteError(
                "Posterior precision is not positive definite for "
                "theta={}".format(theta))
        for k in range(K):
            Qk = make_qt(theta[k], self.spde) / (4. * math.pi * theta[k + K])
            for ns in range(n_sess):
                start = k * self.n_spde + ns * K * self.n_spde
                set_sparse_block_update(self.QK, start, start, Qk)

    def _factorize(self, sigma2):
        Sig_inv = (self.QK + self.A / sigma2).tocsc()
        self.chol.factorize(Sig_inv)

    def posterior_mean(self, theta):
        """Posterior mean of the coefficients given theta

        Updates ``QK`` and refactorizes ``chol`` as a side effect.
        """
        theta = np.asarray(theta, dtype=np.float64)
        K, n_sess = self._dims(theta)
        self._update_precision(theta, K, n_sess)
        self._factorize(theta[-1])
        return self.chol.solve(self.XpsiY / theta[-1])

    def __call__(self, theta):
        theta = np.asarray(theta, dtype=np.float64)
        K, n_sess = self._dims(theta)
        n_spde = self.n_spde
        Ns = self.Vh.shape[1]
        theta_new = theta.copy()

        self._update_precision(theta, K, n_sess)
        self._factorize(theta[-1])
        mu = self.chol.solve(self.XpsiY / theta[-1])

        # sigma2
        XpsiMu = self.Xpsi @ mu
        P = self.chol.solve(self.Vh)
        TrSigA = hutchinson_trace(P, self.Avh, Ns)
        muAmu = quad_form(self.A, mu)
        yXpsiMu = float(self.y @ XpsiMu)
        theta_new[-1] = (self.yy - 2. * yXpsiMu + muAmu + TrSigA) / \
            self.y.size

        # kappa2 and phi, task by task
        Cmat = self.spde.Cmat
        Gmat = self.spde.Gmat
        GtCinvG = self.spde.GtCinvG
        phi_denom = 4. * math.pi * n_spde * n_sess
        for k in range(K):
            muCmu = muGmu = muGCGmu = 0.
            trC = trG = trGCG = 0.
            for ns in range(n_sess):
                start = k * n_spde + ns * K * n_spde
                stop = start + n_spde
                mu_kn = mu[start:stop]
                muCmu += quad_form(Cmat, mu_kn)
                muGmu += quad_form(Gmat, mu_kn)
                muGCGmu += quad_form(GtCinvG, mu_kn)
                P_kn = P[start:stop]
                V_kn = self.Vh[start:stop]
                trC += hutchinson_trace(P_kn, Cmat @ V_kn, Ns)
                trG += hutchinson_trace(P_kn, Gmat @ V_kn, Ns)
                trGCG += hutchinson_trace(P_kn, GtCinvG @ V_kn, Ns)
            a_star = (muCmu + trC) / (4. * math.pi * theta[k + K])
            b_star = (muGCGmu + trGCG) / (4. * math.pi * theta[k + K])
            kappa2 = brent_minimize(
                kappa2_obj, KAPPA2_BOUNDS[0], KAPPA2_BOUNDS[1], self.tol,
                args=(self.spde, a_star, b_star, n_sess))
            TrQEww = (kappa2 * (trC + muCmu) + 2. * (trG + muGmu)
                      + (trGCG + muGCGmu) / kappa2)
            theta_new[k] = kappa2
            theta_new[k + K] = TrQEww / phi_denom
            logger.debug("Task %d: a*=%g b*=%g kappa2=%g phi=%g", k,
                         a_star, b_star, kappa2, theta_new[k + K])
        return theta_new


def make_joint_precision(theta, spde, n_sess):
    """Block diagonal prior precision of all tasks and sessions

    Parameters
    ----------
    theta : 1D array, shape=[2K+1,]
        (kappa2_1..K, phi_1..K, sigma2).

    spde : SpdePrior

    n_sess : int

    Returns
    -------
    QK : scipy.sparse.csc_matrix, shape=[n_spde * K * n_sess] * 2
        Blocks ordered by session, then task.
    """
    theta = np.asarray(theta, dtype=np.float64)
    K = (theta.size - 1) // 2
    blocks = []
    for k in range(K):
        Qk = make_qt(theta[k], spde, out=spde.pattern())
        Qk.data /= 4. * math.pi * theta[k + K]
        blocks.append(Qk)
    return scipy.sparse.block_diag(blocks * n_sess, format="csc")
