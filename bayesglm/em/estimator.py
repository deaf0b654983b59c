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
"""Estimator interface to the EM estimation of SPDE hyperparameters"""

# Authors: bayesglm developers

import logging

import numpy as np
import scipy.sparse
from sklearn.base import BaseEstimator
from sklearn.utils import assert_all_finite, check_random_state

from ..optimize.squarem import SquaremControl
from ..spde.precision import SpdePrior
from ..utils.utils import make_probe_matrix
from .fixed_point import make_joint_precision
from .theta import find_theta, initial_kp

logger = logging.getLogger(__name__)

__all__ = [
    "SpdeHyperparameterEM",
]


class SpdeHyperparameterEM(BaseEstimator):
    """EM estimation of the hyperparameters of a spatial Bayesian GLM

    The coefficient fields of K tasks in each of n_sess sessions are given
    SPDE priors with task specific range (kappa2) and scale (phi), and the
    observations share one residual variance (sigma2). The hyperparameters
    are estimated with a SQUAREM accelerated EM algorithm.

    Parameters
    ----------
    tol : float, default: 1e-3
        Tolerance of the Brent searches and of the EM iteration.

    n_probes : int, default: 50
        Number of Rademacher probe vectors of the Hutchinson trace
        estimator.

    max_iter : int, default: 1500
        Maximum number of EM updates (fixed-point evaluations).

    step_method : int, default: 3
        SQUAREM step length formula, see `bayesglm.optimize.step_length`.

    verbose : bool, default: False
        Log every SQUAREM iteration at INFO level.

    random_state : int, RandomState instance or None, default: None
        Seed of the probe vectors.

    Attributes
    ----------
    theta_ : 1D array, shape=[2K+1,]
        Estimated (kappa2_1..K, phi_1..K, sigma2).

    kappa2_ : 1D array, shape=[K,]

    phi_ : 1D array, shape=[K,]

    sigma2_ : float

    mu_ : 1D array, shape=[n_spde * K * n_sess,]
        Posterior mean of the coefficients, blocks ordered by session,
        then task.

    coef_ : 3D array, shape=[n_sess, K, n_spde]
        mu_ reshaped by session and task.

    converged_ : bool
        Whether the EM iteration reached the tolerance.

    n_iter_ : int
        Number of SQUAREM iterations.
    """

    def __init__(self, tol=1e-3, n_probes=50, max_iter=1500, step_method=3,
                 verbose=False, random_state=None):
        self.tol = tol
        self.n_probes = n_probes
        self.max_iter = max_iter
        self.step_method = step_method
        self.verbose = verbose
        self.random_state = random_state

    def fit(self, y, X, Psi, spde, theta_init, n_sess=1, w_init=None):
        """Estimate the hyperparameters

        Parameters
        ----------
        y : 1D array, shape=[n_obs,]
            Response of all sessions stacked.

        X : sparse matrix, shape=[n_obs, n_data * K * n_sess]
            Design matrix.

        Psi : sparse matrix, shape=[n_data * K * n_sess, n_spde * K * n_sess]
            Basis mapping data locations to mesh vertices.

        spde : SpdePrior or mapping with keys Cmat, Gmat, GtCinvG

        theta_init : array, shape=[2K+1,]
            Starting (kappa2_1..K, phi_1..K, sigma2).

        n_sess : int, default: 1
            Number of sessions.

        w_init : array, shape=[K, n_spde * n_sess], optional
            Point estimates of the coefficients of each task, e.g. from
            least squares. If given, the starting (kappa2, phi) of every
            task are first refined with `initial_kp`.

        Returns
        -------
        self
        """
        logger.info('Running SPDE hyperparameter EM')
        self.random_state_ = check_random_state(self.random_state)
        if not isinstance(spde, SpdePrior):
            spde = SpdePrior.from_dict(spde)
        y = np.asarray(y, dtype=np.float64)
        assert_all_finite(y)
        theta = np.array(theta_init, dtype=np.float64)
        assert theta.ndim == 1 and theta.size % 2 == 1 and theta.size >= 3,\
            'theta_init should have length 2K+1'
        K = (theta.size - 1) // 2
        control = SquaremControl(method=self.step_method,
                                 maxiter=self.max_iter)

        if w_init is not None:
            w_init = np.asarray(w_init, dtype=np.float64)
            assert w_init.shape == (K, spde.n_spde * n_sess),\
                'w_init should have shape [K, n_spde * n_sess]'
            for k in range(K):
                kp = initial_kp(theta[[k, k + K]], spde, w_init[k], n_sess,
                                self.tol, verbose=self.verbose,
                                control=control)
                theta[k], theta[k + K] = kp
            logger.info('Initial values from coefficient estimates: %s',
                        theta)

        QK = make_joint_precision(theta, spde, n_sess)
        Xpsi = scipy.sparse.csc_matrix(X @ Psi)
        A = (Xpsi.T @ Xpsi).tocsc()
        Vh = make_probe_matrix(A.shape[0], self.n_probes,
                               self.random_state_)
        est = find_theta(theta, spde, y, X, QK, Psi, A, Vh, self.tol,
                         verbose=self.verbose, control=control)

        self.theta_ = est.theta
        self.kappa2_ = est.kappa2
        self.phi_ = est.phi
        self.sigma2_ = est.sigma2
        self.mu_ = est.mu
        self.coef_ = est.mu.reshape(n_sess, K, spde.n_spde)
        self.converged_ = est.convergence
        self.n_iter_ = est.n_iter
        return self
