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
import math
import random

import numpy
import pytest
import scipy.sparse

from bayesglm.spde.precision import SpdePrior


def _chain_prior(n, h=1.):
    """Linear finite elements on a regular 1-D mesh with lumped mass"""
    c = numpy.full(n, h)
    c[0] = c[-1] = h / 2.
    Cmat = scipy.sparse.diags(c, format="csc")
    main = numpy.full(n, 2. / h)
    main[0] = main[-1] = 1. / h
    off = numpy.full(n - 1, -1. / h)
    Gmat = scipy.sparse.diags([off, main, off], [-1, 0, 1], format="csc")
    GtCinvG = (Gmat @ scipy.sparse.diags(1. / c) @ Gmat).tocsc()
    return SpdePrior(Cmat, Gmat, GtCinvG)


def _sample_field(spde, kappa2, phi, n_sess, random_state):
    """Draw n_sess fields from N(0, (Q(kappa2) / (4 pi phi))^-1)"""
    Q = spde.precision(kappa2).toarray() / (4. * math.pi * phi)
    L = numpy.linalg.cholesky(Q)
    z = random_state.randn(spde.n_spde, n_sess)
    # Q = L L' so L'^-1 z has covariance Q^-1
    w = numpy.linalg.solve(L.T, z)
    return w.T.ravel()


@pytest.fixture
def seeded_rng():
    random.seed(0)
    numpy.random.seed(0)


@pytest.fixture
def chain_prior():
    """Factory of SPDE priors on a 1-D chain mesh"""
    return _chain_prior


@pytest.fixture
def diagonal_prior():
    """Factory of SPDE priors with diagonal C = G = GtCinvG = I"""
    def make(n):
        eye = scipy.sparse.identity(n, format="csc")
        return SpdePrior(eye, eye, eye)
    return make


@pytest.fixture
def sample_field():
    return _sample_field


@pytest.fixture
def chain_data():
    """One task, one session of replicated noisy observations

    Returns a dict with the prior, the generating field and
    hyperparameters, and the y, X, Psi, A matrices of the GLM.
    """
    random_state = numpy.random.RandomState(3)
    n_spde = 30
    n_rep = 4
    kappa2, phi, sigma2 = 0.5, 0.1, 0.01
    spde = _chain_prior(n_spde)
    w = _sample_field(spde, kappa2, phi, 1, random_state)
    X = scipy.sparse.vstack([scipy.sparse.identity(n_spde)] * n_rep,
                            format="csc")
    Psi = scipy.sparse.identity(n_spde, format="csc")
    y = X @ w + math.sqrt(sigma2) * random_state.randn(n_spde * n_rep)
    Xpsi = (X @ Psi).tocsc()
    A = (Xpsi.T @ Xpsi).tocsc()
    return dict(spde=spde, w=w, theta=numpy.array([kappa2, phi, sigma2]),
                y=y, X=X, Psi=Psi, A=A, n_rep=n_rep)
