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
import numpy as np
import scipy.sparse
from sklearn.utils import check_random_state

"""
Some utility functions shared by the estimation routines
"""


def make_probe_matrix(n, n_probes, random_state=None):
    """Draw Rademacher probe vectors for the Hutchinson trace estimator

    Parameters
    ----------

    n : int
        Length of each probe vector.

    n_probes : int
        Number of probe vectors. More probes lower the variance of
        the trace estimates at the cost of one extra solve per probe.

    random_state : int, RandomState instance or None
        Seed of the random number generator.


    Returns
    -------

    Vh : 2D array, shape=[n, n_probes]
        Matrix with entries -1 and 1 drawn with equal probability.
    """
    if n_probes < 1:
        raise ValueError("n_probes must be positive, got {}"
                         .format(n_probes))
    random_state = check_random_state(random_state)
    return random_state.choice([-1., 1.], size=(n, n_probes))


def hutchinson_trace(P, MV, n_probes=None):
    """Hutchinson estimate of Tr(M Sigma) from P = Sigma V and MV = M V

    Parameters
    ----------

    P : 2D array, shape=[n, n_probes]
        Solves of the probe vectors against the precision matrix.

    MV : 2D array, shape=[n, n_probes]
        Probe vectors multiplied by M.

    n_probes : int, optional
        Number of probes to average over. Defaults to the number of
        columns of P.


    Returns
    -------

    trace : float
        The mean of diag(P^T M V).
    """
    if n_probes is None:
        n_probes = P.shape[1]
    return np.sum(P * MV) / n_probes


def quad_form(M, x):
    """Compute x^T M x for a (sparse) matrix M and a vector x"""
    return float(x @ (M @ x))


def check_square_sparse(M, name):
    """Convert M to a CSC matrix, checking that it is square

    Parameters
    ----------

    M : sparse matrix or array

    name : str
        Name used in the error message.


    Returns
    -------

    M : scipy.sparse.csc_matrix
    """
    M = scipy.sparse.csc_matrix(M, dtype=np.float64)
    if M.shape[0] != M.shape[1]:
        raise ValueError("{} must be square, got shape {}"
                         .format(name, M.shape))
    return M
