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
"""Reusable sparse LDL^T factorization of symmetric positive definite matrices

The factorization is split into a symbolic phase, which only looks at the
nonzero structure of the matrix and computes a fill-reducing symmetric
permutation, and a numeric phase, which factorizes the permuted matrix
without any further pivoting. The symbolic phase is run once; the numeric
phase can then be repeated for every matrix sharing that structure, e.g.
``QK + A / sigma2`` for a sequence of ``sigma2`` values.

With symmetric diagonal pivoting the diagonal of ``U`` in ``P M P^T = L U``
is the diagonal ``D`` of ``P M P^T = L D L^T``. All of its entries are
positive if and only if ``M`` is positive definite.
"""

# Authors: bayesglm developers

import logging

import numpy as np
import scipy.sparse
from scipy.sparse.csgraph import reverse_cuthill_mckee
from scipy.sparse.linalg import splu

logger = logging.getLogger(__name__)

__all__ = [
    "NotPositiveDefiniteError",
    "SparseCholesky",
]


class NotPositiveDefiniteError(np.linalg.LinAlgError):
    """A matrix expected to be positive definite failed to factorize."""


class SparseCholesky:
    """Sparse LDL^T factorization with reusable symbolic analysis

    Only the fill-reducing permutation is computed once, by
    `analyze_pattern`. SuperLU still performs its own symbolic phase
    (elimination tree and column postorder) inside every `factorize` call,
    so ``n_analyze`` counts permutations, not SuperLU setups.

    Attributes
    ----------
    perm_ : 1D array or None
        Fill-reducing symmetric permutation found by `analyze_pattern`.

    n_analyze : int
        Number of fill-reducing permutations computed on this handle.

    n_factorize : int
        Number of numeric factorizations performed on this handle.
    """

    def __init__(self):
        self.perm_ = None
        self.shape_ = None
        self._lu = None
        self._d = None
        self.n_analyze = 0
        self.n_factorize = 0

    def analyze_pattern(self, M):
        """Symbolic analysis of the nonzero structure of M

        Parameters
        ----------
        M : sparse matrix, shape=[n, n]
            Symmetric matrix. Only its nonzero pattern is used.

        Returns
        -------
        self
        """
        M = scipy.sparse.csc_matrix(M)
        if M.shape[0] != M.shape[1]:
            raise ValueError("Matrix must be square, got shape {}"
                             .format(M.shape))
        self.perm_ = np.asarray(
            reverse_cuthill_mckee(M, symmetric_mode=True), dtype=np.intp)
        self.shape_ = M.shape
        self._lu = None
        self._d = None
        self.n_analyze += 1
        logger.debug("Analyzed sparsity pattern of a %d x %d matrix "
                     "with %d nonzeros", M.shape[0], M.shape[1], M.nnz)
        return self

    def factorize(self, M):
        """Numeric factorization reusing the symbolic analysis

        Parameters
        ----------
        M : sparse matrix, shape=[n, n]
            Symmetric positive definite matrix with the structure given
            to `analyze_pattern`.

        Returns
        -------
        self

        Raises
        ------
        ValueError
            The pattern has not been analyzed, or M has another shape.

        NotPositiveDefiniteError
            M is not positive definite.
        """
        if self.perm_ is None:
            raise ValueError("analyze_pattern must be called before "
                             "factorize")
        M = scipy.sparse.csc_matrix(M, dtype=np.float64)
        if M.shape != self.shape_:
            raise ValueError("Matrix shape {} does not match the analyzed "
                             "shape {}".format(M.shape, self.shape_))
        self._lu = None
        self._d = None
        permuted = M[self.perm_, :][:, self.perm_].tocsc()
        try:
            lu = splu(permuted, permc_spec="NATURAL", diag_pivot_thresh=0.,
                      options=dict(SymmetricMode=True))
        except RuntimeError as err:
            raise NotPositiveDefiniteError(
                "Factorization broke down: {}".format(err)) from err
        # off-diagonal pivots only happen when a diagonal pivot vanished
        if not np.array_equal(lu.perm_r, lu.perm_c):
            raise NotPositiveDefiniteError(
                "Matrix is not positive definite: zero pivot encountered")
        d = lu.U.diagonal()
        if not np.all(d > 0):
            raise NotPositiveDefiniteError(
                "Matrix is not positive definite: {} non-positive pivots"
                .format(np.count_nonzero(~(d > 0))))
        self._lu = lu
        self._d = d
        self.n_factorize += 1
        return self

    def compute(self, M):
        """Symbolic analysis followed by numeric factorization."""
        return self.analyze_pattern(M).factorize(M)

    def _check_factorized(self):
        if self._lu is None:
            raise ValueError("No numeric factorization available")

    def solve(self, b):
        """Solve M x = b

        Parameters
        ----------
        b : 1D or 2D array, shape=[n,] or [n, n_rhs]

        Returns
        -------
        x : array with the shape of b
        """
        self._check_factorized()
        b = np.asarray(b, dtype=np.float64)
        x_perm = self._lu.solve(np.ascontiguousarray(b[self.perm_]))
        x = np.empty_like(x_perm)
        x[self.perm_] = x_perm
        return x

    def vector_d(self):
        """Diagonal of D in P M P^T = L D L^T."""
        self._check_factorized()
        return self._d.copy()

    def log_det(self):
        """Log-determinant of M."""
        self._check_factorized()
        return np.sum(np.log(self._d))
