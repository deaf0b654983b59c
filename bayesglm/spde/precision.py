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
"""SPDE prior precision matrices

The SPDE approach approximates a Matern Gaussian field on a mesh with a
Gaussian Markov random field whose precision, up to the marginal scale, is

.. math::
    Q(\\kappa^2) = \\kappa^2 C + 2 G + G C^{-1} G / \\kappa^2

where C is the mass matrix and G the stiffness matrix of the mesh
[Lindgren2011]_. The matrices are built elsewhere; this module assembles
the precision for a given range parameter and writes it into larger
block structured matrices without touching their sparsity pattern.

.. [Lindgren2011] "An explicit link between Gaussian fields and Gaussian
   Markov random fields: the stochastic partial differential equation
   approach", F. Lindgren, H. Rue, J. Lindstrom,
   Journal of the Royal Statistical Society B, 73(4), 2011, 423--498
"""

# Authors: bayesglm developers

import logging

import numpy as np
import scipy.sparse

from ..utils.sparse_cholesky import SparseCholesky
from ..utils.utils import check_square_sparse

logger = logging.getLogger(__name__)

__all__ = [
    "SpdePrior",
    "log_det_qt",
    "make_qt",
    "set_sparse_block_update",
]


class SpdePrior:
    """The three sparse matrices defining an SPDE prior

    Parameters
    ----------
    Cmat : sparse matrix, shape=[n_spde, n_spde]
        Mass matrix.

    Gmat : sparse matrix, shape=[n_spde, n_spde]
        Stiffness matrix.

    GtCinvG : sparse matrix, shape=[n_spde, n_spde]
        The product G C^{-1} G.

    The matrices are treated as read-only once the prior is built.
    """

    def __init__(self, Cmat, Gmat, GtCinvG):
        self.Cmat = check_square_sparse(Cmat, "Cmat")
        self.Gmat = check_square_sparse(Gmat, "Gmat")
        self.GtCinvG = check_square_sparse(GtCinvG, "GtCinvG")
        if not (self.Cmat.shape == self.Gmat.shape == self.GtCinvG.shape):
            raise ValueError("SPDE matrices have different shapes: "
                             "Cmat {}, Gmat {}, GtCinvG {}"
                             .format(self.Cmat.shape, self.Gmat.shape,
                                     self.GtCinvG.shape))

    @classmethod
    def from_dict(cls, spde):
        """Build a prior from a mapping with keys Cmat, Gmat, GtCinvG."""
        missing = [key for key in ("Cmat", "Gmat", "GtCinvG")
                   if key not in spde]
        if missing:
            raise ValueError("SPDE mapping is missing {}".format(missing))
        return cls(spde["Cmat"], spde["Gmat"], spde["GtCinvG"])

    @property
    def n_spde(self):
        """Number of mesh vertices."""
        return self.Cmat.shape[0]

    def pattern(self):
        """Union of the nonzero patterns of the three matrices

        Returns
        -------
        scipy.sparse.csc_matrix
            Matrix of zeros with a stored entry wherever Cmat, Gmat or
            GtCinvG has one. Suitable as destination for `make_qt` for
            any kappa2.
        """
        union = (abs(self.Cmat) + abs(self.Gmat) + abs(self.GtCinvG)).tocsc()
        union.data[:] = 0.
        return union

    def precision(self, kappa2):
        """Q(kappa2) = kappa2 C + 2 G + G C^{-1} G / kappa2 as CSC matrix"""
        if not kappa2 > 0:
            raise ValueError("kappa2 must be positive, got {}"
                             .format(kappa2))
        Q = kappa2 * self.Cmat + 2. * self.Gmat + self.GtCinvG / kappa2
        return Q.tocsc()


def log_det_qt(kappa2, spde, n_sess):
    """Log-determinant of the prior precision over all sessions

    Parameters
    ----------
    kappa2 : float
        Range parameter, must be positive.

    spde : SpdePrior

    n_sess : int
        Number of sessions sharing the prior.

    Returns
    -------
    float
        n_sess * sum(log(D_ii)) for the LDL^T factorization of Q(kappa2).

    Raises
    ------
    NotPositiveDefiniteError
        Q(kappa2) does not factorize.
    """
    Q = spde.precision(kappa2)
    chol = SparseCholesky().compute(Q)
    return n_sess * chol.log_det()


def set_sparse_block_update(dest, i, j, block):
    """Overwrite dest[i:i+n1, j:j+n2] with block, in place

    Only existing nonzero slots of ``dest`` are written, so its sparsity
    pattern stays the same and no memory is reallocated. Slots inside the
    block region with no stored entry in ``block`` are set to zero.

    Parameters
    ----------
    dest : scipy.sparse.csc_matrix or scipy.sparse.csr_matrix
        Destination matrix, modified in place.

    i, j : int
        Row and column offsets of the block.

    block : sparse matrix, shape=[n1, n2]

    Returns
    -------
    dest

    Raises
    ------
    ValueError
        The block does not fit in dest, or one of its entries has no
        slot in the sparsity pattern of dest.
    """
    if dest.format not in ("csc", "csr"):
        raise TypeError("dest must be a CSC or CSR matrix, got {}"
                        .format(dest.format))
    block = scipy.sparse.coo_matrix(block)
    if (i < 0 or j < 0 or i + block.shape[0] > dest.shape[0]
            or j + block.shape[1] > dest.shape[1]):
        raise ValueError("Block of shape {} at ({}, {}) does not fit in a "
                         "matrix of shape {}".format(block.shape, i, j,
                                                     dest.shape))
    rows = block.row.astype(np.int64) + i
    cols = block.col.astype(np.int64) + j
    if dest.format == "csc":
        major, minor, n_minor = cols, rows, dest.shape[0]
        major_lo, minor_lo = j, i
        major_hi, minor_hi = j + block.shape[1], i + block.shape[0]
    else:
        major, minor, n_minor = rows, cols, dest.shape[1]
        major_lo, minor_lo = i, j
        major_hi, minor_hi = i + block.shape[0], j + block.shape[1]
    if not dest.has_sorted_indices:
        dest.sort_indices()
    counts = np.diff(dest.indptr)
    dest_major = np.repeat(np.arange(counts.size, dtype=np.int64), counts)
    keys = dest_major * n_minor + dest.indices
    targets = major * n_minor + minor
    pos = np.searchsorted(keys, targets)
    found = pos < keys.size
    found[found] = keys[pos[found]] == targets[found]
    if not np.all(found):
        raise ValueError("{} block entries fall outside the sparsity "
                         "pattern of the destination matrix"
                         .format(np.count_nonzero(~found)))
    # entries cancelled to zero are absent from block
    in_region = ((dest_major >= major_lo) & (dest_major < major_hi)
                 & (dest.indices >= minor_lo) & (dest.indices < minor_hi))
    dest.data[in_region] = 0.
    dest.data[pos] = block.data
    return dest


def make_qt(kappa2, spde, out=None):
    """Build Q(kappa2), optionally writing it into an existing matrix

    Parameters
    ----------
    kappa2 : float
        Range parameter, must be positive.

    spde : SpdePrior

    out : scipy.sparse.csc_matrix, optional
        Destination whose nonzero slots receive the values of Q(kappa2).
        Its sparsity pattern is left unchanged.

    Returns
    -------
    Q : scipy.sparse.csc_matrix
        ``out`` if given, a new matrix otherwise.
    """
    Q = spde.precision(kappa2)
    if out is None:
        return Q
    return set_sparse_block_update(out, 0, 0, Q)
