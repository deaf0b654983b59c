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
import pytest
import scipy.sparse
from numpy.testing import assert_allclose

from bayesglm.spde.precision import (
    SpdePrior,
    log_det_qt,
    make_qt,
    set_sparse_block_update,
)
from bayesglm.utils.sparse_cholesky import NotPositiveDefiniteError


@pytest.mark.parametrize("kappa2", [0.01, 0.5, 3., 49.])
def test_precision_symmetric_positive_definite(chain_prior, kappa2):
    spde = chain_prior(12)
    Q = make_qt(kappa2, spde).toarray()
    assert_allclose(Q, Q.T)
    assert np.linalg.eigvalsh(Q).min() > 0,\
        "Q(kappa2) should be positive definite"
    expected = (kappa2 * spde.Cmat + 2 * spde.Gmat
                + spde.GtCinvG / kappa2).toarray()
    assert_allclose(Q, expected)


def test_log_det_qt_matches_dense(chain_prior):
    spde = chain_prior(15)
    for kappa2 in [0.2, 1., 7.5]:
        _, logdet = np.linalg.slogdet(spde.precision(kappa2).toarray())
        for n_sess in [1, 3]:
            assert_allclose(log_det_qt(kappa2, spde, n_sess),
                            n_sess * logdet, rtol=1e-10)


def test_log_det_qt_increases_with_smallest_eigenvalue(diagonal_prior):
    # Q = (kappa2 + 2 + 1 / kappa2) I grows with kappa2 above 1
    spde = diagonal_prior(5)
    kappa2s = [1.5, 2., 4., 10.]
    smallest = [np.linalg.eigvalsh(spde.precision(k).toarray()).min()
                for k in kappa2s]
    log_dets = [log_det_qt(k, spde, 1) for k in kappa2s]
    assert np.all(np.diff(smallest) > 0)
    assert np.all(np.diff(log_dets) > 0),\
        "log det should increase with the smallest eigenvalue"
    assert np.all(np.isfinite(log_dets))


def test_invalid_kappa2(chain_prior):
    spde = chain_prior(5)
    for kappa2 in [0., -1., np.nan]:
        with pytest.raises(ValueError):
            log_det_qt(kappa2, spde, 1)


def test_log_det_qt_not_positive_definite():
    eye = scipy.sparse.identity(4, format="csc")
    spde = SpdePrior(eye, -2. * eye, eye)
    # kappa2 + 1 / kappa2 - 4 < 0 at kappa2 = 1
    with pytest.raises(NotPositiveDefiniteError):
        log_det_qt(1., spde, 1)


def test_make_qt_keeps_destination_pattern(chain_prior):
    spde = chain_prior(10)
    dest = spde.pattern()
    indptr = dest.indptr.copy()
    indices = dest.indices.copy()
    for kappa2 in [0.3, 8.]:
        out = make_qt(kappa2, spde, out=dest)
        assert out is dest, "make_qt should write into out"
        assert np.array_equal(dest.indptr, indptr)
        assert np.array_equal(dest.indices, indices)
        assert_allclose(dest.toarray(), spde.precision(kappa2).toarray())


def test_block_update_in_larger_matrix(chain_prior):
    spde = chain_prior(6)
    Q1 = spde.precision(1.)
    Q2 = spde.precision(2.)
    dest = scipy.sparse.block_diag([spde.pattern()] * 3, format="csc")
    nnz = dest.nnz
    set_sparse_block_update(dest, 6, 6, Q1)
    set_sparse_block_update(dest, 12, 12, Q2)
    dense = dest.toarray()
    assert dest.nnz == nnz, "Block update should not add entries"
    assert_allclose(dense[:6, :6], 0.)
    assert_allclose(dense[6:12, 6:12], Q1.toarray())
    assert_allclose(dense[12:, 12:], Q2.toarray())

    # CSR destinations work the same way
    dest_csr = scipy.sparse.block_diag([spde.pattern()] * 2, format="csr")
    set_sparse_block_update(dest_csr, 6, 6, Q2)
    assert_allclose(dest_csr.toarray()[6:, 6:], Q2.toarray())


def test_block_update_errors(chain_prior):
    spde = chain_prior(4)
    dest = scipy.sparse.identity(8, format="csc")
    with pytest.raises(ValueError):
        # off-diagonal entries of Q have no slot in the identity
        set_sparse_block_update(dest, 0, 0, spde.precision(1.))
    with pytest.raises(ValueError):
        set_sparse_block_update(dest, 6, 6, spde.precision(1.))
    with pytest.raises(TypeError):
        set_sparse_block_update(dest.tocoo(), 0, 0, spde.precision(1.))


def test_prior_validation():
    eye = scipy.sparse.identity(3)
    with pytest.raises(ValueError):
        SpdePrior(eye, eye, scipy.sparse.identity(4))
    with pytest.raises(ValueError):
        SpdePrior(eye, eye, scipy.sparse.csc_matrix(np.ones((3, 2))))
    with pytest.raises(ValueError):
        SpdePrior.from_dict({"Cmat": eye, "Gmat": eye})
    spde = SpdePrior.from_dict({"Cmat": eye, "Gmat": eye, "GtCinvG": eye})
    assert spde.n_spde == 3


def test_make_qt_overwrites_cancelled_entries():
    # off-diagonal of Q is 2 (-1) + 2 / kappa2, exactly 0 at kappa2 = 1
    n = 4
    Cmat = scipy.sparse.identity(n, format="csc")
    Gmat = scipy.sparse.diags([-1., 2., -1.], [-1, 0, 1], shape=(n, n),
                              format="csc")
    GtCinvG = scipy.sparse.diags([2., 6., 2.], [-1, 0, 1], shape=(n, n),
                                 format="csc")
    spde = SpdePrior(Cmat, Gmat, GtCinvG)
    dest = spde.pattern()
    make_qt(2., spde, out=dest)
    assert dest[0, 1] == -1.
    make_qt(1., spde, out=dest)
    expected = (Cmat + 2. * Gmat + GtCinvG).toarray()
    assert expected[0, 1] == 0.
    assert_allclose(dest.toarray(), expected)


def test_block_update_clears_only_block_region(chain_prior):
    spde = chain_prior(5)
    dest = scipy.sparse.block_diag([spde.precision(1.)] * 2, format="csr")
    outside = dest.toarray()[5:, 5:].copy()
    diagonal = scipy.sparse.identity(5, format="csc")
    set_sparse_block_update(dest, 0, 0, diagonal)
    dense = dest.toarray()
    assert_allclose(dense[:5, :5], np.eye(5))
    assert_allclose(dense[5:, 5:], outside)
