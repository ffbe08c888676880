"""Tests for symmetry operations and symmetrization of fields."""

import jax.numpy as jnp
import numpy as np
import pytest

from pwresponse.basis import PlaneWaveBasis, miller_grid
from pwresponse.errors import SymmetryError
from pwresponse.model import Model, symmetry_inversion
from pwresponse.symmetry import (
    SymOp, check_group, check_invariance, symmetrize, transform_fourier,
)


def _field(r):
    """Smooth periodic test function of fractional coordinates without symmetry."""
    x, y, z = r[..., 0], r[..., 1], r[..., 2]
    return (np.cos(2 * np.pi * (x + 2 * y)) + 0.5 * np.sin(2 * np.pi * z)
            + 0.3 * np.sin(2 * np.pi * (y - x)) + 0.2)


def _grid(n):
    i = np.arange(n) / n
    g1, g2, g3 = np.meshgrid(i, i, i, indexing='ij')
    return np.stack([g1, g2, g3], axis=-1)


def test_symop_validation():
    with pytest.raises(SymmetryError):
        SymOp(W=2 * np.eye(3))
    with pytest.raises(SymmetryError):
        SymOp(W=0.5 * np.eye(3))
    with pytest.raises(SymmetryError):
        SymOp(W=np.eye(2))


def test_translation_wrapped():
    op = SymOp(W=np.eye(3), w=np.array([1.25, -0.25, 0.0]))
    np.testing.assert_allclose(op.w, [0.25, 0.75, 0.0], atol=1e-15)


def test_compose_inverse():
    op = SymOp(W=np.array([[0, 1, 0], [1, 0, 0], [0, 0, -1]]), w=np.array([0.5, 0.0, 0.25]))
    assert op.compose(op.inverse()).is_identity()
    assert op.inverse().compose(op).is_identity()
    assert not op.is_identity()


def test_kpoint_rotation():
    """k -> S k with S = W^{-T} keeps exp(i k.x) consistent with x -> W x."""
    W = np.array([[1, 1, 0], [0, 1, 0], [0, 0, 1]])
    op = SymOp(W=W)
    k = np.array([0.1, 0.2, 0.3])
    x = np.array([0.3, -0.7, 0.2])
    # exp(i (S k) . (W x)) == exp(i k . x)
    np.testing.assert_allclose(op.transform_kpoint(k) @ (W @ x), k @ x, atol=1e-14)


def test_check_group():
    check_group([SymOp.identity()])
    check_group(symmetry_inversion())
    with pytest.raises(SymmetryError):
        check_group([SymOp(W=-np.eye(3))])
    four_fold = SymOp(W=np.array([[0, -1, 0], [1, 0, 0], [0, 0, 1]]))
    with pytest.raises(SymmetryError):
        check_group([SymOp.identity(), four_fold])


def test_grid_compatibility():
    assert SymOp(W=np.eye(3), w=np.array([0.5, 0.0, 0.0])).is_compatible((8, 8, 8))
    assert not SymOp(W=np.eye(3), w=np.array([1 / 3, 0.0, 0.0])).is_compatible((8, 8, 8))
    swap = SymOp(W=np.array([[0, 1, 0], [1, 0, 0], [0, 0, 1]]))
    assert swap.is_compatible((8, 8, 6))
    assert not swap.is_compatible((8, 6, 6))


def test_transform_fourier_matches_real_space():
    """f'(G) = exp(-2 pi i G.w) f(W^T G) is the transform of f(W^{-1}(x - w))."""
    n = 8
    r = _grid(n)
    op = SymOp(W=np.array([[0, 1, 0], [1, 0, 0], [0, 0, -1]]), w=np.array([0.5, 0.0, 0.25]))

    W_inv = np.linalg.inv(op.W)
    expected_r = _field((r - op.w) @ W_inv.T)
    expected = np.fft.fftn(expected_r) / n**3

    f_fourier = jnp.asarray(np.fft.fftn(_field(r)) / n**3)
    image = transform_fourier(f_fourier, op, miller_grid((n, n, n)))
    np.testing.assert_allclose(image, expected, atol=1e-12)


def _inversion_basis():
    model = Model(lattice=5.0 * np.eye(3), n_electrons=2, symops=symmetry_inversion())
    return PlaneWaveBasis(model, ecut=1.5, use_symmetry=False)


def test_symmetrize_invariant_and_idempotent():
    basis = _inversion_basis()
    rng = np.random.default_rng(0)
    field_r = jnp.asarray(rng.standard_normal(basis.fft_size))

    with pytest.raises(SymmetryError):
        check_invariance(basis, field_r, basis.model.symops)

    sym = symmetrize(basis, basis.real_to_fourier(field_r))
    sym_r = jnp.real(basis.fourier_to_real(sym))
    check_invariance(basis, sym_r, basis.model.symops)

    np.testing.assert_allclose(symmetrize(basis, sym), sym, atol=1e-14)
    # Inversion about the origin: f(x) = f(-x) on the grid
    np.testing.assert_allclose(sym_r, jnp.roll(jnp.flip(sym_r), 1, axis=(0, 1, 2)), atol=1e-12)
