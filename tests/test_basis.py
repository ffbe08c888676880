"""Tests for plane-wave basis set generation and transforms."""

import jax
import jax.numpy as jnp
import numpy as np
import pytest

from pwresponse.basis import (
    PlaneWaveBasis, _next_fft_size, determine_fft_size, miller_grid,
)
from pwresponse.errors import SymmetryError
from pwresponse.model import Model, symmetry_inversion
from pwresponse.symmetry import SymOp


def _cubic_model(**kwargs):
    return Model(lattice=5.0 * np.eye(3), n_electrons=2, **kwargs)


def test_next_fft_size():
    """Test FFT size selection."""
    assert _next_fft_size(1) == 1
    assert _next_fft_size(7) == 8
    assert _next_fft_size(11) == 12
    assert _next_fft_size(16) == 16
    assert _next_fft_size(17) == 18


def test_fft_size_cubic():
    assert determine_fft_size(5.0 * jnp.eye(3), 1.5) == (8, 8, 8)


def test_miller_grid():
    m = miller_grid((8, 8, 8))
    assert m.shape == (8, 8, 8, 3)
    np.testing.assert_array_equal(m[0, 0, 0], [0, 0, 0])
    np.testing.assert_array_equal(m[7, 1, 4], [-1, 1, -4])


def test_kpoint_cutoff():
    """All plane waves satisfy |k+G|^2/2 <= ecut and G = 0 is present at Gamma."""
    basis = PlaneWaveBasis(_cubic_model(), ecut=3.0, kgrid=(2, 2, 2))
    for kpt in basis.kpoints:
        assert kpt.n_pw > 0
        assert jnp.all(kpt.kinetic <= 3.0 * (1 + 1e-8))
    gamma = PlaneWaveBasis(_cubic_model(), ecut=3.0)
    assert np.any(np.all(gamma.kpoints[0].g_indices == 0, axis=1))


def test_cutoff_count_increases():
    small = PlaneWaveBasis(_cubic_model(), ecut=2.0)
    large = PlaneWaveBasis(_cubic_model(), ecut=5.0)
    assert large.kpoints[0].n_pw > small.kpoints[0].n_pw


def test_pw_real_roundtrip():
    """Test plane-wave <-> real-space roundtrip."""
    basis = PlaneWaveBasis(_cubic_model(), ecut=3.0, kgrid=(2, 1, 1))
    kpt = basis.kpoints[0]
    key = jax.random.PRNGKey(42)
    coeffs = (jax.random.normal(key, (kpt.n_pw,))
              + 1j * jax.random.normal(jax.random.PRNGKey(43), (kpt.n_pw,)))

    real_field = basis.pw_to_real(kpt, coeffs)
    coeffs_back = basis.real_to_pw(kpt, real_field)
    np.testing.assert_allclose(coeffs_back, coeffs, atol=1e-12)


def test_orbital_normalization():
    """Unit coefficient norm <=> dVol * sum |u(r)|^2 = 1."""
    basis = PlaneWaveBasis(_cubic_model(), ecut=3.0, kgrid=(2, 1, 1))
    kpt = basis.kpoints[1]
    rng = np.random.default_rng(1)
    coeffs = rng.standard_normal(kpt.n_pw) + 1j * rng.standard_normal(kpt.n_pw)
    coeffs = jnp.asarray(coeffs / np.linalg.norm(coeffs))
    u = basis.pw_to_real(kpt, coeffs)
    np.testing.assert_allclose(float(basis.dvol * jnp.sum(jnp.abs(u)**2)), 1.0, rtol=1e-12)


def test_field_transform_roundtrip():
    basis = PlaneWaveBasis(_cubic_model(), ecut=1.5)
    rng = np.random.default_rng(2)
    field = jnp.asarray(rng.standard_normal(basis.fft_size))
    f_fourier = basis.real_to_fourier(field)
    np.testing.assert_allclose(f_fourier[0, 0, 0], jnp.mean(field), atol=1e-14)
    np.testing.assert_allclose(jnp.real(basis.fourier_to_real(f_fourier)), field, atol=1e-12)


def test_symmetry_reduced_basis():
    model = _cubic_model(symops=symmetry_inversion())
    reduced = PlaneWaveBasis(model, ecut=1.5, kgrid=(4, 1, 1), gamma_centered=True)
    assert reduced.n_kpoints == 3
    assert reduced.n_symops_total == 4
    assert reduced.symmetry_reduced
    np.testing.assert_allclose(np.sum(reduced.kweights), 1.0, atol=1e-14)

    full = PlaneWaveBasis(model, ecut=1.5, kgrid=(4, 1, 1), gamma_centered=True,
                          use_symmetry=False)
    assert full.n_kpoints == 4
    assert not full.symmetry_reduced


def test_explicit_kpoints():
    basis = PlaneWaveBasis(_cubic_model(), ecut=1.5, kcoords=[[0.1, 0.0, 0.0], [0.2, 0.0, 0.0]])
    assert basis.n_kpoints == 2
    np.testing.assert_allclose(basis.kweights, [0.5, 0.5])


def test_fft_grid_too_small():
    with pytest.raises(ValueError):
        PlaneWaveBasis(_cubic_model(), ecut=3.0, fft_size=(2, 2, 2))


def test_incompatible_symmetry_rejected():
    half_shift = SymOp(W=np.eye(3), w=np.array([0.5, 0.0, 0.0]))
    model = _cubic_model(symops=[SymOp.identity(), half_shift])
    with pytest.raises(SymmetryError):
        PlaneWaveBasis(model, ecut=1.5, fft_size=(9, 9, 9))
