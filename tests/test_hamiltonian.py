"""Tests for Hamiltonian construction, application and diagonalization."""

import jax.numpy as jnp
import numpy as np
import pytest

from pwresponse.basis import PlaneWaveBasis
from pwresponse.eigensolver import diagonalize, direct_diagonalize
from pwresponse.errors import SymmetryError
from pwresponse.hamiltonian import Hamiltonian
from pwresponse.model import Model, symmetry_inversion


def _cosine_potential(r):
    return 0.2 * (np.cos(2 * np.pi * r[..., 0]) + np.cos(2 * np.pi * r[..., 1])
                  + np.cos(2 * np.pi * r[..., 2]))


def _make_model(**kwargs):
    return Model(lattice=5.0 * np.eye(3), n_electrons=2,
                 local_potential=_cosine_potential, **kwargs)


def test_hamiltonian_hermitian():
    """Test that the Hamiltonian is Hermitian."""
    basis = PlaneWaveBasis(_make_model(), ecut=3.0, kgrid=(2, 1, 1))
    block = Hamiltonian(basis).blocks[0]

    npw = block.n_pw
    eye = jnp.eye(npw, dtype=jnp.complex128)
    H = jnp.stack([block.apply(eye[:, i]) for i in range(npw)], axis=1)

    diff = jnp.max(jnp.abs(H - H.conj().T))
    assert float(diff) < 1e-12, f"Hamiltonian not Hermitian: max diff = {float(diff)}"
    np.testing.assert_allclose(block.to_dense(), H, atol=1e-12)


def test_potential_matrix_elements():
    """<G|V|G'> is the Fourier coefficient V(G - G') of the potential."""
    basis = PlaneWaveBasis(_make_model(), ecut=3.0)
    block = Hamiltonian(basis).blocks[0]
    H = block.to_dense()
    g = block.kpoint.g_indices
    i0 = int(np.where(np.all(g == 0, axis=1))[0][0])
    i1 = int(np.where(np.all(g == [1, 0, 0], axis=1))[0][0])
    i2 = int(np.where(np.all(g == [1, 1, 0], axis=1))[0][0])
    np.testing.assert_allclose(H[i1, i0], 0.1, atol=1e-12)
    np.testing.assert_allclose(H[i2, i0], 0.0, atol=1e-12)
    np.testing.assert_allclose(H[i0, i0], 0.0, atol=1e-12)


def test_free_electron_eigenvalues():
    """Without potential the eigenvalues are the kinetic energies."""
    model = Model(lattice=5.0 * np.eye(3), n_electrons=2)
    basis = PlaneWaveBasis(model, ecut=2.0, kgrid=(2, 1, 1))
    ham = Hamiltonian(basis)
    eigenvalues, psi = diagonalize(ham, n_bands=6)
    for ik, kpt in enumerate(basis.kpoints):
        np.testing.assert_allclose(eigenvalues[ik], np.sort(np.array(kpt.kinetic))[:6], atol=1e-12)
        np.testing.assert_allclose(psi[ik].conj().T @ psi[ik], np.eye(6), atol=1e-12)


def test_eigenpairs_residual():
    basis = PlaneWaveBasis(_make_model(), ecut=2.0, kgrid=(2, 1, 1))
    block = Hamiltonian(basis).blocks[1]
    evals, evecs = direct_diagonalize(block, n_bands=4)
    assert jnp.all(jnp.diff(evals) >= 0)
    for n in range(4):
        residual = block.apply(evecs[:, n]) - evals[n] * evecs[:, n]
        assert float(jnp.linalg.norm(residual)) < 1e-10


def test_too_many_bands():
    basis = PlaneWaveBasis(_make_model(), ecut=1.0)
    block = Hamiltonian(basis).blocks[0]
    with pytest.raises(ValueError):
        direct_diagonalize(block, n_bands=block.n_pw + 1)


def test_potential_must_respect_symmetry():
    shifted = Model(lattice=5.0 * np.eye(3), n_electrons=2,
                    local_potential=lambda r: np.sin(2 * np.pi * r[..., 0]),
                    symops=symmetry_inversion())
    basis = PlaneWaveBasis(shifted, ecut=1.5, use_symmetry=False)
    with pytest.raises(SymmetryError):
        Hamiltonian(basis)
    # Explicitly skipping the check is allowed
    assert len(Hamiltonian(basis, check_symmetry=False)) == 1

    # The cosine potential is inversion symmetric
    Hamiltonian(PlaneWaveBasis(_make_model(symops=symmetry_inversion()), ecut=1.5))


def test_band_edge_completes_degenerate_group():
    basis = PlaneWaveBasis(_make_model(), ecut=1.5, kgrid=(2, 1, 1))
    ham = Hamiltonian(basis)
    eigenvalues, psi = diagonalize(ham, n_bands=3)
    for ik, block in enumerate(ham.blocks):
        full, _ = direct_diagonalize(block)
        assert psi[ik].shape[1] == len(eigenvalues[ik]) == 4
        assert float(full[3] - full[2]) < 1e-8
        assert float(full[4] - full[3]) > 1e-8

    # At Gamma the five combinations of |G| = |b| not coupled to G = 0 are degenerate
    gamma_block = Hamiltonian(PlaneWaveBasis(_make_model(), ecut=1.5)).blocks[0]
    evals, evecs = direct_diagonalize(gamma_block, n_bands=2)
    assert evecs.shape[1] == 6
    np.testing.assert_allclose(evals[1:], evals[1], atol=1e-10)
