"""Occupation numbers, Fermi level, densities and densities of states.

Occupations are f_nk = f_filled * f((epsilon_nk - epsilon_F) / T) with the
model's smearing function, and the Fermi level is fixed by

    sum_k w_k sum_n f_nk = N_elec.

Densities are accumulated over the symmetry operations attached to every
irreducible k-point and divided by the size of the unreduced mesh.
"""

from typing import Optional

import jax.numpy as jnp
import numpy as np

from pwresponse.basis import PlaneWaveBasis
from pwresponse.smearing import occupation as smeared_occupation
from pwresponse.symmetry import accumulate_over_symops


def _resolve_temperature(basis: PlaneWaveBasis, temperature: Optional[float]) -> float:
    return basis.model.temperature if temperature is None else float(temperature)


def compute_occupation(basis: PlaneWaveBasis,
                       eigenvalues: list[jnp.ndarray],
                       temperature: Optional[float] = None,
                       ) -> tuple[list[jnp.ndarray], float]:
    """Compute occupation numbers and Fermi energy.

    At zero temperature the lowest states are filled with f_filled electrons
    and the Fermi level is put midway between the highest occupied and the
    lowest unoccupied state. At positive temperature the Fermi level is found
    by bisection on the electron count.

    Args:
        basis: Plane-wave basis (model, k-point weights).
        eigenvalues: List of eigenvalue arrays, one per k-point.
        temperature: Smearing temperature; the model default if None.

    Returns:
        occupations: List of occupation arrays (matching eigenvalues).
        fermi_energy: Fermi energy.
    """
    model = basis.model
    temperature = _resolve_temperature(basis, temperature)
    filled_occ = model.filled_occupation
    nelec = model.n_electrons
    weights = basis.kweights

    n_states = sum(len(e) for e in eigenvalues)
    if nelec > filled_occ * min(len(e) for e in eigenvalues) + 1e-10:
        raise ValueError(
            f"Not enough bands ({min(len(e) for e in eigenvalues)}) "
            f"to hold {nelec} electrons"
        )

    # Collect all eigenvalues with k-point weights
    all_eigs = np.concatenate([np.array(e) for e in eigenvalues])
    all_weights = np.concatenate([np.full(len(e), weights[ik]) for ik, e in enumerate(eigenvalues)])

    if temperature == 0:
        sorted_idx = np.argsort(all_eigs, kind='stable')
        occ_flat = np.zeros(n_states)
        n_fill = 0.0
        last_filled = None
        for idx in sorted_idx:
            if n_fill + filled_occ * all_weights[idx] <= nelec + 1e-10:
                occ_flat[idx] = filled_occ
                n_fill += filled_occ * all_weights[idx]
                last_filled = idx
            elif n_fill < nelec - 1e-10:
                # Partial occupation
                remaining = nelec - n_fill
                occ_flat[idx] = remaining / all_weights[idx]
                n_fill += remaining
                last_filled = idx
            else:
                break

        homo = all_eigs[last_filled]
        empty = all_eigs[occ_flat == 0.0]
        if occ_flat[last_filled] < filled_occ or len(empty) == 0:
            fermi_energy = float(homo)
        else:
            fermi_energy = float(0.5 * (homo + np.min(empty)))

        occupations = []
        offset = 0
        for e in eigenvalues:
            occupations.append(jnp.array(occ_flat[offset:offset + len(e)]))
            offset += len(e)
        return occupations, fermi_energy

    smearing = model.smearing

    def electron_count(ef: float) -> float:
        f = np.array(smearing.occupation((all_eigs - ef) / temperature))
        return filled_occ * float(np.sum(all_weights * f))

    # Find Fermi energy by bisection
    emin = float(np.min(all_eigs)) - 50 * temperature
    emax = float(np.max(all_eigs)) + 50 * temperature
    for _ in range(200):
        ef = 0.5 * (emin + emax)
        n_elec_test = electron_count(ef)
        if n_elec_test > nelec:
            emax = ef
        else:
            emin = ef
        if abs(n_elec_test - nelec) < 1e-13 or emax - emin < 1e-15:
            break
    fermi_energy = ef

    occupations = [filled_occ * smeared_occupation(smearing, e, fermi_energy, temperature)
                   for e in eigenvalues]
    return occupations, fermi_energy


def compute_density(basis: PlaneWaveBasis,
                    psi: list[jnp.ndarray],
                    occupation: list[jnp.ndarray]) -> jnp.ndarray:
    """Compute a density from orbitals and per-band weights.

    rho(r) = (1/N_full) sum_{k irr} sum_{S in ksymops(k)} S[ sum_n f_nk |u_nk|^2 ](r)

    which equals sum_k w_k sum_n f_nk |u_nk(r)|^2 over the full (uniform)
    mesh. The per-band weights may be any real numbers (e.g. occupation
    derivatives for the LDOS).

    Args:
        basis: Plane-wave basis.
        psi: Per k-point (npw, n_bands) orbital coefficients.
        occupation: Per k-point (n_bands,) weights.

    Returns:
        (n1, n2, n3) real density.
    """
    rho_fourier = jnp.zeros(basis.fft_size, dtype=jnp.complex128)
    for ik, kpt in enumerate(basis.kpoints):
        rho_k = jnp.zeros(basis.fft_size)
        occ = np.array(occupation[ik])
        for n in range(psi[ik].shape[1]):
            if abs(occ[n]) < 1e-15:
                continue
            u_r = basis.pw_to_real(kpt, psi[ik][:, n])
            rho_k = rho_k + occ[n] * jnp.abs(u_r)**2
        rho_fourier = accumulate_over_symops(rho_fourier, basis.real_to_fourier(rho_k),
                                             basis, basis.ksymops[ik])
    rho = jnp.real(basis.fourier_to_real(rho_fourier))
    return rho / basis.n_symops_total


def _occupation_delta(basis: PlaneWaveBasis, energies: jnp.ndarray,
                      fermi_level: float, temperature: float) -> jnp.ndarray:
    """-f_filled * df/d(epsilon) for every band: the smeared delta function."""
    if temperature <= 0:
        raise ValueError("Densities of states at the Fermi level need a positive temperature")
    model = basis.model
    x = (jnp.asarray(energies) - fermi_level) / temperature
    return -model.filled_occupation * model.smearing.occupation_derivative(x) / temperature


def compute_dos(basis: PlaneWaveBasis, eigenvalues: list[jnp.ndarray],
                fermi_level: float, temperature: Optional[float] = None) -> float:
    """Total density of states at the Fermi level.

    DOS = -sum_k w_k sum_n f_filled * f'((epsilon_nk - epsilon_F)/T) / T
    """
    temperature = _resolve_temperature(basis, temperature)
    dos = 0.0
    for ik, energies in enumerate(eigenvalues):
        delta = _occupation_delta(basis, energies, fermi_level, temperature)
        dos += float(basis.kweights[ik]) * float(jnp.sum(delta))
    return dos


def compute_ldos(basis: PlaneWaveBasis, eigenvalues: list[jnp.ndarray],
                 psi: list[jnp.ndarray], fermi_level: float,
                 temperature: Optional[float] = None) -> jnp.ndarray:
    """Local density of states at the Fermi level on the real-space grid.

    Integrates (dVol * sum over the grid) to the DOS.
    """
    temperature = _resolve_temperature(basis, temperature)
    weights = [_occupation_delta(basis, e, fermi_level, temperature) for e in eigenvalues]
    return compute_density(basis, psi, weights)
