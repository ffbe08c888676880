"""Independent-particle susceptibility chi0.

chi0(r, r') is the kernel such that delta_rho = int chi0(r, r') delta_V(r') dr'
for non-interacting electrons in the potential of the Hamiltonian. With
f_n = f((epsilon_n - epsilon_F)/T), first-order perturbation theory and
particle conservation give (k-point sums implied)

    delta_rho = LDOS delta_epsilon_F
              + sum_{n,m} (f_n - f_m)/(epsilon_n - epsilon_m) rho_nm <rho_nm|delta_V>

with rho_nm = conj(psi_n) psi_m, delta_epsilon_F = <LDOS|delta_V> / DOS and the
convention (f(x) - f(x))/(x - x) = f'(x). Hence

    chi0(r, r') = LDOS(r) LDOS(r') / DOS
                + sum_{n,m} (f_n - f_m)/(epsilon_n - epsilon_m) rho_nm(r) conj(rho_nm(r'))

``compute_chi0`` builds this kernel densely from a full diagonalization.
``apply_chi0`` applies it to one delta_V using only the computed bands: the
pairs among them are summed explicitly, and the coupling of occupied bands to
all remaining bands is obtained from the Sternheimer equation.
"""

import dataclasses
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional

import jax
import jax.numpy as jnp
import numpy as np

from pwresponse.constants import DEFAULT_CG_MAXITER, DEFAULT_CG_TOL, EPS
from pwresponse.errors import ConfigurationError, SymmetryError
from pwresponse.hamiltonian import Hamiltonian
from pwresponse.occupation import compute_dos, compute_ldos, compute_occupation
from pwresponse.smearing import divided_difference_matrix, occupation
from pwresponse.sternheimer import (
    NONCONVERGENCE_POLICIES, SternheimerParams, solve_sternheimer,
)
from pwresponse.symmetry import accumulate_over_symops, symmetrize

# Largest k-point basis for which the dense kernel is attempted
_MAX_DENSE_NPW = 10_000


@dataclass
class ResponseConfig:
    """Options of a response calculation.

    Attributes:
        droptol: Drop explicit pairs n != m whose occupation ratio is below
            this value. Only allowed without the Sternheimer contribution.
        sternheimer_contribution: Include the coupling to uncomputed bands.
        temperature: Smearing temperature in Hartree; the model's if None.
        tol: Relative CG tolerance of the Sternheimer solves.
        maxiter: Maximum CG iterations per Sternheimer solve.
        on_nonconvergence: "raise", "warn" or "ignore".
        n_workers: Number of threads working on k-points in parallel.
        verbose: Print progress.
    """
    droptol: float = 0.0
    sternheimer_contribution: bool = True
    temperature: Optional[float] = None
    tol: float = DEFAULT_CG_TOL
    maxiter: int = DEFAULT_CG_MAXITER
    on_nonconvergence: str = "raise"
    n_workers: int = 1
    verbose: bool = False

    def validate(self) -> "ResponseConfig":
        """Check the options before any work is done.

        Raises:
            ConfigurationError: On invalid or mutually exclusive options.
        """
        if self.droptol < 0:
            raise ConfigurationError(f"droptol must be non-negative, got {self.droptol}")
        if self.droptol > 0 and self.sternheimer_contribution:
            raise ConfigurationError(
                "droptol cannot be positive when the Sternheimer contribution is computed"
            )
        if self.temperature is not None and self.temperature < 0:
            raise ConfigurationError(f"temperature must be non-negative, got {self.temperature}")
        if self.tol <= 0:
            raise ConfigurationError(f"tol must be positive, got {self.tol}")
        if self.maxiter < 1:
            raise ConfigurationError(f"maxiter must be at least 1, got {self.maxiter}")
        if self.on_nonconvergence not in NONCONVERGENCE_POLICIES:
            raise ConfigurationError(
                f"on_nonconvergence must be one of {NONCONVERGENCE_POLICIES}, "
                f"got {self.on_nonconvergence!r}"
            )
        if self.n_workers < 1:
            raise ConfigurationError(f"n_workers must be at least 1, got {self.n_workers}")
        return self


def _fermi_level_term(basis, eigenvalues, psi, fermi_level, temperature):
    """LDOS and DOS, or None when the DOS vanishes numerically."""
    dos = compute_dos(basis, eigenvalues, fermi_level, temperature)
    if dos < EPS:
        return None
    ldos = compute_ldos(basis, eigenvalues, psi, fermi_level, temperature)
    return ldos, dos


def compute_chi0(ham: Hamiltonian, droptol: float = 0.0,
                 temperature: Optional[float] = None,
                 verbose: bool = False) -> jnp.ndarray:
    """Dense independent-particle susceptibility from a full diagonalization.

    Feasible only for small systems: every block is diagonalized completely
    and the kernel has N_grid^2 entries.

    Args:
        ham: Hamiltonian on a basis without symmetry reduction.
        droptol: Drop pairs n != m with |occupation ratio| < droptol.
        temperature: Smearing temperature; the model's if None.
        verbose: Print progress.

    Returns:
        (N_grid, N_grid) real symmetric kernel, delta_rho = chi0 @ delta_V.ravel().

    Raises:
        SymmetryError: If the k-point mesh is symmetry-reduced.
    """
    basis = ham.basis
    model = basis.model
    if droptol < 0:
        raise ConfigurationError(f"droptol must be non-negative, got {droptol}")
    if basis.symmetry_reduced:
        raise SymmetryError(
            "The dense chi0 needs the full k-point mesh; disable symmetry "
            "reduction (use_symmetry=False) to compute it"
        )
    temperature = model.temperature if temperature is None else float(temperature)
    filled_occ = model.filled_occupation
    n_grid = basis.n_grid
    dvol = basis.dvol

    eigenvalues = []
    eigenvectors = []
    for block in ham.blocks:
        if block.n_pw >= _MAX_DENSE_NPW:
            raise ValueError(f"Basis of {block.n_pw} plane waves is too large for the dense chi0")
        evals, evecs = jnp.linalg.eigh(block.to_dense())
        eigenvalues.append(evals)
        eigenvectors.append(evecs)
    _, fermi_level = compute_occupation(basis, eigenvalues, temperature)

    if verbose:
        print(f"Dense chi0: {basis.n_kpoints} k-points, {n_grid} grid points, "
              f"T = {temperature:.4e} Ha, eF = {fermi_level:.6f} Ha")

    chi0 = jnp.zeros((n_grid, n_grid))
    for ik, kpt in enumerate(basis.kpoints):
        energies = eigenvalues[ik]
        n_states = len(energies)
        if verbose:
            print(f"  k-point {ik + 1}/{basis.n_kpoints}: {n_states} states")

        # ratio[m, n] = f_filled (f_m - f_n) / (e_m - e_n)
        ratio = filled_occ * divided_difference_matrix(model.smearing, energies,
                                                       fermi_level, temperature)
        if droptol > 0:
            off_diagonal = ~jnp.eye(n_states, dtype=bool)
            ratio = jnp.where(off_diagonal & (jnp.abs(ratio) < droptol), 0.0, ratio)

        # (n_states, N_grid) real-space orbitals
        psi_r = jax.vmap(lambda c: basis.pw_to_real(kpt, c))(eigenvectors[ik].T)
        psi_r = psi_r.reshape(n_states, n_grid)

        factor = basis.kweights[ik] * dvol
        for m in range(n_states):
            # pair[r, n] = conj(psi_m(r)) psi_n(r)
            pair = psi_r[m].conj()[:, None] * psi_r.T
            chi0 = chi0 + factor * jnp.real((pair * ratio[m][None, :]) @ pair.conj().T)

    if temperature > 0:
        fermi_term = _fermi_level_term(basis, eigenvalues, eigenvectors, fermi_level, temperature)
        if fermi_term is not None:
            ldos, dos = fermi_term
            ldos = ldos.ravel()
            chi0 = chi0 + jnp.outer(ldos, ldos) * dvol / dos

    return chi0


def _kpoint_response(ham: Hamiltonian, ik: int, dv: jnp.ndarray, psi_k: jnp.ndarray,
                     energies: jnp.ndarray, fermi_level: float, temperature: float,
                     config: ResponseConfig) -> jnp.ndarray:
    """Density response from one irreducible k-point, folded over its ksymops.

    Returns:
        (n1, n2, n3) Fourier-space partial accumulator.
    """
    basis = ham.basis
    model = basis.model
    kpt = basis.kpoints[ik]
    filled_occ = model.filled_occupation
    n_bands = psi_k.shape[1]

    ratio = filled_occ * divided_difference_matrix(model.smearing, energies,
                                                   fermi_level, temperature)
    ratio = np.asarray(ratio)
    psi_real = [basis.pw_to_real(kpt, psi_k[:, n]) for n in range(n_bands)]

    if config.verbose:
        print(f"  k-point {ik + 1}/{basis.n_kpoints}: k = {np.round(kpt.coordinate, 4)}, "
              f"{n_bands} bands")

    drho_k = jnp.zeros(basis.fft_size)
    for n in range(n_bands):
        # Explicit sum over computed bands: ratio(m, n) rho_nm <rho_nm|dV>
        for m in range(n_bands):
            if n != m and abs(ratio[m, n]) < config.droptol:
                continue
            rho_nm = psi_real[n].conj() * psi_real[m]
            weight = basis.dvol * jnp.vdot(rho_nm, dv)
            drho_k = drho_k + jnp.real(ratio[m, n] * weight * rho_nm)

        if not config.sternheimer_contribution:
            continue
        # Coupling to the uncomputed bands: 2 f_n Re(conj(psi_n) Q delta_psi_n)
        fnk = filled_occ * float(occupation(model.smearing, energies[n], fermi_level, temperature))
        if fnk < EPS:
            continue
        rhs = -basis.real_to_pw(kpt, dv * psi_real[n])
        params = SternheimerParams(block=ham.blocks[ik], psi_k=psi_k,
                                   psi_nk=psi_k[:, n], energy=float(energies[n]))
        result = solve_sternheimer(params, rhs, tol=config.tol, maxiter=config.maxiter,
                                   on_nonconvergence=config.on_nonconvergence,
                                   verbose=config.verbose)
        dpsi_real = basis.pw_to_real(kpt, result.x)
        drho_k = drho_k + 2.0 * fnk * jnp.real(psi_real[n].conj() * dpsi_real)

    partial = jnp.zeros(basis.fft_size, dtype=jnp.complex128)
    return accumulate_over_symops(partial, basis.real_to_fourier(drho_k), basis, basis.ksymops[ik])


def apply_chi0(ham: Hamiltonian, dv: jnp.ndarray, psi: list[jnp.ndarray],
               fermi_level: float, eigenvalues: list[jnp.ndarray],
               config: Optional[ResponseConfig] = None, **overrides) -> jnp.ndarray:
    """Apply the independent-particle susceptibility to a potential variation.

    Args:
        ham: Hamiltonian the orbitals were computed from.
        dv: (n1, n2, n3) real perturbing potential.
        psi: Per k-point (npw, n_bands) computed orbitals (lowest bands).
            The last computed band must not be degenerate with the first
            missing one, otherwise the Sternheimer operator is singular;
            ``diagonalize`` completes such groups.
        fermi_level: Fermi energy of the ground state.
        eigenvalues: Per k-point (n_bands,) eigenvalues of ``psi``.
        config: Response options; defaults of ResponseConfig if None.
        **overrides: Individual options replacing those of ``config``.

    Returns:
        (n1, n2, n3) real density response delta_rho.

    Raises:
        ConfigurationError: On invalid options.
        ConvergenceError: If a Sternheimer solve fails under policy "raise".
    """
    config = dataclasses.replace(config or ResponseConfig(), **overrides).validate()
    basis = ham.basis
    temperature = basis.model.temperature if config.temperature is None else config.temperature

    dv = jnp.asarray(dv, dtype=jnp.float64)
    if dv.shape != basis.fft_size:
        raise ValueError(f"Potential of shape {dv.shape} does not match the FFT grid {basis.fft_size}")

    # Unit-norm perturbation, rescaled at the end
    norm_dv = float(jnp.linalg.norm(dv))
    if norm_dv < EPS:
        return jnp.zeros_like(dv)
    dv = dv / norm_dv

    # Invariant under the full model group, independent of the k-point reduction
    dv = jnp.real(basis.fourier_to_real(symmetrize(basis, basis.real_to_fourier(dv))))

    if config.verbose:
        mode = "explicit + Sternheimer" if config.sternheimer_contribution else "explicit only"
        print(f"apply_chi0: {basis.n_kpoints} k-points, {mode}, T = {temperature:.4e} Ha, "
              f"eF = {fermi_level:.6f} Ha, |dV| = {norm_dv:.4e}")

    def work(ik):
        return _kpoint_response(ham, ik, dv, psi[ik], eigenvalues[ik],
                                fermi_level, temperature, config)

    if config.n_workers > 1:
        with ThreadPoolExecutor(max_workers=config.n_workers) as executor:
            partials = list(executor.map(work, range(basis.n_kpoints)))
    else:
        partials = [work(ik) for ik in range(basis.n_kpoints)]

    drho_fourier = jnp.zeros(basis.fft_size, dtype=jnp.complex128)
    for partial in partials:
        drho_fourier = drho_fourier + partial
    drho = jnp.real(basis.fourier_to_real(drho_fourier)) / basis.n_symops_total

    # Variation of the Fermi level
    if temperature > 0:
        fermi_term = _fermi_level_term(basis, eigenvalues, psi, fermi_level, temperature)
        if fermi_term is not None:
            ldos, dos = fermi_term
            drho = drho + ldos * (jnp.sum(ldos * dv) * basis.dvol / dos)

    return drho * norm_dv
