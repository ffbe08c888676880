"""High-level interface: ground state of a model and its density response."""

from dataclasses import dataclass
from typing import NamedTuple, Optional

import jax.numpy as jnp
import numpy as np

from pwresponse.basis import PlaneWaveBasis
from pwresponse.chi0 import ResponseConfig, apply_chi0, compute_chi0
from pwresponse.constants import HARTREE_TO_EV
from pwresponse.eigensolver import diagonalize
from pwresponse.hamiltonian import Hamiltonian
from pwresponse.model import Model
from pwresponse.occupation import compute_occupation


class GroundState(NamedTuple):
    """Orbitals and occupations of non-interacting electrons."""
    basis: PlaneWaveBasis
    hamiltonian: Hamiltonian
    eigenvalues: list[jnp.ndarray]   # per k-point (n_bands,)
    psi: list[jnp.ndarray]           # per k-point (npw, n_bands)
    occupations: list[jnp.ndarray]   # per k-point (n_bands,)
    fermi_level: float


@dataclass
class ResponseCalculator:
    """Set up a model in a plane-wave basis and compute its response.

    Example usage:
        model = Model(lattice=5.0 * np.eye(3), n_electrons=2,
                      local_potential=lambda r: -np.cos(2 * np.pi * r[..., 0]))
        calc = ResponseCalculator(ecut=5.0, kgrid=(2, 2, 2), n_bands=4)
        state = calc.run(model)
        drho = calc.apply_chi0(state, dv)
    """
    ecut: float = 5.0           # Energy cutoff in Hartree
    kgrid: tuple[int, int, int] = (1, 1, 1)  # Monkhorst-Pack mesh
    kshift: tuple[float, float, float] = (0.0, 0.0, 0.0)  # Mesh shift
    gamma_centered: bool = False  # Gamma-centred mesh
    n_bands: int | None = None  # Number of bands (None for auto)
    use_symmetry: bool = True   # Reduce the mesh with the model symmetries
    fft_size: tuple[int, int, int] | None = None  # FFT grid (None for auto)
    supersampling: float = 2.0  # Density / orbital cutoff radius ratio
    verbose: bool = False       # Print info

    def default_n_bands(self, model: Model) -> int:
        """Occupied bands plus a few empty ones."""
        n_occ = int(np.ceil(model.n_electrons / model.filled_occupation))
        return max(n_occ + 4, int(np.ceil(1.2 * n_occ)))

    def run(self, model: Model) -> GroundState:
        """Diagonalize the model Hamiltonian and occupy the bands.

        Args:
            model: Physical model.

        Returns:
            GroundState with orbitals, eigenvalues and occupations.
        """
        basis = PlaneWaveBasis(
            model, self.ecut,
            kgrid=self.kgrid,
            kshift=self.kshift,
            gamma_centered=self.gamma_centered,
            use_symmetry=self.use_symmetry,
            fft_size=self.fft_size,
            supersampling=self.supersampling,
        )
        n_bands = self.n_bands if self.n_bands is not None else self.default_n_bands(model)
        n_bands = min(n_bands, min(kpt.n_pw for kpt in basis.kpoints))

        if self.verbose:
            print("=" * 60)
            print("  Ground state")
            print("=" * 60)
            print(f"  Cell volume: {model.unit_cell_volume:.4f} Bohr^3")
            print(f"  Electrons: {model.n_electrons}")
            print(f"  Ecut: {self.ecut} Ha ({self.ecut * HARTREE_TO_EV:.1f} eV)")
            print(f"  FFT grid: {basis.fft_size}")
            print(f"  K-points: {basis.n_kpoints} irreducible of {basis.n_symops_total}")
            print(f"  Symmetry operations: {model.n_symops}")
            print(f"  Bands: {n_bands}")
            print("=" * 60)

        ham = Hamiltonian(basis)
        eigenvalues, psi = diagonalize(ham, n_bands)
        occupations, fermi_level = compute_occupation(basis, eigenvalues)

        if self.verbose:
            print(f"  Bands per k-point: {[p.shape[1] for p in psi]}")
            print(f"  Fermi energy: {fermi_level:.6f} Ha ({fermi_level * HARTREE_TO_EV:.4f} eV)")
            for ik, kpt in enumerate(basis.kpoints):
                print(f"  k = {np.round(kpt.coordinate, 4)}  npw = {kpt.n_pw}  "
                      f"eigenvalues = {np.round(np.array(eigenvalues[ik]), 5)}")

        return GroundState(basis, ham, eigenvalues, psi, occupations, fermi_level)

    def apply_chi0(self, state: GroundState, dv: jnp.ndarray,
                   config: Optional[ResponseConfig] = None, **overrides) -> jnp.ndarray:
        """Density response to ``dv`` from the computed bands of ``state``."""
        if config is None:
            overrides.setdefault("verbose", self.verbose)
        return apply_chi0(state.hamiltonian, dv, state.psi, state.fermi_level,
                          state.eigenvalues, config, **overrides)

    def compute_chi0(self, state: GroundState, droptol: float = 0.0,
                     temperature: Optional[float] = None) -> jnp.ndarray:
        """Dense chi0 kernel of the Hamiltonian of ``state``."""
        return compute_chi0(state.hamiltonian, droptol=droptol,
                            temperature=temperature, verbose=self.verbose)
