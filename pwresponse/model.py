"""Physical model: periodic cell, electrons, external potential and symmetries."""

from dataclasses import dataclass, field
from typing import Callable, Optional

import jax.numpy as jnp
import numpy as np

from pwresponse.constants import ANGSTROM_TO_BOHR, TWO_PI
from pwresponse.smearing import FermiDirac, Smearing
from pwresponse.symmetry import SymOp, check_group

_FILLED_OCCUPATION = {"none": 2.0, "spinless": 1.0}


@dataclass
class Model:
    """Non-interacting electrons in a periodic local potential.

    All quantities are in atomic units (Bohr, Hartree).

    Attributes:
        lattice: (3, 3) real-space lattice vectors as rows, in Bohr.
        n_electrons: Number of electrons per unit cell.
        local_potential: Function of (..., 3) fractional coordinates returning
            the real local potential there. None means free electrons.
        temperature: Smearing temperature in Hartree (0 for a step function).
        smearing: Smearing function used at positive temperature.
        spin_polarization: "none" (two electrons per band) or "spinless".
        symops: Full symmetry group of the model. The local potential must be
            invariant under every operation.
    """
    lattice: jnp.ndarray
    n_electrons: float
    local_potential: Optional[Callable[[np.ndarray], np.ndarray]] = None
    temperature: float = 0.0
    smearing: Smearing = field(default_factory=FermiDirac)
    spin_polarization: str = "none"
    symops: list[SymOp] = field(default_factory=lambda: [SymOp.identity()])

    def __post_init__(self):
        self.lattice = jnp.asarray(self.lattice, dtype=jnp.float64)
        if self.lattice.shape != (3, 3):
            raise ValueError(f"Lattice must be a (3, 3) array, got {self.lattice.shape}")
        if self.spin_polarization not in _FILLED_OCCUPATION:
            raise ValueError(
                f"Unsupported spin polarization '{self.spin_polarization}', "
                f"expected one of {sorted(_FILLED_OCCUPATION)}"
            )
        if self.temperature < 0:
            raise ValueError(f"Temperature must be non-negative, got {self.temperature}")
        if self.n_electrons <= 0:
            raise ValueError(f"Number of electrons must be positive, got {self.n_electrons}")
        check_group(self.symops)

    @classmethod
    def from_angstrom(cls, lattice_vectors: np.ndarray, n_electrons: float, **kwargs) -> "Model":
        """Create a Model from lattice vectors given in Angstroms (rows)."""
        a = jnp.array(lattice_vectors, dtype=jnp.float64) * ANGSTROM_TO_BOHR
        return cls(lattice=a, n_electrons=n_electrons, **kwargs)

    @property
    def filled_occupation(self) -> float:
        """Maximal occupation of a single band."""
        return _FILLED_OCCUPATION[self.spin_polarization]

    @property
    def recip_lattice(self) -> jnp.ndarray:
        """Reciprocal lattice vectors (rows), a_i . b_j = 2 pi delta_ij."""
        return TWO_PI * jnp.linalg.inv(self.lattice).T

    @property
    def unit_cell_volume(self) -> float:
        return float(jnp.abs(jnp.linalg.det(self.lattice)))

    def potential_values(self, r_frac: np.ndarray) -> jnp.ndarray:
        """Local potential evaluated at fractional coordinates r_frac (..., 3)."""
        if self.local_potential is None:
            return jnp.zeros(r_frac.shape[:-1])
        values = jnp.asarray(self.local_potential(r_frac))
        if jnp.iscomplexobj(values):
            raise ValueError("Local potential must be real-valued")
        if values.shape != r_frac.shape[:-1]:
            raise ValueError(
                f"Local potential returned shape {values.shape}, expected {r_frac.shape[:-1]}"
            )
        return values.astype(jnp.float64)

    @property
    def n_symops(self) -> int:
        return len(self.symops)


def symmetry_inversion() -> list[SymOp]:
    """Group {E, I} of inversion through the origin."""
    return [SymOp.identity(), SymOp(W=-np.eye(3, dtype=int))]
