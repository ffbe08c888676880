"""Independent-particle Hamiltonian in a plane-wave basis.

The Hamiltonian at k-point k is

    H_{G,G'} = (1/2)|k+G|^2 delta_{G,G'} + V(G-G')

with V the local potential of the model. It is applied matrix-free: the
kinetic term is diagonal in G, the potential is applied on the real-space grid
via FFT.
"""

import jax
import jax.numpy as jnp

from pwresponse.basis import Kpoint, PlaneWaveBasis
from pwresponse.symmetry import check_invariance


class HamiltonianBlock:
    """Hamiltonian restricted to the plane waves of one k-point."""

    def __init__(self, basis: PlaneWaveBasis, kpoint: Kpoint, potential_r: jnp.ndarray):
        self.basis = basis
        self.kpoint = kpoint
        self.potential_r = potential_r

    @property
    def n_pw(self) -> int:
        return self.kpoint.n_pw

    @property
    def kinetic(self) -> jnp.ndarray:
        return self.kpoint.kinetic

    def apply(self, psi_g: jnp.ndarray) -> jnp.ndarray:
        """Apply H to a wavefunction in reciprocal space.

        H|psi> = T|psi> + V|psi>

        The local potential is applied via FFT:
            (V * psi)(G) = FFT[ V(r) * IFFT[psi(G)](r) ](G)

        Args:
            psi_g: (npw,) wavefunction coefficients.

        Returns:
            (npw,) H|psi> in reciprocal space.
        """
        # Kinetic: T|psi> = (1/2)|k+G|^2 * psi(G)
        h_psi = self.kpoint.kinetic * psi_g

        psi_r = self.basis.pw_to_real(self.kpoint, psi_g)
        vpsi_g = self.basis.real_to_pw(self.kpoint, self.potential_r * psi_r)
        return h_psi + vpsi_g

    def to_dense(self) -> jnp.ndarray:
        """Explicit (npw, npw) Hamiltonian matrix; only for small bases."""
        eye = jnp.eye(self.n_pw, dtype=jnp.complex128)
        # Row i of the mapped result is H|e_i>
        H = jax.vmap(self.apply)(eye).T
        # Symmetrize (should already be Hermitian up to numerical noise)
        return 0.5 * (H + H.conj().T)


class Hamiltonian:
    """Collection of Hamiltonian blocks, one per irreducible k-point.

    Args:
        basis: Plane-wave basis.
        check_symmetry: Verify that the local potential is invariant under the
            model symmetry group.

    Raises:
        SymmetryError: If the potential breaks one of the model symmetries.
    """

    def __init__(self, basis: PlaneWaveBasis, check_symmetry: bool = True):
        self.basis = basis
        self.potential_r = basis.model.potential_values(basis.r_frac)
        if check_symmetry:
            check_invariance(basis, self.potential_r, basis.model.symops)
        self.blocks = [HamiltonianBlock(basis, kpt, self.potential_r) for kpt in basis.kpoints]

    def __len__(self) -> int:
        return len(self.blocks)
