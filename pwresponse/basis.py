"""Plane-wave basis, FFT grid and transforms between real and reciprocal space.

Orbitals at k-point k are stored as coefficients c_G of their periodic part

    u_k(r) = Omega^{-1/2} sum_G c_G exp(i G.r),    |k + G|^2 / 2 <= Ecut

so that sum_G |c_G|^2 = 1 is equivalent to dVol * sum_r |u_k(r)|^2 = 1 on the
real-space grid, dVol = Omega / N_grid. Fields on the full grid (densities,
potentials) use f(G) = (1/N_grid) sum_r f(r) exp(-i G.r).
"""

from typing import NamedTuple, Optional

import jax.numpy as jnp
import numpy as np

from pwresponse.constants import TWO_PI
from pwresponse.errors import SymmetryError
from pwresponse.kpoints import monkhorst_pack, reduce_kpoints
from pwresponse.model import Model
from pwresponse.symmetry import SymOp


class Kpoint(NamedTuple):
    """Plane-wave basis at a single k-point."""
    coordinate: np.ndarray       # (3,) fractional coordinate
    coordinate_cart: np.ndarray  # (3,) Cartesian coordinate (1/Bohr)
    g_indices: np.ndarray        # (npw, 3) integer Miller indices
    kinetic: jnp.ndarray         # (npw,) kinetic energies (1/2)|k+G|^2

    @property
    def n_pw(self) -> int:
        return len(self.g_indices)


def _next_fft_size(n: int) -> int:
    """Find next integer >= n that factors only into 2, 3, 5 (efficient FFT size)."""
    if n <= 1:
        return 1
    while True:
        m = n
        for p in [2, 3, 5]:
            while m % p == 0:
                m //= p
        if m == 1:
            return n
        n += 1


def determine_fft_size(lattice: jnp.ndarray, ecut: float,
                       supersampling: float = 2.0) -> tuple[int, int, int]:
    """FFT grid able to hold products of two orbitals without aliasing.

    Along lattice vector a_i a plane wave with |G| <= sqrt(2*Ecut) has Miller
    index |n_i| <= |G| |a_i| / (2 pi). Products of two orbitals need twice
    that range, hence the default supersampling of 2.

    Args:
        lattice: (3, 3) lattice vectors (rows) in Bohr.
        ecut: Kinetic energy cutoff in Hartree.
        supersampling: Ratio between the density and orbital cutoff radii.

    Returns:
        (n1, n2, n3) FFT grid dimensions.
    """
    g_max = np.sqrt(2.0 * ecut)
    a_lengths = np.linalg.norm(np.array(lattice), axis=1)
    n_max = np.ceil(supersampling * g_max * a_lengths / float(TWO_PI))
    return tuple(_next_fft_size(int(2 * n + 1)) for n in n_max)


def miller_grid(fft_size: tuple[int, int, int]) -> np.ndarray:
    """Integer frequencies of the FFT grid in standard FFT order.

    Returns:
        (n1, n2, n3, 3) integer array.
    """
    freqs = [np.rint(np.fft.fftfreq(n, d=1.0) * n).astype(int) for n in fft_size]
    m1, m2, m3 = np.meshgrid(*freqs, indexing='ij')
    return np.stack([m1, m2, m3], axis=-1)


def setup_kpoint(model: Model, ecut: float, k_frac: np.ndarray) -> Kpoint:
    """Select the plane waves |k+G|^2/2 <= ecut at one k-point.

    Args:
        model: Model providing the lattice.
        ecut: Energy cutoff in Hartree.
        k_frac: (3,) fractional k-point coordinate.

    Returns:
        Kpoint with Miller indices ordered by the FFT-grid enumeration.
    """
    b = np.array(model.recip_lattice)
    k_frac = np.asarray(k_frac, dtype=np.float64)
    k_cart = k_frac @ b

    # Box of candidate Miller indices large enough for the shifted sphere
    g_max = np.sqrt(2.0 * ecut)
    a_lengths = np.linalg.norm(np.array(model.lattice), axis=1)
    n_box = np.ceil((g_max + np.linalg.norm(k_cart)) * a_lengths / float(TWO_PI)).astype(int)
    ranges = [np.arange(-n, n + 1) for n in n_box]
    m1, m2, m3 = np.meshgrid(*ranges, indexing='ij')
    miller = np.stack([m1.ravel(), m2.ravel(), m3.ravel()], axis=-1)

    kg = (miller + k_frac[None, :]) @ b
    ke = 0.5 * np.sum(kg**2, axis=-1)
    mask = ke <= ecut * (1.0 + 1e-8)

    return Kpoint(
        coordinate=k_frac,
        coordinate_cart=k_cart,
        g_indices=miller[mask],
        kinetic=jnp.array(ke[mask]),
    )


class PlaneWaveBasis:
    """Plane-wave discretization of a Model on a k-point mesh.

    Attributes:
        model: The physical model.
        ecut: Kinetic energy cutoff in Hartree.
        fft_size: (n1, n2, n3) real-space grid.
        kpoints: Irreducible k-points.
        kweights: Quadrature weights of the irreducible k-points (sum to 1).
        ksymops: For each k-point, the symmetry operations generating its star
            in the full mesh.
    """

    def __init__(
        self,
        model: Model,
        ecut: float,
        kgrid: tuple[int, int, int] = (1, 1, 1),
        kshift: tuple[float, float, float] = (0.0, 0.0, 0.0),
        gamma_centered: bool = False,
        use_symmetry: bool = True,
        fft_size: Optional[tuple[int, int, int]] = None,
        supersampling: float = 2.0,
        kcoords: Optional[np.ndarray] = None,
        ksymops: Optional[list[list[SymOp]]] = None,
    ):
        """Set up the basis.

        Args:
            model: Physical model.
            ecut: Energy cutoff in Hartree.
            kgrid: Monkhorst-Pack mesh dimensions.
            kshift: Mesh shift in fractional reciprocal coordinates.
            gamma_centered: Use a Gamma-centred mesh.
            use_symmetry: Reduce the mesh with the model symmetry group.
            fft_size: Explicit FFT grid; determined from ecut if None.
            supersampling: Supersampling used when fft_size is None.
            kcoords: Explicit irreducible fractional k-points, overriding kgrid.
            ksymops: Operations attached to each of ``kcoords`` (default: identity).
        """
        self.model = model
        self.ecut = float(ecut)
        if fft_size is None:
            fft_size = determine_fft_size(model.lattice, ecut, supersampling)
        self.fft_size = tuple(int(n) for n in fft_size)

        for op in model.symops:
            if not op.is_compatible(self.fft_size):
                raise SymmetryError(
                    f"Symmetry operation (W={op.W.tolist()}, w={op.w.tolist()}) does not map "
                    f"the FFT grid {self.fft_size} onto itself"
                )

        if kcoords is not None:
            kcoords = np.atleast_2d(np.asarray(kcoords, dtype=np.float64))
            if ksymops is None:
                ksymops = [[SymOp.identity()] for _ in kcoords]
            if len(ksymops) != len(kcoords):
                raise ValueError("Need one list of symmetry operations per k-point")
            n_full = sum(len(ops) for ops in ksymops)
            kweights = np.array([len(ops) / n_full for ops in ksymops])
        else:
            kfull, wfull = monkhorst_pack(kgrid, kshift, gamma_centered=gamma_centered)
            if use_symmetry:
                kcoords, kweights, ksymops = reduce_kpoints(kfull, wfull, model.symops)
            else:
                kcoords, kweights = kfull, wfull
                ksymops = [[SymOp.identity()] for _ in kfull]

        self.kpoints = [setup_kpoint(model, self.ecut, k) for k in kcoords]
        self.kweights = np.asarray(kweights, dtype=np.float64)
        self.ksymops = ksymops

        # Every orbital must be representable on the grid
        half = (np.array(self.fft_size) - 1) // 2
        for kpt in self.kpoints:
            if np.any(np.abs(kpt.g_indices) > half[None, :]):
                raise ValueError(
                    f"FFT grid {self.fft_size} too small for ecut={self.ecut} at "
                    f"k={kpt.coordinate}; increase fft_size"
                )

        self.miller_grid = miller_grid(self.fft_size)
        n1, n2, n3 = self.fft_size
        i1, i2, i3 = np.meshgrid(np.arange(n1) / n1, np.arange(n2) / n2,
                                 np.arange(n3) / n3, indexing='ij')
        self.r_frac = np.stack([i1, i2, i3], axis=-1)

    @property
    def n_grid(self) -> int:
        n1, n2, n3 = self.fft_size
        return n1 * n2 * n3

    @property
    def dvol(self) -> float:
        """Volume element per grid point, Omega / N_grid."""
        return self.model.unit_cell_volume / self.n_grid

    @property
    def n_kpoints(self) -> int:
        return len(self.kpoints)

    @property
    def n_symops_total(self) -> int:
        """Number of (k-point, operation) pairs, the size of the unreduced mesh."""
        return sum(len(ops) for ops in self.ksymops)

    @property
    def symmetry_reduced(self) -> bool:
        return any(len(ops) > 1 for ops in self.ksymops)

    def real_to_fourier(self, field: jnp.ndarray) -> jnp.ndarray:
        """Fourier coefficients f(G) = (1/N) sum_r f(r) exp(-iG.r) of a grid field."""
        return jnp.fft.fftn(field) / self.n_grid

    def fourier_to_real(self, field_fourier: jnp.ndarray) -> jnp.ndarray:
        """Inverse of ``real_to_fourier``; complex in general."""
        return jnp.fft.ifftn(field_fourier) * self.n_grid

    def pw_to_real(self, kpoint: Kpoint, coeffs: jnp.ndarray) -> jnp.ndarray:
        """Periodic part of an orbital on the real-space grid.

        Args:
            kpoint: The k-point the coefficients belong to.
            coeffs: (npw,) plane-wave coefficients.

        Returns:
            (n1, n2, n3) complex array, normalized to the cell volume.
        """
        idx = np.mod(kpoint.g_indices, np.array(self.fft_size))
        grid = jnp.zeros(self.fft_size, dtype=jnp.complex128)
        grid = grid.at[idx[:, 0], idx[:, 1], idx[:, 2]].set(coeffs)
        # jnp.fft.ifftn includes 1/N, so multiply by N
        return jnp.fft.ifftn(grid) * (self.n_grid / np.sqrt(self.model.unit_cell_volume))

    def real_to_pw(self, kpoint: Kpoint, field: jnp.ndarray) -> jnp.ndarray:
        """Project a real-space function onto the plane waves of a k-point.

        Inverse of ``pw_to_real`` on the span of the basis; components outside
        the cutoff sphere are discarded.
        """
        field_g = jnp.fft.fftn(field) * (np.sqrt(self.model.unit_cell_volume) / self.n_grid)
        idx = np.mod(kpoint.g_indices, np.array(self.fft_size))
        return field_g[idx[:, 0], idx[:, 1], idx[:, 2]]
