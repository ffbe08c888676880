"""Crystal symmetry operations and accumulation of fields over them.

A symmetry operation (W, w) acts on fractional real-space coordinates as

    x -> W x + w

with W an integer unimodular matrix. If the Hamiltonian is invariant, the
orbitals at k map onto orbitals at S k with S = W^{-T}, and a periodic field
f (a density computed at k) maps onto

    f'(x) = f(W^{-1}(x - w)),    f'(G) = exp(-2 pi i G.w) f(W^T G)

where G are integer (fractional) reciprocal-lattice vectors. The Fourier form
is what ``accumulate_over_symops`` implements; indices wrap modulo the FFT
grid, which is exact for operations mapping the real-space grid onto itself.
"""

from dataclasses import dataclass, field

import jax.numpy as jnp
import numpy as np

from pwresponse.constants import TWO_PI
from pwresponse.errors import SymmetryError


@dataclass(frozen=True, eq=False)
class SymOp:
    """Symmetry operation x -> W x + w in fractional coordinates.

    Attributes:
        W: (3, 3) integer rotation acting on fractional real-space coordinates.
        w: (3,) fractional translation.
    """
    W: np.ndarray
    w: np.ndarray = field(default_factory=lambda: np.zeros(3))

    def __post_init__(self):
        W = np.asarray(np.rint(self.W), dtype=int)
        w = np.asarray(self.w, dtype=np.float64)
        if W.shape != (3, 3) or w.shape != (3,):
            raise SymmetryError(f"Malformed symmetry operation: W{W.shape}, w{w.shape}")
        if round(abs(np.linalg.det(W))) != 1 or not np.allclose(W, self.W):
            raise SymmetryError(f"Rotation is not an integer unimodular matrix:\n{self.W}")
        object.__setattr__(self, "W", W)
        object.__setattr__(self, "w", w - np.floor(w))

    @classmethod
    def identity(cls) -> "SymOp":
        return cls(W=np.eye(3, dtype=int))

    @property
    def S(self) -> np.ndarray:
        """Rotation acting on fractional k-point coordinates, S = W^{-T}."""
        return np.asarray(np.rint(np.linalg.inv(self.W).T), dtype=int)

    def compose(self, other: "SymOp") -> "SymOp":
        """The operation x -> self(other(x))."""
        return SymOp(W=self.W @ other.W, w=self.W @ other.w + self.w)

    def inverse(self) -> "SymOp":
        W_inv = np.rint(np.linalg.inv(self.W))
        return SymOp(W=W_inv, w=-W_inv @ self.w)

    def is_close(self, other: "SymOp", tol: float = 1e-8) -> bool:
        dw = self.w - other.w
        dw = dw - np.round(dw)
        return bool(np.array_equal(self.W, other.W) and np.linalg.norm(dw) < tol)

    def is_identity(self, tol: float = 1e-8) -> bool:
        return self.is_close(SymOp.identity(), tol)

    def transform_kpoint(self, k_frac: np.ndarray) -> np.ndarray:
        """Map a fractional k-point coordinate to S k."""
        return self.S @ np.asarray(k_frac, dtype=np.float64)

    def is_compatible(self, fft_size: tuple[int, int, int], tol: float = 1e-8) -> bool:
        """Whether the operation maps the real-space FFT grid onto itself."""
        n = np.array(fft_size, dtype=np.float64)
        # Grid points j/n go to W (j/n) + w, which must again be of the form j'/n
        scaled = (n[:, None] * self.W) / n[None, :]
        translation = n * self.w
        return bool(np.all(np.abs(scaled - np.round(scaled)) < tol)
                    and np.all(np.abs(translation - np.round(translation)) < tol))


def check_group(symops: list[SymOp], tol: float = 1e-8) -> None:
    """Check that a list of operations contains the identity and is closed.

    Raises:
        SymmetryError: If the operations do not form a group.
    """
    if len(symops) == 0:
        raise SymmetryError("Symmetry group is empty; it must at least contain the identity")
    if not any(op.is_identity(tol) for op in symops):
        raise SymmetryError("Symmetry group does not contain the identity")
    for a in symops:
        for b in symops:
            ab = a.compose(b)
            if not any(ab.is_close(c, tol) for c in symops):
                raise SymmetryError(
                    "Symmetry operations are not closed under composition:\n"
                    f"(W={a.W.tolist()}, w={a.w}) o (W={b.W.tolist()}, w={b.w}) not in the set"
                )


def transform_fourier(rho_fourier: jnp.ndarray, op: SymOp,
                      miller: np.ndarray) -> jnp.ndarray:
    """Image of a Fourier-space field under one symmetry operation.

    f'(G) = exp(-2 pi i G.w) f(W^T G), indices taken modulo the grid.

    Args:
        rho_fourier: (n1, n2, n3) Fourier coefficients in FFT order.
        op: Symmetry operation.
        miller: (n1, n2, n3, 3) integer frequencies of the FFT grid.

    Returns:
        (n1, n2, n3) Fourier coefficients of the transformed field.
    """
    n = np.array(rho_fourier.shape)
    # (W^T G)_i = sum_j W_ji G_j
    src = np.mod(miller @ op.W, n)
    phase = jnp.exp(-1j * TWO_PI * (miller @ op.w))
    return phase * rho_fourier[src[..., 0], src[..., 1], src[..., 2]]


def accumulate_over_symops(accu: jnp.ndarray, rho_fourier: jnp.ndarray, basis,
                           symops: list[SymOp]) -> jnp.ndarray:
    """Fold a field computed at one irreducible k-point onto the full mesh.

    Adds the image of ``rho_fourier`` under every operation in ``symops`` to
    ``accu``. After all irreducible k-points have been processed, the caller
    divides by the total number of (k-point, operation) pairs, which is the
    size of the unreduced mesh.

    Args:
        accu: (n1, n2, n3) Fourier-space accumulator.
        rho_fourier: (n1, n2, n3) Fourier coefficients of the contribution.
        basis: PlaneWaveBasis providing the FFT frequencies.
        symops: Operations attached to the k-point.

    Returns:
        The updated accumulator.
    """
    for op in symops:
        accu = accu + transform_fourier(rho_fourier, op, basis.miller_grid)
    return accu


def symmetrize(basis, rho_fourier: jnp.ndarray, symops: list[SymOp] | None = None) -> jnp.ndarray:
    """Average a Fourier-space field over a symmetry group.

    Defaults to the full model group, so the result is invariant under every
    model symmetry regardless of how the k-point mesh was reduced.
    """
    if symops is None:
        symops = basis.model.symops
    accu = jnp.zeros_like(rho_fourier, dtype=jnp.complex128)
    accu = accumulate_over_symops(accu, rho_fourier, basis, symops)
    return accu / len(symops)


def check_invariance(basis, field_r: jnp.ndarray, symops: list[SymOp],
                     tol: float = 1e-8) -> None:
    """Check that a real-space field is invariant under the given operations.

    Raises:
        SymmetryError: If the field changes under one of the operations.
    """
    field_fourier = basis.real_to_fourier(field_r)
    scale = max(float(jnp.max(jnp.abs(field_fourier))), 1.0)
    for op in symops:
        image = transform_fourier(field_fourier, op, basis.miller_grid)
        deviation = float(jnp.max(jnp.abs(image - field_fourier)))
        if deviation > tol * scale:
            raise SymmetryError(
                f"Field is not invariant under the symmetry operation "
                f"(W={op.W.tolist()}, w={op.w.tolist()}): deviation {deviation:.3e}"
            )
