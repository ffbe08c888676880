"""Projection onto the complement of the computed bands.

Q = I - Psi Psi^H removes the components along the computed eigenvectors at
one k-point. Operators seen by the Sternheimer solver are always wrapped as
Q A Q, so that iterates never drift back into the span of Psi.
"""

from typing import Protocol

import jax.numpy as jnp


class LinearOperator(Protocol):
    """Anything that can be applied to a plane-wave coefficient vector."""

    def apply(self, x: jnp.ndarray) -> jnp.ndarray:
        ...


class OrthogonalProjector:
    """Q x = x - Psi (Psi^H x).

    Args:
        psi_k: (npw, n_bands) orthonormal eigenvectors at one k-point.
    """

    def __init__(self, psi_k: jnp.ndarray):
        self.psi_k = psi_k

    def apply(self, x: jnp.ndarray) -> jnp.ndarray:
        return x - self.psi_k @ (self.psi_k.conj().T @ x)

    def __call__(self, x: jnp.ndarray) -> jnp.ndarray:
        return self.apply(x)


class ProjectedOperator:
    """Q A Q for a projector Q and a linear operator A."""

    def __init__(self, projector: OrthogonalProjector, operator: LinearOperator):
        self.projector = projector
        self.operator = operator

    def apply(self, x: jnp.ndarray) -> jnp.ndarray:
        return self.projector.apply(self.operator.apply(self.projector.apply(x)))

    def __call__(self, x: jnp.ndarray) -> jnp.ndarray:
        return self.apply(x)


class ShiftedOperator:
    """A - shift I, e.g. H - epsilon_n for one band."""

    def __init__(self, operator: LinearOperator, shift: float):
        self.operator = operator
        self.shift = float(shift)

    def apply(self, x: jnp.ndarray) -> jnp.ndarray:
        return self.operator.apply(x) - self.shift * x
