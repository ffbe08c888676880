"""Sternheimer equation for the response of one orbital.

For band n at k-point k, the component of the first-order orbital change
outside the span of the computed bands solves

    Q (H - epsilon_n) Q delta_psi = -Q (delta_V psi_n)

with Q = I - Psi Psi^H. On the range of Q the operator is Hermitian positive
semidefinite (all computed bands lie below the uncomputed ones), so the system
is solved with preconditioned conjugate gradients.

The CG tolerance should not be tighter than the orthogonality error of the
computed orbitals, otherwise Q and H stop commuting to the accuracy asked for
and the solver converges to a spurious solution.
"""

from typing import NamedTuple, Optional

import jax.numpy as jnp

from pwresponse.constants import DEFAULT_CG_MAXITER, DEFAULT_CG_TOL, NEGLIGIBLE_RHS
from pwresponse.errors import ConvergenceError
from pwresponse.hamiltonian import HamiltonianBlock
from pwresponse.projector import (
    LinearOperator, OrthogonalProjector, ProjectedOperator, ShiftedOperator,
)

NONCONVERGENCE_POLICIES = ("raise", "warn", "ignore")


class SternheimerParams(NamedTuple):
    """Everything defining one Sternheimer problem."""
    block: HamiltonianBlock  # Hamiltonian at the k-point
    psi_k: jnp.ndarray       # (npw, n_bands) computed orbitals at the k-point
    psi_nk: jnp.ndarray      # (npw,) orbital being perturbed
    energy: float            # its eigenvalue epsilon_n


class CGResult(NamedTuple):
    x: jnp.ndarray
    converged: bool
    n_iter: int
    residual_norm: float


class KineticPreconditioner:
    """Teter-Payne-Allan style diagonal preconditioner.

    P = m / (m + T_G) with m = <psi|T|psi> the kinetic energy of the band the
    preconditioner was prepared for. Unprepared (or for a band with vanishing
    kinetic energy) it falls back to P = 1 / (default_shift + T_G).
    """

    def __init__(self, block: HamiltonianBlock, default_shift: float = 1.0):
        self.kinetic = block.kinetic
        self.default_shift = float(default_shift)
        self.mean_kinetic = None

    def prepare(self, psi_nk: jnp.ndarray) -> "KineticPreconditioner":
        mean_kinetic = float(jnp.real(jnp.vdot(psi_nk, self.kinetic * psi_nk)))
        self.mean_kinetic = mean_kinetic if mean_kinetic > 0 else None
        return self

    def apply(self, x: jnp.ndarray) -> jnp.ndarray:
        if self.mean_kinetic is None:
            return x / (self.default_shift + self.kinetic)
        return (self.mean_kinetic / (self.mean_kinetic + self.kinetic)) * x


class _Identity:
    def apply(self, x):
        return x


def conjugate_gradient(
    op: LinearOperator,
    rhs: jnp.ndarray,
    precon: Optional[LinearOperator] = None,
    tol: float = DEFAULT_CG_TOL,
    maxiter: int = DEFAULT_CG_MAXITER,
    x0: Optional[jnp.ndarray] = None,
) -> CGResult:
    """Preconditioned conjugate gradients for a Hermitian operator.

    Stops when ||rhs - op(x)|| <= tol * ||rhs|| or after ``maxiter``
    iterations, whichever comes first.

    Args:
        op: Hermitian positive (semi)definite operator.
        rhs: Right-hand side vector.
        precon: Hermitian positive preconditioner approximating op^{-1}.
        tol: Relative residual tolerance.
        maxiter: Maximum number of iterations.
        x0: Initial guess; zero if None.

    Returns:
        CGResult with the solution and convergence information.
    """
    if precon is None:
        precon = _Identity()
    threshold = tol * float(jnp.linalg.norm(rhs))

    x = jnp.zeros_like(rhs) if x0 is None else x0
    r = rhs - op.apply(x) if x0 is not None else rhs
    residual_norm = float(jnp.linalg.norm(r))
    if residual_norm <= threshold:
        return CGResult(x, True, 0, residual_norm)

    z = precon.apply(r)
    p = z
    rz_old = float(jnp.real(jnp.vdot(r, z)))

    for iteration in range(1, maxiter + 1):
        ap = op.apply(p)
        curvature = float(jnp.real(jnp.vdot(p, ap)))
        if curvature <= 0:
            # Breakdown: p lies in the null space of op
            return CGResult(x, False, iteration - 1, residual_norm)
        alpha = rz_old / curvature
        x = x + alpha * p
        r = r - alpha * ap

        residual_norm = float(jnp.linalg.norm(r))
        if residual_norm <= threshold:
            return CGResult(x, True, iteration, residual_norm)

        z = precon.apply(r)
        rz_new = float(jnp.real(jnp.vdot(r, z)))
        p = z + (rz_new / rz_old) * p
        rz_old = rz_new

    return CGResult(x, False, maxiter, residual_norm)


def solve_sternheimer(
    params: SternheimerParams,
    rhs: jnp.ndarray,
    tol: float = DEFAULT_CG_TOL,
    maxiter: int = DEFAULT_CG_MAXITER,
    preconditioner: Optional[LinearOperator] = None,
    on_nonconvergence: str = "raise",
    verbose: bool = False,
) -> CGResult:
    """Solve Q (H - epsilon_n) Q delta_psi = Q rhs.

    Args:
        params: Hamiltonian block, computed orbitals, orbital and energy.
        rhs: (npw,) right-hand side, -(delta_V psi_n) in the k-point basis.
        tol: Relative CG tolerance on ||Q rhs||.
        maxiter: Maximum number of CG iterations.
        preconditioner: Operator approximating (H - epsilon_n)^{-1}; a
            KineticPreconditioner prepared for psi_nk if None. Always applied
            as Q P Q.
        on_nonconvergence: "raise", "warn" or "ignore".
        verbose: Print the iteration count.

    Returns:
        CGResult whose ``x`` is orthogonal to every computed orbital.

    Raises:
        ConvergenceError: If CG does not converge and the policy is "raise".
    """
    if on_nonconvergence not in NONCONVERGENCE_POLICIES:
        raise ValueError(f"Unknown non-convergence policy: {on_nonconvergence!r}; "
                         f"expected one of {NONCONVERGENCE_POLICIES}")

    if float(jnp.linalg.norm(rhs)) < NEGLIGIBLE_RHS:
        return CGResult(jnp.zeros_like(rhs), True, 0, 0.0)

    Q = OrthogonalProjector(params.psi_k)
    op = ProjectedOperator(Q, ShiftedOperator(params.block, params.energy))
    if preconditioner is None:
        preconditioner = KineticPreconditioner(params.block).prepare(params.psi_nk)
    precon = ProjectedOperator(Q, preconditioner)

    result = conjugate_gradient(op, Q.apply(rhs), precon, tol=tol, maxiter=maxiter)

    if verbose:
        status = "converged" if result.converged else "NOT converged"
        print(f"    Sternheimer CG {status} in {result.n_iter} iterations, "
              f"|r| = {result.residual_norm:.3e}")

    if not result.converged:
        message = (f"Sternheimer CG did not converge in {result.n_iter} iterations "
                   f"(energy {params.energy:.6f} Ha, |r| = {result.residual_norm:.3e}, tol = {tol:.1e})")
        if on_nonconvergence == "raise":
            raise ConvergenceError(message, result.n_iter, result.residual_norm)
        if on_nonconvergence == "warn":
            print(f"WARNING: {message}")

    # Remove the remaining component along the computed orbitals
    return result._replace(x=Q.apply(result.x))
