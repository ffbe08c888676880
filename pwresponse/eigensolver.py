"""Direct diagonalization of Hamiltonian blocks (small systems / reference)."""

from typing import Optional

import jax.numpy as jnp

from pwresponse.constants import DEGENERACY_TOL
from pwresponse.hamiltonian import Hamiltonian, HamiltonianBlock


def _close_degenerate_group(eigenvalues: jnp.ndarray, n_bands: int,
                            tol: float = DEGENERACY_TOL) -> int:
    """Smallest band count >= n_bands that does not split a degenerate group."""
    n_total = eigenvalues.shape[0]
    while 0 < n_bands < n_total and float(eigenvalues[n_bands] - eigenvalues[n_bands - 1]) < tol:
        n_bands += 1
    return n_bands


def direct_diagonalize(
    block: HamiltonianBlock,
    n_bands: Optional[int] = None,
) -> tuple[jnp.ndarray, jnp.ndarray]:
    """Solve the eigenproblem of one block by explicit construction.

    Only feasible for small basis sets (npw < ~2000). The returned bands
    never end inside a degenerate group: if band ``n_bands + 1`` is
    degenerate with band ``n_bands``, the whole group is included.

    Args:
        block: Hamiltonian block.
        n_bands: Minimum number of lowest eigenpairs to return; all if None.

    Returns:
        eigenvalues: (n,) ascending eigenvalues, n >= n_bands.
        eigenvectors: (npw, n) orthonormal eigenvectors as columns.
    """
    H = block.to_dense()
    eigenvalues, eigenvectors = jnp.linalg.eigh(H)
    if n_bands is None:
        return eigenvalues, eigenvectors
    if n_bands > block.n_pw:
        raise ValueError(f"Requested {n_bands} bands but the basis has only {block.n_pw} plane waves")
    n_bands = _close_degenerate_group(eigenvalues, n_bands)
    return eigenvalues[:n_bands], eigenvectors[:, :n_bands]


def diagonalize(ham: Hamiltonian, n_bands: Optional[int] = None
                ) -> tuple[list[jnp.ndarray], list[jnp.ndarray]]:
    """Diagonalize every block of a Hamiltonian.

    The band count may differ between k-points where degenerate groups
    have to be completed.

    Returns:
        Per k-point lists of eigenvalues and eigenvector matrices.
    """
    eigenvalues = []
    eigenvectors = []
    for block in ham.blocks:
        evals, evecs = direct_diagonalize(block, n_bands)
        eigenvalues.append(evals)
        eigenvectors.append(evecs)
    return eigenvalues, eigenvectors
