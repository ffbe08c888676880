"""K-point meshes and their reduction by symmetry."""

import numpy as np

from pwresponse.errors import SymmetryError
from pwresponse.symmetry import SymOp


def monkhorst_pack(nk: tuple[int, int, int],
                   shift: tuple[float, float, float] = (0.0, 0.0, 0.0),
                   gamma_centered: bool = False,
                   ) -> tuple[np.ndarray, np.ndarray]:
    """Generate a Monkhorst-Pack k-point mesh in fractional coordinates.

    k_{n1,n2,n3} = ((2*n_i - N_i - 1) / (2*N_i) + shift_i)

    With ``gamma_centered`` the points are n_i / N_i + shift_i instead, folded
    into (-1/2, 1/2], so the mesh contains Gamma for every N_i.

    Reference: H. J. Monkhorst, J. D. Pack, Phys. Rev. B 13, 5188 (1976).

    Args:
        nk: (nk1, nk2, nk3) mesh dimensions.
        shift: (s1, s2, s3) shift in fractional reciprocal coordinates.
        gamma_centered: Build the Gamma-centred mesh.

    Returns:
        kpoints: (nk_total, 3) fractional k-point coordinates.
        weights: (nk_total,) integration weights (sum to 1).
    """
    axes = []
    for n, s in zip(nk, shift):
        i = np.arange(n)
        if gamma_centered:
            f = i / n + s
            f = np.where(f > 0.5, f - 1.0, f)
        else:
            f = (2.0 * i - n + 1) / (2.0 * n) + s
        axes.append(f)

    g1, g2, g3 = np.meshgrid(*axes, indexing='ij')
    kpoints = np.stack([g1.ravel(), g2.ravel(), g3.ravel()], axis=-1)
    weights = np.ones(len(kpoints)) / len(kpoints)
    return kpoints, weights


def gamma_point() -> tuple[np.ndarray, np.ndarray]:
    """Return just the Gamma point with weight 1."""
    return np.zeros((1, 3)), np.ones(1)


def reduce_kpoints(kpoints: np.ndarray, weights: np.ndarray, symops: list[SymOp],
                   tol: float = 1e-8) -> tuple[np.ndarray, np.ndarray, list[list[SymOp]]]:
    """Reduce a k-point mesh to irreducible points using symmetry operations.

    Every point of the mesh is reached from exactly one irreducible point by
    exactly one of the operations attached to it, so the number of attached
    operations summed over irreducible points equals the size of the mesh.

    Args:
        kpoints: (nk, 3) fractional k-points of the full mesh.
        weights: (nk,) weights of the full mesh.
        symops: Symmetry group; the mesh must be closed under it.
        tol: Tolerance for comparing k-points modulo reciprocal lattice vectors.

    Returns:
        irreducible kpoints (nk_irr, 3), their weights (nk_irr,), and for each
        irreducible point the list of operations generating its star.

    Raises:
        SymmetryError: If an operation maps a mesh point outside the mesh.
    """
    frac = np.asarray(kpoints, dtype=np.float64)
    weights_np = np.asarray(weights, dtype=np.float64)
    # Identity first, so every irreducible point keeps itself unrotated
    ordered = sorted(symops, key=lambda op: not op.is_identity())

    covered = np.zeros(len(frac), dtype=bool)
    kept = []
    new_weights = []
    ksymops = []

    for i in range(len(frac)):
        if covered[i]:
            continue
        ops_i = []
        weight_i = 0.0
        for op in ordered:
            diff = frac - op.transform_kpoint(frac[i])[None, :]
            # Reduce to first BZ
            diff = diff - np.round(diff)
            dist = np.linalg.norm(diff, axis=-1)
            j = int(np.argmin(dist))
            if dist[j] > tol:
                raise SymmetryError(
                    f"k-point mesh is not closed under the symmetry operation "
                    f"W={op.W.tolist()}: k={frac[i]} has no image in the mesh. "
                    "Use a symmetric mesh or disable symmetry reduction."
                )
            if not covered[j]:
                covered[j] = True
                ops_i.append(op)
                weight_i += weights_np[j]
        kept.append(i)
        new_weights.append(weight_i)
        ksymops.append(ops_i)

    return frac[np.array(kept)], np.array(new_weights), ksymops
