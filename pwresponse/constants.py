"""Physical constants in atomic units (Hartree) and numerical defaults."""

import jax.numpy as jnp
import numpy as np

# In atomic units: hbar = m_e = e = 4*pi*eps_0 = 1
HARTREE_TO_EV = 27.211386245988
EV_TO_HARTREE = 1.0 / HARTREE_TO_EV
BOHR_TO_ANGSTROM = 0.529177210903
ANGSTROM_TO_BOHR = 1.0 / BOHR_TO_ANGSTROM
# k_B in Hartree / Kelvin
KELVIN_TO_HARTREE = 3.166811563e-6

# Pi
PI = jnp.pi
TWO_PI = 2.0 * jnp.pi

# Machine precision of the float64 arithmetic everything runs in
EPS = float(np.finfo(np.float64).eps)

# Defaults of the response calculation
DEFAULT_CG_TOL = 1e-6
DEFAULT_CG_MAXITER = 100
# Right-hand sides below this norm are treated as zero
NEGLIGIBLE_RHS = 100 * EPS
# Eigenvalues closer than this belong to one degenerate group
DEGENERACY_TOL = 1e-8
