"""Smearing functions and occupation divided differences.

A smearing function maps the reduced energy x = (epsilon - epsilon_F) / T to a
fractional occupation f(x) in [0, 1]. Linear response needs the divided
difference

    (f(epsilon_a) - f(epsilon_b)) / (epsilon_a - epsilon_b)

which for epsilon_a -> epsilon_b tends to df/d(epsilon) = f'(x) / T. The
quotient is evaluated in reduced units and replaced by the analytic derivative
whenever the two reduced energies are closer than sqrt(eps), so degenerate and
near-degenerate pairs never divide by a vanishing difference.

At T = 0 the occupation is a step function. Its derivative vanishes away from
epsilon_F; zero-temperature callers must not add the Fermi-level variation.
"""

import jax
import jax.numpy as jnp
import jax.scipy.special
import numpy as np

from pwresponse.constants import EPS, PI

# Below this reduced-energy separation the derivative replaces the quotient
_DEGENERACY_THRESHOLD = float(np.sqrt(EPS))


class Smearing:
    """Base class of smearing functions.

    Subclasses implement ``occupation``. ``occupation_derivative`` defaults
    to automatic differentiation of ``occupation``.
    """

    def occupation(self, x: jnp.ndarray) -> jnp.ndarray:
        raise NotImplementedError

    def occupation_derivative(self, x: jnp.ndarray) -> jnp.ndarray:
        """Derivative df/dx of the occupation in reduced units."""
        x = jnp.asarray(x, dtype=jnp.float64)
        return jnp.vectorize(jax.grad(self.occupation))(x)

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class FermiDirac(Smearing):
    """Fermi-Dirac smearing f(x) = 1 / (1 + exp(x))."""

    def occupation(self, x):
        return jax.nn.sigmoid(-x)

    def occupation_derivative(self, x):
        # f' = -f (1 - f), written with two sigmoids to stay accurate in the tails
        x = jnp.asarray(x, dtype=jnp.float64)
        return -jax.nn.sigmoid(x) * jax.nn.sigmoid(-x)


class Gaussian(Smearing):
    """Gaussian smearing f(x) = erfc(x) / 2."""

    def occupation(self, x):
        return 0.5 * jax.scipy.special.erfc(x)

    def occupation_derivative(self, x):
        x = jnp.asarray(x, dtype=jnp.float64)
        return -jnp.exp(-x**2) / jnp.sqrt(PI)


def occupation(smearing: Smearing, energy, fermi_level: float,
               temperature: float) -> jnp.ndarray:
    """Occupation in [0, 1] of states at ``energy``.

    At zero temperature this is the step function, with 1/2 exactly at the
    Fermi level.
    """
    energy = jnp.asarray(energy, dtype=jnp.float64)
    if temperature == 0:
        return jnp.where(energy < fermi_level, 1.0,
                         jnp.where(energy > fermi_level, 0.0, 0.5))
    return smearing.occupation((energy - fermi_level) / temperature)


def occupation_divided_difference(smearing: Smearing, energy_a: float, energy_b: float,
                                  fermi_level: float, temperature: float) -> float:
    """Divided difference (f(energy_a) - f(energy_b)) / (energy_a - energy_b).

    Args:
        smearing: Smearing function.
        energy_a, energy_b: Band energies in Hartree.
        fermi_level: Fermi energy in Hartree.
        temperature: Smearing temperature in Hartree.

    Returns:
        The divided difference; the derivative df/d(epsilon) at the midpoint
        when the two energies coincide to within sqrt(eps) in reduced units.
    """
    energy_a = float(energy_a)
    energy_b = float(energy_b)
    if temperature == 0:
        if energy_a == energy_b:
            return 0.0
        fa = float(occupation(smearing, energy_a, fermi_level, 0.0))
        fb = float(occupation(smearing, energy_b, fermi_level, 0.0))
        return (fa - fb) / (energy_a - energy_b)

    xa = (energy_a - fermi_level) / temperature
    xb = (energy_b - fermi_level) / temperature
    if abs(xa - xb) < _DEGENERACY_THRESHOLD:
        return float(smearing.occupation_derivative(0.5 * (xa + xb))) / temperature
    fa = float(smearing.occupation(xa))
    fb = float(smearing.occupation(xb))
    return (fa - fb) / (energy_a - energy_b)


def divided_difference_matrix(smearing: Smearing, energies: jnp.ndarray,
                              fermi_level: float, temperature: float) -> jnp.ndarray:
    """All pairwise divided differences of one set of band energies.

    Vectorized version of ``occupation_divided_difference``:
    D[m, n] = (f(e_m) - f(e_n)) / (e_m - e_n).

    Args:
        smearing: Smearing function.
        energies: (n_bands,) band energies.
        fermi_level: Fermi energy.
        temperature: Smearing temperature.

    Returns:
        (n_bands, n_bands) symmetric matrix.
    """
    energies = jnp.asarray(energies, dtype=jnp.float64)
    diff = energies[:, None] - energies[None, :]

    if temperature == 0:
        f = occupation(smearing, energies, fermi_level, 0.0)
        df = f[:, None] - f[None, :]
        same = diff == 0.0
        return jnp.where(same, 0.0, df / jnp.where(same, 1.0, diff))

    x = (energies - fermi_level) / temperature
    f = smearing.occupation(x)
    close = jnp.abs(x[:, None] - x[None, :]) < _DEGENERACY_THRESHOLD
    x_mid = 0.5 * (x[:, None] + x[None, :])
    derivative = smearing.occupation_derivative(x_mid) / temperature
    quotient = (f[:, None] - f[None, :]) / jnp.where(close, 1.0, diff)
    return jnp.where(close, derivative, quotient)
