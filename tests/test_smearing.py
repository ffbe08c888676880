"""Tests for smearing functions and occupation divided differences."""

import jax.numpy as jnp
import numpy as np
import pytest

from pwresponse.smearing import (
    FermiDirac, Gaussian, Smearing,
    divided_difference_matrix, occupation, occupation_divided_difference,
)


class _AutodiffFermiDirac(Smearing):
    """Fermi-Dirac without an analytic derivative."""

    def occupation(self, x):
        return 1.0 / (1.0 + jnp.exp(x))


def test_fermi_dirac_values():
    fd = FermiDirac()
    np.testing.assert_allclose(float(fd.occupation(0.0)), 0.5, atol=1e-15)
    np.testing.assert_allclose(float(fd.occupation_derivative(0.0)), -0.25, atol=1e-15)
    # Deep tails stay finite
    assert float(fd.occupation(-800.0)) == 1.0
    assert float(fd.occupation(800.0)) == 0.0
    assert np.isfinite(float(fd.occupation_derivative(800.0)))


def test_gaussian_values():
    g = Gaussian()
    np.testing.assert_allclose(float(g.occupation(0.0)), 0.5, atol=1e-15)
    np.testing.assert_allclose(float(g.occupation_derivative(0.0)), -1.0 / np.sqrt(np.pi), rtol=1e-14)


def test_autodiff_derivative_matches_analytic():
    x = jnp.linspace(-5.0, 5.0, 11)
    np.testing.assert_allclose(_AutodiffFermiDirac().occupation_derivative(x),
                               FermiDirac().occupation_derivative(x), atol=1e-12)


@pytest.mark.parametrize("smearing", [FermiDirac(), Gaussian()])
def test_divided_difference_degenerate_limit(smearing):
    """Equal energies give df/d(epsilon); nearby energies approach it."""
    ef, T = 0.1, 0.05
    e = 0.13
    derivative = float(smearing.occupation_derivative((e - ef) / T)) / T

    np.testing.assert_allclose(occupation_divided_difference(smearing, e, e, ef, T),
                               derivative, rtol=1e-14)
    near = occupation_divided_difference(smearing, e, e + 1e-6, ef, T)
    np.testing.assert_allclose(near, derivative, rtol=1e-4)
    # df/d(epsilon) is minus the smeared delta function
    assert derivative < 0


@pytest.mark.parametrize("smearing", [FermiDirac(), Gaussian()])
def test_divided_difference_continuous_at_threshold(smearing):
    ef, T = 0.0, 0.01
    e = 0.004
    threshold = np.sqrt(np.finfo(np.float64).eps) * T
    below = occupation_divided_difference(smearing, e, e + 0.5 * threshold, ef, T)
    above = occupation_divided_difference(smearing, e, e + 2.0 * threshold, ef, T)
    np.testing.assert_allclose(below, above, rtol=1e-6)


def test_divided_difference_symmetric():
    fd = FermiDirac()
    a = occupation_divided_difference(fd, -0.2, 0.3, 0.05, 0.1)
    b = occupation_divided_difference(fd, 0.3, -0.2, 0.05, 0.1)
    np.testing.assert_allclose(a, b, rtol=1e-14)
    fa = 1.0 / (1.0 + np.exp((-0.2 - 0.05) / 0.1))
    fb = 1.0 / (1.0 + np.exp((0.3 - 0.05) / 0.1))
    np.testing.assert_allclose(a, (fa - fb) / (-0.5), rtol=1e-12)


def test_zero_temperature_step():
    fd = FermiDirac()
    occ = occupation(fd, jnp.array([-1.0, 0.0, 1.0]), 0.0, 0.0)
    np.testing.assert_allclose(occ, [1.0, 0.5, 0.0])

    # Across the Fermi level: (1 - 0) / (ea - eb)
    np.testing.assert_allclose(occupation_divided_difference(fd, -0.5, 0.5, 0.0, 0.0), -1.0)
    # Same side, or equal energies: no contribution
    assert occupation_divided_difference(fd, -0.5, -0.2, 0.0, 0.0) == 0.0
    assert occupation_divided_difference(fd, 0.3, 0.3, 0.0, 0.0) == 0.0


@pytest.mark.parametrize("temperature", [0.0, 0.02])
def test_divided_difference_matrix_matches_scalar(temperature):
    smearing = Gaussian()
    energies = jnp.array([-0.3, -0.1, -0.1, 0.05, 0.4])
    ef = 0.0
    D = divided_difference_matrix(smearing, energies, ef, temperature)
    expected = np.array([[occupation_divided_difference(smearing, em, en, ef, temperature)
                          for en in np.array(energies)] for em in np.array(energies)])
    np.testing.assert_allclose(D, expected, rtol=1e-12, atol=1e-14)
    np.testing.assert_allclose(D, D.T, atol=1e-15)
