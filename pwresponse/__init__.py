"""
Independent-particle density response of periodic systems in JAX.

This package computes the susceptibility chi0 of non-interacting electrons
in a local periodic potential using:
- Plane-wave basis set expansion with Monkhorst-Pack k-point sampling
- K-point reduction by crystal symmetry and symmetrization of fields
- Fermi-Dirac and Gaussian smearing with stable occupation divided differences
- Sum-over-states response within the computed bands
- Sternheimer equation (projected, preconditioned CG) for the remaining bands
- Dense chi0 kernel from full diagonalization for validation
"""

from pwresponse.model import Model
from pwresponse.basis import PlaneWaveBasis
from pwresponse.hamiltonian import Hamiltonian
from pwresponse.chi0 import ResponseConfig, apply_chi0, compute_chi0
from pwresponse.calculator import GroundState, ResponseCalculator
from pwresponse.errors import ConfigurationError, ConvergenceError, SymmetryError
from pwresponse.smearing import FermiDirac, Gaussian
from pwresponse.symmetry import SymOp

__version__ = "0.1.0"
__all__ = [
    "Model", "PlaneWaveBasis", "Hamiltonian",
    "ResponseConfig", "apply_chi0", "compute_chi0",
    "GroundState", "ResponseCalculator",
    "ConfigurationError", "ConvergenceError", "SymmetryError",
    "FermiDirac", "Gaussian", "SymOp",
]
