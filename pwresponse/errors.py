"""Exceptions raised by the response code."""


class ConfigurationError(ValueError):
    """Invalid or mutually exclusive response options."""


class SymmetryError(ValueError):
    """Symmetry operations inconsistent with the model, grid or method."""


class ConvergenceError(RuntimeError):
    """An iterative solver did not reach its tolerance within the iteration budget.

    Attributes:
        n_iter: Number of iterations performed.
        residual_norm: Norm of the final residual.
    """

    def __init__(self, message: str, n_iter: int, residual_norm: float):
        super().__init__(message)
        self.n_iter = n_iter
        self.residual_norm = residual_norm
