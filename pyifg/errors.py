class PyIfgError(Exception):
    """Base class for all errors raised by pyifg."""


class ConfigurationError(PyIfgError, ValueError):
    """Missing or incompatible bands, no slave acquisitions or invalid parameters."""


class GeometryError(PyIfgError, ValueError):
    """Insufficient orbit state vectors or a geometry inversion that does not converge."""


class NumericError(PyIfgError, ArithmeticError):
    """Singular normal equations in the flat-earth polynomial fit."""


class ProcessingError(PyIfgError, RuntimeError):
    """A tile could not be computed. The whole run has to be repeated."""
