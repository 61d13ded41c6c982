from __future__ import annotations


class CalibrationError(RuntimeError):
    pass


class InitializationFailure(CalibrationError):
    """Bootstrap or two-parameter seed failed; retry with another frame pair."""


class SolverNonConvergence(CalibrationError):
    """A joint refinement or model conversion returned no solution."""


class InsufficientFrameData(CalibrationError):
    """A frame has too few usable points to seed its pose."""


class PreconditionViolation(ValueError):
    """Caller contract violation (e.g. mismatched image sizes)."""


class SchemaValidationError(ValueError):
    """Malformed model or feature JSON document."""
