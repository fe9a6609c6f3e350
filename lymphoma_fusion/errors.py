"""Error conditions raised by the fusion pipeline."""


class LymphomaFusionError(Exception):
    """Base class for all pipeline errors."""


class InputFormatError(LymphomaFusionError, ValueError):
    """Missing or malformed input file, missing expected column, bad config."""


class DataIntegrityError(LymphomaFusionError, ValueError):
    """Labels or class balance do not allow the requested analysis."""


class InsufficientDataError(DataIntegrityError):
    """Training data cannot support leave-one-out fitting (e.g. a class would vanish from a fold)."""


class FittingFailure(LymphomaFusionError, RuntimeError):
    """The estimator failed to fit or did not converge."""
