"""
Exception hierarchy for radio source estimation.

Configuration and locking errors are raised immediately by the offending
call and never retried internally. Estimation failures are terminal for the
``estimate()`` call that raised them; the estimator is already unlocked when
they reach the caller.
"""


class RadioSourceError(Exception):
    """Base class for all radio source estimation errors."""


class ConfigurationError(RadioSourceError, ValueError):
    """A configuration value violates its constraint.

    Raised by setters and constructors. The estimator is left untouched.
    """


class LockedStateError(RadioSourceError, RuntimeError):
    """A mutator was invoked while an estimation is in progress."""


class NotReadyError(RadioSourceError, RuntimeError):
    """``estimate()`` was called before the estimator was fully configured."""


class EstimationFailure(RadioSourceError, RuntimeError):
    """The robust estimation could not produce a result.

    Raised when the consensus search exhausts its iteration budget without a
    usable candidate, or when the requested refinement does not converge.
    """


class DegenerateSampleError(RadioSourceError, ArithmeticError):
    """A minimal sample does not determine a unique candidate.

    Only raised by the minimal-sample solver; the consensus search discards
    the sample and keeps drawing.
    """
