"""Error taxonomy shared by the share engine and the helper service.

Every error carries two class-level flags so callers can decide what to do
without parsing messages:

    retriable:    redelivering the same request may succeed later.
    caller_fault: the input handed to the failing operation was wrong, as
                  opposed to an internal fault of this process.
"""


class AggregationError(Exception):
    """Base class for all errors raised by this package."""

    retriable: bool = False
    caller_fault: bool = False


class ParameterError(AggregationError, ValueError):
    """Malformed or inconsistent Parameters, KeyShare or context blob."""

    caller_fault = True


class InputError(AggregationError, ValueError):
    """Prefixes (or alpha/beta) that do not fit the current level."""

    caller_fault = True


class StateError(AggregationError, RuntimeError):
    """Evaluation context already consumed all of its levels."""

    caller_fault = True


class DependencyNotReady(AggregationError):
    """The partner helper has not published its previous-level result."""

    retriable = True


class ComputationError(AggregationError):
    """The evaluation work failed or was cancelled."""

    retriable = True


class ConfigError(AggregationError, ValueError):
    """The query itself is malformed; redelivery will not help."""

    caller_fault = True


class InternalError(AggregationError):
    """A value produced by this process could not be encoded."""
