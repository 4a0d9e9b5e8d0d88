"""
Error taxonomy for the filter schemes.

Two tiers are distinguished:
    - NumericError: a matrix expected to be positive (semi-)definite failed
      its conditioning check. A caller may retry with inflated noise, reject
      the observation, or abort.
    - LogicError: a contract violation knowable without floating-point
      evaluation (sizes, capacity, missing features, unsupported models).
      Always fatal to the current call.

Both propagate immediately. ``attempt`` converts them into a tagged
``Outcome`` for call sites that prefer branching over ``try``.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional


class FilterError(Exception):
    """Base class of all errors raised by the filter schemes."""


class NumericError(FilterError, ArithmeticError):
    """Ill-conditioned or non positive-definite matrix detected."""


class LogicError(FilterError, ValueError):
    """Filter contract violated by the caller."""


class FailureKind(Enum):
    NUMERIC = "numeric"
    LOGIC = "logic"


@dataclass(frozen=True)
class Outcome:
    """Tagged result of a filter operation.

    Attributes:
        value: Return value of the operation (None on failure).
        failure: Failure tier, or None on success.
        message: Diagnostic message of the failure.
    """

    value: Any = None
    failure: Optional[FailureKind] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.failure is None


def attempt(operation: Callable[..., Any], *args, **kwargs) -> Outcome:
    """
    Run a filter operation and tag its result.

    Only the two filter error tiers are captured; any other exception
    propagates.

    Args:
        operation: Callable such as ``flt.predict`` or ``flt.observe``.
        *args: Positional arguments for the operation.
        **kwargs: Keyword arguments for the operation.

    Returns:
        Outcome carrying the value or the failure kind.

    Example:
        >>> outcome = attempt(flt.observe, model, z)
        >>> if outcome.failure is FailureKind.NUMERIC:
        ...     model.Zv *= 2.0
    """
    try:
        return Outcome(value=operation(*args, **kwargs))
    except NumericError as e:
        return Outcome(failure=FailureKind.NUMERIC, message=str(e))
    except LogicError as e:
        return Outcome(failure=FailureKind.LOGIC, message=str(e))
