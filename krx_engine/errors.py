"""
Error taxonomy for the backtesting core.

Every failure a caller can act on has its own type and a stable ``code``.
The synchronous entry points in ``krx_engine.service`` never raise these;
they return an ``Outcome`` carrying either the value or the error.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

from pydantic import ValidationError

T = TypeVar("T")


class BacktestError(Exception):
    """Base class for all engine errors."""

    code = "backtest_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class InvalidConfigError(BacktestError):
    """Bad date range, non-positive capital, empty symbol set, bad params."""

    code = "invalid_config"

    @classmethod
    def from_validation(cls, exc: ValidationError) -> InvalidConfigError:
        """Flatten a pydantic ValidationError into one readable message."""
        parts = []
        for err in exc.errors():
            loc = ".".join(str(p) for p in err.get("loc", ())) or "config"
            parts.append(f"{loc}: {err.get('msg', 'invalid value')}")
        return cls("; ".join(parts))


class EmptyParameterSpaceError(InvalidConfigError):
    """Optimizer was given no parameters, or a parameter with no candidates."""

    code = "empty_parameter_space"


class InsufficientWindowsError(InvalidConfigError):
    """Walk-forward range cannot hold the minimum number of windows."""

    code = "insufficient_windows"

    def __init__(self, available: int, required: int) -> None:
        super().__init__(
            f"Walk-forward range yields {available} window(s), at least {required} required"
        )
        self.available = available
        self.required = required


class InsufficientDataError(BacktestError):
    """Bar provider returned fewer bars than the strategy lookback."""

    code = "insufficient_data"

    def __init__(self, symbol: str, available: int, required: int) -> None:
        super().__init__(
            f"Insufficient data for {symbol}: {available} bars, strategy needs {required}"
        )
        self.symbol = symbol
        self.available = available
        self.required = required


class SimulationFailure(BacktestError):
    """Unexpected fault during replay, e.g. overflow on a degenerate parameter set."""

    code = "simulation_failure"


class BacktestCancelled(BacktestError):
    """Cooperative cancellation was observed. A terminal state, not a fault."""

    code = "cancelled"

    def __init__(self, message: str = "Cancelled") -> None:
        super().__init__(message)


class JobNotFoundError(BacktestError):
    code = "job_not_found"

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class JobNotReadyError(BacktestError):
    code = "job_not_ready"

    def __init__(self, job_id: str, status: str) -> None:
        super().__init__(f"Job {job_id} has no result (status={status})")
        self.job_id = job_id
        self.status = status


class JobRejectedError(BacktestError):
    """Job queue is at capacity, or the registry no longer accepts work."""

    code = "job_rejected"


# =============================================================================
# Result type
# =============================================================================


@dataclass(frozen=True)
class ErrorInfo:
    code: str
    message: str


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Success value or typed error, never both."""

    value: T | None = None
    error: ErrorInfo | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> Outcome[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, exc: BacktestError) -> Outcome[T]:
        return cls(error=ErrorInfo(code=exc.code, message=str(exc)))

    def unwrap(self) -> T:
        """Return the value or raise a BacktestError with the recorded message."""
        if self.error is not None:
            raise BacktestError(f"{self.error.code}: {self.error.message}")
        return self.value  # type: ignore[return-value]
