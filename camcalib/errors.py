"""Error taxonomy shared by the batch and online calibration paths."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorKind(Enum):
    INSUFFICIENT_DATA = "insufficient_data"
    INCONSISTENT_GEOMETRY = "inconsistent_geometry"
    DEGENERATE_GEOMETRY = "degenerate_geometry"
    SOLVER_NON_CONVERGENCE = "solver_non_convergence"
    IO_FAILURE = "io_failure"


class CalibrationError(Exception):
    """Base class for every failure raised by :mod:`camcalib`."""

    kind: ErrorKind


class InsufficientData(CalibrationError):
    kind = ErrorKind.INSUFFICIENT_DATA


class InconsistentGeometry(CalibrationError):
    kind = ErrorKind.INCONSISTENT_GEOMETRY


class DegenerateGeometry(CalibrationError):
    kind = ErrorKind.DEGENERATE_GEOMETRY


class SolverNonConvergence(CalibrationError):
    kind = ErrorKind.SOLVER_NON_CONVERGENCE


class IOFailure(CalibrationError):
    kind = ErrorKind.IO_FAILURE


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Success/failure result carrying either a value or a typed error."""

    value: Optional[T] = None
    error: Optional[CalibrationError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> Optional[ErrorKind]:
        return None if self.error is None else self.error.kind

    @classmethod
    def success(cls, value: T) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: CalibrationError) -> "Outcome[T]":
        return cls(error=error)

    @classmethod
    def capture(cls, fn: Callable[..., T], *args, **kwargs) -> "Outcome[T]":
        """Run ``fn`` and fold any :class:`CalibrationError` into the outcome."""
        try:
            return cls.success(fn(*args, **kwargs))
        except CalibrationError as exc:
            return cls.failure(exc)

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]
