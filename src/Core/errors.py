"""
src/Core/errors.py
==================
Error taxonomy of the trip monitoring engine.

None of these errors is fatal to the process. Every stage of the vehicle
pipeline catches them, logs them and moves on to the next sample.

- TelemetryValidationError: the record cannot be used (missing plate,
  missing or out-of-range coordinates, unparsable LocTime)
- ExternalWriteFailure: a persistence call failed or timed out
- InconsistentRegistry: a notification or store read contradicts the
  one-active-trip-per-vehicle rule
"""

from typing import Optional


class TripMonitorError(Exception):
    """Base class for all trip monitoring errors."""


class TelemetryValidationError(TripMonitorError):
    """Raised when a telemetry record cannot enter the pipeline."""

    def __init__(self, message: str, plate: Optional[str] = None):
        super().__init__(message)
        self.plate = plate


class ExternalWriteFailure(TripMonitorError):
    """
    Raised by TripStore when a persistence call fails or times out.

    Attributes:
        operation: Name of the store operation (e.g. "mark_completed")
        timed_out: True when the call exceeded STORE_TIMEOUT_S
    """

    def __init__(self, operation: str, cause: Optional[BaseException] = None, timed_out: bool = False):
        reason = "timed out" if timed_out else f"{type(cause).__name__}: {cause}"
        super().__init__(f"{operation} failed ({reason})")
        self.operation = operation
        self.cause = cause
        self.timed_out = timed_out


class InconsistentRegistry(TripMonitorError):
    """Raised when the plate -> trip mapping would be violated."""
