"""Exception hierarchy shared across the telemetry agent."""

from __future__ import annotations


class TelemetryError(RuntimeError):
    """Base class for telemetry agent errors."""


class TransportError(TelemetryError):
    """Raised when delivery fails after exhausting retries."""

    def __init__(self, message: str, *, attempts: int = 0) -> None:
        super().__init__(message)
        self.attempts = attempts


class ClientRejectedError(TelemetryError):
    """Raised when the collector rejects a payload with a 4xx response."""

    def __init__(self, status_code: int, reason: str = "") -> None:
        detail = f"HTTP {status_code}"
        if reason:
            detail = f"{detail}: {reason}"
        super().__init__(f"Collector rejected payload ({detail})")
        self.status_code = status_code
        self.reason = reason


class StateLockError(TelemetryError):
    """Raised when another invocation already holds the agent state lock."""


__all__ = ["ClientRejectedError", "StateLockError", "TelemetryError", "TransportError"]
