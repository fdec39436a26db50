"""
Custom exceptions for the telemetry delivery engine.

None of these ever reach the producer: ``record()`` swallows nothing and
raises nothing, while send-side errors are converted into failed send
results and retried.
"""

from __future__ import annotations


class TelemetryError(Exception):
    """Base error for telemetry_relay."""

    pass


class SendFailure(TelemetryError):
    """Ingestion endpoint answered with a non-2xx status."""

    def __init__(self, status_code: int, detail: str | None = None):
        self.status_code = status_code
        self.detail = detail
        msg = f"ingestion endpoint returned HTTP {status_code}"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class EngineNotRunning(TelemetryError):
    """Operation needs a started engine (or sender)."""

    pass
