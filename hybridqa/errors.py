"""Error taxonomy for the orchestrator."""

from __future__ import annotations


class HybridQAError(Exception):
    """Base class for orchestrator errors."""


class ValidationError(HybridQAError):
    """A request body does not have the required shape."""


class StepExecutionError(HybridQAError):
    """One automation step failed."""

    def __init__(self, action: str, message: str):
        super().__init__(message)
        self.action = action


class BackendUnavailableError(HybridQAError):
    """An automation or visual backend is not initialized or not configured."""


class PhaseTimeoutError(HybridQAError, TimeoutError):
    """A visual, automation or total deadline was exceeded."""

    def __init__(self, phase: str, timeout_ms: float):
        super().__init__(f"{phase} timeout exceeded after {int(timeout_ms)}ms")
        self.phase = phase
        self.timeout_ms = timeout_ms


class PersistenceError(HybridQAError):
    """The state store could not be read or written."""
