"""Error taxonomy for the browser worker.

Request-level errors carry the HTTP status they are reported with; the
server's error middleware turns them into JSON bodies.
"""
from __future__ import annotations

from typing import Any


class BrowserWorkerError(Exception):
    status = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"success": False, "error": self.message}


class AuthError(BrowserWorkerError):
    """Missing or mismatched bearer credential."""

    status = 401

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class ValidationError(BrowserWorkerError):
    """Malformed request shape. Raised before any session is touched."""

    status = 400

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class SessionNotFoundError(BrowserWorkerError):
    status = 404

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class StepExecutionError(BrowserWorkerError):
    """A single step failed. Recorded in that step's result, never raised to the client."""


class StepValidationError(StepExecutionError):
    pass


class EngineFatalError(BrowserWorkerError):
    """Session launch failed, or an error escaped the step loop."""

    status = 500

    def __init__(
        self,
        message: str,
        steps: list | None = None,
        session_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.steps = steps if steps is not None else []
        self.session_id = session_id

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        body["steps"] = [s.to_dict() for s in self.steps]
        if self.session_id is not None:
            body["sessionId"] = self.session_id
        return body
