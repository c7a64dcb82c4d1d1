"""Error taxonomy surfaced to API callers as JSON."""
from __future__ import annotations

from typing import Any, Dict, Optional


class SoundBoxError(Exception):
    status_code = 500

    def __init__(self, message: str, error: Optional[str] = None, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.error = error
        if status_code is not None:
            self.status_code = status_code

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"message": self.message}
        if self.error:
            payload["error"] = self.error
        return payload


class InvalidRequest(SoundBoxError):
    """A required field is missing or blank."""

    status_code = 400


class ToolExecutionError(SoundBoxError):
    """An external tool failed, exited non-zero or produced no output."""


class ToolUnavailable(ToolExecutionError):
    """The executable could not be located or started."""
