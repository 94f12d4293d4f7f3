"""
Typed errors for session lifecycle handling.

Each error carries the HTTP status it maps to and a client-safe message.
Diagnostic detail (runtime stderr, OS errors) stays on the exception object
and is written to the error log, never returned to the client.
"""

from pathlib import Path
from typing import Optional


class DreamshellError(Exception):
    """Base class for errors surfaced through the API."""

    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    @property
    def is_server_error(self) -> bool:
        return self.status_code >= 500

    def diagnostic(self) -> str:
        """Detail written to the error log for server-side failures."""
        return self.message


class Unauthorized(DreamshellError):
    """Missing, malformed, forged or expired bearer token."""

    status_code = 401
    default_message = "Unauthorized"

    def __init__(self, reason: Optional[str] = None):
        super().__init__(f"Unauthorized: {reason}" if reason else None)
        self.reason = reason


class ValidationFailure(DreamshellError):
    """Request body missing fields or of the wrong shape."""

    status_code = 400
    default_message = "Invalid request body"


class UnknownSession(DreamshellError):
    """Session identifier not present in the registry."""

    status_code = 400
    default_message = "Invalid or unknown UUID"

    def __init__(self, session_id: Optional[str] = None):
        super().__init__()
        self.session_id = session_id


class StillRunning(DreamshellError):
    """Delete refused because the session container is still running."""

    status_code = 400

    def __init__(self, session_id: str):
        super().__init__(f"Container {session_id} is still running; terminate it first.")
        self.session_id = session_id


class RuntimeFailure(DreamshellError):
    """A container runtime command exited non-zero or could not be launched."""

    status_code = 500
    default_message = "Container runtime operation failed"

    def __init__(self, operation: str, stderr: str = ""):
        super().__init__()
        self.operation = operation
        self.stderr = stderr.strip()

    def diagnostic(self) -> str:
        return f"{self.operation} failed: {self.stderr or '(no output)'}"


class RuntimeTimeout(RuntimeFailure):
    """A container runtime command exceeded its time budget and was killed."""

    default_message = "Container runtime operation timed out"

    def __init__(self, operation: str, timeout: float):
        super().__init__(operation, f"timed out after {timeout:g}s")
        self.timeout = timeout


class IOFailure(DreamshellError):
    """Transcript read, write or delete failed."""

    status_code = 500
    default_message = "Session log storage failed"

    def __init__(self, operation: str, path: Path, cause: Optional[BaseException] = None):
        super().__init__()
        self.operation = operation
        self.path = path
        self.cause = cause

    def diagnostic(self) -> str:
        return f"{self.operation} {self.path}: {self.cause}"
