"""
API models for the dreamshell server.
"""

from dreamshell.models.session import SessionRequest, SessionStarted, StatusMessage

__all__ = ["SessionRequest", "SessionStarted", "StatusMessage"]
