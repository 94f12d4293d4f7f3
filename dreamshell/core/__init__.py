"""
Core session lifecycle logic for the dreamshell server.
"""

from dreamshell.core.lifecycle import ContainerLifecycle, SessionHandle
from dreamshell.core.runtime import ContainerRuntime, DockerRuntime
from dreamshell.core.session_log import LogEntry, SessionLog, SessionRegistry

__all__ = [
    "ContainerLifecycle",
    "ContainerRuntime",
    "DockerRuntime",
    "LogEntry",
    "SessionHandle",
    "SessionLog",
    "SessionRegistry",
]
