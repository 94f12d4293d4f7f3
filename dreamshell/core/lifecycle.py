"""
Container Lifecycle

Drives the container runtime through each session transition and records
the outcome in the session log.

    Unknown --create--> Running --terminate--> Stopped --delete--> Removed
                         ^   |
                         +---+ restart (also from Stopped)

Transitions on one session id are serialized by a per-id asyncio.Lock, and
the existence check is repeated once the lock is held: a restart queued
behind a terminate sees UnknownSession instead of racing the runtime.
"""

import asyncio
import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass

from dreamshell.core.runtime import ContainerRuntime, container_name, volume_name
from dreamshell.core.session_log import SessionLog
from dreamshell.lib.errors import RuntimeFailure, StillRunning, UnknownSession

logger = logging.getLogger(__name__)

MSG_STARTED = "Container started"
MSG_RESTARTED = "Container restarted"
MSG_TERMINATED = "Container terminated"
TERMINATE_NOTICE = "Session terminated"


@dataclass(frozen=True)
class SessionHandle:
    """Identifiers returned to the client for a live session."""

    session_id: str
    container_id: str


class ContainerLifecycle:
    """Orchestrates runtime calls for create/restart/terminate/delete."""

    def __init__(self, runtime: ContainerRuntime, session_log: SessionLog, image: str):
        self.runtime = runtime
        self.log = session_log
        self.image = image
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def _require(self, session_id: str) -> None:
        if not self.log.exists(session_id):
            raise UnknownSession(session_id)

    def _retire(self, session_id: str) -> None:
        self._locks.pop(session_id, None)

    async def create(self) -> SessionHandle:
        """
        Provision a new session: volume, then container, then first log entry.

        All-or-nothing: nothing is registered unless the container started.
        A volume left behind by a failed run is removed best-effort.
        """
        session_id = str(uuid.uuid4())
        volume = volume_name(session_id)
        name = container_name(session_id)

        async with self._locks[session_id]:
            try:
                await self.runtime.create_volume(volume)
            except RuntimeFailure:
                self._retire(session_id)
                raise

            try:
                container_id = await self.runtime.run(self.image, volume, name)
            except RuntimeFailure:
                try:
                    await self.runtime.remove_volume(volume)
                except RuntimeFailure as cleanup:
                    logger.warning(f"Could not clean up volume {volume}: {cleanup.diagnostic()}")
                self._retire(session_id)
                raise

            self.log.append(session_id, MSG_STARTED)

        logger.info(f"Session {session_id} created ({container_id[:12]})")
        return SessionHandle(session_id=session_id, container_id=container_id)

    async def restart(self, session_id: str) -> SessionHandle:
        """Stop then start the session container. Both steps must succeed."""
        self._require(session_id)
        async with self._locks[session_id]:
            self._require(session_id)
            name = container_name(session_id)
            await self.runtime.stop(name)
            await self.runtime.start(name)
            self.log.append(session_id, MSG_RESTARTED)

        logger.info(f"Session {session_id} restarted")
        return SessionHandle(session_id=session_id, container_id=name)

    async def terminate(self, session_id: str) -> None:
        """Stop the container and discard the transcript.

        The id leaves the registry, so later calls on it get UnknownSession.
        """
        self._require(session_id)
        async with self._locks[session_id]:
            self._require(session_id)
            await self.runtime.stop(container_name(session_id))
            self.log.append(session_id, MSG_TERMINATED)
            self.log.close_listeners(session_id, TERMINATE_NOTICE)
            self.log.remove(session_id)
        self._retire(session_id)

        logger.info(f"Session {session_id} terminated")

    async def delete(self, session_id: str) -> None:
        """Remove container, volume and any residual log of a stopped session."""
        self._require(session_id)
        async with self._locks[session_id]:
            self._require(session_id)
            name = container_name(session_id)
            if await self.runtime.is_running(name):
                raise StillRunning(session_id)

            await self.runtime.remove(name)
            await self.runtime.remove_volume(volume_name(session_id))
            self.log.close_listeners(session_id, "Session deleted")
            self.log.remove(session_id)
        self._retire(session_id)

        logger.info(f"Session {session_id} deleted")
