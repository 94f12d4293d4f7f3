"""
Container runtime adapter.

Sessions are realized as one Docker container plus one named volume:

- volume:    <session_id>-vol   (mounted at /data, the image's working dir)
- container: container-<session_id>

Every command runs through the docker CLI as an async subprocess, bounded by
a timeout. Non-zero exits raise RuntimeFailure carrying the captured stderr;
timeouts kill the process and raise RuntimeTimeout. Removing a container or
volume that no longer exists is not an error.
"""

import asyncio
import logging
import shutil
import time
from typing import Optional, Protocol

from dreamshell.lib.errors import RuntimeFailure, RuntimeTimeout

logger = logging.getLogger(__name__)

# Mount point inside the session container (WorkingDir of dreamshell-nixos)
VOLUME_MOUNT_PATH = "/data"


def volume_name(session_id: str) -> str:
    return f"{session_id}-vol"


def container_name(session_id: str) -> str:
    return f"container-{session_id}"


class ContainerRuntime(Protocol):
    """Capabilities the lifecycle manager needs from a container engine."""

    async def create_volume(self, name: str) -> None: ...

    async def remove_volume(self, name: str) -> None: ...

    async def run(self, image: str, volume: str, name: str) -> str: ...

    async def start(self, name: str) -> None: ...

    async def stop(self, name: str) -> None: ...

    async def remove(self, name: str) -> None: ...

    async def is_running(self, name: str) -> bool: ...

    async def is_available(self) -> bool: ...

    def health_info(self) -> dict: ...


def _already_gone(error: RuntimeFailure) -> bool:
    """Whether docker reported the target object as nonexistent."""
    stderr = error.stderr.lower()
    return "no such container" in stderr or "no such volume" in stderr


class DockerRuntime:
    """ContainerRuntime backed by the docker CLI."""

    # Re-check daemon availability every 60 seconds
    _CACHE_TTL = 60

    def __init__(self, docker_binary: str = "docker", timeout: float = 60.0):
        self.docker_binary = docker_binary
        self.timeout = timeout
        self._available: Optional[bool] = None
        self._checked_at: float = 0

    async def _exec(self, operation: str, *args: str) -> str:
        """Run one docker command; return stdout or raise a typed failure."""
        try:
            proc = await asyncio.create_subprocess_exec(
                self.docker_binary, *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise RuntimeFailure(operation, f"failed to launch {self.docker_binary}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            try:
                proc.kill()
                await proc.wait()
            except ProcessLookupError:
                pass
            logger.error(f"{operation} timed out after {self.timeout:g}s")
            raise RuntimeTimeout(operation, self.timeout)

        if proc.returncode != 0:
            raise RuntimeFailure(operation, stderr.decode(errors="replace"))
        return stdout.decode(errors="replace").strip()

    async def create_volume(self, name: str) -> None:
        await self._exec(f"volume create {name}", "volume", "create", name)
        logger.debug(f"Created volume {name}")

    async def remove_volume(self, name: str) -> None:
        """Remove a volume. One that no longer exists counts as removed."""
        try:
            await self._exec(f"volume rm {name}", "volume", "rm", name)
        except RuntimeTimeout:
            raise
        except RuntimeFailure as e:
            if not _already_gone(e):
                raise
            logger.info(f"Volume {name} already removed")
            return
        logger.debug(f"Removed volume {name}")

    async def run(self, image: str, volume: str, name: str) -> str:
        """Start a detached container with the volume mounted; return its ID."""
        container_id = await self._exec(
            f"run {name}",
            "run", "-d",
            "--name", name,
            "-v", f"{volume}:{VOLUME_MOUNT_PATH}",
            image,
        )
        logger.info(f"Started container {name} ({container_id[:12]})")
        return container_id

    async def start(self, name: str) -> None:
        await self._exec(f"start {name}", "start", name)

    async def stop(self, name: str) -> None:
        await self._exec(f"stop {name}", "stop", name)

    async def remove(self, name: str) -> None:
        """Remove a stopped container. One removed out of band counts as removed."""
        try:
            await self._exec(f"rm {name}", "rm", name)
        except RuntimeTimeout:
            raise
        except RuntimeFailure as e:
            if not _already_gone(e):
                raise
            logger.info(f"Container {name} already removed")

    async def is_running(self, name: str) -> bool:
        """Whether the container's State.Running is true.

        A container that cannot be inspected is reported as not running.
        """
        try:
            out = await self._exec(f"inspect {name}", "inspect", "-f", "{{.State.Running}}", name)
        except RuntimeTimeout:
            raise
        except RuntimeFailure as e:
            logger.warning(f"Could not inspect {name}: {e.stderr}")
            return False
        return out.strip().lower() == "true"

    async def is_available(self) -> bool:
        """Check if the docker CLI is installed and its daemon reachable (cached with TTL)."""
        if (self._available is not None
                and (time.time() - self._checked_at) < self._CACHE_TTL):
            return self._available

        if not shutil.which(self.docker_binary):
            logger.warning(f"{self.docker_binary} not found in PATH")
            self._available = False
        else:
            try:
                await self._exec("info", "info")
                self._available = True
            except RuntimeFailure:
                logger.warning("Docker daemon not reachable")
                self._available = False
        self._checked_at = time.time()
        return self._available

    def health_info(self) -> dict:
        """Runtime info for the detailed /api/health response."""
        return {
            "docker_available": self._available,
            "docker_binary": self.docker_binary,
        }
