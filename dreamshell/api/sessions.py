"""
Session lifecycle endpoints.

All routes here require a valid bearer token (see lib/auth.require_token).
"""

import logging

from fastapi import APIRouter, Depends, Request

from dreamshell.config import Settings
from dreamshell.core.lifecycle import ContainerLifecycle
from dreamshell.lib.auth import require_token
from dreamshell.lib.errors import DreamshellError
from dreamshell.models.session import SessionRequest, SessionStarted, StatusMessage

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_token)])


def get_lifecycle(request: Request) -> ContainerLifecycle:
    """Get the lifecycle manager from app state."""
    lifecycle = getattr(request.app.state, "lifecycle", None)
    if lifecycle is None:
        raise DreamshellError("Server not ready")
    return lifecycle


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


@router.post("/start", response_model=SessionStarted)
async def start_session(
    lifecycle: ContainerLifecycle = Depends(get_lifecycle),
    settings: Settings = Depends(get_app_settings),
):
    """Provision a new session container and volume."""
    handle = await lifecycle.create()
    return SessionStarted(
        uuid=handle.session_id,
        container_id=handle.container_id,
        stdio_url=settings.stdio_url(handle.session_id),
    )


@router.post("/restart", response_model=SessionStarted)
async def restart_session(
    body: SessionRequest,
    lifecycle: ContainerLifecycle = Depends(get_lifecycle),
    settings: Settings = Depends(get_app_settings),
):
    """Stop and start an existing session container."""
    handle = await lifecycle.restart(body.uuid)
    return SessionStarted(
        uuid=handle.session_id,
        container_id=handle.container_id,
        stdio_url=settings.stdio_url(handle.session_id),
    )


@router.post("/terminate", response_model=StatusMessage)
async def terminate_session(
    body: SessionRequest,
    lifecycle: ContainerLifecycle = Depends(get_lifecycle),
):
    """Stop a session container and discard its transcript."""
    await lifecycle.terminate(body.uuid)
    return StatusMessage(message=f"Container {body.uuid} terminated.")


@router.post("/delete", response_model=StatusMessage)
async def delete_session(
    body: SessionRequest,
    lifecycle: ContainerLifecycle = Depends(get_lifecycle),
):
    """Remove a stopped session's container, volume and transcript."""
    await lifecycle.delete(body.uuid)
    return StatusMessage(message=f"Container {body.uuid} deleted.")
