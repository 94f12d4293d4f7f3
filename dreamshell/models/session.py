"""
API request and response models for session lifecycle endpoints.
"""

from pydantic import BaseModel, ConfigDict, Field


class SessionRequest(BaseModel):
    """Body of restart/terminate/delete requests."""

    uuid: str = Field(..., min_length=1, description="Session identifier returned by /api/start")


class SessionStarted(BaseModel):
    """Response for start and restart."""

    status: str = "ok"
    uuid: str
    container_id: str = Field(alias="container-id")
    stdio_url: str = Field(alias="stdio-url")

    model_config = ConfigDict(populate_by_name=True)


class StatusMessage(BaseModel):
    """Response for terminate and delete."""

    status: str = "ok"
    message: str
