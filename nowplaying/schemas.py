from typing import Literal, Optional

from pydantic import BaseModel, Field


class StartPlaybackRequest(BaseModel):
    media_id: str
    duration: float
    position: Optional[float] = None
    device_info: Optional[str] = None


class ProgressRequest(BaseModel):
    session_id: str
    position: float
    duration: Optional[float] = None


class SessionRequest(BaseModel):
    session_id: str


class EndPlaybackRequest(BaseModel):
    session_id: str
    reason: Literal["completed", "stopped", "error"] = "stopped"
    final_position: Optional[float] = None


class MediaCreateRequest(BaseModel):
    id: str
    title: str = ""
    content_type: str = "video"
    duration: Optional[float] = None


class SettingsUpdateRequest(BaseModel):
    view_threshold_seconds: float = Field(gt=0)
    completion_ratio: float = Field(gt=0, le=1)
    stale_after_minutes: int = Field(ge=1)
    sweep_interval_seconds: int = Field(ge=5)
