import enum
import uuid
from sqlalchemy import String, Integer, Float, DateTime, Boolean, Enum, Index, text
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from typing import Optional
from nowplaying.database import Base


class PlaybackState(str, enum.Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    ENDED = "ended"


class EndReason(str, enum.Enum):
    COMPLETED = "completed"
    STOPPED = "stopped"
    ERROR = "error"
    TIMEOUT = "timeout"
    REPLACED = "replaced"


# States a session can be ended from
OPEN_STATES = (PlaybackState.ACTIVE, PlaybackState.PAUSED)


def new_session_id() -> str:
    return uuid.uuid4().hex


class PlaybackSession(Base):
    """One playback attempt by a user on one media item."""

    __tablename__ = "playback_sessions"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_session_id)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    media_id: Mapped[str] = mapped_column(String(64), index=True)
    is_audio_content: Mapped[bool] = mapped_column(Boolean, default=False)

    state: Mapped[PlaybackState] = mapped_column(
        Enum(PlaybackState, native_enum=False, length=20),
        default=PlaybackState.ACTIVE
    )
    end_reason: Mapped[Optional[EndReason]] = mapped_column(
        Enum(EndReason, native_enum=False, length=20),
        nullable=True
    )

    position: Mapped[float] = mapped_column(Float, default=0.0)
    duration: Mapped[float] = mapped_column(Float)
    total_watch_time: Mapped[float] = mapped_column(Float, default=0.0)

    started_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)
    last_updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    view_credited: Mapped[bool] = mapped_column(Boolean, default=False)

    # Bumped on every mutation, used for conditional updates
    version: Mapped[int] = mapped_column(Integer, default=1)

    device_info: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    __table_args__ = (
        Index("ix_playback_sessions_user_state", "user_id", "state"),
        # At most one open (active or paused) session per user
        Index(
            "uq_playback_sessions_open_per_user",
            "user_id",
            unique=True,
            sqlite_where=text("state != 'ENDED'"),
            postgresql_where=text("state != 'ENDED'")
        ),
        Index("ix_playback_sessions_state_updated", "state", "last_updated_at"),
    )

    def to_dict(self) -> dict:
        return {
            "session_id": self.id,
            "user_id": self.user_id,
            "media_id": self.media_id,
            "is_audio_content": self.is_audio_content,
            "state": self.state.value,
            "end_reason": self.end_reason.value if self.end_reason else None,
            "position": self.position,
            "duration": self.duration,
            "total_watch_time": self.total_watch_time,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "last_updated_at": self.last_updated_at.isoformat() if self.last_updated_at else None,
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "view_credited": self.view_credited,
            "device_info": self.device_info,
        }
