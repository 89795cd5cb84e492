from sqlalchemy import String, Integer, Float, DateTime, Boolean, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from typing import Optional
from nowplaying.database import Base


AUDIO_CONTENT_TYPES = {"music", "audio", "podcast", "sermon"}


class Media(Base):
    """Content catalog entry with its public engagement counters."""

    __tablename__ = "media"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(String(500), default="")
    content_type: Mapped[str] = mapped_column(String(50), default="video")
    duration: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    view_count: Mapped[int] = mapped_column(Integer, default=0)
    listen_count: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)

    @property
    def is_audio_content(self) -> bool:
        return self.content_type in AUDIO_CONTENT_TYPES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "content_type": self.content_type,
            "duration": self.duration,
            "is_audio_content": self.is_audio_content,
            "view_count": self.view_count,
            "listen_count": self.listen_count,
        }


class MediaInteraction(Base):
    """Per-user record of credited views or listens."""

    __tablename__ = "media_interactions"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    media_id: Mapped[str] = mapped_column(String(64), index=True)
    interaction_type: Mapped[str] = mapped_column(String(20))  # "view" or "listen"
    count: Mapped[int] = mapped_column(Integer, default=0)
    last_watch_time: Mapped[float] = mapped_column(Float, default=0.0)
    last_progress_percentage: Mapped[float] = mapped_column(Float, default=0.0)
    last_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    last_interaction: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)

    __table_args__ = (
        UniqueConstraint("user_id", "media_id", "interaction_type", name="uq_media_interaction"),
    )
