from sqlalchemy import String, Float, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from nowplaying.database import Base


class LibraryProgress(Base):
    """Long-lived resume point for a user and media pair."""

    __tablename__ = "library_progress"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    media_id: Mapped[str] = mapped_column(String(64), index=True)
    last_position: Mapped[float] = mapped_column(Float, default=0.0)
    last_progress_percentage: Mapped[float] = mapped_column(Float, default=0.0)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)

    __table_args__ = (
        UniqueConstraint("user_id", "media_id", name="uq_library_progress_user_media"),
    )

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "media_id": self.media_id,
            "last_position": self.last_position,
            "last_progress_percentage": self.last_progress_percentage,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
