from sqlalchemy import String, Integer, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from nowplaying.database import Base


class SweepRun(Base):
    """Logs each stale session sweep (scheduled or manual)."""

    __tablename__ = "sweep_runs"

    id: Mapped[int] = mapped_column(primary_key=True)
    started_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)
    completed_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)

    trigger: Mapped[str] = mapped_column(String(50))

    sessions_found: Mapped[int] = mapped_column(Integer, default=0)
    sessions_ended: Mapped[int] = mapped_column(Integer, default=0)
    sessions_credited: Mapped[int] = mapped_column(Integer, default=0)

    status: Mapped[str] = mapped_column(String(50), default="running")
    error_message: Mapped[str] = mapped_column(Text, nullable=True)
