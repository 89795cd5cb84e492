from sqlalchemy import Integer, Float
from sqlalchemy.orm import Mapped, mapped_column
from nowplaying.database import Base


class AppSettings(Base):
    """Stores crediting and sweep tunables."""

    __tablename__ = "app_settings"

    id: Mapped[int] = mapped_column(primary_key=True)
    view_threshold_seconds: Mapped[float] = mapped_column(Float, default=30.0)
    completion_ratio: Mapped[float] = mapped_column(Float, default=0.9)
    stale_after_minutes: Mapped[int] = mapped_column(Integer, default=10)
    sweep_interval_seconds: Mapped[int] = mapped_column(Integer, default=60)
