from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///data/nowplaying.db"
    log_level: str = "INFO"

    # Crediting
    view_threshold_seconds: float = 30.0
    completion_ratio: float = 0.9
    credit_max_attempts: int = 3
    credit_backoff_seconds: float = 0.5

    # Progress tracking
    resume_epsilon_seconds: float = 5.0
    forward_jump_tolerance: float = 1.5

    # Stale session sweep
    sweep_enabled: bool = True
    stale_after_minutes: int = 10
    sweep_interval_seconds: int = 60

    class Config:
        env_prefix = "NOWPLAYING_"


settings = Settings()


async def load_settings_from_db():
    """Load tunables from database on startup."""
    from nowplaying.database import async_session
    from nowplaying.models import AppSettings
    from sqlalchemy import select

    async with async_session() as session:
        result = await session.execute(select(AppSettings))
        app_settings = result.scalar_one_or_none()

        if app_settings:
            settings.view_threshold_seconds = app_settings.view_threshold_seconds
            settings.completion_ratio = app_settings.completion_ratio
            settings.stale_after_minutes = app_settings.stale_after_minutes
            settings.sweep_interval_seconds = app_settings.sweep_interval_seconds


async def save_settings(
    view_threshold_seconds: float,
    completion_ratio: float,
    stale_after_minutes: int,
    sweep_interval_seconds: int
):
    """Save tunables to database."""
    from nowplaying.database import async_session
    from nowplaying.models import AppSettings
    from sqlalchemy import select

    async with async_session() as session:
        result = await session.execute(select(AppSettings))
        app_settings = result.scalar_one_or_none()

        if not app_settings:
            app_settings = AppSettings()
            session.add(app_settings)

        app_settings.view_threshold_seconds = view_threshold_seconds
        app_settings.completion_ratio = completion_ratio
        app_settings.stale_after_minutes = stale_after_minutes
        app_settings.sweep_interval_seconds = sweep_interval_seconds

        await session.commit()

    settings.view_threshold_seconds = view_threshold_seconds
    settings.completion_ratio = completion_ratio
    settings.stale_after_minutes = stale_after_minutes
    settings.sweep_interval_seconds = sweep_interval_seconds
