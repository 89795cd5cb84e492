from fastapi import APIRouter

from nowplaying.config import settings, save_settings
from nowplaying.schemas import SettingsUpdateRequest

router = APIRouter()


def settings_payload() -> dict:
    return {
        "view_threshold_seconds": settings.view_threshold_seconds,
        "completion_ratio": settings.completion_ratio,
        "stale_after_minutes": settings.stale_after_minutes,
        "sweep_interval_seconds": settings.sweep_interval_seconds,
        "sweep_enabled": settings.sweep_enabled,
        "forward_jump_tolerance": settings.forward_jump_tolerance,
        "resume_epsilon_seconds": settings.resume_epsilon_seconds
    }


@router.get("/")
async def get_config():
    """Current crediting and sweep tunables."""
    return settings_payload()


@router.post("/")
async def update_config(body: SettingsUpdateRequest):
    """Persist tunables and reschedule the sweep."""
    await save_settings(
        body.view_threshold_seconds,
        body.completion_ratio,
        body.stale_after_minutes,
        body.sweep_interval_seconds
    )

    from nowplaying.scheduler import scheduler, update_sweep_schedule
    if scheduler.running:
        update_sweep_schedule()

    return settings_payload()
