from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, Response
from sqlalchemy import select, desc, func
from sqlalchemy.ext.asyncio import AsyncSession

from nowplaying.database import get_session
from nowplaying.deps import get_manager
from nowplaying.errors import Conflict, NotFound
from nowplaying.models import Media, PlaybackSession, PlaybackState, SweepRun
from nowplaying.progress import progress
from nowplaying.schemas import MediaCreateRequest
from nowplaying.services.playback import PlaybackSessionManager

router = APIRouter()


@router.post("/media", status_code=201)
async def register_media(
    body: MediaCreateRequest,
    session: AsyncSession = Depends(get_session)
):
    """Register a catalog entry so it can be played."""
    if await session.get(Media, body.id):
        raise Conflict(f"Media {body.id} already exists")

    media = Media(
        id=body.id,
        title=body.title,
        content_type=body.content_type,
        duration=body.duration
    )
    session.add(media)
    await session.commit()
    return {"success": True, "media": media.to_dict()}


@router.get("/media/{media_id}")
async def get_media(media_id: str, session: AsyncSession = Depends(get_session)):
    """Catalog entry with its view/listen counters."""
    media = await session.get(Media, media_id)
    if not media:
        raise NotFound(f"Media {media_id} not found")
    return {"success": True, "media": media.to_dict()}


@router.get("/stats")
async def get_stats(session: AsyncSession = Depends(get_session)):
    """Session counts by state and crediting totals."""
    result = await session.execute(
        select(PlaybackSession.state, func.count(PlaybackSession.id))
        .group_by(PlaybackSession.state)
    )
    by_state = {state.value: 0 for state in PlaybackState}
    for state, count in result.all():
        by_state[PlaybackState(state).value] = count

    result = await session.execute(
        select(func.count(PlaybackSession.id)).where(PlaybackSession.view_credited == True)  # noqa: E712
    )
    credited = result.scalar() or 0

    return {
        "sessions": by_state,
        "sessions_credited": credited
    }


@router.get("/sweep/last-run")
async def get_last_sweep(session: AsyncSession = Depends(get_session)):
    """Get the last stale session sweep."""
    result = await session.execute(
        select(SweepRun).order_by(desc(SweepRun.started_at), desc(SweepRun.id)).limit(1)
    )
    run = result.scalar_one_or_none()

    if not run:
        return Response(status_code=204)

    return {
        "id": run.id,
        "trigger": run.trigger,
        "started_at": run.started_at.isoformat(),
        "completed_at": run.completed_at.isoformat() if run.completed_at else None,
        "status": run.status,
        "sessions_found": run.sessions_found,
        "sessions_ended": run.sessions_ended,
        "sessions_credited": run.sessions_credited,
        "error_message": run.error_message
    }


@router.post("/sweep/run")
async def trigger_sweep(manager: PlaybackSessionManager = Depends(get_manager)):
    """Run a sweep now and wait for it to finish."""
    from nowplaying.services.sweep import end_stale_sessions

    # Conflict (409) if a sweep is already in flight
    run = await end_stale_sessions(manager, trigger="manual")
    return {
        "success": True,
        "run_id": run.id,
        "status": run.status,
        "sessions_ended": run.sessions_ended,
        "sessions_credited": run.sessions_credited
    }


@router.get("/sweep/progress")
async def get_sweep_progress():
    """Get current sweep progress and when the next scheduled sweep is due."""
    from nowplaying.scheduler import get_next_run_time

    data = progress.to_dict()
    next_run = get_next_run_time()
    data["next_run_time"] = next_run.isoformat() if next_run else None
    return JSONResponse(data)
