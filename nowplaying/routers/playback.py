from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from nowplaying.database import get_session
from nowplaying.deps import get_manager, get_user_id
from nowplaying.errors import NotFound
from nowplaying.schemas import (
    StartPlaybackRequest, ProgressRequest, SessionRequest, EndPlaybackRequest
)
from nowplaying.services.catalog import LibraryStore
from nowplaying.services.playback import PlaybackSessionManager
from nowplaying.services.tracking import progress_percentage

router = APIRouter()


@router.post("/start")
async def start_playback(
    body: StartPlaybackRequest,
    request: Request,
    user_id: str = Depends(get_user_id),
    manager: PlaybackSessionManager = Depends(get_manager)
):
    """Start playback, stopping any session the user already has open."""
    user_agent = request.headers.get("user-agent")
    result = await manager.start(
        user_id,
        body.media_id,
        body.duration,
        client_position=body.position,
        device_info=body.device_info or user_agent,
        user_agent=user_agent
    )

    previous = result.previous_session
    return {
        "success": True,
        "session": result.session.to_dict(),
        "resume_from": result.resume_from,
        "previous_session_stopped": {
            "session_id": previous.id,
            "media_id": previous.media_id,
            "position": previous.position,
            "view_credited": previous.view_credited
        } if previous else None
    }


@router.post("/progress")
async def update_progress(
    body: ProgressRequest,
    user_id: str = Depends(get_user_id),
    manager: PlaybackSessionManager = Depends(get_manager)
):
    """Record the player's current position (call every few seconds)."""
    session = await manager.progress(
        body.session_id, body.position, body.duration, user_id=user_id
    )
    return {
        "success": True,
        "session": session.to_dict(),
        "progress_percentage": progress_percentage(session.position, session.duration)
    }


@router.post("/pause")
async def pause_playback(
    body: SessionRequest,
    user_id: str = Depends(get_user_id),
    manager: PlaybackSessionManager = Depends(get_manager)
):
    session = await manager.pause(body.session_id, user_id=user_id)
    return {"success": True, "session": session.to_dict()}


@router.post("/resume")
async def resume_playback(
    body: SessionRequest,
    user_id: str = Depends(get_user_id),
    manager: PlaybackSessionManager = Depends(get_manager)
):
    session = await manager.resume(body.session_id, user_id=user_id)
    return {"success": True, "session": session.to_dict()}


@router.post("/end")
async def end_playback(
    body: EndPlaybackRequest,
    user_id: str = Depends(get_user_id),
    manager: PlaybackSessionManager = Depends(get_manager)
):
    """End playback. Safe to call more than once."""
    result = await manager.end(
        body.session_id, body.reason, body.final_position, user_id=user_id
    )
    return {
        "success": True,
        "session": result.session.to_dict(),
        "view_credited": result.view_credited
    }


@router.get("/active")
async def get_active_session(
    user_id: str = Depends(get_user_id),
    manager: PlaybackSessionManager = Depends(get_manager)
):
    """What should be playing for the caller right now."""
    session = await manager.get_active(user_id)
    return {"success": True, "session": session.to_dict() if session else None}


@router.get("/history")
async def get_playback_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    include_inactive: bool = Query(True),
    user_id: str = Depends(get_user_id),
    manager: PlaybackSessionManager = Depends(get_manager)
):
    """Playback sessions for the caller, most recent first."""
    sessions, total = await manager.history(
        user_id, page=page, limit=limit, include_inactive=include_inactive
    )
    return {
        "success": True,
        "sessions": [s.to_dict() for s in sessions],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit
        }
    }


@router.get("/library/{media_id}")
async def get_library_progress(
    media_id: str,
    user_id: str = Depends(get_user_id),
    session: AsyncSession = Depends(get_session)
):
    """The caller's saved resume point for a media item."""
    entry = await LibraryStore(session).get_progress(user_id, media_id)
    if not entry:
        raise NotFound(f"No progress saved for media {media_id}")
    return {"success": True, "progress": entry.to_dict()}
