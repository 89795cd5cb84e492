from datetime import datetime, timedelta
from typing import Optional
import logging

from sqlalchemy import select

from nowplaying.errors import Conflict, PlaybackError
from nowplaying.models import PlaybackSession, EndReason, OPEN_STATES, SweepRun
from nowplaying.progress import progress
from nowplaying.services.playback import PlaybackSessionManager

logger = logging.getLogger(__name__)


async def find_stale_session_ids(manager: PlaybackSessionManager, cutoff: datetime) -> list[str]:
    """Open sessions with no update since `cutoff`, oldest first."""
    async with manager.session_factory() as db:
        result = await db.execute(
            select(PlaybackSession.id).where(
                PlaybackSession.state.in_(OPEN_STATES),
                PlaybackSession.last_updated_at < cutoff
            ).order_by(PlaybackSession.last_updated_at)
        )
        return list(result.scalars().all())


async def end_stale_sessions(
    manager: Optional[PlaybackSessionManager] = None,
    trigger: str = "scheduled"
) -> SweepRun:
    """End every stale open session with reason timeout and record the run.

    Raises Conflict if another sweep is in flight.
    """
    if progress.is_running:
        raise Conflict("Sweep already running")

    manager = manager or PlaybackSessionManager()
    started = manager.clock()
    cutoff = started - timedelta(minutes=manager.config.stale_after_minutes)

    # Claimed before the first await so an overlapping trigger sees it
    progress.start(None, 0)
    try:
        async with manager.session_factory() as db:
            run = SweepRun(trigger=trigger, started_at=started, status="running")
            db.add(run)
            await db.commit()
            await db.refresh(run)
    except Exception:
        progress.finish()
        raise

    progress.run_id = run.id
    try:
        session_ids = await find_stale_session_ids(manager, cutoff)
        progress.total_count = len(session_ids)
        logger.info(f"Sweep {run.id} ({trigger}): {len(session_ids)} stale session(s) older than {cutoff}")

        for session_id in session_ids:
            try:
                result = await manager.end_if_stale(session_id, cutoff)
            except PlaybackError as e:
                logger.warning(f"Sweep {run.id}: could not end session {session_id}: {e}")
                progress.update(session_id, success=False)
                continue

            if result is None or result.session.end_reason != EndReason.TIMEOUT:
                # Updated or ended by the client since we looked
                continue
            progress.update(session_id, success=True, credited=result.view_credited)

        run.status = "completed"
    except Exception as e:
        logger.exception(f"Sweep {run.id} failed")
        run.status = "failed"
        run.error_message = str(e)
        raise
    finally:
        run.sessions_found = progress.total_count
        run.sessions_ended = progress.ended_count
        run.sessions_credited = progress.credited_count
        run.completed_at = manager.clock()
        progress.finish()

        async with manager.session_factory() as db:
            await db.merge(run)
            await db.commit()

    logger.info(
        f"Sweep {run.id} finished: ended {run.sessions_ended}, credited {run.sessions_credited}"
    )
    return run
