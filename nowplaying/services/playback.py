from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Union
import logging

from sqlalchemy import select, update, func, desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from nowplaying.config import Settings, settings as default_settings
from nowplaying.database import async_session
from nowplaying.errors import InvalidInput, NotFound, Conflict
from nowplaying.models import PlaybackSession, PlaybackState, EndReason, OPEN_STATES
from nowplaying.services.catalog import ContentCatalog, LibraryStore
from nowplaying.services.crediting import CreditingEngine
from nowplaying.services.tracking import (
    progress_percentage, watch_time_delta, resolve_resume_offset
)

logger = logging.getLogger(__name__)

# Conditional updates lost to a concurrent writer are re-evaluated this many times
UPDATE_ATTEMPTS = 3


@dataclass
class StartResult:
    session: PlaybackSession
    resume_from: float
    previous_session: Optional[PlaybackSession] = None


@dataclass
class EndResult:
    session: PlaybackSession
    view_credited: bool


class PlaybackSessionManager:
    """State machine for playback sessions.

    Every transition is a conditional UPDATE keyed on the session id, the expected
    state and the row version, so concurrent calls on one session either apply in
    order or fail with Conflict. No lock is held across calls.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker = async_session,
        config: Settings = default_settings,
        clock: Callable[[], datetime] = datetime.now,
        crediting: Optional[CreditingEngine] = None
    ):
        self.session_factory = session_factory
        self.config = config
        self.clock = clock
        self.crediting = crediting or CreditingEngine(session_factory, config, clock)

    # -- start -----------------------------------------------------------

    async def start(
        self,
        user_id: str,
        media_id: str,
        duration: float,
        client_position: Optional[float] = None,
        device_info: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> StartResult:
        """Start playing `media_id` for `user_id`, ending whatever they had open."""
        if duration is None or duration <= 0:
            raise InvalidInput(f"Duration must be greater than 0, got {duration}")
        if client_position is not None and not (0 <= client_position <= duration):
            raise InvalidInput(
                f"Position must be between 0 and {duration}, got {client_position}"
            )

        for _ in range(UPDATE_ATTEMPTS):
            started = await self._start_once(
                user_id, media_id, duration, client_position, device_info, user_agent
            )
            if started is not None:
                break
        else:
            raise Conflict("Previous playback session is being updated concurrently")

        playback, resume_from, stopped = started
        logger.info(
            f"Playback started: session {playback.id} user {user_id} media {media_id} "
            f"resume_from={resume_from:.1f}"
            + (f", stopped {', '.join(p.id for p in stopped)}" if stopped else "")
        )

        for previous in stopped:
            previous.view_credited = await self.crediting.credit(previous.id)

        return StartResult(
            session=playback,
            resume_from=resume_from,
            previous_session=stopped[0] if stopped else None
        )

    async def _start_once(
        self,
        user_id: str,
        media_id: str,
        duration: float,
        client_position: Optional[float],
        device_info: Optional[str],
        user_agent: Optional[str]
    ) -> Optional[tuple[PlaybackSession, float, list[PlaybackSession]]]:
        """One transaction: stop the user's open sessions and create the new one.

        Returns None, with nothing written, if an open session changed under us.
        """
        now = self.clock()
        stopped: list[PlaybackSession] = []

        async with self.session_factory() as db:
            catalog = ContentCatalog(db)
            if not await catalog.exists(media_id):
                raise NotFound(f"Media {media_id} not found")

            result = await db.execute(
                select(PlaybackSession).where(
                    PlaybackSession.user_id == user_id,
                    PlaybackSession.state.in_(OPEN_STATES)
                ).order_by(desc(PlaybackSession.started_at))
            )
            for previous in result.scalars().all():
                if not await self._close(db, previous, EndReason.REPLACED, None, now):
                    await db.rollback()
                    return None
                stopped.append(previous)

            library = LibraryStore(db)
            entry = await library.get_progress(user_id, media_id)
            resume_from = resolve_resume_offset(
                entry.last_position if entry else None,
                duration,
                client_position,
                self.config.resume_epsilon_seconds,
                self.config.completion_ratio
            )
            if entry is None:
                await library.upsert_progress(
                    user_id, media_id, resume_from,
                    progress_percentage(resume_from, duration), now
                )

            playback = PlaybackSession(
                user_id=user_id,
                media_id=media_id,
                is_audio_content=await catalog.is_audio_content(media_id),
                state=PlaybackState.ACTIVE,
                position=resume_from,
                duration=duration,
                total_watch_time=0.0,
                started_at=now,
                last_updated_at=now,
                view_credited=False,
                version=1,
                device_info=device_info,
                user_agent=user_agent
            )
            db.add(playback)
            try:
                await db.commit()
            except IntegrityError:
                # A concurrent start for the same user won the race
                await db.rollback()
                return None

            for previous in stopped:
                await db.refresh(previous)

        return playback, resume_from, stopped

    # -- progress / pause / resume ------------------------------------------

    async def progress(
        self,
        session_id: str,
        position: float,
        reported_duration: Optional[float] = None,
        user_id: Optional[str] = None
    ) -> PlaybackSession:
        """Record a position report from the player."""
        if position is None or position < 0:
            raise InvalidInput(f"Position must be 0 or greater, got {position}")
        if reported_duration is not None and reported_duration <= 0:
            raise InvalidInput(f"Duration must be greater than 0, got {reported_duration}")

        for _ in range(UPDATE_ATTEMPTS):
            now = self.clock()
            async with self.session_factory() as db:
                playback = await self._load(db, session_id, user_id)
                if playback.state != PlaybackState.ACTIVE:
                    raise Conflict(
                        f"Playback session is {playback.state.value}, not active",
                        session=playback.to_dict()
                    )

                # Duration never shrinks mid-session
                duration = max(playback.duration, reported_duration or 0)
                position = min(position, duration)
                delta = watch_time_delta(
                    playback.position, position, playback.last_updated_at,
                    now, self.config.forward_jump_tolerance
                )
                if delta == 0 and position > playback.position:
                    logger.debug(
                        f"Session {session_id}: jump {playback.position:.1f} -> {position:.1f} "
                        f"not counted as watch time"
                    )

                applied = await self._conditional_update(
                    db, playback, (PlaybackState.ACTIVE,),
                    position=position,
                    duration=duration,
                    total_watch_time=playback.total_watch_time + delta,
                    last_updated_at=now
                )
                if applied:
                    await db.commit()
                    await db.refresh(playback)
                    return playback
                await db.rollback()

        raise Conflict(
            "Playback session is being updated concurrently",
            session=await self._snapshot(session_id)
        )

    async def pause(self, session_id: str, user_id: Optional[str] = None) -> PlaybackSession:
        playback = await self._transition(
            session_id, PlaybackState.ACTIVE, PlaybackState.PAUSED, user_id
        )
        logger.info(f"Playback paused: session {session_id} at {playback.position:.1f}s")
        return playback

    async def resume(self, session_id: str, user_id: Optional[str] = None) -> PlaybackSession:
        playback = await self._transition(
            session_id, PlaybackState.PAUSED, PlaybackState.ACTIVE, user_id
        )
        logger.info(f"Playback resumed: session {session_id} at {playback.position:.1f}s")
        return playback

    async def _transition(
        self,
        session_id: str,
        from_state: PlaybackState,
        to_state: PlaybackState,
        user_id: Optional[str]
    ) -> PlaybackSession:
        for _ in range(UPDATE_ATTEMPTS):
            now = self.clock()
            async with self.session_factory() as db:
                playback = await self._load(db, session_id, user_id)
                if playback.state != from_state:
                    raise Conflict(
                        f"Cannot move playback session from {playback.state.value} to {to_state.value}",
                        session=playback.to_dict()
                    )
                # Resetting last_updated_at keeps paused time out of watch time
                applied = await self._conditional_update(
                    db, playback, (from_state,), state=to_state, last_updated_at=now
                )
                if applied:
                    await db.commit()
                    await db.refresh(playback)
                    return playback
                await db.rollback()

        raise Conflict(
            "Playback session is being updated concurrently",
            session=await self._snapshot(session_id)
        )

    # -- end ---------------------------------------------------------------

    async def end(
        self,
        session_id: str,
        reason: Union[EndReason, str] = EndReason.STOPPED,
        final_position: Optional[float] = None,
        user_id: Optional[str] = None
    ) -> EndResult:
        """End a session and evaluate it for crediting.

        Ending an already ended session returns its stored outcome.
        """
        try:
            reason = EndReason(reason)
        except ValueError:
            raise InvalidInput(f"Unknown end reason: {reason}") from None
        if final_position is not None and final_position < 0:
            raise InvalidInput(f"Final position must be 0 or greater, got {final_position}")

        return await self._end(session_id, reason, final_position, user_id)

    async def end_if_stale(self, session_id: str, stale_before: datetime) -> Optional[EndResult]:
        """End a session with reason timeout unless it was updated after `stale_before`.

        Returns None when the session turned out to be fresh.
        """
        return await self._end(
            session_id, EndReason.TIMEOUT, None, None, stale_before=stale_before
        )

    async def _end(
        self,
        session_id: str,
        reason: EndReason,
        final_position: Optional[float],
        user_id: Optional[str],
        stale_before: Optional[datetime] = None
    ) -> Optional[EndResult]:
        for _ in range(UPDATE_ATTEMPTS):
            now = self.clock()
            async with self.session_factory() as db:
                playback = await self._load(db, session_id, user_id)
                if playback.state == PlaybackState.ENDED:
                    return EndResult(session=playback, view_credited=playback.view_credited)
                if stale_before is not None and playback.last_updated_at >= stale_before:
                    return None

                if await self._close(db, playback, reason, final_position, now):
                    await db.commit()
                    break
                await db.rollback()
        else:
            raise Conflict(
                "Playback session is being updated concurrently",
                session=await self._snapshot(session_id)
            )

        logger.info(f"Playback ended: session {session_id} reason={reason.value}")

        view_credited = await self.crediting.credit(session_id)
        async with self.session_factory() as db:
            playback = await self._load(db, session_id)
        return EndResult(session=playback, view_credited=view_credited)

    async def _close(
        self,
        db: AsyncSession,
        playback: PlaybackSession,
        reason: EndReason,
        final_position: Optional[float],
        now: datetime
    ) -> bool:
        """Move an open session to ended and save its library progress.

        Runs inside the caller's transaction. Returns False when the session was
        changed by someone else since it was loaded.
        """
        position = playback.position
        watch_time = playback.total_watch_time
        if final_position is not None:
            position = min(final_position, playback.duration)
            if playback.state == PlaybackState.ACTIVE:
                watch_time += watch_time_delta(
                    playback.position, position, playback.last_updated_at,
                    now, self.config.forward_jump_tolerance
                )

        applied = await self._conditional_update(
            db, playback, OPEN_STATES,
            state=PlaybackState.ENDED,
            end_reason=reason,
            ended_at=now,
            last_updated_at=now,
            position=position,
            total_watch_time=watch_time
        )
        if not applied:
            return False

        await LibraryStore(db).upsert_progress(
            playback.user_id,
            playback.media_id,
            position,
            progress_percentage(position, playback.duration),
            now
        )
        return True

    # -- reads -------------------------------------------------------------

    async def get_active(self, user_id: str) -> Optional[PlaybackSession]:
        """The user's open (active or paused) session, if any. Never mutates."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(PlaybackSession).where(
                    PlaybackSession.user_id == user_id,
                    PlaybackSession.state.in_(OPEN_STATES)
                ).order_by(desc(PlaybackSession.started_at)).limit(1)
            )
            return result.scalar_one_or_none()

    async def history(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 20,
        include_inactive: bool = True
    ) -> tuple[list[PlaybackSession], int]:
        """Sessions for a user, most recent first, with the total count."""
        query = select(PlaybackSession).where(PlaybackSession.user_id == user_id)
        if not include_inactive:
            query = query.where(PlaybackSession.state.in_(OPEN_STATES))

        async with self.session_factory() as db:
            count_result = await db.execute(
                select(func.count()).select_from(query.subquery())
            )
            total = count_result.scalar() or 0

            offset = (page - 1) * limit
            result = await db.execute(
                query.order_by(desc(PlaybackSession.started_at)).offset(offset).limit(limit)
            )
            return list(result.scalars().all()), total

    # -- helpers -----------------------------------------------------------

    async def _load(
        self,
        db: AsyncSession,
        session_id: str,
        user_id: Optional[str] = None
    ) -> PlaybackSession:
        playback = await db.get(PlaybackSession, session_id)
        # Someone else's session is reported as missing
        if not playback or (user_id is not None and playback.user_id != user_id):
            raise NotFound(f"Playback session {session_id} not found")
        return playback

    async def _snapshot(self, session_id: str) -> Optional[dict]:
        async with self.session_factory() as db:
            playback = await db.get(PlaybackSession, session_id)
            return playback.to_dict() if playback else None

    async def _conditional_update(
        self,
        db: AsyncSession,
        playback: PlaybackSession,
        expected_states: tuple,
        **values
    ) -> bool:
        result = await db.execute(
            update(PlaybackSession)
            .where(
                PlaybackSession.id == playback.id,
                PlaybackSession.state.in_(expected_states),
                PlaybackSession.version == playback.version
            )
            .values(version=playback.version + 1, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
