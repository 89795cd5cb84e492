import asyncio
from datetime import datetime
from typing import Callable, Optional
import logging

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from nowplaying.config import Settings, settings as default_settings
from nowplaying.models import PlaybackSession, PlaybackState, MediaInteraction
from nowplaying.services.catalog import ContentCounters
from nowplaying.services.tracking import progress_percentage

logger = logging.getLogger(__name__)


def should_credit(
    total_watch_time: float,
    position: float,
    duration: float,
    threshold_seconds: float,
    completion_ratio: float
) -> bool:
    """Watched long enough, or watched almost to the end."""
    if total_watch_time >= threshold_seconds:
        return True
    return duration > 0 and position / duration >= completion_ratio


class CreditingEngine:
    """Turns an ended session into at most one view/listen increment.

    The `view_credited` flag is claimed with a conditional update in the same
    transaction as the counter increment, so a sweep and an explicit end racing on
    one session can only ever produce a single +1.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        config: Settings = default_settings,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable = asyncio.sleep
    ):
        self.session_factory = session_factory
        self.config = config
        self.clock = clock
        self.sleep = sleep

    async def credit(self, session_id: str) -> bool:
        """Evaluate an ended session and credit it if it qualifies.

        Returns the session's resulting `view_credited` flag. Never raises for
        store failures: those are retried with backoff and then logged.
        """
        attempts = max(1, self.config.credit_max_attempts)

        for attempt in range(1, attempts + 1):
            try:
                return await self._credit_once(session_id)
            except LookupError as e:
                logger.error(f"Cannot credit session {session_id}: {e}")
                return False
            except SQLAlchemyError as e:
                if attempt >= attempts:
                    logger.error(
                        f"Giving up crediting session {session_id} after {attempt} attempt(s): {e}"
                    )
                    return False
                delay = self.config.credit_backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    f"Crediting session {session_id} failed (attempt {attempt}/{attempts}), "
                    f"retrying in {delay:.2f}s: {e}"
                )
                await self.sleep(delay)

        return False

    async def _credit_once(self, session_id: str) -> bool:
        async with self.session_factory() as db:
            playback = await db.get(PlaybackSession, session_id)
            if not playback:
                raise LookupError(f"Playback session {session_id} not found")

            if playback.view_credited:
                return True

            if playback.state != PlaybackState.ENDED:
                logger.debug(f"Session {session_id} is still {playback.state.value}, not crediting")
                return False

            if not should_credit(
                playback.total_watch_time,
                playback.position,
                playback.duration,
                self.config.view_threshold_seconds,
                self.config.completion_ratio
            ):
                logger.info(
                    f"Session {session_id} below threshold "
                    f"(watched {playback.total_watch_time:.1f}s, position {playback.position:.1f}/{playback.duration:.1f}s)"
                )
                return False

            claimed = await db.execute(
                update(PlaybackSession)
                .where(
                    PlaybackSession.id == session_id,
                    PlaybackSession.state == PlaybackState.ENDED,
                    PlaybackSession.view_credited == False  # noqa: E712
                )
                .values(view_credited=True, version=PlaybackSession.version + 1)
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount == 0:
                # Someone else got there first
                await db.rollback()
                credited = await db.scalar(
                    select(PlaybackSession.view_credited).where(PlaybackSession.id == session_id)
                )
                return bool(credited)

            counters = ContentCounters(db)
            if playback.is_audio_content:
                new_count = await counters.increment_listen_count(playback.media_id)
                interaction_type = "listen"
            else:
                new_count = await counters.increment_view_count(playback.media_id)
                interaction_type = "view"

            await self._record_interaction(db, playback, interaction_type)
            await db.commit()

            logger.info(
                f"Credited {interaction_type} for media {playback.media_id} "
                f"from session {session_id} (count now {new_count})"
            )
            return True

    async def _record_interaction(
        self,
        db: AsyncSession,
        playback: PlaybackSession,
        interaction_type: str
    ) -> Optional[MediaInteraction]:
        result = await db.execute(
            select(MediaInteraction).where(
                MediaInteraction.user_id == playback.user_id,
                MediaInteraction.media_id == playback.media_id,
                MediaInteraction.interaction_type == interaction_type
            )
        )
        interaction = result.scalar_one_or_none()

        if not interaction:
            interaction = MediaInteraction(
                user_id=playback.user_id,
                media_id=playback.media_id,
                interaction_type=interaction_type,
                count=0
            )
            db.add(interaction)

        percentage = progress_percentage(playback.position, playback.duration)
        interaction.count = (interaction.count or 0) + 1
        interaction.last_watch_time = playback.total_watch_time
        interaction.last_progress_percentage = percentage
        interaction.last_completed = percentage >= self.config.completion_ratio * 100
        interaction.last_interaction = self.clock()
        return interaction
