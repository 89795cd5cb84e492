from datetime import datetime
from typing import Optional
import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from nowplaying.models import Media, LibraryProgress

logger = logging.getLogger(__name__)


class ContentCatalog:
    """Read-only view of the media catalog."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, media_id: str) -> Optional[Media]:
        return await self.session.get(Media, media_id)

    async def exists(self, media_id: str) -> bool:
        return await self.get(media_id) is not None

    async def is_audio_content(self, media_id: str) -> bool:
        media = await self.get(media_id)
        return bool(media and media.is_audio_content)


class ContentCounters:
    """Atomic view/listen counter increments.

    Each increment is a single UPDATE ... SET n = n + 1 executed in the caller's
    transaction; nothing here reads the counter before writing it.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _increment(self, media_id: str, column) -> int:
        result = await self.session.execute(
            update(Media)
            .where(Media.id == media_id)
            .values({column: column + 1})
            .returning(column)
        )
        new_count = result.scalar_one_or_none()
        if new_count is None:
            raise LookupError(f"Media {media_id} not found")
        return new_count

    async def increment_view_count(self, media_id: str) -> int:
        return await self._increment(media_id, Media.view_count)

    async def increment_listen_count(self, media_id: str) -> int:
        return await self._increment(media_id, Media.listen_count)


class LibraryStore:
    """Long-lived per user+media progress used for resume."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_progress(self, user_id: str, media_id: str) -> Optional[LibraryProgress]:
        result = await self.session.execute(
            select(LibraryProgress).where(
                LibraryProgress.user_id == user_id,
                LibraryProgress.media_id == media_id
            )
        )
        return result.scalar_one_or_none()

    async def upsert_progress(
        self,
        user_id: str,
        media_id: str,
        position: float,
        percentage: float,
        now: Optional[datetime] = None
    ) -> LibraryProgress:
        entry = await self.get_progress(user_id, media_id)
        now = now or datetime.now()

        if entry:
            entry.last_position = position
            entry.last_progress_percentage = percentage
            entry.updated_at = now
        else:
            entry = LibraryProgress(
                user_id=user_id,
                media_id=media_id,
                last_position=position,
                last_progress_percentage=percentage,
                updated_at=now
            )
            self.session.add(entry)

        await self.session.flush()
        return entry
