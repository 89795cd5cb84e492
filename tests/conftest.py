from datetime import datetime, timedelta

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import nowplaying.models  # noqa: F401
from nowplaying.config import Settings
from nowplaying.database import Base, get_session
from nowplaying.deps import get_manager
from nowplaying.models import Media, PlaybackSession, LibraryProgress
from nowplaying.services.crediting import CreditingEngine
from nowplaying.services.playback import PlaybackSessionManager


class FakeClock:
    """Wall clock the tests move by hand."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, minutes: float = 0):
        self.now += timedelta(seconds=seconds, minutes=minutes)


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay: float):
        self.delays.append(delay)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return Settings(
        view_threshold_seconds=30,
        completion_ratio=0.9,
        resume_epsilon_seconds=5,
        forward_jump_tolerance=1.5,
        stale_after_minutes=10,
        credit_max_attempts=3,
        credit_backoff_seconds=0.5
    )


@pytest.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'nowplaying.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def sleeps():
    return SleepRecorder()


@pytest.fixture
def manager(session_factory, config, clock, sleeps):
    crediting = CreditingEngine(session_factory, config, clock, sleep=sleeps)
    return PlaybackSessionManager(session_factory, config, clock, crediting=crediting)


@pytest.fixture
def add_media(session_factory):
    async def _add(media_id: str, content_type: str = "video", duration: float = None):
        async with session_factory() as db:
            db.add(Media(id=media_id, title=media_id, content_type=content_type, duration=duration))
            await db.commit()
    return _add


@pytest.fixture
def load(session_factory):
    """Helpers to read rows back in a fresh session."""
    class Loader:
        async def media(self, media_id: str) -> Media:
            async with session_factory() as db:
                return await db.get(Media, media_id)

        async def session(self, session_id: str) -> PlaybackSession:
            async with session_factory() as db:
                return await db.get(PlaybackSession, session_id)

        async def sessions(self, user_id: str) -> list[PlaybackSession]:
            async with session_factory() as db:
                result = await db.execute(
                    select(PlaybackSession).where(PlaybackSession.user_id == user_id)
                )
                return list(result.scalars().all())

        async def library(self, user_id: str, media_id: str) -> LibraryProgress:
            async with session_factory() as db:
                result = await db.execute(
                    select(LibraryProgress).where(
                        LibraryProgress.user_id == user_id,
                        LibraryProgress.media_id == media_id
                    )
                )
                return result.scalar_one_or_none()

    return Loader()


@pytest.fixture
async def client(manager, session_factory):
    from nowplaying.main import app

    async def override_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_manager] = lambda: manager
    app.dependency_overrides[get_session] = override_session

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
