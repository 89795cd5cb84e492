import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from nowplaying.models import MediaInteraction, PlaybackState
from nowplaying.services.catalog import ContentCounters
from nowplaying.services.crediting import should_credit

USER = "user-1"


def store_error():
    return OperationalError("UPDATE media", {}, Exception("database is locked"))


class TestShouldCredit:
    def test_below_threshold_and_early(self):
        assert not should_credit(29, 40, 600, 30, 0.9)

    def test_threshold_reached(self):
        assert should_credit(30, 40, 600, 30, 0.9)

    def test_short_clip_near_end(self):
        assert should_credit(14, 14, 15, 30, 0.9)

    def test_zero_duration_needs_threshold(self):
        assert not should_credit(10, 10, 0, 30, 0.9)

    def test_custom_threshold(self):
        assert should_credit(10, 10, 600, 10, 0.9)


@pytest.fixture
async def ended_session(manager, add_media, clock):
    """An ended 60s-watched video session that has not been credited yet."""
    await add_media("m1")
    started = await manager.start(USER, "m1", 600)
    clock.advance(60)
    await manager.progress(started.session.id, 60, 600)

    async def no_credit(session_id):
        return False

    manager.crediting.credit = no_credit
    await manager.end(started.session.id, "stopped")
    del manager.crediting.credit
    return started.session.id


class TestCreditingEngine:
    async def test_credits_exactly_once(self, manager, ended_session, load):
        assert await manager.crediting.credit(ended_session) is True
        assert await manager.crediting.credit(ended_session) is True

        assert (await load.media("m1")).view_count == 1
        assert (await load.session(ended_session)).view_credited is True

    async def test_records_interaction(self, manager, ended_session, session_factory, clock):
        await manager.crediting.credit(ended_session)

        async with session_factory() as db:
            result = await db.execute(select(MediaInteraction))
            interaction = result.scalar_one()

        assert interaction.user_id == USER
        assert interaction.interaction_type == "view"
        assert interaction.count == 1
        assert interaction.last_watch_time == pytest.approx(60)
        assert interaction.last_completed is False
        assert interaction.last_interaction == clock.now

    async def test_open_session_not_credited(self, manager, add_media, clock, load):
        await add_media("m2")
        started = await manager.start(USER, "m2", 600)
        clock.advance(60)
        await manager.progress(started.session.id, 60, 600)

        assert await manager.crediting.credit(started.session.id) is False
        assert (await load.media("m2")).view_count == 0

    async def test_unknown_session(self, manager):
        assert await manager.crediting.credit("missing") is False

    async def test_retries_transient_failure(self, manager, ended_session, load, sleeps, monkeypatch):
        original = ContentCounters.increment_view_count
        calls = []

        async def flaky(self, media_id):
            calls.append(media_id)
            if len(calls) == 1:
                raise store_error()
            return await original(self, media_id)

        monkeypatch.setattr(ContentCounters, "increment_view_count", flaky)

        assert await manager.crediting.credit(ended_session) is True
        assert len(calls) == 2
        assert sleeps.delays == [0.5]
        assert (await load.media("m1")).view_count == 1

    async def test_gives_up_without_raising(self, manager, ended_session, load, sleeps, monkeypatch):
        async def broken(self, media_id):
            raise store_error()

        monkeypatch.setattr(ContentCounters, "increment_view_count", broken)

        assert await manager.crediting.credit(ended_session) is False
        assert sleeps.delays == [0.5, 1.0]

        session = await load.session(ended_session)
        assert session.view_credited is False
        assert session.state == PlaybackState.ENDED
        assert (await load.media("m1")).view_count == 0


class TestEndWithFailingCounters:
    async def test_end_still_finalizes_and_saves_progress(
        self, manager, add_media, clock, load, monkeypatch
    ):
        async def broken(self, media_id):
            raise store_error()

        monkeypatch.setattr(ContentCounters, "increment_view_count", broken)
        await add_media("m1")
        started = await manager.start(USER, "m1", 600)
        clock.advance(100)
        await manager.progress(started.session.id, 100, 600)

        result = await manager.end(started.session.id, "stopped")

        assert result.view_credited is False
        assert result.session.state == PlaybackState.ENDED
        assert (await load.library(USER, "m1")).last_position == 100
