import asyncio

import pytest

import database
from conftest import credentials, make_config
from database.errors import NotAuthenticated
from database.models import ScoreRecord
from services.learner_client import LearnerClient
from services.progress_service import ACHIEVEMENTS, PRACTICE_LEVELS, ProgressService


async def _signed_in(store, name):
    client = LearnerClient(store)
    await client.create_user(credentials(name))
    return client


def test_learner_client_requires_a_session(store):
    async def scenario():
        client = LearnerClient(store)
        assert await client.get_user_data() is None
        with pytest.raises(NotAuthenticated):
            await client.save_progress(1, 10, 10)
        await client.sign_out()

    asyncio.run(scenario())


def test_learner_clients_are_independent(store):
    async def scenario():
        ana = await _signed_in(store, "ana")
        ben = await _signed_in(store, "ben")
        await ana.save_progress(1, 80, 0)
        assert await ana.get_progress(1) == 56
        assert await ben.get_progress(1) == 0

        await ana.sign_out()
        assert ana.is_signed_in is False
        with pytest.raises(NotAuthenticated):
            await ana.get_progress(1)
        assert await ben.get_streak() == 0

        assert await ana.login_user("ana", "wrong-pass") is False
        assert await ana.login_user("ana", "ana-pass") is True
        assert await ana.get_progress(1) == 56

    asyncio.run(scenario())


def test_content_and_activities_saves_keep_the_other_share(store):
    async def scenario():
        client = await _signed_in(store, "cy")
        service = ProgressService(client)
        await service.save_content_progress(1, 80)
        await service.save_activities_progress(1, 60)
        detail = await client.get_progress_detail(1)
        assert (detail.content, detail.activities) == (80, 60)
        await service.save_content_progress(1, 50)
        detail = await client.get_progress_detail(1)
        assert (detail.content, detail.activities) == (80, 60)

    asyncio.run(scenario())


def test_concurrent_lesson_and_practice_saves_both_land(store):
    async def scenario():
        client = await _signed_in(store, "dot")
        service = ProgressService(client)
        await asyncio.gather(*(
            save
            for topic in range(1, 11)
            for save in (service.save_practice_level(topic, "medium"), service.save_content_progress(topic, 80))
        ))
        detail = await client.get_progress_detail()
        assert {(d.content, d.activities) for d in detail.values()} == {(80, PRACTICE_LEVELS["medium"])}
        assert len(detail) == 10

    asyncio.run(scenario())


def test_practice_levels(store):
    async def scenario():
        client = await _signed_in(store, "dee")
        service = ProgressService(client)
        assert await service.save_practice_level(2, "Hard") == 100
        assert await service.save_practice_level(2, "easy") == 33
        detail = await client.get_progress_detail(2)
        assert detail.activities == PRACTICE_LEVELS["easy"]
        with pytest.raises(ValueError):
            await service.save_practice_level(2, "extreme")

    asyncio.run(scenario())


def test_reset_topic_progress(store):
    async def scenario():
        client = await _signed_in(store, "eve")
        service = ProgressService(client)
        await client.save_progress(1, 90, 90)
        await client.save_progress(2, 40, 40)
        await service.reset_topic_progress(1)
        assert await client.get_progress() == {2: 40}
        await service.reset_topic_progress()
        assert await client.get_progress() == {}

    asyncio.run(scenario())


def test_record_activity_awards_streak_milestones(store):
    async def scenario():
        client = await _signed_in(store, "fay")
        service = ProgressService(client)
        streak = 0
        for day in range(1, 10):
            streak = await service.record_activity(f"2026-05-{day:02d}T09:00:00")
        assert streak == 8
        ids = {a.id for a in await client.get_achievements()}
        assert ids == {"streak_7"}

    asyncio.run(scenario())


def test_perfect_quiz_unlocks_perfect_score(store):
    async def scenario():
        client = await _signed_in(store, "gil")
        service = ProgressService(client)
        assert await service.award_for_score(ScoreRecord(1, 9, 10, True)) == []
        saved = await service.record_quiz(ScoreRecord(1, 10, 10, True))
        assert saved.id
        assert [a.id for a in await client.get_achievements()] == ["perfect_score"]

    asyncio.run(scenario())


def test_catalog_ids():
    assert {"streak_7", "streak_30", "consistency_king", "perfect_score"} <= set(ACHIEVEMENTS)
    assert ACHIEVEMENTS["streak_30"].points == 150


def test_create_store_selects_the_backend(tmp_path):
    embedded = database.create_store(make_config(tmp_path, store_backend="embedded"))
    assert embedded.backend_name == "embedded"
    with pytest.raises(ValueError):
        database.create_store(make_config(tmp_path, store_backend="cloud"))
