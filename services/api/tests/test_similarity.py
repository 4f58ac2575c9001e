import asyncio
import random
from itertools import combinations

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from app import similarity
from app.database import AsyncSessionLocal
from app.models import Subscription, UserSimilarity
from app.similarity import (
    SimilarityRebuildError,
    compute_similarity_pairs,
    group_subscriptions,
    jaccard,
    rebuild_similarity,
)

from conftest import utcnow


async def _subscribe_all(session, rows):
    for user_id, creator_id in rows:
        session.add(
            Subscription(user_id=user_id, creator_id=creator_id, expires_at=utcnow())
        )
    await session.commit()


async def _relation() -> dict[tuple[int, int], float]:
    async with AsyncSessionLocal() as s:
        rows = await s.execute(
            select(
                UserSimilarity.user1_id,
                UserSimilarity.user2_id,
                UserSimilarity.similarity_score,
            )
        )
        return {(a, b): score for a, b, score in rows.all()}


SCENARIO = [(1, 1), (1, 2), (2, 2), (2, 3), (3, 1), (3, 2), (3, 3)]


# ─────────────────────────── Pure computation ─────────────────────────────

def test_group_subscriptions_collapses_duplicates():
    sets = group_subscriptions([(1, 10), (1, 10), (1, 11), (2, 10)])
    assert sets == {1: {10, 11}, 2: {10}}


def test_jaccard():
    assert jaccard({1, 2}, {2, 3}) == pytest.approx(1 / 3)
    assert jaccard({1, 2}, {1, 2}) == 1.0
    assert jaccard({1}, {2}) == 0.0
    assert jaccard(set(), set()) == 0.0


def test_concrete_scenario():
    pairs = compute_similarity_pairs(group_subscriptions(SCENARIO))
    scores = {(a, b): s for a, b, s in pairs}

    assert scores == {
        (1, 2): pytest.approx(1 / 3),
        (1, 3): pytest.approx(2 / 3),
        (2, 3): pytest.approx(2 / 3),
    }


def test_users_with_empty_sets_are_skipped():
    pairs = compute_similarity_pairs({1: {5}, 2: set(), 3: {5, 6}})
    assert [(a, b) for a, b, _ in pairs] == [(1, 3)]


def test_disjoint_sets_are_stored_with_zero():
    pairs = compute_similarity_pairs({1: {5}, 2: {6}})
    assert pairs == [(1, 2, 0.0)]


def test_pairs_are_canonical_complete_and_bounded():
    rng = random.Random(7)
    sets = {
        uid: set(rng.sample(range(20), k=rng.randint(1, 6)))
        for uid in rng.sample(range(1, 200), k=25)
    }

    pairs = compute_similarity_pairs(sets)

    keys = [(a, b) for a, b, _ in pairs]
    assert all(a < b for a, b in keys)
    assert len(keys) == len(set(keys))
    assert set(keys) == set(combinations(sorted(sets), 2))
    for a, b, score in pairs:
        assert 0.0 <= score <= 1.0
        assert score == len(sets[a] & sets[b]) / len(sets[a] | sets[b])


# ─────────────────────────── Rebuild against the store ────────────────────

async def test_rebuild_persists_relation(session):
    await _subscribe_all(session, SCENARIO)

    result = await rebuild_similarity()

    assert result.users == 3
    assert result.pairs == 3
    relation = await _relation()
    assert relation[(1, 2)] == pytest.approx(1 / 3)
    assert relation[(1, 3)] == pytest.approx(2 / 3)
    assert relation[(2, 3)] == pytest.approx(2 / 3)


async def test_rebuild_includes_expired_subscriptions(session):
    # Every row counts, regardless of expiry
    await _subscribe_all(session, [(1, 1), (2, 1)])

    await rebuild_similarity()

    assert await _relation() == {(1, 2): 1.0}


async def test_rebuild_is_idempotent(session):
    await _subscribe_all(session, SCENARIO)

    await rebuild_similarity()
    first = await _relation()
    await rebuild_similarity()

    assert await _relation() == first


async def test_rebuild_replaces_previous_relation(session):
    await _subscribe_all(session, SCENARIO)
    await rebuild_similarity()

    await _subscribe_all(session, [(4, 1)])
    await rebuild_similarity()

    relation = await _relation()
    assert len(relation) == 6
    assert relation[(1, 4)] == pytest.approx(1 / 2)


async def test_rebuild_on_empty_store():
    result = await rebuild_similarity()

    assert result.pairs == 0
    assert await _relation() == {}


async def test_failed_rebuild_keeps_previous_relation(session, monkeypatch):
    await _subscribe_all(session, SCENARIO)
    await rebuild_similarity()
    before = await _relation()

    await _subscribe_all(session, [(4, 1), (5, 2)])

    async def insert_then_fail(s, pairs):
        # Old rows are already deleted at this point; write part of the new set
        await s.execute(
            UserSimilarity.__table__.insert(),
            [{"user1_id": a, "user2_id": b, "similarity_score": sc} for a, b, sc in pairs[:2]],
        )
        raise RuntimeError("connection lost")

    monkeypatch.setattr(similarity, "_insert_pairs", insert_then_fail)

    with pytest.raises(RuntimeError):
        await rebuild_similarity()

    assert await _relation() == before


async def test_rebuild_refuses_above_user_cap(session, monkeypatch):
    await _subscribe_all(session, SCENARIO)
    await rebuild_similarity()
    before = await _relation()

    monkeypatch.setattr(similarity.settings, "similarity_max_users", 2)

    with pytest.raises(SimilarityRebuildError):
        await rebuild_similarity()

    assert await _relation() == before


async def test_release_failure_does_not_mask_rebuild_error(session, monkeypatch, caplog):
    await _subscribe_all(session, SCENARIO)

    async def acquire(s):
        return "mysql"

    async def release(s, dialect):
        raise OperationalError("SELECT RELEASE_LOCK(?)", {}, Exception("gone away"))

    async def insert_fails(s, pairs):
        raise RuntimeError("insert failed")

    monkeypatch.setattr(similarity, "_acquire_store_lock", acquire)
    monkeypatch.setattr(similarity, "_release_store_lock", release)
    monkeypatch.setattr(similarity, "_insert_pairs", insert_fails)

    with pytest.raises(RuntimeError, match="insert failed"):
        await rebuild_similarity()

    assert "Failed to release store lock" in caplog.text


# ─────────────────────────── Single writer ────────────────────────────────

async def test_overlapping_rebuilds_run_one_at_a_time(session, monkeypatch):
    await _subscribe_all(session, SCENARIO)
    real_insert = similarity._insert_pairs
    active = 0
    peak = 0

    async def tracked_insert(s, pairs):
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.01)
        await real_insert(s, pairs)
        active -= 1

    monkeypatch.setattr(similarity, "_insert_pairs", tracked_insert)

    results = await asyncio.gather(
        rebuild_similarity(trigger="schedule"),
        *(rebuild_similarity(trigger="admin") for _ in range(3)),
    )

    assert peak == 1
    assert [r.pairs for r in results] == [3, 3, 3, 3]
    relation = await _relation()
    assert relation == {
        (1, 2): pytest.approx(1 / 3),
        (1, 3): pytest.approx(2 / 3),
        (2, 3): pytest.approx(2 / 3),
    }


async def test_readers_see_previous_relation_during_rebuild(session, monkeypatch):
    await _subscribe_all(session, SCENARIO)
    await rebuild_similarity()
    before = await _relation()
    await _subscribe_all(session, [(4, 1)])

    real_insert = similarity._insert_pairs
    inserted = asyncio.Event()
    resume = asyncio.Event()

    async def paused_insert(s, pairs):
        await real_insert(s, pairs)
        inserted.set()
        await resume.wait()

    monkeypatch.setattr(similarity, "_insert_pairs", paused_insert)

    rebuild = asyncio.create_task(rebuild_similarity())
    await asyncio.wait_for(inserted.wait(), timeout=5)
    during = await _relation()
    resume.set()
    await rebuild

    assert during == before
    relation = await _relation()
    assert len(relation) == 6
    assert relation[(1, 4)] == pytest.approx(1 / 2)
