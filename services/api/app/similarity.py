"""
User-similarity builder.

Recomputes the complete user × user Jaccard relation from the subscriptions
table and swaps it into `user_similarity` in one transaction:

  1. Group every (user_id, creator_id) subscription row into a creator set
     per user. All rows count, expired or not: a lapsed subscription is
     still a taste signal.
  2. For each pair (a, b) with a < b and both sets non-empty:
         score = |A ∩ B| / |A ∪ B|
     Pairs with an empty side are never stored; the ranker reads
     "no row" as "no signal".
  3. DELETE the old relation and INSERT the new one inside a single
     transaction, so readers see either the previous complete relation or
     the new complete relation. A failure anywhere rolls back and leaves the
     previous relation untouched.

Writers are serialised twice: an in-process asyncio.Lock (scheduler vs admin
trigger in the same worker) and a named lock in the store when the dialect
has one (several API replicas).
"""
import asyncio
import logging
import time
from collections import defaultdict
from dataclasses import dataclass
from itertools import combinations
from typing import Iterable

from opentelemetry import trace
from sqlalchemy import delete, insert, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.database import AsyncSessionLocal
from app.models import Subscription, UserSimilarity
from app.telemetry import (
    SIMILARITY_PAIRS,
    SIMILARITY_REBUILD_SECONDS,
    SIMILARITY_REBUILD_TOTAL,
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

LOCK_NAME = "user_similarity_rebuild"
# pg_advisory_xact_lock takes a bigint key
PG_LOCK_KEY = 0x5EED_51A1

_rebuild_lock = asyncio.Lock()


class SimilarityRebuildError(Exception):
    """The rebuild could not run; the stored relation was not modified."""


@dataclass
class RebuildResult:
    users: int
    pairs: int
    duration_seconds: float


# ─────────────────────────── Pure computation ─────────────────────────────

def group_subscriptions(rows: Iterable[tuple[int, int]]) -> dict[int, set[int]]:
    """Collapse (user_id, creator_id) rows into {user_id: {creator_id, ...}}."""
    subscription_sets: dict[int, set[int]] = defaultdict(set)
    for user_id, creator_id in rows:
        subscription_sets[user_id].add(creator_id)
    return dict(subscription_sets)


def jaccard(a: set[int], b: set[int]) -> float:
    union = len(a | b)
    if union == 0:
        return 0.0
    return len(a & b) / union


def compute_similarity_pairs(
    subscription_sets: dict[int, set[int]],
) -> list[tuple[int, int, float]]:
    """
    Return (user1_id, user2_id, score) for every unordered pair of users that
    both have at least one subscription, with user1_id < user2_id.
    Output is ordered by (user1_id, user2_id).
    """
    user_ids = sorted(uid for uid, creators in subscription_sets.items() if creators)
    return [
        (a, b, jaccard(subscription_sets[a], subscription_sets[b]))
        for a, b in combinations(user_ids, 2)
    ]


# ─────────────────────────── Store helpers ────────────────────────────────

async def _acquire_store_lock(session: AsyncSession) -> str:
    """
    Take the dialect's named lock for the current transaction.
    Returns the dialect name so the caller knows whether to release.
    """
    conn = await session.connection()
    dialect = conn.dialect.name

    if dialect == "postgresql":
        # Released automatically at commit / rollback
        await session.execute(
            text("SELECT pg_advisory_xact_lock(:key)"), {"key": PG_LOCK_KEY}
        )
    elif dialect == "mysql":
        acquired = (
            await session.execute(
                text("SELECT GET_LOCK(:name, :timeout)"),
                {"name": LOCK_NAME, "timeout": settings.similarity_lock_timeout},
            )
        ).scalar()
        if acquired != 1:
            raise SimilarityRebuildError(
                f"Timed out waiting for store lock '{LOCK_NAME}'"
            )
    # SQLite serialises writers on the database file itself
    return dialect


async def _release_store_lock(session: AsyncSession, dialect: str) -> None:
    if dialect == "mysql":
        await session.execute(text("SELECT RELEASE_LOCK(:name)"), {"name": LOCK_NAME})


async def _load_subscription_sets(session: AsyncSession) -> dict[int, set[int]]:
    rows = await session.execute(select(Subscription.user_id, Subscription.creator_id))
    return group_subscriptions(rows.all())


async def _insert_pairs(
    session: AsyncSession, pairs: list[tuple[int, int, float]]
) -> None:
    if not pairs:
        return
    await session.execute(
        insert(UserSimilarity),
        [
            {"user1_id": a, "user2_id": b, "similarity_score": score}
            for a, b, score in pairs
        ],
    )


# ─────────────────────────── Rebuild ──────────────────────────────────────

async def rebuild_similarity(
    session_factory: async_sessionmaker = AsyncSessionLocal,
    trigger: str = "admin",
) -> RebuildResult:
    """
    Replace the whole similarity relation with a fresh computation.

    Every trigger (daily schedule, admin endpoint, ops script) goes through
    here. Errors propagate to the caller after the transaction is rolled back.
    """
    t0 = time.perf_counter()
    with tracer.start_as_current_span("similarity_rebuild") as span:
        span.set_attribute("rebuild.trigger", trigger)
        try:
            async with _rebuild_lock:
                result = await _rebuild(session_factory)
        except Exception:
            SIMILARITY_REBUILD_TOTAL.labels(trigger=trigger, status="error").inc()
            raise

        result.duration_seconds = round(time.perf_counter() - t0, 3)
        span.set_attribute("rebuild.users", result.users)
        span.set_attribute("rebuild.pairs", result.pairs)

    SIMILARITY_REBUILD_SECONDS.observe(result.duration_seconds)
    SIMILARITY_REBUILD_TOTAL.labels(trigger=trigger, status="ok").inc()
    SIMILARITY_PAIRS.set(result.pairs)
    logger.info(
        "Similarity relation rebuilt (trigger=%s): %d users, %d pairs in %.3fs",
        trigger, result.users, result.pairs, result.duration_seconds,
    )
    return result


async def _rebuild(session_factory: async_sessionmaker) -> RebuildResult:
    async with session_factory() as session:
        async with session.begin():
            dialect = await _acquire_store_lock(session)
            try:
                with tracer.start_as_current_span("similarity_compute"):
                    subscription_sets = await _load_subscription_sets(session)
                    active_users = sum(1 for s in subscription_sets.values() if s)
                    if active_users > settings.similarity_max_users:
                        raise SimilarityRebuildError(
                            f"{active_users} users exceed similarity_max_users="
                            f"{settings.similarity_max_users}; refusing O(n²) rebuild"
                        )
                    pairs = compute_similarity_pairs(subscription_sets)

                with tracer.start_as_current_span("similarity_swap"):
                    await session.execute(delete(UserSimilarity))
                    await _insert_pairs(session, pairs)
            finally:
                try:
                    await _release_store_lock(session, dialect)
                except SQLAlchemyError:
                    # MySQL drops GET_LOCK with the connection anyway
                    logger.exception("Failed to release store lock '%s'", LOCK_NAME)

    return RebuildResult(users=active_users, pairs=len(pairs), duration_seconds=0.0)
