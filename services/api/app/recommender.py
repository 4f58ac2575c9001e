"""
Recommendation ranker — turns the user-similarity relation into a ranked
list of free posts for one user.

  Step 1 │ Neighbors
  ───────┼────────────────────────────────────────────────────────────────
         │  Up to NEIGHBOR_LIMIT rows of user_similarity involving the user
         │  with a score above 0, score desc, neighbor id asc. A 0.0 row
         │  carries no signal and counts the same as no row.

  Step 2 │ Popular fallback (no neighbors)
  ───────┼────────────────────────────────────────────────────────────────
         │  Most-viewed free posts platform-wide:
         │  view_count desc, created_at desc, id desc.

  Step 3 │ Personalized
  ───────┼────────────────────────────────────────────────────────────────
         │  Free posts by creators that at least one neighbor rated > 0,
         │  minus creators the user already holds an active subscription to.
         │  rank_score = mean positive rating across those neighbors;
         │  order: rank_score desc, created_at desc, id desc.

Read-only: never blocks on, or writes to, the similarity builder's table.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from opentelemetry import trace
from sqlalchemy import case, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import Post, Subscription, UserPreference, UserSimilarity

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

NEIGHBOR_LIMIT = 5

SOURCE_PERSONALIZED = "personalized"
SOURCE_POPULAR = "popular"


@dataclass
class RecommendationCandidate:
    post: Post
    rank_score: float


@dataclass
class Recommendations:
    source: str
    neighbors: list[tuple[int, float]] = field(default_factory=list)
    candidates: list[RecommendationCandidate] = field(default_factory=list)


def _utcnow() -> datetime:
    # Columns are naive DateTime holding UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


async def get_neighbors(
    db: AsyncSession, user_id: int, limit: int = NEIGHBOR_LIMIT
) -> list[tuple[int, float]]:
    """Return [(neighbor_id, score)] for the user's closest neighbors."""
    neighbor_id = case(
        (UserSimilarity.user1_id == user_id, UserSimilarity.user2_id),
        else_=UserSimilarity.user1_id,
    ).label("neighbor_id")

    rows = await db.execute(
        select(neighbor_id, UserSimilarity.similarity_score)
        .where(
            or_(UserSimilarity.user1_id == user_id, UserSimilarity.user2_id == user_id),
            UserSimilarity.similarity_score > 0,
        )
        .order_by(UserSimilarity.similarity_score.desc(), neighbor_id.asc())
        .limit(limit)
    )
    return [(nid, score) for nid, score in rows.all()]


async def get_popular_posts(
    db: AsyncSession, limit: int
) -> list[RecommendationCandidate]:
    rows = await db.execute(
        select(Post)
        .where(Post.is_paid.is_(False))
        .order_by(Post.view_count.desc(), Post.created_at.desc(), Post.id.desc())
        .limit(limit)
    )
    return [
        RecommendationCandidate(post=post, rank_score=float(post.view_count))
        for post in rows.scalars().all()
    ]


async def get_personalized_posts(
    db: AsyncSession,
    user_id: int,
    neighbor_ids: list[int],
    limit: int,
) -> list[RecommendationCandidate]:
    subscribed_creators = select(Subscription.creator_id).where(
        Subscription.user_id == user_id,
        Subscription.expires_at > _utcnow(),
    )

    creator_scores = (
        select(
            UserPreference.creator_id.label("creator_id"),
            func.avg(UserPreference.preference_score).label("avg_score"),
        )
        .where(
            UserPreference.user_id.in_(neighbor_ids),
            UserPreference.preference_score > 0,
            UserPreference.creator_id.not_in(subscribed_creators),
        )
        .group_by(UserPreference.creator_id)
        .subquery()
    )

    rows = await db.execute(
        select(Post, creator_scores.c.avg_score)
        .join(creator_scores, Post.creator_id == creator_scores.c.creator_id)
        .where(Post.is_paid.is_(False))
        .order_by(
            creator_scores.c.avg_score.desc(),
            Post.created_at.desc(),
            Post.id.desc(),
        )
        .limit(limit)
    )
    return [
        RecommendationCandidate(post=post, rank_score=round(float(avg_score), 4))
        for post, avg_score in rows.all()
    ]


async def get_recommendations(
    db: AsyncSession, user_id: int, limit: int = 10
) -> Recommendations:
    """Rank up to `limit` free posts for `user_id`. Never raises on empty data."""
    with tracer.start_as_current_span("get_recommendations") as span:
        span.set_attribute("user.id", user_id)
        span.set_attribute("recommendations.limit", limit)

        with tracer.start_as_current_span("neighbor_lookup"):
            neighbors = await get_neighbors(db, user_id)
        span.set_attribute("recommendations.neighbors", len(neighbors))

        if not neighbors:
            with tracer.start_as_current_span("popular_fallback"):
                candidates = await get_popular_posts(db, limit)
            logger.debug(
                "User %s has no neighbors — serving %d popular posts",
                user_id, len(candidates),
            )
            return Recommendations(source=SOURCE_POPULAR, candidates=candidates)

        with tracer.start_as_current_span("personalized_ranking"):
            candidates = await get_personalized_posts(
                db, user_id, [nid for nid, _ in neighbors], limit
            )
        logger.debug(
            "User %s: %d neighbors → %d personalized posts",
            user_id, len(neighbors), len(candidates),
        )
        return Recommendations(
            source=SOURCE_PERSONALIZED, neighbors=neighbors, candidates=candidates
        )
