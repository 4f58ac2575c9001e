"""
Recommendation endpoints:
  GET  /recommendations    — ranked free posts for the calling user
  POST /update-similarity  — rebuild the user-similarity relation now
                             (X-Update-Secret required)

The daily scheduler calls the same rebuild_similarity() as the admin route.
"""
import logging
import time

from fastapi import APIRouter, Depends, Query
from opentelemetry import trace
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.dependencies import get_current_user_id, require_update_secret
from app.recommender import get_recommendations
from app.schemas import RebuildStatus, RecommendationResponse, RecommendedPost
from app.similarity import rebuild_similarity
from app.telemetry import RECOMMENDATION_LATENCY, RECOMMENDATION_REQUESTS_TOTAL

logger = logging.getLogger(__name__)
router = APIRouter()
admin_router = APIRouter()
tracer = trace.get_tracer(__name__)


@router.get("/", response_model=RecommendationResponse)
async def recommendations(
    limit: int = Query(
        settings.recommendation_default_limit,
        ge=1,
        le=settings.recommendation_max_limit,
    ),
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    start_time = time.time()

    result = await get_recommendations(db, user_id, limit)

    posts = [
        RecommendedPost(
            id=c.post.id,
            title=c.post.title,
            content=c.post.content,
            creator_id=c.post.creator_id,
            creator_name=c.post.author.name if c.post.author else None,
            view_count=c.post.view_count,
            created_at=c.post.created_at,
            rank_score=c.rank_score,
        )
        for c in result.candidates
    ]

    latency_ms = (time.time() - start_time) * 1000
    RECOMMENDATION_LATENCY.observe(latency_ms / 1000)
    RECOMMENDATION_REQUESTS_TOTAL.labels(source=result.source).inc()

    return RecommendationResponse(
        user_id=user_id,
        source=result.source,
        neighbors=len(result.neighbors),
        posts=posts,
        latency_ms=round(latency_ms, 2),
    )


@admin_router.post(
    "/update-similarity",
    response_model=RebuildStatus,
    dependencies=[Depends(require_update_secret)],
)
async def update_similarity():
    logger.info("Similarity rebuild requested via admin endpoint")
    await rebuild_similarity(trigger="admin")
    return RebuildStatus(status="ok")
