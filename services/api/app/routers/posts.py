"""
Post endpoints:
  POST /posts       — publish a post (caller must own a creator profile)
  GET  /posts/feed  — free posts, newest first, paginated
  GET  /posts/{id}  — fetch a single post; paid posts need an active
                      subscription. Each successful read bumps view_count,
                      which feeds the popularity fallback of the ranker.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from opentelemetry import trace
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.dependencies import get_current_user_id, get_optional_user_id
from app.models import Creator, Post, Subscription
from app.schemas import PostCreate, PostResponse

logger = logging.getLogger(__name__)
router = APIRouter()
tracer = trace.get_tracer(__name__)


def build_post_response(post: Post) -> PostResponse:
    return PostResponse(
        id=post.id,
        creator_id=post.creator_id,
        creator_name=post.author.name if post.author else None,
        title=post.title,
        content=post.content,
        is_paid=post.is_paid,
        price=post.price,
        view_count=post.view_count,
        created_at=post.created_at,
    )


async def has_active_subscription(
    db: AsyncSession, user_id: int, creator_id: int
) -> bool:
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    row = await db.execute(
        select(Subscription.id)
        .where(
            Subscription.user_id == user_id,
            Subscription.creator_id == creator_id,
            Subscription.expires_at > now,
        )
        .limit(1)
    )
    return row.scalar_one_or_none() is not None


@router.post("/", response_model=PostResponse, status_code=status.HTTP_201_CREATED)
async def create_post(
    body: PostCreate,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    with tracer.start_as_current_span("create_post") as span:
        creator = (
            await db.execute(select(Creator).where(Creator.user_id == user_id))
        ).scalar_one_or_none()
        if not creator:
            raise HTTPException(status_code=403, detail="Not a creator")

        post = Post(
            creator_id=creator.id,
            title=body.title,
            content=body.content,
            is_paid=body.is_paid,
            price=body.price if body.is_paid else None,
        )
        db.add(post)
        await db.flush()        # materialise id
        await db.refresh(post)  # load server-generated fields (created_at)
        post.author = creator

        span.set_attribute("post.id", post.id)
        span.set_attribute("post.creator_id", creator.id)
        logger.info("Post created: %s by creator %s", post.id, creator.id)
        return build_post_response(post)


@router.get("/feed", response_model=list[PostResponse])
async def get_feed(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.feed_page_size, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    rows = await db.execute(
        select(Post)
        .where(Post.is_paid.is_(False))
        .order_by(Post.created_at.desc(), Post.id.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    )
    return [build_post_response(p) for p in rows.scalars().all()]


@router.get("/{post_id}", response_model=PostResponse)
async def get_post(
    post_id: int,
    user_id: Optional[int] = Depends(get_optional_user_id),
    db: AsyncSession = Depends(get_db),
):
    post = await db.get(Post, post_id)
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")

    # Paid content is indistinguishable from a missing post without access
    if post.is_paid:
        if user_id is None or not await has_active_subscription(
            db, user_id, post.creator_id
        ):
            raise HTTPException(status_code=404, detail="Post not found")

    await db.execute(
        update(Post)
        .where(Post.id == post_id)
        .values(view_count=Post.view_count + 1)
    )
    await db.refresh(post)
    return build_post_response(post)
