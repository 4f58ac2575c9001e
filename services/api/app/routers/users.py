"""
User and creator profile endpoints:
  POST /users               — register a user profile
  GET  /users/{id}          — fetch a user profile
  POST /creators            — open a creator profile for the caller
  GET  /creators            — list creators
  GET  /creators/{id}       — creator profile + free posts, newest first
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from opentelemetry import trace
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_current_user_id
from app.models import Creator, Post, User
from app.schemas import (
    CreatorCreate,
    CreatorDetailResponse,
    CreatorResponse,
    UserCreate,
    UserResponse,
)
from app.routers.posts import build_post_response

logger = logging.getLogger(__name__)
router = APIRouter()
creators_router = APIRouter()
tracer = trace.get_tracer(__name__)


@router.post("/", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(body: UserCreate, db: AsyncSession = Depends(get_db)):
    with tracer.start_as_current_span("create_user"):
        existing = await db.execute(
            select(User).where(User.username == body.username)
        )
        if existing.scalar_one_or_none():
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Username '{body.username}' already taken",
            )

        user = User(
            username=body.username,
            display_name=body.display_name,
            role=body.role,
        )
        db.add(user)
        await db.flush()     # materialise id
        await db.refresh(user)

        logger.info("Created user %s (id=%s)", user.username, user.id)
        return user


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(user_id: int, db: AsyncSession = Depends(get_db)):
    user = await db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@creators_router.post(
    "/", response_model=CreatorResponse, status_code=status.HTTP_201_CREATED
)
async def create_creator(
    body: CreatorCreate,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Turn the calling user into a creator. One creator profile per user."""
    with tracer.start_as_current_span("create_creator"):
        user = await db.get(User, user_id)
        if not user:
            raise HTTPException(status_code=404, detail="User not found")

        existing = await db.execute(select(Creator).where(Creator.user_id == user_id))
        if existing.scalar_one_or_none():
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="User already has a creator profile",
            )

        creator = Creator(
            user_id=user_id,
            name=body.name,
            bio=body.bio,
            price=body.price,
            category=body.category,
        )
        user.role = "creator"
        db.add(creator)
        await db.flush()

        logger.info("User %s opened creator profile %s", user_id, creator.id)
        return creator


@creators_router.get("/", response_model=list[CreatorResponse])
async def list_creators(db: AsyncSession = Depends(get_db)):
    rows = await db.execute(select(Creator).order_by(Creator.id))
    return rows.scalars().all()


@creators_router.get("/{creator_id}", response_model=CreatorDetailResponse)
async def get_creator(creator_id: int, db: AsyncSession = Depends(get_db)):
    creator = await db.get(Creator, creator_id)
    if not creator:
        raise HTTPException(status_code=404, detail="Creator not found")

    rows = await db.execute(
        select(Post)
        .where(Post.creator_id == creator_id, Post.is_paid.is_(False))
        .order_by(Post.created_at.desc(), Post.id.desc())
    )
    return CreatorDetailResponse(
        id=creator.id,
        user_id=creator.user_id,
        name=creator.name,
        bio=creator.bio,
        price=creator.price,
        category=creator.category,
        free_posts=[build_post_response(p) for p in rows.scalars().all()],
    )
