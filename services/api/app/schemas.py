"""
Pydantic request / response schemas for the API layer.
Kept separate from ORM models to avoid coupling transport to storage.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


# ──────────────────────────── Users ───────────────────────────────────────

class UserCreate(BaseModel):
    username: str = Field(..., min_length=3, max_length=100)
    display_name: Optional[str] = None
    role: str = Field("subscriber", pattern="^(subscriber|creator)$")


class UserResponse(BaseModel):
    id: int
    username: str
    display_name: Optional[str]
    role: str
    created_at: datetime

    class Config:
        from_attributes = True


# ──────────────────────────── Creators ────────────────────────────────────

class CreatorCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    bio: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    category: Optional[str] = None


class CreatorResponse(BaseModel):
    id: int
    user_id: int
    name: str
    bio: Optional[str]
    price: Optional[float]
    category: Optional[str]

    class Config:
        from_attributes = True


# ──────────────────────────── Posts ───────────────────────────────────────

class PostCreate(BaseModel):
    title: str = Field("", max_length=255)
    content: str = ""
    is_paid: bool = False
    price: Optional[float] = Field(None, ge=0)


class PostResponse(BaseModel):
    id: int
    creator_id: int
    creator_name: Optional[str] = None
    title: str
    content: str
    is_paid: bool
    price: Optional[float]
    view_count: int
    created_at: datetime

    class Config:
        from_attributes = True


class CreatorDetailResponse(CreatorResponse):
    free_posts: list[PostResponse] = []


# ──────────────────────────── Subscriptions ───────────────────────────────

class SubscriptionCreate(BaseModel):
    creator_id: int
    months: int = Field(1, ge=1, le=12)


class SubscriptionResponse(BaseModel):
    id: int
    user_id: int
    creator_id: int
    expires_at: datetime

    class Config:
        from_attributes = True


# ──────────────────────────── Preferences ─────────────────────────────────

class PreferenceUpdate(BaseModel):
    score: int = Field(..., ge=-5, le=5)


class PreferenceResponse(BaseModel):
    user_id: int
    creator_id: int
    preference_score: int

    class Config:
        from_attributes = True


# ──────────────────────────── Recommendations ─────────────────────────────

class RecommendedPost(BaseModel):
    """A ranked post returned by GET /recommendations."""
    id: int
    title: str
    content: str
    creator_id: int
    creator_name: Optional[str]
    view_count: int
    created_at: datetime
    # Ranking signal: mean neighbor rating ('personalized') or views ('popular')
    rank_score: float


class RecommendationResponse(BaseModel):
    user_id: int
    source: str   # 'personalized' | 'popular'
    neighbors: int
    posts: list[RecommendedPost]
    latency_ms: float


class RebuildStatus(BaseModel):
    status: str
