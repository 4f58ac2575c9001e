"""
SQLAlchemy ORM models.

Tables:
  users            — account profiles
  creators         — creator profiles (one per user at most)
  posts            — creator content; free or paid
  subscriptions    — user × creator access grants with an expiry
  user_preferences — user → creator rating in [-5, 5]
  user_similarity  — derived Jaccard relation, rebuilt wholesale by the
                     similarity builder
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    display_name: Mapped[Optional[str]] = mapped_column(String(255))
    role: Mapped[str] = mapped_column(
        String(20), default="subscriber", nullable=False
    )  # 'subscriber' | 'creator'
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )


class Creator(Base):
    __tablename__ = "creators"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), unique=True, nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    bio: Mapped[Optional[str]] = mapped_column(Text)
    # Monthly subscription price
    price: Mapped[Optional[float]] = mapped_column(Float)
    category: Mapped[Optional[str]] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )

    posts = relationship("Post", back_populates="author", lazy="noload")


class Post(Base):
    __tablename__ = "posts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    creator_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("creators.id"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    content: Mapped[str] = mapped_column(Text, default="", nullable=False)
    is_paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    price: Mapped[Optional[float]] = mapped_column(Float)
    view_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )

    author = relationship("Creator", back_populates="posts", lazy="joined")

    __table_args__ = (
        Index("idx_posts_creator", "creator_id"),
        Index("idx_posts_created", "created_at"),
        # Popularity fallback scans free posts by view count
        Index("idx_posts_free_views", "is_paid", "view_count"),
    )


class Subscription(Base):
    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=False
    )
    creator_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("creators.id"), nullable=False
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("idx_subscriptions_user", "user_id", "creator_id"),
    )


class UserPreference(Base):
    __tablename__ = "user_preferences"

    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), primary_key=True
    )
    creator_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("creators.id"), primary_key=True
    )
    preference_score: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            "preference_score BETWEEN -5 AND 5", name="ck_preference_score_range"
        ),
        Index("idx_preferences_creator", "creator_id"),
    )


class UserSimilarity(Base):
    __tablename__ = "user_similarity"

    # Canonical ordering: user1_id < user2_id, one row per unordered pair
    user1_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user2_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    similarity_score: Mapped[float] = mapped_column(Float, nullable=False)
    computed_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        CheckConstraint("user1_id < user2_id", name="ck_similarity_canonical_order"),
        CheckConstraint(
            "similarity_score >= 0 AND similarity_score <= 1",
            name="ck_similarity_score_range",
        ),
        # Neighbor lookup hits both columns
        Index("idx_similarity_user2", "user2_id"),
    )
