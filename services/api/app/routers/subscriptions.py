"""
Subscription and rating endpoints:
  POST /subscriptions                 — grant the caller access to a creator
  GET  /subscriptions/me              — the caller's subscriptions
  PUT  /preferences/{creator_id}      — rate a creator in [-5, 5]

Subscriptions normally arrive from the payment webhook once a charge
succeeds; POST /subscriptions is the same write without the payment step.
Both tables are inputs of the recommendation engine: subscriptions feed the
similarity builder, preferences weight the ranker's candidates.
"""
import logging
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException, status
from opentelemetry import trace
from sqlalchemy import func, select
from sqlalchemy.dialects.mysql import insert as mysql_insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_current_user_id
from app.models import Creator, Subscription, User, UserPreference
from app.schemas import (
    PreferenceResponse,
    PreferenceUpdate,
    SubscriptionCreate,
    SubscriptionResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter()
preferences_router = APIRouter()
tracer = trace.get_tracer(__name__)

SUBSCRIPTION_PERIOD_DAYS = 30


def _preference_upsert(dialect: str, user_id: int, creator_id: int, score: int):
    """INSERT .. ON CONFLICT DO UPDATE in the store's dialect."""
    values = {"user_id": user_id, "creator_id": creator_id, "preference_score": score}
    if dialect == "mysql":
        stmt = mysql_insert(UserPreference).values(**values)
        return stmt.on_duplicate_key_update(
            preference_score=stmt.inserted.preference_score,
            updated_at=func.now(),
        )

    insert_ = pg_insert if dialect == "postgresql" else sqlite_insert
    stmt = insert_(UserPreference).values(**values)
    return stmt.on_conflict_do_update(
        index_elements=[UserPreference.user_id, UserPreference.creator_id],
        set_={"preference_score": stmt.excluded.preference_score, "updated_at": func.now()},
    )


@router.post(
    "/", response_model=SubscriptionResponse, status_code=status.HTTP_201_CREATED
)
async def create_subscription(
    body: SubscriptionCreate,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    with tracer.start_as_current_span("create_subscription") as span:
        if not await db.get(User, user_id):
            raise HTTPException(status_code=404, detail="User not found")
        if not await db.get(Creator, body.creator_id):
            raise HTTPException(status_code=404, detail="Creator not found")

        now = datetime.now(timezone.utc).replace(tzinfo=None)
        subscription = Subscription(
            user_id=user_id,
            creator_id=body.creator_id,
            expires_at=now + timedelta(days=SUBSCRIPTION_PERIOD_DAYS * body.months),
        )
        db.add(subscription)
        await db.flush()

        span.set_attribute("subscription.creator_id", body.creator_id)
        logger.info(
            "User %s subscribed to creator %s until %s",
            user_id, body.creator_id, subscription.expires_at,
        )
        return subscription


@router.get("/me", response_model=list[SubscriptionResponse])
async def list_my_subscriptions(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    rows = await db.execute(
        select(Subscription)
        .where(Subscription.user_id == user_id)
        .order_by(Subscription.expires_at.desc())
    )
    return rows.scalars().all()


@preferences_router.put("/{creator_id}", response_model=PreferenceResponse)
async def set_preference(
    creator_id: int,
    body: PreferenceUpdate,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Upsert the caller's rating of a creator. Last write wins."""
    with tracer.start_as_current_span("set_preference"):
        if not await db.get(Creator, creator_id):
            raise HTTPException(status_code=404, detail="Creator not found")

        dialect = (await db.connection()).dialect.name
        await db.execute(
            _preference_upsert(dialect, user_id, creator_id, body.score)
        )
        return await db.get(
            UserPreference, (user_id, creator_id), populate_existing=True
        )
