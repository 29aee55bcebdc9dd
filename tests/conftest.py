"""
Shared fixtures: in-memory SQLite store and a factory for queue items.
"""
import os
from datetime import timedelta

# Settings are read at import time by newsqueue.db
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("CELERY_ENABLED", "false")

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from newsqueue.db import Base
from newsqueue.models import PostImage, QueueItem, QueueStatus, new_id
from newsqueue.services.timeutil import utcnow


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


def build_item(
    source: str = "a@example.com",
    score: float = 5.0,
    *,
    status: str = QueueStatus.pending.value,
    age_minutes: int = 0,
    ttl_hours: int = 48,
    source_type: str | None = None,
    item_id: str | None = None,
    title: str | None = None,
) -> QueueItem:
    """Queue item whose total score equals `score` (all components equal)."""
    queued_at = utcnow() - timedelta(minutes=age_minutes)
    item_id = item_id or new_id()
    return QueueItem(
        id=item_id,
        source_item_id=f"src-{item_id}",
        title=title or f"Item {item_id[:8]}",
        source_identifier=source,
        source_type=source_type,
        synthesis_score=score,
        relevance_score=score,
        uniqueness_score=score,
        status=status,
        skip_reason="seeded" if status == QueueStatus.skipped.value else None,
        queued_at=queued_at,
        expires_at=queued_at + timedelta(hours=ttl_hours),
    )


@pytest.fixture
def make_item():
    return build_item


@pytest_asyncio.fixture
async def add_items(session):
    async def _add(*items: QueueItem) -> list[QueueItem]:
        session.add_all(items)
        await session.commit()
        return list(items)
    return _add


@pytest_asyncio.fixture
async def add_thumbnail(session):
    async def _add(post_id: str, *, article_index: int | None, queue_item_id: str | None = None,
                   source_text: str | None = None) -> PostImage:
        thumb = PostImage(
            id=new_id(),
            post_id=post_id,
            image_url=f"https://cdn.example.com/{new_id()}.png",
            article_index=article_index,
            article_queue_item_id=queue_item_id,
            source_text=source_text,
        )
        session.add(thumb)
        await session.commit()
        return thumb
    return _add


@pytest_asyncio.fixture
async def status_of(session):
    async def _status(item_id: str) -> str:
        res = await session.execute(select(QueueItem.status).where(QueueItem.id == item_id))
        return res.scalar_one()
    return _status
