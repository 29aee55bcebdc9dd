"""
Celery tasks for queue imports and maintenance.

Each task runs the async service in a fresh event loop with its own engine.
Imports are idempotent (already-queued items are skipped), so a retry after
an upstream failure simply picks up what the previous attempt missed.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import date
from typing import Any, Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from newsqueue.errors import UpstreamUnavailableError
from newsqueue.settings import get_settings
from newsqueue.worker.celery_app import celery_app

logger = logging.getLogger(__name__)


async def _with_session(fn: Callable[[AsyncSession], Awaitable[dict[str, Any]]]) -> dict[str, Any]:
    engine = create_async_engine(get_settings().async_database_url, echo=False)
    session_factory = async_sessionmaker(engine, expire_on_commit=False)
    try:
        async with session_factory() as session:
            return await fn(session)
    finally:
        await engine.dispose()


def _day(value: str | None) -> date:
    from newsqueue.services.timeutil import utcnow
    return date.fromisoformat(value) if value else utcnow().date()


def _raise_if_retryable(kind: str, report: dict[str, Any]) -> None:
    retryable = [f["id"] for f in report.get("failed", []) if f.get("retryable")]
    if retryable:
        raise UpstreamUnavailableError(f"{kind}: {len(retryable)} items need retry: {retryable[:10]}")


async def _import_collected_async(day: str | None, item_ids: list[str] | None) -> dict[str, Any]:
    from newsqueue.integrations.upstream import CandidateSourceClient
    from newsqueue.services.importer import import_collected_items

    items = await CandidateSourceClient().fetch_collected(_day(day))

    async def run(session: AsyncSession) -> dict[str, Any]:
        report = await import_collected_items(session, items, item_ids=item_ids, actor="worker")
        return report.to_dict()

    return await _with_session(run)


async def _import_synthesis_async(day: str | None) -> dict[str, Any]:
    from newsqueue.integrations.upstream import CandidateSourceClient, UniquenessClient
    from newsqueue.services.importer import import_synthesis_candidates

    candidates = await CandidateSourceClient().fetch_synthesis(_day(day))

    async def run(session: AsyncSession) -> dict[str, Any]:
        report = await import_synthesis_candidates(session, candidates, UniquenessClient(), actor="worker")
        return report.to_dict()

    return await _with_session(run)


async def _expire_sweep_async() -> dict[str, Any]:
    from newsqueue.services.lifecycle import expire_items

    async def run(session: AsyncSession) -> dict[str, Any]:
        return (await expire_items(session)).to_dict()

    return await _with_session(run)


@celery_app.task(
    bind=True,
    name="queue.import_collected",
    autoretry_for=(UpstreamUnavailableError,),
    retry_backoff=True,
    retry_kwargs={"max_retries": 3},
)
def import_collected(self, day: str | None = None, item_ids: list[str] | None = None) -> dict:
    """Fetch the day's collected items and queue them with neutral scores."""
    logger.info("[worker] import_collected day=%s (attempt=%d)", day, self.request.retries + 1)
    return asyncio.run(_import_collected_async(day, item_ids))


@celery_app.task(
    bind=True,
    name="queue.import_synthesis",
    autoretry_for=(UpstreamUnavailableError,),
    retry_backoff=True,
    retry_kwargs={"max_retries": 3},
)
def import_synthesis(self, day: str | None = None) -> dict:
    """Fetch the day's synthesis candidates; retries while uniqueness scoring fails."""
    logger.info("[worker] import_synthesis day=%s (attempt=%d)", day, self.request.retries + 1)
    report = asyncio.run(_import_synthesis_async(day))
    _raise_if_retryable("import_synthesis", report)
    return report


@celery_app.task(name="queue.expire_sweep")
def expire_sweep() -> dict:
    report = asyncio.run(_expire_sweep_async())
    logger.info("[worker] expire_sweep: %d expired, %d failed", report["expired"], report["failed"])
    return report
