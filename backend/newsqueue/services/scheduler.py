"""
Scheduler Service

Periodic queue maintenance:
- expire_sweep: pending/selected items past expires_at become expired
- reset_stale_selected: selections abandoned for too long go back to pending
- daily_import: pull the day's collected items and synthesis candidates

Single-leader election via Postgres advisory locks:
- Only the instance that acquires the lock executes the tick
- Other instances silently skip
- Non-Postgres databases (local SQLite) run without the lock
- Controlled by SCHEDULER_ENABLED env (default: true)
"""
from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from newsqueue.settings import get_settings

logger = logging.getLogger("scheduler")

# Advisory lock keys (arbitrary int64, unique per job type)
LOCK_EXPIRE_SWEEP = 910_001
LOCK_RESET_STALE_SELECTED = 910_002
LOCK_DAILY_IMPORT = 910_003


class SchedulerService:
    """Queue maintenance scheduler.

    Uses Postgres pg_try_advisory_lock on each tick so that only
    one backend instance (the leader) executes the job while
    other instances skip silently.
    """

    _instance: "SchedulerService | None" = None

    def __init__(self):
        self.scheduler = AsyncIOScheduler()
        self._session_factory: async_sessionmaker | None = None
        self._running = False

    @classmethod
    def get_instance(cls) -> "SchedulerService":
        """Get singleton instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def configure(self, database_url: str):
        """Configure database connection."""
        engine = create_async_engine(database_url, echo=False)
        self._session_factory = async_sessionmaker(engine, expire_on_commit=False)

    def configure_session_factory(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def _get_session(self) -> AsyncSession:
        if not self._session_factory:
            self.configure(get_settings().async_database_url)
        return self._session_factory()

    @staticmethod
    def _uses_advisory_locks(session: AsyncSession) -> bool:
        return session.bind is not None and session.bind.dialect.name == "postgresql"

    async def _try_advisory_lock(self, session: AsyncSession, lock_key: int) -> bool:
        """Try to acquire a session-level advisory lock (non-blocking).

        Returns True if this instance acquired the lock (is leader for this tick).
        """
        if not self._uses_advisory_locks(session):
            return True
        result = await session.execute(text("SELECT pg_try_advisory_lock(:key)"), {"key": lock_key})
        return bool(result.scalar())

    async def _release_advisory_lock(self, session: AsyncSession, lock_key: int):
        if not self._uses_advisory_locks(session):
            return
        await session.execute(text("SELECT pg_advisory_unlock(:key)"), {"key": lock_key})

    async def _run_locked(
        self,
        name: str,
        lock_key: int,
        job: Callable[[AsyncSession], Awaitable[dict[str, Any]]],
    ) -> dict[str, Any] | None:
        async with await self._get_session() as session:
            acquired = await self._try_advisory_lock(session, lock_key)
            if not acquired:
                logger.debug("[%s] Advisory lock not acquired, another instance is leader, skipping tick", name)
                return None
            try:
                logger.info("[%s] LEADER, running", name)
                result = await job(session)
                logger.info("[%s] Completed: %s", name, result)
                return result
            finally:
                await self._release_advisory_lock(session, lock_key)

    def start(self):
        """Start the scheduler (respects SCHEDULER_ENABLED env)."""
        settings = get_settings()
        if not settings.scheduler_enabled:
            logger.info("Scheduler DISABLED by SCHEDULER_ENABLED=false, skipping start")
            return

        if self._running:
            return

        self.scheduler.add_job(
            self._run_expire_sweep,
            IntervalTrigger(minutes=settings.expire_interval_minutes),
            id="expire_sweep",
            name="Expire overdue queue items",
            replace_existing=True,
        )

        self.scheduler.add_job(
            self._run_reset_stale_selected,
            IntervalTrigger(hours=1),
            id="reset_stale_selected",
            name="Reset abandoned selections",
            replace_existing=True,
        )

        self.scheduler.add_job(
            self._run_daily_import,
            CronTrigger(hour=settings.import_cron_hour, minute=0),
            id="daily_import",
            name="Import collected items and synthesis candidates",
            replace_existing=True,
        )

        self.scheduler.start()
        self._running = True
        logger.info("Scheduler started (single-leader mode via advisory locks)")

    def stop(self):
        """Stop the scheduler."""
        if not self._running:
            return
        self.scheduler.shutdown(wait=False)
        self._running = False
        logger.info("Scheduler stopped")

    def is_running(self) -> bool:
        return self._running

    async def _run_expire_sweep(self):
        from newsqueue.services.lifecycle import expire_items

        async def job(session: AsyncSession) -> dict[str, Any]:
            return (await expire_items(session)).to_dict()

        return await self._run_locked("expire_sweep", LOCK_EXPIRE_SWEEP, job)

    async def _run_reset_stale_selected(self):
        from newsqueue.services.lifecycle import reset_stale_selected

        async def job(session: AsyncSession) -> dict[str, Any]:
            reset_ids = await reset_stale_selected(session)
            return {"reset": len(reset_ids), "item_ids": reset_ids}

        return await self._run_locked("reset_stale_selected", LOCK_RESET_STALE_SELECTED, job)

    async def _run_daily_import(self):
        """Import today's candidates.

        With Celery enabled the imports are queued so that upstream failures
        get the worker's retry policy; otherwise they run in-process.
        """
        settings = get_settings()
        if settings.celery_enabled:
            from newsqueue.worker.tasks import import_collected, import_synthesis

            collected = import_collected.delay()
            synthesis = import_synthesis.delay()
            logger.info("[daily_import] Queued celery tasks %s, %s", collected.id, synthesis.id)
            return {"queued": [collected.id, synthesis.id]}

        from newsqueue.integrations.upstream import CandidateSourceClient, UniquenessClient
        from newsqueue.services.importer import import_collected_items, import_synthesis_candidates
        from newsqueue.services.timeutil import utcnow

        async def job(session: AsyncSession) -> dict[str, Any]:
            today = utcnow().date()
            source = CandidateSourceClient()
            collected = await import_collected_items(
                session, await source.fetch_collected(today), actor="scheduler"
            )
            synthesis = await import_synthesis_candidates(
                session, await source.fetch_synthesis(today), UniquenessClient(), actor="scheduler"
            )
            return {"collected": collected.to_dict(), "synthesis": synthesis.to_dict()}

        return await self._run_locked("daily_import", LOCK_DAILY_IMPORT, job)

    def get_jobs(self) -> list[dict]:
        """Get list of all scheduled jobs."""
        jobs = []
        for job in self.scheduler.get_jobs():
            next_run = job.next_run_time
            jobs.append({
                "id": job.id,
                "name": job.name,
                "next_run": next_run.isoformat() if next_run else None,
                "trigger": str(job.trigger),
            })
        return jobs

    async def run_now(self, job_id: str) -> dict:
        """Run a job immediately."""
        job = self.scheduler.get_job(job_id)
        if not job:
            return {"error": f"Job {job_id} not found"}

        try:
            result = await job.func()
            return {"ok": True, "result": result}
        except Exception as e:
            logger.error("Failed to run job %s: %s", job_id, e)
            return {"error": str(e)}


# Global instance
scheduler_service = SchedulerService.get_instance()
