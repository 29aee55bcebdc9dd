"""
Candidate importer: adds new items to the queue from two upstream paths.

- collected items: raw items from the collector, neutral default scores
  (flagged in meta["scores_defaulted"] so they are not mistaken for real
  mid-range scores)
- synthesis candidates: LLM-scored items; originality → synthesis_score,
  relevance → relevance_score, uniqueness from the uniqueness scorer

Both paths are additive only: an item already queued (same source item id
or same content key) is skipped, and existing rows are never touched.
A candidate whose uniqueness score cannot be computed is not inserted;
it is reported as retryable for the next run.
"""
from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterable, Protocol, runtime_checkable
from urllib.parse import urlparse

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from newsqueue.errors import QueueValidationError, UpstreamUnavailableError
from newsqueue.models import QueueEvent, QueueItem, QueueStatus, new_id
from newsqueue.services.dedupe import compute_content_key, find_existing
from newsqueue.services.scoring import validate_score
from newsqueue.services.timeutil import utcnow
from newsqueue.settings import get_settings

logger = logging.getLogger(__name__)

UNKNOWN_SOURCE = "unknown"
EXCERPT_LENGTH = 280


@dataclass
class CollectedItem:
    """Raw item from the collector (newsletter mail, feed entry, crawl)."""
    id: str
    title: str | None
    source_identifier: str | None = None
    source_url: str | None = None
    content: str | None = None
    excerpt: str | None = None
    source_type: str | None = None


@dataclass
class SynthesisCandidate:
    """Externally LLM-scored candidate."""
    source_item_id: str
    title: str
    originality_score: float
    relevance_score: float
    synthesis_type: str | None = None
    reasoning: str | None = None
    source_identifier: str | None = None
    source_url: str | None = None
    content: str | None = None
    source_type: str | None = None


@dataclass
class ImportReport:
    added: int = 0
    skipped: int = 0
    added_ids: list[str] = field(default_factory=list)
    failed: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@runtime_checkable
class UniquenessScorer(Protocol):
    """Returns 0-10; higher means less similar to recent content."""
    async def score(self, text: str) -> float: ...


# ── Source normalization ───────────────────────────────────

_ANGLE_ADDR = re.compile(r"<([^>]+)>")
_DISPLAY_NAME = re.compile(r'^"?([^"<]+)"?\s*<')


def normalize_source_identifier(sender: str | None, url: str | None = None) -> str:
    """Stable source key: mail address, else URL host, else 'unknown'.

    "The Information <Hello@TheInformation.com>" → "hello@theinformation.com"
    "https://www.example.com/post" → "example.com"
    """
    if sender:
        match = _ANGLE_ADDR.search(sender)
        if match:
            return match.group(1).strip().lower()
        if "@" in sender:
            return sender.strip().lower()
        if "://" not in sender and sender.strip():
            return sender.strip().lower()
        url = url or sender

    if url:
        host = urlparse(url).hostname
        if host:
            return host.removeprefix("www.")

    return UNKNOWN_SOURCE


def extract_source_display_name(sender: str | None) -> str | None:
    """Human label from the "Name <addr>" form, if present."""
    if not sender:
        return None
    match = _DISPLAY_NAME.match(sender)
    if match:
        name = match.group(1).strip()
        if name and "@" not in name:
            return name
    return None


def _excerpt(content: str | None) -> str | None:
    if not content:
        return None
    text = " ".join(content.split())
    if len(text) <= EXCERPT_LENGTH:
        return text
    return text[:EXCERPT_LENGTH].rsplit(" ", 1)[0] + "…"


# ── Insert ─────────────────────────────────────────────────

async def _insert(
    session: AsyncSession,
    item: QueueItem,
    report: ImportReport,
    *,
    external_id: str,
    actor: str | None,
) -> None:
    """Insert one row in its own transaction; a unique violation is a skip."""
    item_id = item.id
    session.add(item)
    session.add(QueueEvent(
        item_id=item_id,
        action="import",
        from_status=None,
        to_status=QueueStatus.pending.value,
        actor=actor,
        payload_json={"source_item_id": external_id, "origin": (item.meta or {}).get("origin")},
    ))
    try:
        await session.commit()
    except IntegrityError:
        # Lost a race against a concurrent import of the same item
        await session.rollback()
        report.skipped += 1
        logger.debug("[importer] %s already queued (unique violation)", external_id)
        return
    report.added += 1
    report.added_ids.append(item_id)


def _new_item(
    *,
    now: datetime,
    ttl_hours: int,
    **fields: Any,
) -> QueueItem:
    return QueueItem(
        id=new_id(),
        status=QueueStatus.pending.value,
        queued_at=now,
        expires_at=now + timedelta(hours=ttl_hours),
        **fields,
    )


async def import_collected_items(
    session: AsyncSession,
    items: Iterable[CollectedItem],
    *,
    item_ids: list[str] | None = None,
    actor: str | None = None,
    now: datetime | None = None,
) -> ImportReport:
    """Queue raw collected items with neutral scores.

    If `item_ids` is given only those items are imported; requested ids that
    the collector did not return are reported as not_found.
    """
    settings = get_settings()
    now = now or utcnow()
    report = ImportReport()

    items = list(items)
    if item_ids is not None:
        wanted = set(item_ids)
        available = {i.id for i in items}
        for missing in sorted(wanted - available):
            report.failed.append({"id": missing, "reason": "not_found", "retryable": False})
        items = [i for i in items if i.id in wanted]

    neutral = settings.neutral_score
    for raw in items:
        source = normalize_source_identifier(raw.source_identifier, raw.source_url)
        title = (raw.title or "").strip() or "Untitled"
        content_key = compute_content_key(source, title, raw.content) or None

        existing = await find_existing(session, source_item_id=raw.id, content_key=content_key)
        if existing:
            report.skipped += 1
            continue

        item = _new_item(
            now=now,
            ttl_hours=settings.queue_ttl_hours,
            source_item_id=raw.id,
            content_key=content_key,
            title=title,
            excerpt=raw.excerpt or _excerpt(raw.content),
            content=raw.content,
            source_identifier=source,
            source_display_name=extract_source_display_name(raw.source_identifier),
            source_url=raw.source_url,
            source_type=raw.source_type,
            synthesis_score=neutral,
            relevance_score=neutral,
            uniqueness_score=neutral,
            meta={"origin": "collected", "scores_defaulted": True},
        )
        await _insert(session, item, report, external_id=raw.id, actor=actor)

    logger.info(
        "[importer] Collected import: %d added, %d skipped, %d failed",
        report.added, report.skipped, len(report.failed),
    )
    return report


async def import_synthesis_candidates(
    session: AsyncSession,
    candidates: Iterable[SynthesisCandidate],
    scorer: UniquenessScorer,
    *,
    actor: str | None = None,
    now: datetime | None = None,
) -> ImportReport:
    """Queue LLM-scored synthesis candidates.

    Uniqueness is scored before the insert; a scorer failure skips the
    candidate for this run (reported with retryable=True) instead of
    storing a defaulted score.
    """
    settings = get_settings()
    now = now or utcnow()
    report = ImportReport()

    for cand in candidates:
        if not cand.source_item_id:
            report.failed.append({"id": None, "reason": "missing source_item_id", "retryable": False})
            continue
        try:
            synthesis = validate_score(cand.originality_score, "originality_score")
            relevance = validate_score(cand.relevance_score, "relevance_score")
        except QueueValidationError as e:
            report.failed.append({"id": cand.source_item_id, "reason": str(e), "retryable": False})
            continue

        source = normalize_source_identifier(cand.source_identifier, cand.source_url)
        title = (cand.title or "").strip() or "Untitled"
        content_key = compute_content_key(source, title, cand.content) or None

        existing = await find_existing(session, source_item_id=cand.source_item_id, content_key=content_key)
        if existing:
            report.skipped += 1
            continue

        try:
            uniqueness = validate_score(
                await scorer.score(cand.content or title),
                "uniqueness_score",
            )
        except (UpstreamUnavailableError, QueueValidationError) as e:
            logger.warning("[importer] Uniqueness scoring failed for %s: %s", cand.source_item_id, e)
            report.failed.append({"id": cand.source_item_id, "reason": f"uniqueness: {e}", "retryable": True})
            continue

        item = _new_item(
            now=now,
            ttl_hours=settings.queue_ttl_hours,
            source_item_id=cand.source_item_id,
            content_key=content_key,
            title=title,
            excerpt=_excerpt(cand.content),
            content=cand.content,
            source_identifier=source,
            source_display_name=extract_source_display_name(cand.source_identifier),
            source_url=cand.source_url,
            source_type=cand.source_type,
            synthesis_score=synthesis,
            relevance_score=relevance,
            uniqueness_score=uniqueness,
            meta={
                "origin": "synthesis",
                "synthesis_type": cand.synthesis_type,
                "reasoning": cand.reasoning,
            },
        )
        await _insert(session, item, report, external_id=cand.source_item_id, actor=actor)

    logger.info(
        "[importer] Synthesis import: %d added, %d skipped, %d failed",
        report.added, report.skipped, len(report.failed),
    )
    return report
