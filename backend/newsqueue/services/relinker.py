"""
Thumbnail re-linker: keeps article thumbnails paired with their sections.

The article body (TipTap JSON) carries an embedded `queueItemId` attribute on
each level-2 section heading. That id is the durable link between a section
and its thumbnail; `article_index` on the thumbnail is only a projection of
the section's current ordinal, recomputed on every reindex.

reindex():
1. build ordinal → queue item id from the headings (synthesis/opinion
   sections are never illustrated and take no ordinal)
2. id-linked thumbnail: move to the section's new ordinal, or delete it when
   the id no longer appears (section removed)
3. ordinals left without a thumbnail are reported as missing_articles

A queue item id repeated in the article maps to its first section only, and
only the oldest thumbnail per queue item is kept, so repeated runs converge.

Legacy thumbnails without an id are matched by headline, then by position,
and logged as lower-confidence.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Any

from sqlalchemy import select, delete, update, and_
from sqlalchemy.ext.asyncio import AsyncSession

from newsqueue.errors import QueueValidationError
from newsqueue.models import THUMBNAIL_IMAGE_TYPE, PostImage
from newsqueue.settings import get_settings

logger = logging.getLogger(__name__)

SECTION_HEADING_LEVEL = 2
HEADLINE_MATCH_THRESHOLD = 0.3


@dataclass
class ArticleSection:
    ordinal: int
    heading: str
    queue_item_id: str | None = None


@dataclass
class ReindexResult:
    updated: int = 0
    deleted: int = 0
    missing_articles: list[dict[str, Any]] = field(default_factory=list)
    articles_in_content: int = 0
    thumbnails_found: int = 0
    low_confidence: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ── Article structure ──────────────────────────────────────

def parse_article_content(content: Any) -> dict[str, Any]:
    """Accept TipTap content as a dict or a JSON string."""
    if isinstance(content, str):
        try:
            content = json.loads(content)
        except json.JSONDecodeError as e:
            raise QueueValidationError(f"article content is not valid JSON: {e}")
    if not isinstance(content, dict):
        raise QueueValidationError("article content must be a JSON object")
    return content


def _node_text(node: dict[str, Any]) -> str:
    if node.get("type") == "text":
        return node.get("text") or ""
    children = node.get("content")
    if isinstance(children, list):
        return "".join(_node_text(c) for c in children if isinstance(c, dict))
    return ""


def is_synthesis_heading(heading: str, markers: list[str] | None = None) -> bool:
    if markers is None:
        markers = get_settings().synthesis_heading_markers
    lowered = heading.lower()
    return any(marker.lower() in lowered for marker in markers)


def extract_article_sections(content: Any, markers: list[str] | None = None) -> list[ArticleSection]:
    """Illustratable sections in document order, with their embedded ids."""
    doc = parse_article_content(content)
    sections: list[ArticleSection] = []

    def walk(node: dict[str, Any]) -> None:
        attrs = node.get("attrs") or {}
        if node.get("type") == "heading" and attrs.get("level") == SECTION_HEADING_LEVEL:
            heading = _node_text(node).strip()
            if not is_synthesis_heading(heading, markers):
                sections.append(ArticleSection(
                    ordinal=len(sections),
                    heading=heading,
                    queue_item_id=attrs.get("queueItemId") or None,
                ))
            return
        children = node.get("content")
        if isinstance(children, list):
            for child in children:
                if isinstance(child, dict):
                    walk(child)

    walk(doc)
    return sections


# ── Legacy headline matching ───────────────────────────────

def _normalize(text: str) -> str:
    text = re.sub(r"[^\w\s]", "", text.lower())
    return re.sub(r"\s+", " ", text).strip()


def headline_similarity(a: str, b: str) -> float:
    """Jaccard similarity of the word sets (words longer than 2 chars)."""
    words_a = {w for w in _normalize(a).split(" ") if len(w) > 2}
    words_b = {w for w in _normalize(b).split(" ") if len(w) > 2}
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / len(words_a | words_b)


def extract_headline(source_text: str) -> str:
    """First meaningful line of a thumbnail's source text, markdown stripped."""
    lines = [line.strip() for line in source_text.splitlines() if line.strip()]
    if not lines:
        return source_text
    headline = re.sub(r"^#+\s*", "", lines[0])
    if re.match(r"^[A-Za-z]+:\s*$", headline) and len(lines) > 1:
        headline = re.sub(r"^#+\s*", "", lines[1])
    return re.sub(r"[:.]$", "", headline)


def _match_legacy(
    thumbnail: PostImage,
    sections: list[ArticleSection],
    claimed: set[int],
) -> tuple[int | None, str]:
    if thumbnail.source_text:
        headline = extract_headline(thumbnail.source_text)
        best, best_score = None, HEADLINE_MATCH_THRESHOLD
        for section in sections:
            if section.ordinal in claimed:
                continue
            score = headline_similarity(headline, section.heading)
            if score > best_score:
                best, best_score = section.ordinal, score
        if best is not None:
            return best, f"headline ({round(best_score * 100)}%)"

    index = thumbnail.article_index
    if index is not None and 0 <= index < len(sections) and index not in claimed:
        return index, "position"
    return None, ""


# ── Reindex ────────────────────────────────────────────────

async def reindex(
    session: AsyncSession,
    post_id: str,
    content: Any,
) -> ReindexResult:
    """Reconcile a post's thumbnails against the current article structure."""
    if not post_id:
        raise QueueValidationError("post_id is required")
    sections = extract_article_sections(content)
    ordinal_by_item: dict[str, int] = {}
    for s in sections:
        if s.queue_item_id:
            ordinal_by_item.setdefault(s.queue_item_id, s.ordinal)

    res = await session.execute(
        select(PostImage)
        .where(and_(
            PostImage.post_id == post_id,
            PostImage.image_type == THUMBNAIL_IMAGE_TYPE,
        ))
        .order_by(PostImage.created_at.asc(), PostImage.id.asc())
    )
    thumbnails = list(res.scalars().all())
    result = ReindexResult(articles_in_content=len(sections), thumbnails_found=len(thumbnails))

    moves: dict[str, int] = {}
    orphaned: list[str] = []
    claimed: set[int] = set()
    kept_items: set[str] = set()

    linked = [t for t in thumbnails if t.article_queue_item_id]
    legacy = [t for t in thumbnails if not t.article_queue_item_id]

    for thumb in linked:
        ordinal = ordinal_by_item.get(thumb.article_queue_item_id)
        if ordinal is None:
            orphaned.append(thumb.id)
            logger.info(
                "[relinker] Queue item %s no longer in post %s, deleting thumbnail %s",
                thumb.article_queue_item_id, post_id, thumb.id,
            )
            continue
        if thumb.article_queue_item_id in kept_items:
            orphaned.append(thumb.id)
            logger.info(
                "[relinker] Duplicate thumbnail %s for queue item %s in post %s, deleting",
                thumb.id, thumb.article_queue_item_id, post_id,
            )
            continue
        kept_items.add(thumb.article_queue_item_id)
        claimed.add(ordinal)
        if ordinal != thumb.article_index:
            moves[thumb.id] = ordinal

    for thumb in legacy:
        ordinal, method = _match_legacy(thumb, sections, claimed)
        if ordinal is None:
            orphaned.append(thumb.id)
            logger.info("[relinker] Orphaned legacy thumbnail %s in post %s", thumb.id, post_id)
            continue
        claimed.add(ordinal)
        result.low_confidence.append(thumb.id)
        logger.warning(
            "[relinker] Legacy thumbnail %s matched to section %d via %s (low confidence)",
            thumb.id, ordinal, method,
        )
        if ordinal != thumb.article_index:
            moves[thumb.id] = ordinal

    for thumb_id, ordinal in moves.items():
        await session.execute(
            update(PostImage)
            .where(PostImage.id == thumb_id)
            .values(article_index=ordinal)
            .execution_options(synchronize_session=False)
        )
    if orphaned:
        await session.execute(
            delete(PostImage)
            .where(PostImage.id.in_(orphaned))
            .execution_options(synchronize_session=False)
        )
    await session.commit()

    result.updated = len(moves)
    result.deleted = len(orphaned)
    result.missing_articles = [
        {"article_index": s.ordinal, "heading": s.heading, "queue_item_id": s.queue_item_id}
        for s in sections
        if s.ordinal not in claimed
        and (not s.queue_item_id or ordinal_by_item[s.queue_item_id] == s.ordinal)
    ]

    logger.info(
        "[relinker] Post %s: %d sections, %d thumbnails, %d updated, %d deleted, %d missing",
        post_id, len(sections), len(thumbnails), result.updated, result.deleted,
        len(result.missing_articles),
    )
    return result


async def list_thumbnails(session: AsyncSession, post_id: str) -> list[PostImage]:
    res = await session.execute(
        select(PostImage)
        .where(and_(
            PostImage.post_id == post_id,
            PostImage.image_type == THUMBNAIL_IMAGE_TYPE,
        ))
        .order_by(PostImage.article_index.asc(), PostImage.created_at.asc())
    )
    return list(res.scalars().all())
