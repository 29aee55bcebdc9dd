"""
Content-derived dedup keys for queue imports.

content_key = SHA-1 of normalized "source | title | body". The source and
body are part of the key so near-identical headlines from different senders
are not suppressed as duplicates.
"""
from __future__ import annotations

import hashlib
import re
import unicodedata

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from newsqueue.models import QueueItem


def normalize_text(text: str | None) -> str:
    """Normalize text for deduplication.

    - NFKC unicode normalization
    - lowercase
    - strip punctuation (keep letters, digits, spaces)
    - collapse whitespace
    """
    if not text:
        return ""
    text = unicodedata.normalize("NFKC", text)
    text = text.lower()
    text = re.sub(r"[^\w\s]", "", text)
    text = re.sub(r"\s+", " ", text).strip()
    return text


def compute_content_key(
    source_identifier: str,
    title: str | None,
    content: str | None = None,
) -> str:
    """Stable content-derived key for a queue item."""
    parts = [
        normalize_text(source_identifier),
        normalize_text(title),
        normalize_text(content),
    ]
    if not parts[1] and not parts[2]:
        return ""
    return hashlib.sha1("|".join(parts).encode("utf-8")).hexdigest()


async def find_existing(
    session: AsyncSession,
    *,
    source_item_id: str | None = None,
    content_key: str | None = None,
) -> QueueItem | None:
    """Find an item already queued for the same source item or content."""
    conditions = []
    if source_item_id:
        conditions.append(QueueItem.source_item_id == source_item_id)
    if content_key:
        conditions.append(QueueItem.content_key == content_key)
    if not conditions:
        return None

    res = await session.execute(select(QueueItem).where(or_(*conditions)).limit(1))
    return res.scalar_one_or_none()
