"""
Tests for thumbnail re-linking against article structure
"""
import json

import pytest
from sqlalchemy import select

from newsqueue.errors import QueueValidationError
from newsqueue.models import PostImage
from newsqueue.services.relinker import (
    extract_article_sections,
    extract_headline,
    headline_similarity,
    reindex,
)

POST = "post-1"


def heading(text, queue_item_id=None, level=2):
    attrs = {"level": level}
    if queue_item_id:
        attrs["queueItemId"] = queue_item_id
    return {"type": "heading", "attrs": attrs, "content": [{"type": "text", "text": text}]}


def paragraph(text):
    return {"type": "paragraph", "content": [{"type": "text", "text": text}]}


def article(*sections):
    content = []
    for s in sections:
        content.append(s)
        content.append(paragraph("Lorem ipsum"))
    return {"type": "doc", "content": content}


async def _indexes(session):
    res = await session.execute(
        select(PostImage.article_queue_item_id, PostImage.article_index).where(PostImage.post_id == POST)
    )
    return dict(res.all())


class TestExtractSections:

    def test_ordinals_skip_synthesis_sections(self):
        doc = article(
            heading("Chips", "q1"),
            heading("Mattes Synthese: what it means"),
            heading("Robots", "q2"),
            heading("Subheading", "q9", level=3),
        )
        sections = extract_article_sections(doc)
        assert [(s.ordinal, s.heading, s.queue_item_id) for s in sections] == [
            (0, "Chips", "q1"),
            (1, "Robots", "q2"),
        ]

    def test_accepts_json_string(self):
        doc = article(heading("Chips", "q1"))
        assert extract_article_sections(json.dumps(doc))[0].queue_item_id == "q1"

    def test_invalid_content(self):
        with pytest.raises(QueueValidationError):
            extract_article_sections("{not json")
        with pytest.raises(QueueValidationError):
            extract_article_sections(["not", "a", "doc"])


class TestHeadlineMatching:

    def test_similarity(self):
        assert headline_similarity("Nvidia beats earnings again", "Nvidia beats earnings") == pytest.approx(3 / 4)
        assert headline_similarity("", "anything") == 0.0

    def test_extract_headline(self):
        assert extract_headline("## Nvidia beats earnings.\nMore text") == "Nvidia beats earnings"
        assert extract_headline("Story:\nRobots take over") == "Robots take over"


class TestReindex:

    @pytest.mark.asyncio
    async def test_moved_section_updates_index(self, session, add_thumbnail):
        for i, qid in enumerate(("q0", "q1", "q2")):
            await add_thumbnail(POST, article_index=i, queue_item_id=qid)

        result = await reindex(session, POST, article(heading("C", "q2"), heading("A", "q0"), heading("B", "q1")))

        assert (result.updated, result.deleted) == (3, 0)
        assert await _indexes(session) == {"q2": 0, "q0": 1, "q1": 2}
        assert result.missing_articles == []

    @pytest.mark.asyncio
    async def test_idempotent(self, session, add_thumbnail):
        await add_thumbnail(POST, article_index=0, queue_item_id="q0")
        await add_thumbnail(POST, article_index=1, queue_item_id="q1")
        doc = article(heading("B", "q1"), heading("A", "q0"))

        first = await reindex(session, POST, doc)
        second = await reindex(session, POST, doc)

        assert first.updated == 2
        assert (second.updated, second.deleted) == (0, 0)

    @pytest.mark.asyncio
    async def test_removed_section_deletes_thumbnail(self, session, add_thumbnail):
        await add_thumbnail(POST, article_index=0, queue_item_id="q0")
        await add_thumbnail(POST, article_index=1, queue_item_id="q1")

        result = await reindex(session, POST, article(heading("B", "q1")))

        assert result.deleted == 1
        assert await _indexes(session) == {"q1": 0}

    @pytest.mark.asyncio
    async def test_reports_missing_articles(self, session, add_thumbnail):
        await add_thumbnail(POST, article_index=0, queue_item_id="q0")

        result = await reindex(session, POST, article(heading("A", "q0"), heading("New", "q5")))

        assert result.missing_articles == [{"article_index": 1, "heading": "New", "queue_item_id": "q5"}]

    @pytest.mark.asyncio
    async def test_legacy_thumbnail_matched_by_headline(self, session, add_thumbnail):
        legacy = await add_thumbnail(POST, article_index=0, source_text="Robots take over factories\nbody")

        result = await reindex(session, POST, article(
            heading("Chip shortage eases", "q1"),
            heading("Robots take over factories", "q2"),
        ))

        await session.refresh(legacy)
        assert legacy.article_index == 1
        assert result.low_confidence == [legacy.id]

    @pytest.mark.asyncio
    async def test_legacy_thumbnail_positional_fallback(self, session, add_thumbnail):
        legacy = await add_thumbnail(POST, article_index=1)

        result = await reindex(session, POST, article(heading("A", "q0"), heading("B", "q1")))

        await session.refresh(legacy)
        assert legacy.article_index == 1
        assert result.updated == 0
        assert result.low_confidence == [legacy.id]
        assert [m["article_index"] for m in result.missing_articles] == [0]

    @pytest.mark.asyncio
    async def test_legacy_thumbnail_out_of_range_deleted(self, session, add_thumbnail):
        await add_thumbnail(POST, article_index=5)

        result = await reindex(session, POST, article(heading("A", "q0")))

        assert result.deleted == 1
        assert await _indexes(session) == {}

    @pytest.mark.asyncio
    async def test_other_posts_untouched(self, session, add_thumbnail):
        other = await add_thumbnail("post-2", article_index=3, queue_item_id="q0")

        await reindex(session, POST, article(heading("A", "q0")))

        await session.refresh(other)
        assert other.article_index == 3

    @pytest.mark.asyncio
    async def test_duplicate_thumbnails_for_one_item_collapse(self, session, add_thumbnail):
        await add_thumbnail(POST, article_index=0, queue_item_id="q1")
        await add_thumbnail(POST, article_index=0, queue_item_id="q1")
        doc = article(heading("One", "q1"), heading("Two", "q2"))

        first = await reindex(session, POST, doc)
        second = await reindex(session, POST, doc)

        assert first.deleted == 1
        assert await _indexes(session) == {"q1": 0}
        assert (second.updated, second.deleted) == (0, 0)
        assert [m["queue_item_id"] for m in second.missing_articles] == ["q2"]

    @pytest.mark.asyncio
    async def test_repeated_item_id_keeps_first_section(self, session, add_thumbnail):
        await add_thumbnail(POST, article_index=0, queue_item_id="q1")
        doc = article(heading("One", "q1"), heading("Two"), heading("One again", "q1"))

        result = await reindex(session, POST, doc)

        assert result.updated == 0
        assert await _indexes(session) == {"q1": 0}
        assert result.missing_articles == [{"article_index": 1, "heading": "Two", "queue_item_id": None}]
