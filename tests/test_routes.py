"""
HTTP tests for the queue and thumbnail routers
"""
import httpx
import pytest
import pytest_asyncio

from newsqueue.db import get_session
from newsqueue.main import app
from newsqueue.models import QueueStatus
from newsqueue.routes_queue import get_uniqueness_scorer


class FixedScorer:
    async def score(self, text):
        return 6.0


@pytest_asyncio.fixture
async def client(session_factory):
    async def _session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[get_uniqueness_scorer] = lambda: FixedScorer()
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


class TestQueueRoutes:

    @pytest.mark.asyncio
    async def test_ping(self, client):
        resp = await client.get("/ping")
        assert resp.json() == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_list_and_get(self, client, add_items, make_item):
        await add_items(make_item("a", 9, item_id="i1"), make_item("b", 3, item_id="i2"))
        resp = await client.get("/api/queue/items")
        assert resp.status_code == 200
        body = resp.json()
        assert body["total"] == 2
        assert [i["id"] for i in body["items"]] == ["i1", "i2"]
        assert body["items"][0]["total_score"] == pytest.approx(9.0)

        assert (await client.get("/api/queue/items/i2")).json()["source_identifier"] == "b"
        assert (await client.get("/api/queue/items/missing")).status_code == 404

    @pytest.mark.asyncio
    async def test_select_conflict_is_409(self, client, add_items, make_item):
        await add_items(make_item(item_id="i1"))
        first = await client.post("/api/queue/select", json={"item_ids": ["i1"]})
        assert first.status_code == 200
        assert first.json()[0]["status"] == QueueStatus.selected.value

        second = await client.post("/api/queue/select", json={"item_ids": ["i1"]})
        assert second.status_code == 409
        assert second.json()["detail"]["current"] == {"i1": "selected"}

    @pytest.mark.asyncio
    async def test_manual_select_does_not_take_a_rank(self, client, add_items, make_item):
        await add_items(make_item(item_id="i1"))
        resp = await client.post("/api/queue/select", json={"item_ids": ["i1"], "ranks": {"i1": 7}})
        assert resp.status_code == 200
        assert resp.json()[0]["selection_rank"] is None

    @pytest.mark.asyncio
    async def test_skip_without_reason_is_400(self, client, add_items, make_item):
        await add_items(make_item(item_id="i1"))
        resp = await client.post("/api/queue/skip", json={"item_ids": ["i1"], "reason": " "})
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_balanced_proposal_and_commit(self, client, add_items, make_item):
        await add_items(
            make_item("a", 9, item_id="a9"),
            make_item("a", 8, item_id="a8"),
            make_item("b", 5, item_id="b5"),
        )
        proposal = await client.get("/api/queue/balanced", params={"max_items": 3})
        assert [p["id"] for p in proposal.json()] == ["a9", "b5"]

        assert (await client.get("/api/queue/balanced", params={"max_items": 0})).status_code == 400

        committed = await client.post("/api/queue/select-balanced", json={"max_items": 3})
        assert [(i["id"], i["selection_rank"]) for i in committed.json()] == [("a9", 1), ("b5", 2)]

    @pytest.mark.asyncio
    async def test_distribution_and_stats(self, client, add_items, make_item):
        await add_items(make_item("a"), make_item("a"), make_item("b"))
        dist = (await client.get("/api/queue/distribution")).json()
        assert dist[0]["source_identifier"] == "a"
        assert dist[0]["flagged"] is True

        stats = (await client.get("/api/queue/stats")).json()
        assert stats["pending"] == 3
        assert stats["total"] == 3

    @pytest.mark.asyncio
    async def test_reset_and_mark_used(self, client, add_items, make_item):
        await add_items(make_item(item_id="i1"), make_item(item_id="i2"))
        await client.post("/api/queue/select", json={"item_ids": ["i1", "i2"]})

        reset = await client.post("/api/queue/items/i2/reset")
        assert reset.json()["reset"] is True

        used = await client.post("/api/queue/mark-used", json={"item_ids": ["i1", "i2"], "post_id": "p1"})
        assert used.json()["item_ids"] == ["i1"]

    @pytest.mark.asyncio
    async def test_score_update_validation(self, client, add_items, make_item):
        await add_items(make_item(item_id="i1"))
        bad = await client.patch("/api/queue/items/i1/scores", json={"relevance_score": 12})
        assert bad.status_code == 422
        ok = await client.patch("/api/queue/items/i1/scores", json={"relevance_score": 10})
        assert ok.json()["relevance_score"] == 10

    @pytest.mark.asyncio
    async def test_import_inline(self, client):
        collected = await client.post("/api/queue/import/collected", json={
            "items": [{"id": "c1", "title": "Chips", "source_identifier": "a@x.com"}],
        })
        assert collected.json()["added"] == 1

        synthesis = await client.post("/api/queue/import/synthesis", json={
            "candidates": [{
                "source_item_id": "s1", "title": "Take",
                "originality_score": 8, "relevance_score": 7,
            }],
        })
        assert synthesis.json()["added_ids"]


class TestThumbnailRoutes:

    @pytest.mark.asyncio
    async def test_reindex(self, client, add_thumbnail):
        await add_thumbnail("post-1", article_index=1, queue_item_id="q1")
        doc = {"type": "doc", "content": [
            {"type": "heading", "attrs": {"level": 2, "queueItemId": "q1"},
             "content": [{"type": "text", "text": "Moved up"}]},
        ]}
        resp = await client.post("/api/posts/post-1/thumbnails/reindex", json={"content": doc})
        assert resp.status_code == 200
        assert resp.json()["updated"] == 1

        thumbs = (await client.get("/api/posts/post-1/thumbnails")).json()
        assert thumbs[0]["article_index"] == 0

    @pytest.mark.asyncio
    async def test_reindex_bad_content(self, client):
        resp = await client.post("/api/posts/post-1/thumbnails/reindex", json={"content": "{broken"})
        assert resp.status_code == 400
