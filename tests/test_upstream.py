"""
Tests for the upstream candidate source and uniqueness clients
"""
from datetime import date

import httpx
import pytest

from newsqueue.errors import UpstreamUnavailableError
from newsqueue.integrations.upstream import CandidateSourceClient, UniquenessClient


def _transport(payload, status_code=200, seen=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(status_code, json=payload)
    return httpx.MockTransport(handler)


class TestCandidateSourceClient:

    @pytest.mark.asyncio
    async def test_fetch_collected(self):
        seen = []
        client = CandidateSourceClient("http://source", transport=_transport({"items": [
            {"id": 1, "title": "Chips", "sender": "A <a@x.com>", "url": "https://x.com/1"},
            {"title": "no id, dropped"},
        ]}, seen=seen))

        items = await client.fetch_collected(date(2026, 10, 18))

        assert seen[0].url.params["date"] == "2026-10-18"
        assert len(items) == 1
        assert items[0].id == "1"
        assert items[0].source_identifier == "A <a@x.com>"
        assert items[0].source_url == "https://x.com/1"

    @pytest.mark.asyncio
    async def test_fetch_synthesis(self):
        client = CandidateSourceClient("http://source", transport=_transport([
            {"source_item_id": "s1", "title": "Take", "originality_score": 8, "relevance_score": 7},
        ]))
        candidates = await client.fetch_synthesis(date(2026, 10, 18))
        assert candidates[0].source_item_id == "s1"
        assert candidates[0].originality_score == 8

    @pytest.mark.asyncio
    async def test_http_error(self):
        client = CandidateSourceClient("http://source", transport=_transport({"error": "boom"}, status_code=500))
        with pytest.raises(UpstreamUnavailableError):
            await client.fetch_collected(date(2026, 10, 18))

    @pytest.mark.asyncio
    async def test_not_configured(self):
        client = CandidateSourceClient("")
        with pytest.raises(UpstreamUnavailableError):
            await client.fetch_collected(date(2026, 10, 18))


class TestUniquenessClient:

    @pytest.mark.asyncio
    async def test_score(self):
        seen = []
        client = UniquenessClient("http://sim", transport=_transport({"score": 7.5}, seen=seen))
        assert await client.score("some text") == 7.5
        assert seen[0].method == "POST"

    @pytest.mark.asyncio
    async def test_missing_score(self):
        client = UniquenessClient("http://sim", transport=_transport({"similar": []}))
        with pytest.raises(UpstreamUnavailableError):
            await client.score("some text")
