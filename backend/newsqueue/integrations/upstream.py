from __future__ import annotations

import asyncio
import logging
from datetime import date
from typing import Any

import httpx

from newsqueue.errors import UpstreamUnavailableError
from newsqueue.services.importer import CollectedItem, SynthesisCandidate
from newsqueue.settings import get_settings

logger = logging.getLogger(__name__)

COLLECTED_PATH = "/collected"
SYNTHESIS_PATH = "/synthesis-candidates"
UNIQUENESS_PATH = "/score"


def _headers() -> dict[str, str]:
    key = get_settings().upstream_api_key
    return {"Authorization": f"Bearer {key}"} if key else {}


async def _request_json(
    method: str,
    url: str,
    *,
    params: dict[str, Any] | None = None,
    payload: dict[str, Any] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Any:
    """One retry on transport errors; HTTP errors are not retried."""
    timeout = get_settings().upstream_timeout_sec
    last_exc: Exception | None = None
    for attempt in range(2):
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
                resp = await client.request(method, url, params=params, json=payload, headers=_headers())
        except httpx.TransportError as exc:
            last_exc = exc
            logger.warning("[upstream] %s %s transport error (attempt %d): %s", method, url, attempt + 1, exc)
            await asyncio.sleep(1)
            continue
        if resp.status_code >= 400:
            raise UpstreamUnavailableError(f"{method} {url} returned {resp.status_code}: {resp.text[:200]}")
        try:
            return resp.json()
        except ValueError as exc:
            raise UpstreamUnavailableError(f"{method} {url} returned invalid JSON") from exc
    raise UpstreamUnavailableError(f"{method} {url} failed: {last_exc}")


def _items(data: Any) -> list[dict[str, Any]]:
    items = data if isinstance(data, list) else (data or {}).get("items") or []
    return [i for i in items if isinstance(i, dict)]


class CandidateSourceClient:
    """Reads collected items and LLM-scored synthesis candidates for a day."""

    def __init__(self, base_url: str | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = (base_url or get_settings().candidate_source_url or "").rstrip("/")
        self.transport = transport

    def _url(self, path: str) -> str:
        if not self.base_url:
            raise UpstreamUnavailableError("CANDIDATE_SOURCE_URL is not configured")
        return self.base_url + path

    async def fetch_collected(self, day: date) -> list[CollectedItem]:
        data = await _request_json(
            "GET", self._url(COLLECTED_PATH), params={"date": day.isoformat()}, transport=self.transport
        )
        result = []
        for raw in _items(data):
            if not raw.get("id"):
                continue
            result.append(CollectedItem(
                id=str(raw["id"]),
                title=raw.get("title"),
                source_identifier=raw.get("source_identifier") or raw.get("sender"),
                source_url=raw.get("source_url") or raw.get("url"),
                content=raw.get("content"),
                excerpt=raw.get("excerpt"),
                source_type=raw.get("source_type"),
            ))
        return result

    async def fetch_synthesis(self, day: date) -> list[SynthesisCandidate]:
        data = await _request_json(
            "GET", self._url(SYNTHESIS_PATH), params={"date": day.isoformat()}, transport=self.transport
        )
        result = []
        for raw in _items(data):
            result.append(SynthesisCandidate(
                source_item_id=str(raw.get("source_item_id") or raw.get("id") or ""),
                title=raw.get("title") or "",
                originality_score=raw.get("originality_score"),
                relevance_score=raw.get("relevance_score"),
                synthesis_type=raw.get("synthesis_type"),
                reasoning=raw.get("reasoning"),
                source_identifier=raw.get("source_identifier") or raw.get("sender"),
                source_url=raw.get("source_url") or raw.get("url"),
                content=raw.get("content"),
                source_type=raw.get("source_type"),
            ))
        return result


class UniquenessClient:
    """Uniqueness scorer backed by the similarity service (0-10, higher = more novel)."""

    def __init__(self, base_url: str | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = (base_url or get_settings().uniqueness_service_url or "").rstrip("/")
        self.transport = transport

    async def score(self, text: str) -> float:
        if not self.base_url:
            raise UpstreamUnavailableError("UNIQUENESS_SERVICE_URL is not configured")
        data = await _request_json(
            "POST", self.base_url + UNIQUENESS_PATH, payload={"text": text}, transport=self.transport
        )
        value = data.get("score") if isinstance(data, dict) else None
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            raise UpstreamUnavailableError(f"uniqueness service returned no score: {data!r}")
        return float(value)
