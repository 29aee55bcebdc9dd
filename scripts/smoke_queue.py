#!/usr/bin/env python3
"""
Smoke test for the news queue against a running backend.

Walks one full cycle: import -> balanced proposal -> select -> thumbnail
reindex -> reset -> mark used -> expire sweep. Uses inline import payloads,
so no candidate source or similarity service is needed (synthesis import
is skipped unless SMOKE_SYNTHESIS=1).

Env vars:
  BASE_URL         (default http://localhost:8000)
  SMOKE_SYNTHESIS  (default 0)
"""
from __future__ import annotations

import json
import os
import sys
import time
from urllib.request import Request, urlopen
from urllib.error import HTTPError, URLError

BASE_URL = os.environ.get("BASE_URL", "http://localhost:8000").rstrip("/")
SMOKE_SYNTHESIS = os.environ.get("SMOKE_SYNTHESIS", "0") == "1"

SMOKE_TAG = f"smoke_{int(time.time())}"

# ── Helpers ──────────────────────────────────────────────────

class SmokeError(Exception):
    pass


def _req(method: str, path: str, body: dict | None = None, expect: int = 200) -> dict | list:
    url = f"{BASE_URL}{path}"
    data = json.dumps(body).encode() if body is not None else None
    req = Request(url, data=data, headers={"Content-Type": "application/json"}, method=method)
    try:
        with urlopen(req, timeout=30) as resp:
            raw = resp.read().decode()
            return json.loads(raw) if raw else {}
    except HTTPError as e:
        raw = e.read().decode()[:500]
        if e.code == expect:
            return json.loads(raw) if raw else {}
        raise SmokeError(f"{method} {path} → {e.code}: {raw}")
    except URLError as e:
        raise SmokeError(f"{method} {path} → URLError: {e}")


def GET(path: str) -> dict | list:
    return _req("GET", path)


def POST(path: str, body: dict | None = None, expect: int = 200) -> dict | list:
    return _req("POST", path, body if body is not None else {}, expect=expect)


def step(name: str):
    print(f"\n{'='*60}")
    print(f"  STEP: {name}")
    print(f"{'='*60}")


def ok(msg: str):
    print(f"  ✅ {msg}")


def fail(msg: str):
    print(f"  ❌ {msg}")
    raise SmokeError(msg)


# ── Steps ────────────────────────────────────────────────────

def step1_import() -> None:
    step("1. Import collected items")
    items = []
    for source, count in (("a", 4), ("b", 3), ("c", 2)):
        for n in range(count):
            items.append({
                "id": f"{SMOKE_TAG}-{source}{n}",
                "title": f"{SMOKE_TAG} story {source}{n}",
                "source_identifier": f"Smoke {source.upper()} <{source}@{SMOKE_TAG}.test>",
                "content": f"Body of {source}{n}",
            })
    report = POST("/api/queue/import/collected", {"items": items, "actor": "smoke"})
    if report["added"] != len(items):
        fail(f"expected {len(items)} added, got {report}")
    ok(f"{report['added']} items queued")

    again = POST("/api/queue/import/collected", {"items": items, "actor": "smoke"})
    if again["added"] != 0:
        fail(f"re-import added items: {again}")
    ok("Re-import skipped everything")

    if SMOKE_SYNTHESIS:
        synth = POST("/api/queue/import/synthesis", {"date": None, "actor": "smoke"})
        ok(f"Synthesis import: {synth['added']} added, {len(synth['failed'])} failed")


def step2_balanced() -> list[str]:
    step("2. Balanced proposal + commit")
    dist = GET("/api/queue/distribution")
    ok(f"Distribution: {[(d['source_identifier'], round(d['percentage_of_total'], 2)) for d in dist[:5]]}")

    proposal = GET("/api/queue/balanced?max_items=5")
    selected = POST("/api/queue/select-balanced", {"max_items": 5, "actor": "smoke"})
    ids = [i["id"] for i in selected]
    if [p["id"] for p in proposal] != ids:
        fail("committed selection differs from proposal")
    ok(f"Selected {len(ids)} items: {ids}")

    conflict = POST("/api/queue/select", {"item_ids": ids[:1]}, expect=409)
    if "detail" not in conflict:
        fail("second select did not conflict")
    ok("Second select of the same item → 409")
    return ids


def step3_reindex(ids: list[str]) -> None:
    step("3. Thumbnail reindex")
    post_id = SMOKE_TAG
    doc = {"type": "doc", "content": [
        {"type": "heading", "attrs": {"level": 2, "queueItemId": qid},
         "content": [{"type": "text", "text": f"Section {qid}"}]}
        for qid in reversed(ids)
    ]}
    result = POST(f"/api/posts/{post_id}/thumbnails/reindex", {"content": doc})
    ok(f"Reindex: {result['updated']} updated, {result['deleted']} deleted, "
       f"{len(result['missing_articles'])} missing")
    second = POST(f"/api/posts/{post_id}/thumbnails/reindex", {"content": doc})
    if second["updated"] or second["deleted"]:
        fail(f"reindex not idempotent: {second}")
    ok("Second reindex is a no-op")


def step4_finish(ids: list[str]) -> None:
    step("4. Reset + mark used + expire")
    reset = POST(f"/api/queue/items/{ids[-1]}/reset")
    ok(f"Reset {reset['item_id']} (thumbnails deleted: {reset['thumbnails_deleted']})")

    used = POST("/api/queue/mark-used", {"item_ids": ids, "post_id": SMOKE_TAG, "actor": "smoke"})
    if ids[-1] in used["item_ids"]:
        fail("reset item was marked used")
    ok(f"Marked {used['updated']}/{len(ids)} used")

    expired = POST("/api/queue/expire")
    ok(f"Expire sweep: {expired['expired']} expired, {expired['failed']} failed")
    ok(f"Stats: {GET('/api/queue/stats')}")


def main():
    print(f"\n🔎 Queue smoke against {BASE_URL} (tag {SMOKE_TAG})")
    try:
        GET("/ping")
        step1_import()
        ids = step2_balanced()
        step3_reindex(ids)
        step4_finish(ids)
        print(f"\n{'='*60}")
        print("  ✅ PASS")
        print(f"{'='*60}\n")
    except SmokeError as e:
        print(f"\n{'='*60}")
        print(f"  ❌ FAIL: {e}")
        print(f"{'='*60}\n")
        sys.exit(1)
    except KeyboardInterrupt:
        print("\n\n  ⏹ Interrupted")
        sys.exit(130)


if __name__ == "__main__":
    main()
