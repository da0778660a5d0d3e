"""
tests.test_api

End-to-end HTTP tests through the FastAPI app with its lifespan running.

Responsibilities:
- Boot the app against SQLite, wait for the startup routine and exercise the ticket API.
- Verify the error mapping (400/404/503) and the readiness probe.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from pathlib import Path
from urllib.parse import quote

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI

from ticket_manager.api.app import create_app
from ticket_manager.api.routers.tickets import _content_disposition
from ticket_manager.db import providers
from ticket_manager.errors import PersistenceError
from ticket_manager.settings import Settings


@asynccontextmanager
async def _serving(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    # httpx ASGITransport does not drive lifespan events; enter the lifespan explicitly.
    async with app.router.lifespan_context(app):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            yield client


@pytest.fixture(autouse=True)
def _sqlite_engine(monkeypatch, sqlite_dialect) -> None:
    # SQLite stands in for the configured engine.
    monkeypatch.setattr(providers, "select_dialect", lambda _name: sqlite_dialect)


@pytest_asyncio.fixture
async def client(settings: Settings) -> AsyncIterator[httpx.AsyncClient]:
    app = create_app(settings=settings)
    async with _serving(app) as client:
        await app.state.startup_task
        yield client


async def _create(client: httpx.AsyncClient, **fields) -> dict:
    data = {
        "title": "Printer jam",
        "description": "Tray 2 jams on every print job.",
        "assignee": "it-support",
        **fields,
    }
    r = await client.post("/api/tickets", data=data)
    assert r.status_code == 201, r.text
    return r.json()


@pytest.mark.asyncio
async def test_health_endpoints(client: httpx.AsyncClient) -> None:
    r = await client.get("/healthz")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"

    r = await client.get("/readyz")
    assert r.status_code == 200
    assert r.json()["status"] == "ready"
    assert r.headers["x-request-id"]


@pytest.mark.asyncio
async def test_create_ticket_with_two_uploads(client: httpx.AsyncClient, settings: Settings) -> None:
    files = [
        ("attachments", ("screenshot.png", b"\x89PNG fake image", "image/png")),
        ("attachments", ("error.log", b"paper feed error", "text/plain")),
    ]
    data = {
        "title": "Printer jam",
        "description": "Tray 2 jams on every print job.",
        "assignee": "it-support",
        "priority": "High",
    }

    r = await client.post("/api/tickets", data=data, files=files)

    assert r.status_code == 201, r.text
    body = r.json()
    assert body["id"] > 0
    assert body["status"] == "Open"
    assert body["priority"] == "High"
    assert [(a["name"], a["size"], a["content_type"]) for a in body["attachments"]] == [
        ("screenshot.png", len(b"\x89PNG fake image"), "image/png"),
        ("error.log", len(b"paper feed error"), "text/plain"),
    ]
    stored = sorted(p.name.split("_", 1)[1] for p in Path(settings.uploads_dir).iterdir())
    assert stored == ["error.log", "screenshot.png"]

    r = await client.get(f"/api/tickets/{body['id']}")
    assert r.status_code == 200
    assert r.json() == body


@pytest.mark.asyncio
async def test_invalid_input_is_a_bad_request(client: httpx.AsyncClient) -> None:
    r = await client.get("/api/tickets/0")
    assert r.status_code == 400

    r = await client.post(
        "/api/tickets",
        data={"title": "   ", "description": "d", "assignee": "a"},
    )
    assert r.status_code == 400

    r = await client.get("/api/tickets/not-a-number")
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_list_update_and_delete(client: httpx.AsyncClient) -> None:
    created = await _create(client)

    r = await client.get("/api/tickets")
    assert [t["id"] for t in r.json()] == [created["id"]]

    r = await client.put(
        f"/api/tickets/{created['id']}",
        data={"assignee": "facilities", "status": "InProgress"},
        files=[("attachments", ("photo.jpg", b"jpeg", "image/jpeg"))],
    )
    assert r.status_code == 200, r.text
    updated = r.json()
    assert updated["title"] == created["title"]
    assert updated["assignee"] == "facilities"
    assert updated["status"] == "InProgress"
    assert [a["name"] for a in updated["attachments"]] == ["photo.jpg"]

    r = await client.get("/api/tickets")
    assert r.json() == [updated]

    r = await client.delete(f"/api/tickets/{created['id']}")
    assert r.status_code == 204
    r = await client.get(f"/api/tickets/{created['id']}")
    assert r.status_code == 404
    r = await client.delete(f"/api/tickets/{created['id']}")
    assert r.status_code == 404
    assert (await client.get("/api/tickets")).json() == []


@pytest.mark.asyncio
async def test_status_change_search_and_count(client: httpx.AsyncClient) -> None:
    first = await _create(client, priority="Low")
    await _create(client, title="Scanner offline", assignee="IT-Support")

    r = await client.patch(f"/api/tickets/{first['id']}/status", json={"status": "Resolved"})
    assert r.status_code == 200
    assert r.json()["status"] == "Resolved"
    assert r.json()["title"] == first["title"]

    r = await client.patch(f"/api/tickets/{first['id']}/status", json={"status": "Escalated"})
    assert r.status_code == 400

    assert (await client.get("/api/tickets/count")).json() == {"count": 2}
    assert (await client.get("/api/tickets/count", params={"status": "Open"})).json() == {"count": 1}

    r = await client.get("/api/tickets/search", params={"assignee": "it-support"})
    assert len(r.json()) == 2
    r = await client.get("/api/tickets/search", params={"status": "Resolved", "priority": "Low"})
    assert [t["id"] for t in r.json()] == [first["id"]]


@pytest.mark.asyncio
async def test_promise_date_range(client: httpx.AsyncClient) -> None:
    created = await _create(client)
    now = datetime.now(tz=UTC)

    r = await client.get(
        "/api/tickets/range",
        params={
            "start": (now - timedelta(hours=1)).isoformat(),
            "end": (now + timedelta(hours=1)).isoformat(),
        },
    )
    assert [t["id"] for t in r.json()] == [created["id"]]

    r = await client.get(
        "/api/tickets/range",
        params={"start": now.isoformat(), "end": (now - timedelta(days=1)).isoformat()},
    )
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_attachment_endpoints(client: httpx.AsyncClient) -> None:
    created = await _create(client)
    ticket_id = created["id"]

    r = await client.post(
        f"/api/tickets/{ticket_id}/attachments",
        files=[
            ("attachments", ("a.txt", b"first", "text/plain")),
            ("attachments", ("b.txt", b"second", "text/plain")),
        ],
    )
    assert r.status_code == 200, r.text
    first, second = r.json()["attachments"]

    r = await client.get(f"/api/tickets/attachments/{first['id']}")
    assert r.json() == first

    r = await client.get(f"/api/tickets/{ticket_id}/attachments/{first['id']}/content")
    assert r.status_code == 200
    assert r.content == b"first"
    assert r.headers["content-type"].startswith("text/plain")
    assert 'filename="a.txt"' in r.headers["content-disposition"]

    r = await client.delete(f"/api/tickets/attachments/{first['id']}")
    assert r.status_code == 204
    r = await client.get(f"/api/tickets/attachments/{first['id']}")
    assert r.status_code == 404

    r = await client.post(
        f"/api/tickets/{ticket_id}/attachments",
        data={"remove_previous": "true"},
        files=[("attachments", ("c.txt", b"third", "text/plain"))],
    )
    assert [a["name"] for a in r.json()["attachments"]] == ["c.txt"]
    r = await client.get(f"/api/tickets/{ticket_id}/attachments/{second['id']}/content")
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_download_of_non_ascii_name(client: httpx.AsyncClient) -> None:
    created = await _create(client)
    r = await client.post(
        f"/api/tickets/{created['id']}/attachments",
        files=[("attachments", ("报告.txt", "季度".encode(), "text/plain"))],
    )
    assert r.status_code == 200, r.text
    (report,) = r.json()["attachments"]
    assert report["name"] == "报告.txt"

    r = await client.get(f"/api/tickets/{created['id']}/attachments/{report['id']}/content")
    assert r.status_code == 200
    assert r.content == "季度".encode()
    assert "filename*=utf-8''" + quote("报告.txt") in r.headers["content-disposition"]


def test_content_disposition_escapes_quotes_and_non_ascii() -> None:
    assert _content_disposition("a.txt") == 'attachment; filename="a.txt"'

    quoted = _content_disposition('say "hi".txt')
    assert 'filename="say _hi_.txt"' in quoted
    assert "filename*=utf-8''say%20%22hi%22.txt" in quoted

    assert _content_disposition("报告.txt") == (
        "attachment; filename=\"__.txt\"; filename*=utf-8''" + quote("报告.txt")
    )
    assert _content_disposition("报告.txt").isascii()


@pytest.mark.asyncio
async def test_unreachable_database_keeps_service_unready(tmp_path, settings: Settings) -> None:
    unreachable = settings.model_copy(
        update={"database_url": f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'tickets.db'}"}
    )

    app = create_app(settings=unreachable)

    async with _serving(app) as client:
        with pytest.raises(PersistenceError):
            await app.state.startup_task

        r = await client.get("/readyz")
        assert r.status_code == 503
        assert r.headers["retry-after"]

        r = await client.get("/api/tickets")
        assert r.status_code == 503

        r = await client.get("/healthz")
        assert r.status_code == 200
