"""
tests.conftest

Shared fixtures: a SQLite database per test standing in for the production engines.

Responsibilities:
- Provide settings rooted in a temporary directory.
- Provide a migrated `TicketStore` and a ready `TicketManager`.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable

import pytest
import pytest_asyncio

from ticket_manager.cache import CacheKeyBuilder, InMemoryCacheStore
from ticket_manager.db.dialects import HISTORY_TABLE, EngineDialect
from ticket_manager.db.models import TicketPriority
from ticket_manager.db.session import create_engine
from ticket_manager.db.store import TicketStore
from ticket_manager.schemas import AttachmentUpload, TicketCreate
from ticket_manager.services.startup import Readiness
from ticket_manager.services.ticket_manager import TicketManager
from ticket_manager.settings import Settings
from ticket_manager.storage import AttachmentStorage

SQLITE = EngineDialect(
    name="sqlite",
    mark_applied_sql=(
        f"INSERT OR IGNORE INTO {HISTORY_TABLE} (migration_id, product_version) "
        "VALUES (:migration_id, :product_version)"
    ),
    is_duplicate_table_error=lambda exc: "already exists" in str(exc),
)


@pytest.fixture
def sqlite_dialect() -> EngineDialect:
    return SQLITE


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        env="test",
        db_engine="postgresql",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'tickets.db'}",
        uploads_dir=tmp_path / "uploads",
    )


@pytest.fixture
def storage(settings: Settings) -> AttachmentStorage:
    return AttachmentStorage(settings.uploads_dir)


@pytest_asyncio.fixture
async def store(settings: Settings, storage: AttachmentStorage) -> AsyncIterator[TicketStore]:
    store = TicketStore(
        engine=create_engine(settings.database_url), dialect=SQLITE, storage=storage
    )
    await store.apply_migrations()
    try:
        yield store
    finally:
        await store.dispose()


@pytest.fixture
def cache() -> InMemoryCacheStore:
    return InMemoryCacheStore()


@pytest.fixture
def keys() -> CacheKeyBuilder:
    return CacheKeyBuilder("TicketManager")


@pytest.fixture
def manager(store: TicketStore, cache: InMemoryCacheStore, keys: CacheKeyBuilder) -> TicketManager:
    readiness = Readiness()
    readiness.mark_ready()
    return TicketManager(store=store, cache=cache, readiness=readiness, keys=keys)


@pytest.fixture
def make_draft() -> Callable[..., TicketCreate]:
    def factory(*, attachments: dict[str, bytes] | None = None, **fields) -> TicketCreate:
        values = {
            "title": "Printer jam",
            "description": "Tray 2 jams on every print job.",
            "assignee": "it-support",
            "priority": TicketPriority.high,
        }
        values.update(fields)
        uploads = [
            AttachmentUpload(file_name=name, content_type="text/plain", content=content)
            for name, content in (attachments or {}).items()
        ]
        return TicketCreate(**values, attachments=uploads)

    return factory
