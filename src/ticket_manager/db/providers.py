"""
ticket_manager.db.providers

Persistence facade: picks the engine once from configuration.

Responsibilities:
- Resolve the configured engine name to its capability record.
- Build the single `TicketStore` the process uses.
"""

from __future__ import annotations

from ticket_manager.db.dialects import DIALECTS, DbEngine, EngineDialect
from ticket_manager.db.session import create_engine
from ticket_manager.db.store import TicketStore
from ticket_manager.errors import UnsupportedConfiguration
from ticket_manager.observability.logging import get_logger
from ticket_manager.settings import Settings
from ticket_manager.storage import AttachmentStorage

log = get_logger(__name__)


def select_dialect(engine_name: str) -> EngineDialect:
    try:
        return DIALECTS[DbEngine(engine_name.strip().lower())]
    except ValueError as e:
        supported = ", ".join(member.value for member in DbEngine)
        raise UnsupportedConfiguration(
            f"Unsupported database engine {engine_name!r} (expected one of: {supported})."
        ) from e


def create_ticket_store(settings: Settings, storage: AttachmentStorage | None = None) -> TicketStore:
    # Resolve first: an unsupported engine must fail before any connection pool exists.
    dialect = select_dialect(settings.db_engine)
    engine = create_engine(settings.database_url)
    log.info("ticket_store_selected", dialect=str(dialect.name), url=engine.url.render_as_string())
    return TicketStore(
        engine=engine,
        dialect=dialect,
        storage=storage or AttachmentStorage(settings.uploads_dir),
    )
