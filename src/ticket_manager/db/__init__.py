"""
ticket_manager.db

Persistence package (SQLAlchemy async).

Responsibilities:
- Provide ORM models, engine/session setup, migrations and the ticket store.
- Select the engine-specific provider from configuration.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Nothing above `TicketStore` knows which SQL engine is in use; engine-specific
# behavior is confined to the capability records in `db.dialects`.
