"""
ticket_manager.errors

Error taxonomy shared by the persistence, cache and API layers.

Responsibilities:
- Name every failure class a caller can observe.
- Keep HTTP mapping out of the core (see `api.app` exception handlers).
"""

from __future__ import annotations


class TicketManagerError(Exception):
    pass


class InvalidArgument(TicketManagerError, ValueError):
    # Malformed identifiers or inputs; a client error, never retried.
    pass


class NotFound(TicketManagerError):
    pass


class PersistenceError(TicketManagerError):
    # Transaction/commit failure or lost connectivity. The cause is chained.
    pass


class MigrationConflict(PersistenceError):
    # Concurrent migration race ("table already exists"); recovered internally.
    pass


class UnsupportedConfiguration(TicketManagerError):
    pass


class NotReady(TicketManagerError):
    # Raised while the startup gate is closed; callers may retry after backoff.
    pass


class CacheError(TicketManagerError):
    pass


# --- Module Notes -----------------------------------------------------------
# Providers raise these directly; the facade and orchestrator let them propagate.
