"""
ticket_manager.db.migrations

Alembic script directory for the ticket schema.

Responsibilities:
- Hold versioned revision files under `versions/`, applied by `db.migrator`.
"""

from __future__ import annotations

from pathlib import Path

SCRIPT_LOCATION = Path(__file__).resolve().parent
