# Package marker so revision files ship with the wheel; alembic skips this file.
