"""
ticket_manager

Top-level package for the ticket manager service.

Responsibilities:
- Expose package version metadata.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"


# --- Module Notes -----------------------------------------------------------
# The version is also recorded as `product_version` in the migration history table.
