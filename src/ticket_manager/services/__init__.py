"""
ticket_manager.services

Service layer.

Responsibilities:
- Cache-aside orchestration over the ticket store.
- The one-shot startup routine that opens the readiness gate.
"""

# Package marker.
