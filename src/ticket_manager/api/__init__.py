"""
ticket_manager.api

API package for the ticket manager service.

Responsibilities:
- FastAPI app factory and router modules.
- API-layer dependency wiring.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Routers stay thin: form/JSON parsing and delegation to `TicketManager`.
