"""
ticket_manager.api.routers

HTTP routers: health probes and the ticket API.
"""

# Package marker.
