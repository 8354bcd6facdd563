"""
Triage Interfaces Layer
=======================

FastAPI routes for the triage module.
"""

from helpdesk.triage.interfaces.controllers import router as events_router

__all__ = ["events_router"]
