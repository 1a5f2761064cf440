"""
Grouping Interfaces Layer
==========================

Interface adapters (controllers) for the message grouping module.

Contains:
- Controllers: FastAPI route handlers and the live-update websocket
"""

from src.grouping.interfaces.controllers import (
    slack_router,
    grouping_router,
    tickets_router,
    live_router,
)

grouping_routers = [slack_router, grouping_router, tickets_router, live_router]

__all__ = [
    "slack_router",
    "grouping_router",
    "tickets_router",
    "live_router",
    "grouping_routers",
]
