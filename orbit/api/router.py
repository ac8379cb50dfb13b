"""
Orbit — Main API Router

Aggregates all sub-routers under a single prefix so that ``orbit.main``
can mount the entire API surface with one ``include_router`` call.
"""

from fastapi import APIRouter

from orbit.api import conversations, matches, notifications, sneak_peeks

router = APIRouter()

router.include_router(matches.router, prefix="/matches", tags=["Matches"])
router.include_router(conversations.router, prefix="/conversations", tags=["Conversations"])
router.include_router(sneak_peeks.router, prefix="/sneak-peeks", tags=["Sneak Peeks"])
router.include_router(notifications.router, prefix="/notifications", tags=["Notifications"])
