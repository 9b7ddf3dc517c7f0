"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from globetrotter.app.api.v1.endpoints import auth, trips, sharing, invites, members, chat

router = APIRouter()

# Authentication collaborator
router.include_router(auth.router)

# Trips and the public link view
router.include_router(trips.router)
router.include_router(trips.shared_router)

# Sharing and collaboration
router.include_router(sharing.router)
router.include_router(invites.router)
router.include_router(invites.user_router)
router.include_router(members.router)

# Chat (REST fallback and WebSocket)
router.include_router(chat.router)
router.include_router(chat.ws_router)
