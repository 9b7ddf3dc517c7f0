"""
Trip API endpoints.

Minimal trip collaborator for the sharing core: create, look up, list
public trips, and the unauthenticated public-link view.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from globetrotter.app.db.session import get_db
from globetrotter.app.core.dependencies import get_current_user
from globetrotter.app.core.guards import trip_guard
from globetrotter.app.schemas.trip import TripCreate, TripResponse, PublicTripResponse, TripActivityEntry
from globetrotter.app.services.audit import get_trip_audit_trail
from globetrotter.app.services import membership
from globetrotter.app.services.sharing import ShareLinkService
from globetrotter.app.services.trips import create_trip, get_trip_by_display_id, list_public_trips

router = APIRouter(prefix="/trips", tags=["Trips"])
shared_router = APIRouter(prefix="/shared", tags=["Public Links"])


def _trip_response(trip, access) -> TripResponse:
    response = TripResponse.model_validate(trip)
    response.is_owner = access.is_owner
    response.is_member = access.is_member
    return response


@router.post("", response_model=TripResponse, status_code=status.HTTP_201_CREATED)
async def create_new_trip(
    trip_in: TripCreate,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Create a private trip owned by the caller."""
    trip = await create_trip(db, current_user["user_id"], trip_in.name, trip_in.description)
    access = await membership.load_access(db, trip, current_user["user_id"])
    return _trip_response(trip, access)


@router.get("/public", response_model=List[PublicTripResponse])
async def list_community_trips(
    limit: int = Query(50, ge=1, le=100),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Public trips with a live share, newest first."""
    return await list_public_trips(db, limit)


@router.get("/{display_id}", response_model=TripResponse)
async def get_trip(
    display_id: int = Path(..., gt=0),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Trip detail.

    Requires view access: owner, member, or a public trip. A private trip
    answers 403 to everyone else; 404 means the trip does not exist.
    """
    trip = await get_trip_by_display_id(db, display_id)
    access = await membership.load_access(db, trip, current_user["user_id"])
    trip_guard.enforce_view(access)
    return _trip_response(trip, access)


@router.get("/{display_id}/activity", response_model=List[TripActivityEntry])
async def get_trip_activity(
    display_id: int = Path(..., gt=0),
    action: Optional[str] = Query(None, description="Only entries of this audit action"),
    limit: int = Query(100, ge=1, le=500),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Sharing, invite and membership history of the trip, newest first (owner only)."""
    trip = await get_trip_by_display_id(db, display_id)
    access = await membership.load_access(db, trip, current_user["user_id"])
    trip_guard.enforce_owner(access, "view trip activity")
    return await get_trip_audit_trail(db, trip.id, action=action, limit=limit)


@shared_router.get("/{token}", response_model=PublicTripResponse)
async def view_shared_trip(
    token: str,
    db: AsyncSession = Depends(get_db)
):
    """
    Public link view. No authentication: the token itself is the credential.

    Unknown and expired tokens both answer 404.
    """
    return await ShareLinkService.resolve_shared_trip(db, token)
