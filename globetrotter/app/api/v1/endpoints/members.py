"""
Trip membership API endpoints.
"""

from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from globetrotter.app.db.session import get_db
from globetrotter.app.core.dependencies import get_current_user
from globetrotter.app.core.guards import trip_guard
from globetrotter.app.schemas.membership import MemberListResponse, MemberResponse, JoinResponse
from globetrotter.app.services import membership
from globetrotter.app.services.trips import get_trip_by_display_id

router = APIRouter(prefix="/trips/{display_id}/members", tags=["Members"])


@router.get("", response_model=MemberListResponse)
async def list_trip_members(
    display_id: int = Path(..., gt=0),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Members in join order (view access)."""
    trip = await get_trip_by_display_id(db, display_id)
    access = await membership.load_access(db, trip, current_user["user_id"])
    trip_guard.enforce_view(access)

    members = await membership.list_members(db, trip)
    return MemberListResponse(
        trip_id=display_id,
        owner_id=trip.owner_id,
        members=[MemberResponse.model_validate(m) for m in members]
    )


@router.post("/join", response_model=JoinResponse)
async def join_trip(
    display_id: int = Path(..., gt=0),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Join a public trip, or take up a pending invite.

    Safe to retry: joining again returns the existing membership.
    """
    trip = await get_trip_by_display_id(db, display_id)
    user_id = current_user["user_id"]

    await membership.join_trip(db, trip, user_id)
    await db.commit()

    member = await membership.get_membership(db, trip.id, user_id)
    return JoinResponse(
        trip_id=display_id,
        user_id=user_id,
        is_member=True,
        joined_at=member.joined_at if member else None
    )
