"""
Invite API endpoints.

Owners invite users by e-mail or user id. Accepting is the same code path
as any other member action (`ensure_membership`); the explicit accept
route exists for clients that want a button for it.
"""

from typing import List

from fastapi import APIRouter, Depends, Path, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from globetrotter.app.db.session import get_db
from globetrotter.app.core.dependencies import get_current_user
from globetrotter.app.core.guards import trip_guard
from globetrotter.app.models.trip_invite import TripInvite
from globetrotter.app.schemas.invite import InviteCreate, InviteResponse, PendingInviteResponse
from globetrotter.app.schemas.membership import JoinResponse
from globetrotter.app.services import membership
from globetrotter.app.services.invites import InviteService
from globetrotter.app.services.trips import get_trip_by_display_id

router = APIRouter(prefix="/trips/{display_id}/invites", tags=["Invites"])
user_router = APIRouter(prefix="/invites", tags=["Invites"])


def _invite_response(invite: TripInvite, trip_display_id: int) -> InviteResponse:
    return InviteResponse(
        id=invite.id,
        trip_id=trip_display_id,
        invited_user_id=invite.invited_user_id,
        invited_by_id=invite.invited_by_id,
        status=invite.status,
        created_at=invite.created_at,
        responded_at=invite.responded_at
    )


@router.post("", response_model=InviteResponse, status_code=status.HTTP_201_CREATED)
async def create_invite(
    invite_in: InviteCreate,
    response: Response,
    display_id: int = Path(..., gt=0),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Invite a user to the trip (owner only).

    Returns 201 for a new invite and 200 when the user already has a
    pending one. 404 if no account matches, 409 if already a member.
    """
    trip = await get_trip_by_display_id(db, display_id)

    invite, created = await InviteService.create_invite(
        db, trip, current_user["user_id"], invite_in.invitee
    )
    await db.commit()

    if not created:
        response.status_code = status.HTTP_200_OK

    return _invite_response(invite, display_id)


@router.get("", response_model=List[InviteResponse])
async def list_invites(
    display_id: int = Path(..., gt=0),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    trip = await get_trip_by_display_id(db, display_id)
    invites = await InviteService.list_trip_invites(db, trip, current_user["user_id"])
    return [_invite_response(invite, display_id) for invite in invites]


@router.post("/accept", response_model=JoinResponse)
async def accept_invite(
    display_id: int = Path(..., gt=0),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Accept a pending invite.

    Idempotent for existing members. 403 without a pending invite.
    """
    trip = await get_trip_by_display_id(db, display_id)
    user_id = current_user["user_id"]

    access = await membership.resolve_access(db, trip, user_id)
    trip_guard.enforce_post(access)
    await db.commit()

    member = await membership.get_membership(db, trip.id, user_id)
    return JoinResponse(
        trip_id=display_id,
        user_id=user_id,
        is_member=True,
        joined_at=member.joined_at if member else None
    )


@router.post("/decline", response_model=InviteResponse)
async def decline_invite(
    display_id: int = Path(..., gt=0),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    trip = await get_trip_by_display_id(db, display_id)
    invite = await InviteService.decline_invite(db, trip, current_user["user_id"])
    await db.commit()
    return _invite_response(invite, display_id)


@user_router.get("/pending", response_model=List[PendingInviteResponse])
async def list_my_pending_invites(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Pending invites addressed to the caller, newest first."""
    pending = await InviteService.list_pending_for_user(db, current_user["user_id"])
    return [
        PendingInviteResponse(
            id=invite.id,
            trip_id=trip.display_id,
            trip_name=trip.name,
            invited_by_id=invite.invited_by_id,
            created_at=invite.created_at
        )
        for invite, trip in pending
    ]
