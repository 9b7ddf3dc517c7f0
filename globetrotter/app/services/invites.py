"""
Invite Service.

Owner-initiated invitations. Acceptance is not a separate call: the
invitee's first member-authorized action converts the invite (see
`membership.ensure_membership`). Delivery (e-mail, push) is handled
elsewhere; this service ends at a durable invite row.
"""

import logging
from typing import Union

from sqlalchemy import select, desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from globetrotter.app.core.exceptions import (
    AlreadyMemberError,
    ConflictError,
    InsufficientPermissionsError,
    ResourceNotFoundError,
)
from globetrotter.app.models.enums import InviteStatus
from globetrotter.app.models.trip import Trip
from globetrotter.app.models.trip_invite import TripInvite
from globetrotter.app.models.user import User
from globetrotter.app.services.access import can_invite, is_member as has_member_access, utcnow
from globetrotter.app.services.audit import AuditAction, log_event
from globetrotter.app.services import membership

logger = logging.getLogger("globetrotter.invites")


class InviteService:

    @staticmethod
    async def resolve_invitee(db: AsyncSession, invitee: Union[str, int]) -> User:
        """
        Look up the invitee by e-mail address or user id.

        Raises:
            ResourceNotFoundError: If no account matches
        """
        if isinstance(invitee, int):
            query = select(User).where(User.id == invitee)
        else:
            query = select(User).where(User.email == invitee.strip().lower())

        result = await db.execute(query)
        user = result.scalar_one_or_none()

        if not user or not user.is_active:
            raise ResourceNotFoundError("User")

        return user

    @staticmethod
    async def create_invite(
        db: AsyncSession,
        trip: Trip,
        inviter_id: int,
        invitee: Union[str, int]
    ) -> tuple[TripInvite, bool]:
        """
        Invite a user to a trip.

        Flow:
        1. Resolve invitee (UserNotFound -> 404)
        2. Owner check (Forbidden -> 403)
        3. Not already a member (AlreadyMember -> 409)
        4. Persist

        A pending invite for the same user is returned unchanged; a declined
        one is re-opened.

        Returns:
            (invite, created) where created is False for an existing pending invite
        """
        invited_user = await InviteService.resolve_invitee(db, invitee)
        trip_display_id = trip.display_id

        if not can_invite(inviter_id, trip):
            raise InsufficientPermissionsError(
                "Only the trip owner can invite members",
                details={"trip_id": trip.display_id}
            )

        has_row = await membership.is_member(db, trip, invited_user.id)
        if has_member_access(trip, invited_user.id, has_row):
            raise AlreadyMemberError(invited_user.id, trip.display_id)

        result = await db.execute(
            select(TripInvite).where(
                TripInvite.trip_id == trip.id,
                TripInvite.invited_user_id == invited_user.id
            )
        )
        invite = result.scalar_one_or_none()

        if invite and invite.status == InviteStatus.PENDING:
            return invite, False

        if invite:
            # Declined earlier (or accepted and the row since vanished): re-open
            invite.status = InviteStatus.PENDING
            invite.invited_by_id = inviter_id
            invite.created_at = utcnow()
            invite.responded_at = None
        else:
            invite = TripInvite(
                trip_id=trip.id,
                invited_user_id=invited_user.id,
                invited_by_id=inviter_id,
                status=InviteStatus.PENDING,
                created_at=utcnow()
            )
            db.add(invite)

        try:
            await db.flush()
        except IntegrityError:
            # Same invitee invited concurrently
            await db.rollback()
            raise ConflictError("Invite changed concurrently, please retry", details={"trip_id": trip_display_id})

        await log_event(
            db=db,
            action=AuditAction.INVITE_CREATED,
            actor_id=inviter_id,
            target_user_id=invited_user.id,
            trip_id=trip.id
        )
        logger.info("User %s invited user %s to trip %s", inviter_id, invited_user.id, trip.id)

        return invite, True

    @staticmethod
    async def list_trip_invites(db: AsyncSession, trip: Trip, requester_id: int) -> list[TripInvite]:
        """List every invite of a trip (owner only), newest first."""
        if not can_invite(requester_id, trip):
            raise InsufficientPermissionsError(
                "Only the trip owner can view invites",
                details={"trip_id": trip.display_id}
            )

        result = await db.execute(
            select(TripInvite)
            .where(TripInvite.trip_id == trip.id)
            .order_by(desc(TripInvite.created_at), desc(TripInvite.id))
        )
        return list(result.scalars().all())

    @staticmethod
    async def list_pending_for_user(db: AsyncSession, user_id: int) -> list[tuple[TripInvite, Trip]]:
        """List a user's pending invites together with their trips, newest first."""
        result = await db.execute(
            select(TripInvite, Trip)
            .join(Trip, Trip.id == TripInvite.trip_id)
            .where(
                TripInvite.invited_user_id == user_id,
                TripInvite.status == InviteStatus.PENDING
            )
            .order_by(desc(TripInvite.created_at), desc(TripInvite.id))
        )
        return [(invite, trip) for invite, trip in result.all()]

    @staticmethod
    async def decline_invite(db: AsyncSession, trip: Trip, user_id: int) -> TripInvite:
        """
        Decline the caller's pending invite to a trip.

        Raises:
            ResourceNotFoundError: If there is no pending invite
        """
        result = await db.execute(
            select(TripInvite).where(
                TripInvite.trip_id == trip.id,
                TripInvite.invited_user_id == user_id,
                TripInvite.status == InviteStatus.PENDING
            )
        )
        invite = result.scalar_one_or_none()

        if not invite:
            raise ResourceNotFoundError("Invite")

        invite.status = InviteStatus.DECLINED
        invite.responded_at = utcnow()
        await db.flush()

        await log_event(
            db=db,
            action=AuditAction.INVITE_DECLINED,
            actor_id=user_id,
            target_user_id=user_id,
            trip_id=trip.id
        )

        return invite
