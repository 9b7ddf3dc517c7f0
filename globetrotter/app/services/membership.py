"""
Trip membership store.

Durable record of who has joined which trip. The store trusts its caller
on authorization and only enforces (trip, user) uniqueness, which is the
final arbiter when two joins race.
"""

import logging

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from globetrotter.app.core.exceptions import InsufficientPermissionsError, ResourceNotFoundError
from globetrotter.app.models.enums import InviteStatus
from globetrotter.app.models.trip import Trip
from globetrotter.app.models.trip_invite import TripInvite
from globetrotter.app.models.trip_member import TripMember
from globetrotter.app.services.access import AccessContext, is_owner, utcnow
from globetrotter.app.services.audit import AuditAction, log_event

logger = logging.getLogger("globetrotter.membership")


async def get_membership(db: AsyncSession, trip_id: int, user_id: int) -> TripMember | None:
    result = await db.execute(
        select(TripMember).where(
            TripMember.trip_id == trip_id,
            TripMember.user_id == user_id
        )
    )
    return result.scalar_one_or_none()


async def is_member(db: AsyncSession, trip: Trip, user_id: int) -> bool:
    """
    Check whether an explicit membership row exists.

    Owner status is not considered here; combine with the access
    predicates for that.
    """
    return await get_membership(db, trip.id, user_id) is not None


async def add_member(db: AsyncSession, trip: Trip, user_id: int) -> TripMember:
    """
    Add a user to a trip.

    Idempotent: an existing row is returned as-is. If a concurrent insert
    wins the unique constraint, the session is rolled back and the winning
    row is returned instead of an error.

    Args:
        db: Database session (caller commits)
        trip: Trip being joined
        user_id: Joining user

    Returns:
        The membership row

    Raises:
        ResourceNotFoundError: If the trip vanished underneath the insert
    """
    trip_id = trip.id

    existing = await get_membership(db, trip_id, user_id)
    if existing:
        return existing

    member = TripMember(trip_id=trip_id, user_id=user_id, joined_at=utcnow())
    db.add(member)

    try:
        await db.flush()  # Will raise IntegrityError if unique constraint violated
    except IntegrityError:
        await db.rollback()
        existing = await get_membership(db, trip_id, user_id)
        if existing is None:
            # Not a duplicate, so the foreign key failed: trip deleted meanwhile
            raise ResourceNotFoundError("Trip", trip_id)
        await db.refresh(trip)
        logger.info("Concurrent join of trip %s by user %s converged", trip_id, user_id)
        return existing

    await log_event(
        db=db,
        action=AuditAction.MEMBER_JOINED,
        actor_id=user_id,
        target_user_id=user_id,
        trip_id=trip_id
    )
    logger.info("User %s joined trip %s", user_id, trip_id)

    return await get_membership(db, trip_id, user_id)


async def list_members(db: AsyncSession, trip: Trip) -> list[TripMember]:
    """
    List a trip's explicit members, earliest joiner first.

    The owner is not included unless they also hold a row.
    """
    result = await db.execute(
        select(TripMember)
        .where(TripMember.trip_id == trip.id)
        .order_by(TripMember.joined_at.asc(), TripMember.id.asc())
    )
    return list(result.scalars().all())


async def load_access(db: AsyncSession, trip: Trip, user_id: int) -> AccessContext:
    """Build an access snapshot for (trip, user)."""
    has_membership = False
    if not is_owner(trip, user_id):
        has_membership = await is_member(db, trip, user_id)
    return AccessContext(trip=trip, user_id=user_id, has_membership=has_membership)


async def ensure_membership(db: AsyncSession, trip: Trip, user_id: int) -> bool:
    """
    Make sure a user who is entitled to membership actually holds it.

    This is where invite acceptance happens: an invited user's first
    member-authorized action turns their pending invite into a membership
    row. Public-trip joins are not handled here; see `add_member`.

    Returns:
        True if the user is (now) a member, False otherwise
    """
    if is_owner(trip, user_id):
        return True

    trip_id = trip.id

    if await is_member(db, trip, user_id):
        return True

    invite_result = await db.execute(
        select(TripInvite.id).where(
            TripInvite.trip_id == trip_id,
            TripInvite.invited_user_id == user_id,
            TripInvite.status == InviteStatus.PENDING
        )
    )
    invite_id = invite_result.scalar_one_or_none()
    if invite_id is None:
        return False

    await add_member(db, trip, user_id)
    await db.execute(
        update(TripInvite)
        .where(TripInvite.id == invite_id, TripInvite.status == InviteStatus.PENDING)
        .values(status=InviteStatus.ACCEPTED, responded_at=utcnow())
    )
    logger.info("Invite %s accepted by user %s on trip %s", invite_id, user_id, trip_id)

    return True


async def join_trip(db: AsyncSession, trip: Trip, user_id: int) -> AccessContext:
    """
    Admit a user to a trip's collaborative features.

    Invited users and existing members go through `ensure_membership`;
    anyone else may join only while the trip is public. Joining again is a
    no-op. Caller commits.

    Raises:
        InsufficientPermissionsError: If the trip is private (or its share
            expired) and the user holds neither a row nor an invite
    """
    if await ensure_membership(db, trip, user_id):
        return AccessContext(trip=trip, user_id=user_id, has_membership=True)

    access = AccessContext(trip=trip, user_id=user_id)
    if not access.can_join:
        raise InsufficientPermissionsError(
            "You do not have access to this trip",
            details={"trip_id": trip.display_id}
        )

    await add_member(db, trip, user_id)
    return AccessContext(trip=trip, user_id=user_id, has_membership=True)


async def resolve_access(db: AsyncSession, trip: Trip, user_id: int) -> AccessContext:
    """
    Access snapshot for a member action (opening the chat, posting).

    Unlike `load_access`, a pending invite is accepted on the way. Caller
    commits.
    """
    has_membership = await ensure_membership(db, trip, user_id)
    return AccessContext(trip=trip, user_id=user_id, has_membership=has_membership)
