"""
Trip lookup and creation.

Thin trip collaborator: resolves display ids to trips and creates new
private trips. Everything about who may see a trip lives in the access
predicates.
"""

import logging

from sqlalchemy import select, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from globetrotter.app.core.exceptions import ConflictError, ResourceNotFoundError
from globetrotter.app.models.enums import TripVisibility
from globetrotter.app.models.trip import Trip
from globetrotter.app.services.access import utcnow
from globetrotter.app.services.audit import AuditAction, log_event

logger = logging.getLogger("globetrotter.trips")

DISPLAY_ID_ATTEMPTS = 3


async def get_trip_by_display_id(db: AsyncSession, display_id: int) -> Trip:
    """
    Resolve a public display id to a trip.

    Raises:
        ResourceNotFoundError: If no trip has this display id
    """
    result = await db.execute(select(Trip).where(Trip.display_id == display_id))
    trip = result.scalar_one_or_none()

    if not trip:
        raise ResourceNotFoundError("Trip", display_id)

    return trip


async def create_trip(
    db: AsyncSession,
    owner_id: int,
    name: str,
    description: str | None = None
) -> Trip:
    """
    Create a private trip owned by `owner_id` and commit it.

    Display ids are allocated as max + 1; a collision with a concurrent
    creation is retried.
    """
    for attempt in range(1, DISPLAY_ID_ATTEMPTS + 1):
        next_display_id = (await db.execute(select(func.coalesce(func.max(Trip.display_id), 0)))).scalar() + 1

        trip = Trip(
            display_id=next_display_id,
            owner_id=owner_id,
            name=name,
            description=description,
            visibility=TripVisibility.PRIVATE,
            allow_copy=False
        )
        db.add(trip)

        try:
            await db.flush()
        except IntegrityError:
            await db.rollback()
            logger.warning("Display id %s taken, retrying (attempt %s)", next_display_id, attempt)
            continue

        await log_event(
            db=db,
            action=AuditAction.TRIP_CREATED,
            actor_id=owner_id,
            trip_id=trip.id,
            metadata={"display_id": next_display_id}
        )
        await db.commit()
        await db.refresh(trip)
        return trip

    raise ConflictError("Could not allocate a trip display id, please retry")


async def list_public_trips(db: AsyncSession, limit: int = 50) -> list[Trip]:
    """Community listing: public trips whose share has not expired, newest first."""
    now = utcnow()
    result = await db.execute(
        select(Trip)
        .where(
            Trip.visibility == TripVisibility.PUBLIC,
            or_(Trip.share_expires_at.is_(None), Trip.share_expires_at > now)
        )
        .order_by(Trip.display_id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())
