"""
Share-Link Service.

Owner-controlled visibility and public link minting.

Security:
  - 32-byte CSPRNG token, base64url-encoded (256 bits of entropy).
  - A token is minted once, on first activation, and reused on every later
    toggle so links already handed out keep working. Only an explicit
    rotation replaces it.
  - Unknown and expired tokens resolve to an identical 404 (no oracle).
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from globetrotter.app.core.config import settings
from globetrotter.app.core.exceptions import (
    ConflictError,
    InsufficientPermissionsError,
    ResourceNotFoundError,
)
from globetrotter.app.models.enums import TripVisibility
from globetrotter.app.models.trip import Trip
from globetrotter.app.services.access import as_utc, is_owner, share_expired
from globetrotter.app.services.audit import AuditAction, log_event

logger = logging.getLogger("globetrotter.sharing")

MINT_ATTEMPTS = 3


def generate_share_token() -> str:
    return secrets.token_urlsafe(settings.share_token_bytes)


def build_share_url(token: Optional[str]) -> Optional[str]:
    if not token:
        return None
    return f"{settings.public_base_url}/shared/{token}"


@dataclass(frozen=True)
class ShareSettings:
    """Owner's view of a trip's sharing state."""
    trip_display_id: int
    is_public: bool
    share_token: Optional[str]
    allow_copy: bool
    share_expires_at: Optional[datetime]
    share_url: Optional[str]

    @classmethod
    def from_trip(cls, trip: Trip) -> "ShareSettings":
        return cls(
            trip_display_id=trip.display_id,
            is_public=trip.visibility == TripVisibility.PUBLIC,
            share_token=trip.share_token,
            allow_copy=trip.allow_copy,
            share_expires_at=trip.share_expires_at,
            share_url=build_share_url(trip.share_token),
        )


def _require_owner(trip: Trip, requester_id: int, action: str) -> None:
    if not is_owner(trip, requester_id):
        raise InsufficientPermissionsError(
            f"Only the trip owner can {action}",
            details={"trip_id": trip.display_id}
        )


class ShareLinkService:

    @staticmethod
    async def get_share_settings(db: AsyncSession, trip: Trip, requester_id: int) -> ShareSettings:
        """Return the sharing settings of a trip (owner only)."""
        _require_owner(trip, requester_id, "view sharing settings")
        return ShareSettings.from_trip(trip)

    @staticmethod
    async def set_share_settings(
        db: AsyncSession,
        trip: Trip,
        requester_id: int,
        is_public: bool,
        allow_copy: bool = False,
        expires_at: Optional[datetime] = None
    ) -> ShareSettings:
        """
        Update visibility, copy permission and expiry, then commit.

        A token is minted only when the trip goes public without one.
        """
        _require_owner(trip, requester_id, "change sharing settings")

        trip_id = trip.id
        expires_at = as_utc(expires_at) if expires_at is not None else None

        for attempt in range(1, MINT_ATTEMPTS + 1):
            minted = False
            trip.visibility = TripVisibility.PUBLIC if is_public else TripVisibility.PRIVATE
            trip.allow_copy = allow_copy
            trip.share_expires_at = expires_at
            if is_public and not trip.share_token:
                trip.share_token = generate_share_token()
                minted = True

            try:
                await db.flush()
            except IntegrityError:
                # Only the share token is unique among the columns touched here
                await db.rollback()
                await db.refresh(trip)
                logger.warning("Share token collision on trip %s (attempt %s)", trip_id, attempt)
                continue

            await log_event(
                db=db,
                action=AuditAction.SHARE_SETTINGS_UPDATED,
                actor_id=requester_id,
                trip_id=trip_id,
                metadata={"is_public": is_public, "allow_copy": allow_copy, "token_minted": minted}
            )
            await db.commit()
            await db.refresh(trip)
            logger.info("Trip %s sharing updated: public=%s minted=%s", trip_id, is_public, minted)
            return ShareSettings.from_trip(trip)

        raise ConflictError("Could not mint a share token, please retry", details={"trip_id": trip.display_id})

    @staticmethod
    async def rotate_share_token(db: AsyncSession, trip: Trip, requester_id: int) -> ShareSettings:
        """
        Replace the share token explicitly (owner only), then commit.

        Links built from the previous token stop resolving.
        """
        _require_owner(trip, requester_id, "rotate the share link")

        trip_id = trip.id

        for attempt in range(1, MINT_ATTEMPTS + 1):
            trip.share_token = generate_share_token()

            try:
                await db.flush()
            except IntegrityError:
                await db.rollback()
                await db.refresh(trip)
                logger.warning("Share token collision on trip %s (attempt %s)", trip_id, attempt)
                continue

            await log_event(
                db=db,
                action=AuditAction.SHARE_TOKEN_ROTATED,
                actor_id=requester_id,
                trip_id=trip_id
            )
            await db.commit()
            await db.refresh(trip)
            logger.info("Trip %s share token rotated", trip_id)
            return ShareSettings.from_trip(trip)

        raise ConflictError("Could not mint a share token, please retry", details={"trip_id": trip.display_id})

    @staticmethod
    async def resolve_shared_trip(db: AsyncSession, token: str) -> Trip:
        """
        Resolve a public link token to its trip.

        The token is a capability: it grants read access on its own,
        whatever the in-app visibility flag says, until the share expires.
        Making the trip private does not revoke it; rotating the token does.

        Raises:
            ResourceNotFoundError: For unknown or expired tokens alike
        """
        trip = None
        if token:
            result = await db.execute(select(Trip).where(Trip.share_token == token))
            trip = result.scalar_one_or_none()

        if trip is None or share_expired(trip):
            raise ResourceNotFoundError("Shared trip")

        return trip
