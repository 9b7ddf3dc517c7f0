"""
Trip access predicates.

Pure functions deciding whether a user may view, join, post to or invite
others to a trip. Nothing here touches the database: callers resolve the
trip and the membership row first and pass the results in. Every
predicate fails closed, so a missing trip or user is simply `False`.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from globetrotter.app.models.enums import TripVisibility
from globetrotter.app.models.trip import Trip


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive timestamps (SQLite drops tzinfo) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def share_expired(trip: Optional[Trip], now: Optional[datetime] = None) -> bool:
    if trip is None or trip.share_expires_at is None:
        return False
    return as_utc(trip.share_expires_at) <= as_utc(now or utcnow())


def is_owner(trip: Optional[Trip], user_id: Optional[int]) -> bool:
    if trip is None or user_id is None:
        return False
    return trip.owner_id == user_id


def is_public(trip: Optional[Trip], now: Optional[datetime] = None) -> bool:
    """
    Public and not expired.

    An expired share counts as private for new access decisions; members
    admitted before expiry keep their rows.
    """
    if trip is None:
        return False
    return trip.visibility == TripVisibility.PUBLIC and not share_expired(trip, now)


def is_member(trip: Optional[Trip], user_id: Optional[int], has_membership: bool) -> bool:
    if trip is None or user_id is None:
        return False
    return is_owner(trip, user_id) or has_membership


def can_view(
    trip: Optional[Trip],
    user_id: Optional[int],
    has_membership: bool,
    now: Optional[datetime] = None,
) -> bool:
    if trip is None or user_id is None:
        return False
    return is_member(trip, user_id, has_membership) or is_public(trip, now)


def can_join(
    trip: Optional[Trip],
    user_id: Optional[int],
    has_membership: bool,
    now: Optional[datetime] = None,
) -> bool:
    """Public and not yet a member. Joining again is a no-op, not a join."""
    if trip is None or user_id is None:
        return False
    return is_public(trip, now) and not is_member(trip, user_id, has_membership)


def can_post(trip: Optional[Trip], user_id: Optional[int], has_membership: bool) -> bool:
    return is_member(trip, user_id, has_membership)


def can_invite(inviter_id: Optional[int], trip: Optional[Trip]) -> bool:
    return is_owner(trip, inviter_id)


@dataclass(frozen=True)
class AccessContext:
    """
    Snapshot of everything needed to answer access questions for one
    (trip, user) pair at one instant.
    """
    trip: Optional[Trip]
    user_id: Optional[int]
    has_membership: bool = False
    now: datetime = field(default_factory=utcnow)

    @property
    def is_owner(self) -> bool:
        return is_owner(self.trip, self.user_id)

    @property
    def is_public(self) -> bool:
        return is_public(self.trip, self.now)

    @property
    def is_member(self) -> bool:
        return is_member(self.trip, self.user_id, self.has_membership)

    @property
    def can_view(self) -> bool:
        return can_view(self.trip, self.user_id, self.has_membership, self.now)

    @property
    def can_join(self) -> bool:
        return can_join(self.trip, self.user_id, self.has_membership, self.now)

    @property
    def can_post(self) -> bool:
        return can_post(self.trip, self.user_id, self.has_membership)

    @property
    def can_invite(self) -> bool:
        return can_invite(self.user_id, self.trip)
