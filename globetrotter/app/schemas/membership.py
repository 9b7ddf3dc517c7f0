"""
Membership schemas.
"""

from pydantic import BaseModel
from datetime import datetime
from globetrotter.app.schemas.auth import UserSummary


class MemberResponse(BaseModel):
    user: UserSummary
    joined_at: datetime

    class Config:
        from_attributes = True


class MemberListResponse(BaseModel):
    """Explicit members, earliest first. The owner is reported separately."""
    trip_id: int
    owner_id: int
    members: list[MemberResponse]


class JoinResponse(BaseModel):
    trip_id: int
    user_id: int
    is_member: bool
    joined_at: datetime | None = None
