"""
Trip Pydantic schemas.

Trips are addressed by `display_id` everywhere in the API; the internal
primary key never leaves the server.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional
from globetrotter.app.models.enums import TripVisibility


class TripCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200, description="Trip name")
    description: Optional[str] = Field(default=None, description="Free-form description")


class TripResponse(BaseModel):
    """
    Trip as seen by a user with view access.

    `is_member` and `is_owner` describe the caller's standing.
    """
    display_id: int
    name: str
    description: Optional[str] = None
    owner_id: int
    visibility: TripVisibility
    allow_copy: bool
    created_at: datetime
    is_owner: bool = False
    is_member: bool = False

    class Config:
        from_attributes = True


class PublicTripResponse(BaseModel):
    """Trip summary for the community listing and the public link view."""
    display_id: int
    name: str
    description: Optional[str] = None
    owner_id: int
    allow_copy: bool
    created_at: datetime

    class Config:
        from_attributes = True


class TripActivityEntry(BaseModel):
    """One audit row of a trip, as shown to its owner."""
    action: str
    actor_id: Optional[int] = None
    target_user_id: Optional[int] = None
    meta_data: Optional[dict] = None
    timestamp: datetime

    class Config:
        from_attributes = True
