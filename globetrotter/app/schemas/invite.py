"""
Invite Pydantic schemas.
"""

from pydantic import BaseModel, EmailStr, Field, model_validator
from datetime import datetime
from typing import Optional
from globetrotter.app.models.enums import InviteStatus


class InviteCreate(BaseModel):
    """
    Schema for POST /trips/{display_id}/invites.

    Exactly one of `email` or `user_id` identifies the invitee.
    """
    email: Optional[EmailStr] = Field(default=None, description="Invitee e-mail address")
    user_id: Optional[int] = Field(default=None, gt=0, description="Invitee user ID")

    @model_validator(mode="after")
    def check_invitee(self):
        if (self.email is None) == (self.user_id is None):
            raise ValueError("Provide either email or user_id")
        return self

    @property
    def invitee(self):
        return self.user_id if self.user_id is not None else str(self.email)


class InviteResponse(BaseModel):
    id: int
    trip_id: int = Field(..., description="Trip display ID")
    invited_user_id: int
    invited_by_id: int
    status: InviteStatus
    created_at: datetime
    responded_at: Optional[datetime] = None


class PendingInviteResponse(BaseModel):
    """A caller's pending invite with enough trip detail to render it."""
    id: int
    trip_id: int = Field(..., description="Trip display ID")
    trip_name: str
    invited_by_id: int
    created_at: datetime
