"""
Share settings schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional


class ShareSettingsUpdate(BaseModel):
    """
    Schema for PUT /trips/{display_id}/share.

    A token is minted the first time `is_public` is set; later toggles
    reuse it.
    """
    is_public: bool = Field(..., description="Make the trip public")
    allow_copy: bool = Field(default=False, description="Let viewers copy the itinerary")
    expires_at: Optional[datetime] = Field(default=None, description="When the public share stops working")


class ShareSettingsResponse(BaseModel):
    trip_id: int = Field(..., description="Trip display ID")
    is_public: bool
    share_token: Optional[str] = None
    allow_copy: bool
    share_expires_at: Optional[datetime] = None
    share_url: Optional[str] = None
