"""
Share settings API endpoints (trip owner only).
"""

from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from globetrotter.app.db.session import get_db
from globetrotter.app.core.dependencies import get_current_user
from globetrotter.app.schemas.sharing import ShareSettingsUpdate, ShareSettingsResponse
from globetrotter.app.services.sharing import ShareLinkService, ShareSettings
from globetrotter.app.services.trips import get_trip_by_display_id

router = APIRouter(prefix="/trips/{display_id}/share", tags=["Sharing"])


def _to_response(share: ShareSettings) -> ShareSettingsResponse:
    return ShareSettingsResponse(
        trip_id=share.trip_display_id,
        is_public=share.is_public,
        share_token=share.share_token,
        allow_copy=share.allow_copy,
        share_expires_at=share.share_expires_at,
        share_url=share.share_url
    )


@router.get("", response_model=ShareSettingsResponse)
async def get_share_settings(
    display_id: int = Path(..., gt=0),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    trip = await get_trip_by_display_id(db, display_id)
    share = await ShareLinkService.get_share_settings(db, trip, current_user["user_id"])
    return _to_response(share)


@router.put("", response_model=ShareSettingsResponse)
async def update_share_settings(
    settings_in: ShareSettingsUpdate,
    display_id: int = Path(..., gt=0),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Change visibility, copy permission and expiry.

    The first switch to public mints the share token; switching back and
    forth afterwards keeps the same link.
    """
    trip = await get_trip_by_display_id(db, display_id)
    share = await ShareLinkService.set_share_settings(
        db,
        trip,
        current_user["user_id"],
        is_public=settings_in.is_public,
        allow_copy=settings_in.allow_copy,
        expires_at=settings_in.expires_at
    )
    return _to_response(share)


@router.post("/rotate", response_model=ShareSettingsResponse)
async def rotate_share_link(
    display_id: int = Path(..., gt=0),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Issue a new share token. Links built from the old one stop working."""
    trip = await get_trip_by_display_id(db, display_id)
    share = await ShareLinkService.rotate_share_token(db, trip, current_user["user_id"])
    return _to_response(share)
