"""
Security guards for trip access control.

Turns access predicates into 403 errors at the API boundary.
"""

from globetrotter.app.core.exceptions import InsufficientPermissionsError
from globetrotter.app.services.access import AccessContext


class TripAccessGuard:
    """
    Class-based guard for trip-level authorization.

    Private trips answer 403 (not 404) to non-members: a trip that exists
    but is off limits is reported as forbidden on every route.

    Usage:
        trip_guard = TripAccessGuard()

        @router.get("/trips/{display_id}/chat")
        async def chat_history(...):
            trip = await get_trip_by_display_id(db, display_id)
            access = await load_access(db, trip, current_user["user_id"])
            trip_guard.enforce_view(access)
            ...
    """

    def enforce_view(self, access: AccessContext) -> None:
        """
        Raises:
            InsufficientPermissionsError: If the user can neither see the
                trip as a member nor as a public trip
        """
        if not access.can_view:
            raise InsufficientPermissionsError(
                "You do not have access to this trip",
                details={"trip_id": self._display_id(access)}
            )

    def enforce_post(self, access: AccessContext) -> None:
        if not access.can_post:
            raise InsufficientPermissionsError(
                "You must be a member of this trip to post messages",
                details={"trip_id": self._display_id(access)}
            )

    def enforce_owner(self, access: AccessContext, action: str = "manage this trip") -> None:
        if not access.is_owner:
            raise InsufficientPermissionsError(
                f"Only the trip owner can {action}",
                details={"trip_id": self._display_id(access)}
            )

    @staticmethod
    def _display_id(access: AccessContext):
        return access.trip.display_id if access.trip is not None else None


trip_guard = TripAccessGuard()
