"""
Trip Invite database model.
"""

from sqlalchemy import Column, Integer, ForeignKey, DateTime, Enum, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from globetrotter.app.db.session import Base
from globetrotter.app.models.enums import InviteStatus


class TripInvite(Base):
    """
    Owner-issued request to add a specific user to a trip.

    One row per (trip, invitee); re-inviting reuses the row.
    """
    __tablename__ = "trip_invites"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    trip_id = Column(Integer, ForeignKey('trips.id', ondelete="CASCADE"), nullable=False, index=True)
    invited_user_id = Column(Integer, ForeignKey('users.id', ondelete="CASCADE"), nullable=False, index=True)
    invited_by_id = Column(Integer, ForeignKey('users.id', ondelete="CASCADE"), nullable=False)

    status = Column(Enum(InviteStatus), default=InviteStatus.PENDING, nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    responded_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint('trip_id', 'invited_user_id', name='uq_trip_invites_trip_user'),
    )

    trip = relationship("Trip", back_populates="invites")

    def __repr__(self):
        return f"<TripInvite(trip_id={self.trip_id}, invited_user_id={self.invited_user_id}, status='{self.status.value}')>"
