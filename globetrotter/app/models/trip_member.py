"""
Trip Member database model.

Ensures a user is a member of a trip at most once through a DB-level
unique constraint.
"""

from sqlalchemy import Column, Integer, ForeignKey, DateTime, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from globetrotter.app.db.session import Base


class TripMember(Base):
    """
    Trip Member model.

    Durable record that a user takes part in a trip's chat and live
    updates. The owner never needs a row. Rows are never updated.
    """
    __tablename__ = "trip_members"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    trip_id = Column(Integer, ForeignKey('trips.id', ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete="CASCADE"), nullable=False, index=True)

    joined_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Final backstop against racing joins
    __table_args__ = (
        UniqueConstraint('trip_id', 'user_id', name='uq_trip_members_trip_user'),
    )

    trip = relationship("Trip", back_populates="members")
    user = relationship("User", lazy="joined")

    def __repr__(self):
        return f"<TripMember(trip_id={self.trip_id}, user_id={self.user_id})>"
