"""
Trip database model.

Trips are the unit of sharing: visibility, the public share link and the
chat room all hang off a trip.
"""

from sqlalchemy import Column, Integer, String, Text, Boolean, ForeignKey, DateTime, Enum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from globetrotter.app.db.session import Base
from globetrotter.app.models.enums import TripVisibility


class Trip(Base):
    """
    Trip model.

    `id` is the internal key; `display_id` is the small integer exposed in
    URLs. `share_token` is NULL until a public link is first generated and
    is only replaced by an explicit rotation.
    """
    __tablename__ = "trips"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    display_id = Column(Integer, unique=True, index=True, nullable=False)

    # Ownership
    owner_id = Column(Integer, ForeignKey('users.id', ondelete="CASCADE"), nullable=False, index=True)

    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)

    # Sharing
    visibility = Column(Enum(TripVisibility), default=TripVisibility.PRIVATE, nullable=False, index=True)
    share_token = Column(String(128), unique=True, index=True, nullable=True)
    allow_copy = Column(Boolean, default=False, nullable=False)
    share_expires_at = Column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    members = relationship("TripMember", back_populates="trip", cascade="all, delete-orphan", passive_deletes=True)
    invites = relationship("TripInvite", back_populates="trip", cascade="all, delete-orphan", passive_deletes=True)
    messages = relationship("ChatMessage", back_populates="trip", cascade="all, delete-orphan", passive_deletes=True)

    def __repr__(self):
        return f"<Trip(id={self.id}, display_id={self.display_id}, visibility='{self.visibility.value}')>"
