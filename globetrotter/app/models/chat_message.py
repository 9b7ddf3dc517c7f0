"""
Chat Message database model.

Append-only log of a trip's chat. `sequence` is assigned per trip at
append time and is the only ordering authority.
"""

from sqlalchemy import Column, Integer, Text, ForeignKey, DateTime, Enum, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from globetrotter.app.db.session import Base
from globetrotter.app.models.enums import MessageKind


class ChatMessage(Base):
    """Chat message model."""
    __tablename__ = "chat_messages"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    trip_id = Column(Integer, ForeignKey('trips.id', ondelete="CASCADE"), nullable=False, index=True)
    # NULL for messages synthesized by the server without an acting user
    sender_id = Column(Integer, ForeignKey('users.id', ondelete="SET NULL"), nullable=True, index=True)

    body = Column(Text, nullable=False)
    kind = Column(Enum(MessageKind), default=MessageKind.TEXT, nullable=False)
    sequence = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint('trip_id', 'sequence', name='uq_chat_messages_trip_sequence'),
    )

    trip = relationship("Trip", back_populates="messages")
    sender = relationship("User", lazy="joined")

    def __repr__(self):
        return f"<ChatMessage(trip_id={self.trip_id}, sequence={self.sequence}, kind='{self.kind.value}')>"
