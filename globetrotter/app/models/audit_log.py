"""
Audit rows for sign-ins and trip collaboration.
"""

from sqlalchemy import Column, DateTime, Integer, JSON, String
from sqlalchemy.sql import func
from globetrotter.app.db.session import Base


class AuditLog(Base):
    """
    One recorded event; `action` holds an `AuditAction` value.

    Actor and target ids are plain integers, not foreign keys, so the trail
    outlives deleted accounts and trips.
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    action = Column(String(100), nullable=False, index=True)

    # Null for unknown users (e.g. a login with a wrong username)
    actor_id = Column(Integer, index=True, nullable=True)
    actor_username = Column(String(100), nullable=True)

    target_user_id = Column(Integer, index=True, nullable=True)
    trip_id = Column(Integer, index=True, nullable=True)

    meta_data = Column(JSON, nullable=True)
    ip_address = Column(String(50), nullable=True)

    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', trip={self.trip_id})>"
