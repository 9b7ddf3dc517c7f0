"""
User database model.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.orm import validates
from sqlalchemy.sql import func
from globetrotter.app.db.session import Base


class User(Base):
    """
    An account. Users own trips, join other users' trips and post in trip
    chats; `display_name` is what other members see next to messages.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    # Stored lower-cased; invite-by-email matches on this column
    email = Column(String(255), unique=True, index=True, nullable=False)
    username = Column(String(100), unique=True, index=True, nullable=False)
    display_name = Column(String(150), nullable=True)
    hashed_password = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    @validates("email")
    def normalize_email(self, key, value):
        return value.strip().lower()

    def __repr__(self):
        return f"<User(id={self.id}, username='{self.username}')>"
