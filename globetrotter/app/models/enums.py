"""
Collaboration enumerations.

Defines the closed value sets used by trips, invites and chat messages.
"""

import enum


class TripVisibility(str, enum.Enum):
    """
    Trip visibility.

    Values:
        PRIVATE: Only the owner and explicit members can see the trip
        PUBLIC: Any authenticated user can see and join the trip
    """
    PRIVATE = "private"
    PUBLIC = "public"


class InviteStatus(str, enum.Enum):
    """Invite lifecycle status."""
    PENDING = "pending"  # Sent, invitee has not acted on the trip yet
    ACCEPTED = "accepted"  # Membership row created
    DECLINED = "declined"  # Invitee turned it down


class MessageKind(str, enum.Enum):
    """
    Chat message kind.

    Kinds:
        TEXT: Written by a member
        SYSTEM: Generated by the server (notices, settings changes)
        JOIN: A member entered the chat room
        LEAVE: A member left the chat room
    """
    TEXT = "text"
    SYSTEM = "system"
    JOIN = "join"
    LEAVE = "leave"
