"""
Audit trail for sign-ins and trip collaboration.

`log_event` only adds and flushes the row, so it lands in the same commit
as the change it records (a rolled-back invite leaves no INVITE_CREATED
behind). Auth events are the exception: see `log_auth_event`.
"""

from typing import Any, Dict, Optional
from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession
from globetrotter.app.models.audit_log import AuditLog


class AuditAction:
    """Values stored in `AuditLog.action`."""
    # Accounts
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILED = "LOGIN_FAILED"
    TOKEN_REVOKED = "TOKEN_REVOKED"

    # Trips and sharing
    TRIP_CREATED = "TRIP_CREATED"
    SHARE_SETTINGS_UPDATED = "SHARE_SETTINGS_UPDATED"
    SHARE_TOKEN_ROTATED = "SHARE_TOKEN_ROTATED"

    # Collaboration
    INVITE_CREATED = "INVITE_CREATED"
    INVITE_DECLINED = "INVITE_DECLINED"
    MEMBER_JOINED = "MEMBER_JOINED"


async def log_event(
    db: AsyncSession,
    *,
    action: str,
    actor_id: Optional[int] = None,
    actor_username: Optional[str] = None,
    target_user_id: Optional[int] = None,
    trip_id: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
) -> AuditLog:
    """
    Stage an audit row in `db` and flush it.

    `trip_id` is the trip's internal id; rows carrying one show up in the
    owner's activity feed. The caller owns the commit.
    """
    entry = AuditLog(
        action=action,
        actor_id=actor_id,
        actor_username=actor_username,
        target_user_id=target_user_id,
        trip_id=trip_id,
        meta_data=metadata,
        ip_address=ip_address,
    )
    db.add(entry)
    await db.flush()
    return entry


async def log_auth_event(
    db: AsyncSession,
    *,
    action: str,
    user_id: Optional[int],
    username: Optional[str],
    ip_address: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """Record a sign-in related event and commit it straight away.

    A failed login raises right after this call, so there is no later
    commit for the row to ride along with.
    """
    entry = await log_event(
        db,
        action=action,
        actor_id=user_id,
        actor_username=username,
        metadata=metadata,
        ip_address=ip_address,
    )
    await db.commit()
    return entry


async def get_trip_audit_trail(
    db: AsyncSession,
    trip_id: int,
    action: Optional[str] = None,
    limit: int = 100,
) -> list[AuditLog]:
    """Newest-first events for one trip, optionally narrowed to a single action."""
    filters = [AuditLog.trip_id == trip_id]
    if action:
        filters.append(AuditLog.action == action)

    result = await db.execute(
        select(AuditLog).where(*filters).order_by(desc(AuditLog.id)).limit(limit)
    )
    return list(result.scalars().all())
