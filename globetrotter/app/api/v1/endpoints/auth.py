"""
Authentication API endpoints.

Register, login, logout and the current user. Every other route checks
the bearer tokens issued here.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, or_
from globetrotter.app.db.session import get_db
from globetrotter.app.models.user import User
from globetrotter.app.schemas.auth import UserRegister, UserLogin, TokenResponse, UserResponse
from globetrotter.app.core.security import get_password_hash, verify_password
from globetrotter.app.core.jwt import create_access_token
from globetrotter.app.core.dependencies import get_current_user
from globetrotter.app.core.exceptions import (
    AuthenticationError,
    InsufficientPermissionsError,
    ResourceNotFoundError,
    ValidationFailedError,
)
from globetrotter.app.core.token_revocation import revoke_token
from globetrotter.app.services.audit import log_auth_event, AuditAction

router = APIRouter(prefix="/auth", tags=["Authentication"])


async def _find_user(db: AsyncSession, identifier: str) -> Optional[User]:
    """Look a user up by username, or by e-mail (stored lower-cased)."""
    result = await db.execute(
        select(User).where(or_(User.username == identifier, User.email == identifier.lower()))
    )
    return result.scalars().first()


def _issue_token(user: User) -> TokenResponse:
    return TokenResponse(
        access_token=create_access_token(data={"sub": user.username, "user_id": user.id}),
        token_type="bearer",
        user_id=user.id,
        username=user.username,
        email=user.email
    )


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def register(
    user_data: UserRegister,
    db: AsyncSession = Depends(get_db)
):
    """Create an account and sign it in. 400 if the username or e-mail is taken."""
    result = await db.execute(
        select(User.username, User.email).where(
            or_(User.username == user_data.username, User.email == user_data.email)
        )
    )
    for username, _ in result.all():
        if username == user_data.username:
            raise ValidationFailedError("Username already registered", details={"field": "username"})
        raise ValidationFailedError("Email already registered", details={"field": "email"})

    new_user = User(
        email=user_data.email,
        username=user_data.username,
        display_name=user_data.display_name,
        hashed_password=get_password_hash(user_data.password),
        is_active=True
    )
    db.add(new_user)
    await db.commit()
    await db.refresh(new_user)

    return _issue_token(new_user)


@router.post("/login", response_model=TokenResponse)
async def login(
    credentials: UserLogin,
    request: Request,
    db: AsyncSession = Depends(get_db)
):
    """
    Exchange username (or e-mail) and password for a token.

    Failed attempts are written to the audit log before the 401 goes out.
    """
    ip_address = request.client.host if request.client else None
    identifier = credentials.username.strip()
    user = await _find_user(db, identifier)

    if not user or not verify_password(credentials.password, user.hashed_password):
        await log_auth_event(
            db=db,
            action=AuditAction.LOGIN_FAILED,
            user_id=user.id if user else None,
            username=user.username if user else identifier,
            ip_address=ip_address,
            metadata={"reason": "Invalid password" if user else "User not found"}
        )
        raise AuthenticationError("Invalid credentials")

    if not user.is_active:
        await log_auth_event(
            db=db,
            action=AuditAction.LOGIN_FAILED,
            user_id=user.id,
            username=user.username,
            ip_address=ip_address,
            metadata={"reason": "Account is inactive"}
        )
        raise InsufficientPermissionsError("Inactive user account")

    response = _issue_token(user)
    await log_auth_event(
        db=db,
        action=AuditAction.LOGIN_SUCCESS,
        user_id=user.id,
        username=user.username,
        ip_address=ip_address
    )
    return response


@router.post("/logout")
async def logout(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Revoke the presented token. Other sessions of the user stay valid."""
    revoked = await revoke_token(current_user)

    await log_auth_event(
        db=db,
        action=AuditAction.TOKEN_REVOKED,
        user_id=current_user["user_id"],
        username=current_user["sub"],
        metadata={"revoked": revoked}
    )

    return {"status": "success", "revoked": revoked}


@router.get("/me", response_model=UserResponse)
async def get_current_user_info(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    user = await db.get(User, current_user["user_id"])
    if not user:
        raise ResourceNotFoundError("User", current_user["user_id"])
    return UserResponse.model_validate(user)
