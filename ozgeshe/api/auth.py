from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from ..core.database import get_db
from ..core.auth import (
    CurrentUser, verify_password, create_access_token, get_password_hash, get_current_user
)
from ..core.errors import Conflict, Forbidden, NotFound, ServerError, Unauthorized
from ..models.enums import Role
from ..models.user import User
from ..schemas import LoginRequest, RegisterRequest, TokenResponse, UserResponse
import logging

logger = logging.getLogger(__name__)
router = APIRouter()


def issue_token(user: User) -> TokenResponse:
    token = create_access_token(data={"sub": user.id, "role": user.role})
    return TokenResponse(token=token, user=UserResponse.model_validate(user))


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def register(request: RegisterRequest, db: AsyncSession = Depends(get_db)):
    """
    Create a student or teacher account and return an access token
    """
    try:
        email = request.email.lower().strip()
        logger.info(f"Registration attempt for email: {email}")

        if request.role is Role.ADMIN:
            raise Forbidden("Cannot self-register as admin", code="ADMIN_REGISTRATION_FORBIDDEN")

        existing = await db.execute(select(User.id).filter(User.email == email))
        if existing.scalar_one_or_none():
            raise Conflict("Email already registered", code="EMAIL_TAKEN")

        user = User(
            name=request.name,
            email=email,
            hashed_password=get_password_hash(request.password),
            role=(request.role or Role.STUDENT).value,
            subjects=[],
        )
        db.add(user)
        try:
            await db.commit()
        except IntegrityError:
            # Another registration claimed the email first
            await db.rollback()
            raise Conflict("Email already registered", code="EMAIL_TAKEN")
        await db.refresh(user)

        logger.info(f"User registered successfully: {user.email} ({user.role})")
        return issue_token(user)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Registration error for {request.email}: {e}")
        await db.rollback()
        raise ServerError("Unable to register", code="REGISTRATION_FAILED")


@router.post("/login", response_model=TokenResponse)
async def login(request: LoginRequest, db: AsyncSession = Depends(get_db)):
    """
    Authenticate any user and return an access token
    """
    try:
        email = request.email.lower().strip()
        logger.info(f"Login attempt for email: {email}")

        result = await db.execute(select(User).filter(User.email == email))
        user = result.scalar_one_or_none()

        if not user or not verify_password(request.password, user.hashed_password):
            logger.warning(f"Failed login attempt for email: {email}")
            raise Unauthorized("Invalid credentials", code="INVALID_CREDENTIALS")

        if not user.is_active:
            raise Forbidden("Account disabled", code="ACCOUNT_DISABLED")

        logger.info(f"Login successful: {user.email}")
        return issue_token(user)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Login error for {request.email}: {e}")
        raise ServerError("Unable to sign in", code="LOGIN_FAILED")


@router.post("/logout")
async def logout():
    """
    Logout endpoint (client-side token removal)
    """
    return {"message": "Logged out successfully"}


@router.get("/me", response_model=UserResponse)
async def get_me(user: CurrentUser = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    """
    Get current user information
    """
    try:
        result = await db.execute(select(User).filter(User.id == user.id))
        db_user = result.scalar_one_or_none()
        if not db_user:
            raise NotFound("User not found")
        return db_user

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error getting current user: {e}")
        raise ServerError("Could not get user information")
