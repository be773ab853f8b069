from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional
from jose import JWTError, jwt
from passlib.context import CryptContext
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from .config import settings
from .database import get_db
from .errors import Unauthorized, Forbidden
from ..models.enums import Role
from ..models.user import User
import logging

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CurrentUser:
    """Authenticated identity handed to every route and service call."""

    id: int
    role: Role
    name: str
    email: str


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(data: dict):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_expire_minutes)
    to_encode.update({"exp": expire})

    # Ensure 'sub' is a string (JWT requirement)
    if 'sub' in to_encode:
        to_encode['sub'] = str(to_encode['sub'])

    encoded_jwt = jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)
    logger.info(f"Created token for user {data.get('sub')} with role {data.get('role')}")
    return encoded_jwt


def decode_token(token: str) -> int:
    """Return the user id carried by a token, or raise Unauthorized."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError as e:
        logger.warning(f"JWT decode error: {e}")
        raise Unauthorized("Invalid token")

    user_id_str = payload.get("sub")
    if user_id_str is None:
        logger.warning("Token missing subject")
        raise Unauthorized("Invalid token")

    try:
        return int(user_id_str)
    except ValueError:
        logger.warning(f"Cannot convert user_id '{user_id_str}' to int")
        raise Unauthorized("Invalid token")


async def authenticate(db: AsyncSession, token: Optional[str]) -> CurrentUser:
    if not token:
        raise Unauthorized()

    user_id = decode_token(token)
    result = await db.execute(select(User).filter(User.id == user_id))
    user = result.scalar_one_or_none()

    if not user or not user.is_active:
        logger.warning(f"Rejected token for missing or disabled user {user_id}")
        raise Unauthorized("Account disabled")

    return CurrentUser(id=user.id, role=Role(user.role), name=user.name, email=user.email)


def authorize(user: CurrentUser, allowed_roles: Iterable[Role]) -> None:
    allowed = set(allowed_roles)
    if user.role not in allowed:
        logger.warning(f"Access denied - role '{user.role.value}' not in {sorted(r.value for r in allowed)}")
        raise Forbidden()


def can_manage(user: CurrentUser, owner_id: int) -> bool:
    """Whether the user may mutate a resource owned by owner_id."""
    if user.role is Role.ADMIN:
        return True
    if user.role is Role.TEACHER:
        return user.id == owner_id
    if user.role is Role.STUDENT:
        return False
    raise ValueError(f"Unknown role: {user.role}")


def ensure_can_manage(user: CurrentUser, owner_id: int) -> None:
    if not can_manage(user, owner_id):
        raise Forbidden()


async def get_current_user(
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
        db: AsyncSession = Depends(get_db),
) -> CurrentUser:
    token = credentials.credentials if credentials else None
    return await authenticate(db, token)


async def get_optional_user(
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
        db: AsyncSession = Depends(get_db),
) -> Optional[CurrentUser]:
    if not credentials:
        return None
    try:
        return await authenticate(db, credentials.credentials)
    except Unauthorized:
        return None


def require_roles(*roles: Role):
    """Build a dependency that authenticates and checks the caller's role."""

    async def dependency(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        authorize(user, roles)
        return user

    return dependency


require_admin = require_roles(Role.ADMIN)
require_staff = require_roles(Role.TEACHER, Role.ADMIN)
require_student = require_roles(Role.STUDENT)
