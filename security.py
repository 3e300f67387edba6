"""Password hashing, bearer tokens and role checks."""

import os
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import NamedTuple, Optional

from fastapi import Depends, Header
from jose import JWTError, jwt
from passlib.context import CryptContext

from errors import Forbidden, Unauthorized

# Security settings
SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change-me")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24))
# Use pbkdf2_sha256 to avoid bcrypt backend issues in some environments
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"


ADMIN_CAPABILITIES = frozenset({"manage_catalog", "manage_orders", "manage_complaints"})


def has_capability(role: Role, capability: str) -> bool:
    if role is Role.ADMIN:
        return capability in ADMIN_CAPABILITIES
    return False


class CurrentUser(NamedTuple):
    id: str
    role: Role


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    return pwd_context.verify(password, password_hash)


def create_access_token(user_id: str, role: Role, expires_minutes: Optional[int] = None) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes or ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode = {"sub": str(user_id), "role": Role(role).value, "exp": expire}
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> CurrentUser:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise Unauthorized("Invalid token")
    user_id = payload.get("sub")
    try:
        role = Role(payload.get("role"))
    except ValueError:
        raise Unauthorized("Invalid token")
    if not user_id:
        raise Unauthorized("Invalid token")
    return CurrentUser(id=user_id, role=role)


def get_current_user(authorization: Optional[str] = Header(None)) -> CurrentUser:
    if not authorization:
        raise Unauthorized("Missing Authorization header")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise Unauthorized("Authorization header must be a bearer token")
    return decode_access_token(token.strip())


def require_capability(capability: str):
    def dependency(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if not has_capability(user.role, capability):
            raise Forbidden(f"Access denied, only Admin can {capability.replace('_', ' ')}")
        return user

    return dependency
