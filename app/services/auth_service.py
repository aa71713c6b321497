"""Password hashing and bearer tokens for operator accounts."""

from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

import jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from app.config import settings
from app.errors import UnauthorizedError
from app.logging_config import get_logger
from app.models import User

logger = get_logger("auth")

JWT_ALGORITHM = "HS256"

_pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


def hash_password(password: str) -> str:
    if not password:
        raise ValueError("Password must be non-empty.")
    return _pwd_context.hash(password)


def verify_password(password: str, hashed_password: str) -> bool:
    if not hashed_password:
        return False
    return _pwd_context.verify(password, hashed_password)


def create_access_token(user: User, expires_in: Optional[int] = None) -> str:
    now = datetime.now(timezone.utc)
    ttl = expires_in if expires_in is not None else settings.jwt_expiration
    payload = {
        "sub": str(user.id),
        "email": user.email,
        "is_admin": bool(user.is_admin),
        "iat": now,
        "exp": now + timedelta(seconds=ttl),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> UUID:
    """Return the user id carried by a valid token."""
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("Token expired")
    except jwt.InvalidTokenError:
        raise UnauthorizedError("Invalid token")
    try:
        return UUID(payload["sub"])
    except (KeyError, ValueError):
        raise UnauthorizedError("Invalid token")


def authenticate(db: Session, email: str, password: str) -> User:
    user = db.query(User).filter(User.email == email.strip().lower()).first()
    if user is None or not verify_password(password, user.password_hash):
        logger.info("Login failed", extra={"context": {"email": email}})
        raise UnauthorizedError("Invalid email or password")
    if not user.is_active:
        raise UnauthorizedError("Account is disabled")
    if not user.has_operator_access():
        raise UnauthorizedError("Account has no operator access")
    user.last_seen_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(user)
    logger.info("Login succeeded", extra={"context": {"user_id": str(user.id)}})
    return user


def user_from_token(db: Session, token: str) -> User:
    """Resolve the active user for a token; roles come from the stored record."""
    user_id = decode_access_token(token)
    user = db.query(User).filter(User.id == user_id).first()
    if user is None or not user.has_operator_access():
        raise UnauthorizedError("User not found or inactive")
    return user
