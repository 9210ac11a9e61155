"""
Authentication and security:
- JWT bearer tokens via python-jose[cryptography]
- Password hashing via passlib[bcrypt]
- Role checks (admin / staff / user) done server-side
- Audit trail of critical actions
"""
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
import hashlib
import secrets
from jose import JWTError, jwt
from passlib.context import CryptContext
from fastapi import HTTPException, status, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import logging

from stockroom.config import settings
from stockroom.database import get_db
from stockroom import models

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

security = HTTPBearer(auto_error=False)

def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash"""
    return pwd_context.verify(plain_password, hashed_password)

def get_password_hash(password: str) -> str:
    """Hash a password with bcrypt"""
    return pwd_context.hash(password)

def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token"""
    to_encode = data.copy()
    now = datetime.now(timezone.utc)

    if expires_delta:
        expire = now + expires_delta
    else:
        expire = now + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": expire, "iat": now})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """Decode and verify JWT token"""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError as e:
        logger.warning(f"JWT decode error: {e}")
        return None

def generate_reset_token() -> tuple[str, str]:
    """Return (token, sha256 hex digest). Only the digest is stored."""
    token = secrets.token_hex(32)
    return token, hash_reset_token(token)

def hash_reset_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()

def _credentials_exception(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )

def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> models.User:
    """Resolve the authenticated user from the bearer token."""
    if credentials is None:
        raise _credentials_exception("Not authenticated")

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        logger.warning("Invalid JWT token provided")
        raise _credentials_exception("Invalid authentication credentials")

    username = payload.get("sub")
    if username is None:
        logger.warning("JWT token missing 'sub' claim")
        raise _credentials_exception("Invalid authentication credentials")

    user = db.execute(select(models.User).where(models.User.username == username)).scalar_one_or_none()
    if user is None:
        logger.warning(f"User not found: {username}")
        raise _credentials_exception("User not found")

    if not user.is_active:
        logger.warning(f"Inactive user presented a token: {username}")
        raise _credentials_exception("Inactive user")

    return user

def require_roles(*roles: str):
    """Dependency factory restricting a route to the given roles."""
    def checker(current_user: models.User = Depends(get_current_user)) -> models.User:
        if current_user.role not in roles:
            logger.warning(
                f"User {current_user.username} ({current_user.role}) denied; requires {', '.join(roles)}"
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"{' or '.join(r.capitalize() for r in roles)} privileges required"
            )
        return current_user
    return checker

require_admin = require_roles("admin")
require_staff = require_roles("admin", "staff")

def audit_log_action(
    db: Session,
    user_id: Optional[int],
    action: str,
    table_name: Optional[str] = None,
    record_id: Optional[int] = None,
    old_values: Optional[Dict] = None,
    new_values: Optional[Dict] = None,
    notes: Optional[str] = None
):
    """
    Create audit log entry.
    Runs after the audited operation has committed; a failure here is logged
    and does not undo that operation.
    """
    try:
        audit_entry = models.AuditLog(
            user_id=user_id,
            action=action,
            table_name=table_name,
            record_id=record_id,
            old_values=old_values,
            new_values=new_values,
            notes=notes
        )
        db.add(audit_entry)
        db.commit()
        logger.info(f"Audit log created: {action} by user {user_id}")
    except SQLAlchemyError as e:
        logger.error(f"Failed to create audit log for {action}: {e}")
        db.rollback()
