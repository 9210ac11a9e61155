"""
Authentication router.
Registration goes through admin approval; login issues a JWT bearer token.
"""
from datetime import datetime, timedelta, timezone
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select, or_
from sqlalchemy.orm import Session
from typing import Any, Dict
import logging

from stockroom.config import settings
from stockroom.database import get_db
from stockroom import models
from stockroom.schemas.auth import (
    RegisterRequest, LoginRequest, UserResponse, UpdateProfileRequest, ChangePasswordRequest,
    ProfilePictureRequest, RequestResetRequest, ConfirmResetRequest, AdminResetPasswordRequest,
    ApproveRequest, CreateUserRequest, RoleUpdateRequest, Role
)
from stockroom.security import (
    verify_password,
    get_password_hash,
    create_access_token,
    generate_reset_token,
    hash_reset_token,
    get_current_user,
    require_admin,
    audit_log_action
)
from stockroom.utils import mailer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["authentication"])

def _user_payload(user: models.User) -> Dict[str, Any]:
    return UserResponse.model_validate(user).model_dump(mode="json")

def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

def _find_user(db: Session, username: str) -> models.User:
    return db.execute(select(models.User).where(models.User.username == username)).scalar_one_or_none()

@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(payload: RegisterRequest, db: Session = Depends(get_db)) -> Dict[str, Any]:
    """
    Submit a registration for admin approval.
    The role is chosen by the approving admin, never by the client.
    """
    existing_user = db.execute(
        select(models.User.id).where(
            or_(models.User.username == payload.username, models.User.email == payload.email)
        )
    ).first()
    pending = db.execute(
        select(models.UserRequest.id).where(
            or_(models.UserRequest.username == payload.username, models.UserRequest.email == payload.email),
            models.UserRequest.processed == False  # noqa: E712
        )
    ).first()
    if existing_user or pending:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Username or email already exists or pending"
        )

    request = models.UserRequest(
        username=payload.username,
        email=payload.email,
        password_hash=get_password_hash(payload.password),
    )
    db.add(request)
    db.commit()
    db.refresh(request)
    logger.info(f"Registration request {request.id} submitted for {request.username}")

    return {
        "success": True,
        "message": "Registration submitted and pending admin approval",
        "request": {"id": request.id, "username": request.username, "email": request.email}
    }

@router.post("/login")
def login(payload: LoginRequest, db: Session = Depends(get_db)) -> Dict[str, Any]:
    """Exchange username and password for a bearer token."""
    pending = db.execute(
        select(models.UserRequest.id).where(
            models.UserRequest.username == payload.username,
            models.UserRequest.processed == False  # noqa: E712
        )
    ).first()
    if pending:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Your account is awaiting administrator approval"
        )

    user = _find_user(db, payload.username)
    if not user or not verify_password(payload.password, user.password_hash):
        audit_log_action(
            db=db,
            user_id=user.id if user else None,
            action="LOGIN_FAILED",
            notes=f"Failed login attempt for username: {payload.username}"
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        audit_log_action(
            db=db,
            user_id=user.id,
            action="LOGIN_DENIED_INACTIVE",
            notes=f"Inactive user attempted login: {user.username}"
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Inactive user"
        )

    access_token = create_access_token(
        data={"sub": user.username, "role": user.role},
        expires_delta=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )

    audit_log_action(
        db=db,
        user_id=user.id,
        action="LOGIN_SUCCESS",
        notes=f"User {user.username} logged in successfully"
    )

    return {
        "success": True,
        "message": "Login successful",
        "access_token": access_token,
        "token_type": "bearer",
        "user": {"id": user.id, "username": user.username, "role": user.role}
    }

@router.get("/me")
def read_users_me(current_user: models.User = Depends(get_current_user)) -> Dict[str, Any]:
    return {"success": True, "user": _user_payload(current_user)}

@router.put("/update-profile")
def update_profile(
    payload: UpdateProfileRequest,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Update email, firstname and lastname of the authenticated user."""
    taken = db.execute(
        select(models.User.id).where(models.User.email == payload.email, models.User.id != current_user.id)
    ).first()
    if taken:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already in use")

    old_values = {"email": current_user.email, "firstname": current_user.firstname, "lastname": current_user.lastname}
    current_user.email = payload.email
    current_user.firstname = payload.firstname or None
    current_user.lastname = payload.lastname or None
    db.commit()

    audit_log_action(
        db=db,
        user_id=current_user.id,
        action="PROFILE_UPDATE",
        table_name="users",
        record_id=current_user.id,
        old_values=old_values,
        new_values={"email": payload.email, "firstname": payload.firstname, "lastname": payload.lastname},
    )
    return {"success": True, "message": "Profile updated successfully"}

@router.put("/change-password")
def change_password(
    payload: ChangePasswordRequest,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    if not verify_password(payload.current_password, current_user.password_hash):
        audit_log_action(
            db=db,
            user_id=current_user.id,
            action="PASSWORD_CHANGE_FAILED",
            notes="Current password incorrect"
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Current password is incorrect"
        )

    current_user.password_hash = get_password_hash(payload.new_password)
    db.commit()

    audit_log_action(
        db=db,
        user_id=current_user.id,
        action="PASSWORD_CHANGE_SUCCESS",
        table_name="users",
        record_id=current_user.id,
        notes="User changed password"
    )
    return {"success": True, "message": "Password changed successfully"}

@router.put("/upload-profile-picture")
def upload_profile_picture(
    payload: ProfilePictureRequest,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    if not payload.profile_picture.startswith("data:image/"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid image format")

    current_user.profile_picture = payload.profile_picture
    db.commit()
    return {"success": True, "message": "Profile picture updated successfully"}

# ====================
# PASSWORD RESET
# ====================

@router.post("/request-reset")
def request_reset(payload: RequestResetRequest, db: Session = Depends(get_db)) -> Dict[str, Any]:
    """Store a hashed one-time token and send the reset link."""
    user = db.execute(select(models.User).where(models.User.email == payload.email)).scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    token, token_hash = generate_reset_token()
    reset = models.PasswordReset(
        user_id=user.id,
        token_hash=token_hash,
        expires_at=datetime.now(timezone.utc) + timedelta(minutes=settings.RESET_TOKEN_EXPIRE_MINUTES),
    )
    db.add(reset)
    db.commit()

    reset_url = f"{settings.FRONTEND_URL}/reset-password.html?token={token}"
    mailer.send_password_reset(user.email, user.username, reset_url)

    return {"success": True, "message": "Reset email sent"}

@router.post("/confirm-reset")
def confirm_reset(payload: ConfirmResetRequest, db: Session = Depends(get_db)) -> Dict[str, Any]:
    record = db.execute(
        select(models.PasswordReset).where(models.PasswordReset.token_hash == hash_reset_token(payload.token))
    ).scalar_one_or_none()
    if not record:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Token not found")
    if record.used:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Token already used")
    if _as_utc(record.expires_at) < datetime.now(timezone.utc):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Token expired")

    record.user.password_hash = get_password_hash(payload.new_password)
    record.used = True
    db.commit()

    audit_log_action(
        db=db,
        user_id=record.user_id,
        action="PASSWORD_RESET",
        table_name="users",
        record_id=record.user_id,
        notes="Password reset with emailed token"
    )
    return {"success": True, "message": "Password updated successfully"}

@router.post("/reset-password")
def admin_reset_password(
    payload: AdminResetPasswordRequest,
    current_user: models.User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Set a user's password directly (admin only)."""
    user = db.execute(
        select(models.User).where(
            or_(models.User.username == payload.identifier, models.User.email == payload.identifier)
        )
    ).scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    user.password_hash = get_password_hash(payload.new_password)
    db.commit()

    audit_log_action(
        db=db,
        user_id=current_user.id,
        action="PASSWORD_RESET_BY_ADMIN",
        table_name="users",
        record_id=user.id,
        notes=f"Admin {current_user.username} reset password for {user.username}"
    )
    return {"success": True, "message": "Password updated successfully"}

# ====================
# ADMIN USER MANAGEMENT
# ====================

@router.get("/admin/requests")
def list_pending_requests(
    current_user: models.User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    requests = db.execute(
        select(models.UserRequest)
        .where(models.UserRequest.processed == False)  # noqa: E712
        .order_by(models.UserRequest.created_at.asc(), models.UserRequest.id.asc())
    ).scalars().all()
    return {
        "success": True,
        "requests": [
            {"id": r.id, "username": r.username, "email": r.email, "created_at": r.created_at}
            for r in requests
        ]
    }

@router.post("/admin/approve")
def approve_request(
    payload: ApproveRequest,
    current_user: models.User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Turn a pending registration into a user with the chosen role."""
    if payload.role not in (Role.ADMIN, Role.STAFF):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid role")

    request = db.execute(
        select(models.UserRequest).where(
            models.UserRequest.id == payload.request_id,
            models.UserRequest.processed == False  # noqa: E712
        )
    ).scalar_one_or_none()
    if not request:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Request not found")

    taken = db.execute(
        select(models.User.id).where(
            or_(models.User.username == request.username, models.User.email == request.email)
        )
    ).first()
    if taken:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Username or email already exists")

    user = models.User(
        username=request.username,
        email=request.email,
        password_hash=request.password_hash,
        role=payload.role.value,
    )
    db.add(user)
    request.processed = True
    request.processed_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(user)

    audit_log_action(
        db=db,
        user_id=current_user.id,
        action="USER_APPROVE",
        table_name="users",
        record_id=user.id,
        new_values={"username": user.username, "role": user.role},
        notes=f"Admin {current_user.username} approved {user.username} as {user.role}"
    )
    return {"success": True, "message": "User approved", "userId": user.id}

@router.post("/create-user-direct", status_code=status.HTTP_201_CREATED)
def create_user_direct(
    payload: CreateUserRequest,
    current_user: models.User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Create a user without the approval step (admin only)."""
    existing = db.execute(
        select(models.User.id).where(
            or_(models.User.username == payload.username, models.User.email == payload.email)
        )
    ).first()
    if existing:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Username or email already exists")

    user = models.User(
        username=payload.username,
        email=payload.email,
        password_hash=get_password_hash(payload.password),
        firstname=payload.firstname,
        lastname=payload.lastname,
        role=payload.role.value,
    )
    db.add(user)
    db.commit()
    db.refresh(user)

    audit_log_action(
        db=db,
        user_id=current_user.id,
        action="USER_CREATE",
        table_name="users",
        record_id=user.id,
        new_values={"username": user.username, "role": user.role, "email": user.email},
        notes=f"Admin {current_user.username} created user {user.username}"
    )
    return {"success": True, "message": "User created successfully", "user": _user_payload(user)}

@router.get("/users")
def list_users(
    current_user: models.User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    users = db.execute(
        select(models.User).order_by(models.User.created_at.desc(), models.User.id.desc())
    ).scalars().all()
    return {
        "success": True,
        "users": [
            {"id": u.id, "username": u.username, "email": u.email, "role": u.role, "created_at": u.created_at}
            for u in users
        ]
    }

@router.put("/users/{user_id}/role")
def update_user_role(
    user_id: int,
    payload: RoleUpdateRequest,
    current_user: models.User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    if user_id == current_user.id and payload.role != Role.ADMIN:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot change your own role")

    user = db.get(models.User, user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    old_role = user.role
    user.role = payload.role.value
    db.commit()

    audit_log_action(
        db=db,
        user_id=current_user.id,
        action="USER_ROLE_UPDATE",
        table_name="users",
        record_id=user_id,
        old_values={"role": old_role},
        new_values={"role": user.role},
        notes=f"Admin {current_user.username} changed {user.username} role from {old_role} to {user.role}"
    )
    return {"success": True, "message": "Role updated successfully"}
