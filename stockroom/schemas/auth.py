from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from datetime import datetime
from enum import Enum

USERNAME_PATTERN = r"^[a-zA-Z0-9_-]+$"
EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"

class Role(str, Enum):
    ADMIN = "admin"
    STAFF = "staff"
    USER = "user"

# ------------------------------
# Registration / Login
# ------------------------------
class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=50, pattern=USERNAME_PATTERN)
    email: str = Field(..., max_length=100, pattern=EMAIL_PATTERN)
    password: str = Field(..., min_length=4, max_length=255)

class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=50, pattern=USERNAME_PATTERN)
    password: str = Field(..., min_length=1, max_length=255)

class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: str
    firstname: Optional[str] = None
    lastname: Optional[str] = None
    role: Role
    profile_picture: Optional[str] = None
    is_active: bool
    created_at: Optional[datetime] = None

# ------------------------------
# Profile
# ------------------------------
class UpdateProfileRequest(BaseModel):
    email: str = Field(..., max_length=100, pattern=EMAIL_PATTERN)
    firstname: Optional[str] = Field(None, max_length=100)
    lastname: Optional[str] = Field(None, max_length=100)

class ChangePasswordRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    current_password: str = Field(..., alias="currentPassword", min_length=1)
    new_password: str = Field(..., alias="newPassword", min_length=4, max_length=255)

class ProfilePictureRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # base64 data URL, roughly 5MB of image
    profile_picture: str = Field(..., alias="profilePicture", max_length=7000000)

# ------------------------------
# Password reset
# ------------------------------
class RequestResetRequest(BaseModel):
    email: str = Field(..., max_length=100, pattern=EMAIL_PATTERN)

class ConfirmResetRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    token: str = Field(..., min_length=1)
    new_password: str = Field(..., alias="newPassword", min_length=4, max_length=255)

class AdminResetPasswordRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    identifier: str = Field(..., min_length=1)  # username or email
    new_password: str = Field(..., alias="newPassword", min_length=4, max_length=255)

# ------------------------------
# Admin user management
# ------------------------------
class ApproveRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    request_id: int = Field(..., alias="requestId", gt=0)
    role: Role

class CreateUserRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=50, pattern=USERNAME_PATTERN)
    password: str = Field(..., min_length=4, max_length=255)
    email: str = Field(..., max_length=100, pattern=EMAIL_PATTERN)
    firstname: Optional[str] = Field(None, max_length=100)
    lastname: Optional[str] = Field(None, max_length=100)
    role: Role = Role.USER

class RoleUpdateRequest(BaseModel):
    role: Role
