from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr

from placement_auth.models.user import UserRole, UserStatus

class ProfileIn(BaseModel):
    full_name: Optional[str] = None
    phone: Optional[str] = None
    enrollment_id: Optional[str] = None
    school: Optional[str] = None
    center: Optional[str] = None
    batch: Optional[str] = None
    company_name: Optional[str] = None
    location: Optional[str] = None
    name: Optional[str] = None

class RegisterRequest(BaseModel):
    email: EmailStr
    password: str
    role: UserRole
    verification_token: Optional[str] = None
    profile: Optional[ProfileIn] = None

class LoginRequest(BaseModel):
    email: EmailStr
    password: str
    role: Optional[UserRole] = None
    selected_role: Optional[UserRole] = None

class UserOut(BaseModel):
    id: int
    email: EmailStr
    role: UserRole
    status: UserStatus
    email_verified: bool
    email_verified_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class AuthResponse(BaseModel):
    user: UserOut
    access_token: str
    refresh_token: str
    token_type: str = "bearer"

class RefreshTokenRequest(BaseModel):
    refresh_token: str

class TokenRefreshResponse(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"

class LogoutRequest(BaseModel):
    refresh_token: Optional[str] = None
