from datetime import datetime

from pydantic import BaseModel, EmailStr, Field

class EmailRequest(BaseModel):
    email: EmailStr

class VerifyCodeRequest(BaseModel):
    email: EmailStr
    otp: str = Field(min_length=6, max_length=6, pattern=r"^[0-9]{6}$")

class OtpDispatchResponse(BaseModel):
    success: bool = True
    message: str
    otp_status: str
    otp_expires_at: datetime
    expires_in: int

class VerifyOtpResponse(BaseModel):
    success: bool = True
    verified: bool
    email: EmailStr
    verification_token: str

class VerifyResetOtpResponse(BaseModel):
    success: bool = True
    verified: bool
    email: EmailStr
    reset_token: str

class UpdatePasswordRequest(BaseModel):
    reset_token: str = Field(min_length=1)
    password: str

class MessageResponse(BaseModel):
    success: bool = True
    message: str
