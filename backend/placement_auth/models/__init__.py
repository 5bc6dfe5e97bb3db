from placement_auth.models.user import User, UserRole, UserStatus, StudentProfile, RecruiterProfile, AdminProfile
from placement_auth.models.otp import OneTimeCode, OTPPurpose
from placement_auth.models.refresh_token import RefreshToken
