from datetime import datetime

from pydantic import BaseModel, EmailStr, Field


class RegisterRequest(BaseModel):
    username: str = Field(min_length=3, max_length=50)
    email: EmailStr
    password: str = Field(min_length=8)


class LoginRequest(BaseModel):
    email: str
    password: str


class LoginResponse(BaseModel):
    state: str
    requires_2fa: bool
    challenge_token: str | None = None
    challenge_expires_in: int | None = None
    access_token: str | None = None
    access_expires_in: int | None = None


class VerifyTotpRequest(BaseModel):
    challenge_token: str
    code: str = Field(max_length=16)


class VerifyRecoveryCodeRequest(BaseModel):
    challenge_token: str
    recovery_code: str = Field(max_length=32)


class SessionResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    access_expires_in: int
    two_factor_verified: bool
    remaining_recovery_codes: int | None = None


class TwoFactorSetupResponse(BaseModel):
    secret: str
    otpauth_url: str
    qr_code: str
    recovery_codes: list[str]
    enrollment_token: str


class TwoFactorConfirmRequest(BaseModel):
    enrollment_token: str
    code: str = Field(max_length=16)


class AccountOut(BaseModel):
    id: int
    username: str
    email: str
    two_factor_enabled: bool
    last_login_at: datetime | None = None
    remaining_recovery_codes: int


class LogoutResponse(BaseModel):
    revoked: int
