"""Outcome types returned by the login flow and enrollment operations.

Callers branch on ``isinstance(result, Failure)`` and map ``Failure.kind``
to a transport status; nothing here is raised.
"""

from dataclasses import dataclass
from enum import Enum


class LoginState(str, Enum):
    AWAITING_CREDENTIALS = "AWAITING_CREDENTIALS"
    AWAITING_SECOND_FACTOR = "AWAITING_SECOND_FACTOR"
    AUTHENTICATED = "AUTHENTICATED"


class FailureKind(str, Enum):
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    ACCOUNT_EXISTS = "ACCOUNT_EXISTS"
    CHALLENGE_EXPIRED = "CHALLENGE_EXPIRED"
    CHALLENGE_INVALID = "CHALLENGE_INVALID"
    TOO_MANY_ATTEMPTS = "TOO_MANY_ATTEMPTS"
    TWO_FACTOR_NOT_ENABLED = "TWO_FACTOR_NOT_ENABLED"
    TWO_FACTOR_REQUIRED = "TWO_FACTOR_REQUIRED"
    INVALID_CODE = "INVALID_CODE"
    INVALID_RECOVERY_CODE = "INVALID_RECOVERY_CODE"
    INVALID_LABEL = "INVALID_LABEL"
    VERIFICATION_FAILED = "VERIFICATION_FAILED"
    SESSION_INVALID = "SESSION_INVALID"
    ENROLLMENT_INVALID = "ENROLLMENT_INVALID"
    CONCURRENT_UPDATE = "CONCURRENT_UPDATE"


_INVALID_CODE_MESSAGE = "Invalid verification code"

MESSAGES: dict[FailureKind, str] = {
    FailureKind.INVALID_CREDENTIALS: "Invalid email or password",
    FailureKind.ACCOUNT_LOCKED: "Account is locked. Please try again later.",
    FailureKind.ACCOUNT_EXISTS: "User already exists with this email or username",
    FailureKind.CHALLENGE_EXPIRED: "Invalid or expired temporary token",
    FailureKind.CHALLENGE_INVALID: "Invalid or expired temporary token",
    FailureKind.TOO_MANY_ATTEMPTS: "Too many tries, challenge expired",
    FailureKind.TWO_FACTOR_NOT_ENABLED: "Two-factor authentication not enabled for this user",
    FailureKind.TWO_FACTOR_REQUIRED: "Two-factor authentication required",
    # end users must not be able to tell which second factor was wrong
    FailureKind.INVALID_CODE: _INVALID_CODE_MESSAGE,
    FailureKind.INVALID_RECOVERY_CODE: _INVALID_CODE_MESSAGE,
    FailureKind.INVALID_LABEL: "Account label must not be empty",
    FailureKind.VERIFICATION_FAILED: _INVALID_CODE_MESSAGE,
    FailureKind.SESSION_INVALID: "Invalid or expired token, please login again",
    FailureKind.ENROLLMENT_INVALID: "2FA not initialized",
    FailureKind.CONCURRENT_UPDATE: "Account was updated concurrently, please retry",
}


@dataclass(frozen=True)
class Failure:
    kind: FailureKind
    message: str
    remaining_attempts: int | None = None
    state: LoginState = LoginState.AWAITING_CREDENTIALS


def fail(kind: FailureKind, remaining_attempts: int | None = None, state: LoginState = LoginState.AWAITING_CREDENTIALS) -> Failure:
    return Failure(kind=kind, message=MESSAGES[kind], remaining_attempts=remaining_attempts, state=state)


@dataclass(frozen=True)
class ChallengeIssued:
    account_id: int
    challenge_token: str
    expires_in: int
    state: LoginState = LoginState.AWAITING_SECOND_FACTOR


@dataclass(frozen=True)
class Authenticated:
    account_id: int
    session_token: str
    expires_in: int
    two_factor_verified: bool
    remaining_recovery_codes: int | None = None
    state: LoginState = LoginState.AUTHENTICATED


@dataclass(frozen=True)
class LoggedOut:
    account_id: int
    revoked: int
    state: LoginState = LoginState.AWAITING_CREDENTIALS
