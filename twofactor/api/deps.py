from typing import Generator, NoReturn

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from twofactor import db
from twofactor.config import settings
from twofactor.models.account import Account
from twofactor.services.clock import Clock, system_clock
from twofactor.services.login import LoginFlow
from twofactor.services.provisioning import ProvisioningService
from twofactor.services.results import Failure, FailureKind
from twofactor.services.tokens import SessionContext, TokenService, require_two_factor
from twofactor.services.totp import TotpEngine

FAILURE_STATUS: dict[FailureKind, int] = {
    FailureKind.INVALID_CREDENTIALS: status.HTTP_401_UNAUTHORIZED,
    FailureKind.ACCOUNT_LOCKED: status.HTTP_429_TOO_MANY_REQUESTS,
    FailureKind.ACCOUNT_EXISTS: status.HTTP_409_CONFLICT,
    FailureKind.CHALLENGE_EXPIRED: status.HTTP_401_UNAUTHORIZED,
    FailureKind.CHALLENGE_INVALID: status.HTTP_401_UNAUTHORIZED,
    FailureKind.TOO_MANY_ATTEMPTS: status.HTTP_429_TOO_MANY_REQUESTS,
    FailureKind.TWO_FACTOR_NOT_ENABLED: status.HTTP_400_BAD_REQUEST,
    FailureKind.TWO_FACTOR_REQUIRED: status.HTTP_401_UNAUTHORIZED,
    FailureKind.INVALID_CODE: status.HTTP_400_BAD_REQUEST,
    FailureKind.INVALID_RECOVERY_CODE: status.HTTP_400_BAD_REQUEST,
    FailureKind.INVALID_LABEL: status.HTTP_400_BAD_REQUEST,
    FailureKind.VERIFICATION_FAILED: status.HTTP_400_BAD_REQUEST,
    FailureKind.SESSION_INVALID: status.HTTP_401_UNAUTHORIZED,
    FailureKind.ENROLLMENT_INVALID: status.HTTP_400_BAD_REQUEST,
    FailureKind.CONCURRENT_UPDATE: status.HTTP_409_CONFLICT,
}


def raise_for_failure(failure: Failure) -> NoReturn:
    detail: dict[str, object] = {"error": failure.message}
    if failure.remaining_attempts is not None:
        detail["remainingAttempts"] = failure.remaining_attempts
    if failure.kind == FailureKind.TWO_FACTOR_REQUIRED:
        detail["requires2FA"] = True
    raise HTTPException(status_code=FAILURE_STATUS[failure.kind], detail=detail)


def get_db() -> Generator[Session, None, None]:
    with db.get_session() as session:
        yield session


def get_clock() -> Clock:
    return system_clock


def get_token_service(clock: Clock = Depends(get_clock)) -> TokenService:
    return TokenService(settings, clock)


def get_totp_engine(clock: Clock = Depends(get_clock)) -> TotpEngine:
    return TotpEngine(clock, settings.totp_valid_window)


def get_login_flow(
    tokens: TokenService = Depends(get_token_service),
    totp: TotpEngine = Depends(get_totp_engine),
    clock: Clock = Depends(get_clock),
) -> LoginFlow:
    return LoginFlow(tokens, totp, clock, settings)


def get_provisioning_service(totp: TotpEngine = Depends(get_totp_engine)) -> ProvisioningService:
    return ProvisioningService(totp, settings)


def get_bearer_token(authorization: str | None = Header(default=None)) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail={"error": "No token provided, access denied"})
    return authorization.split(" ", 1)[1]


def get_session_context(
    token: str = Depends(get_bearer_token),
    session: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
) -> SessionContext:
    context = tokens.authenticate_session(session, token)
    if isinstance(context, Failure):
        raise_for_failure(context)
    return context


def get_current_account(context: SessionContext = Depends(get_session_context)) -> Account:
    return context.account


def get_verified_context(context: SessionContext = Depends(get_session_context)) -> SessionContext:
    failure = require_two_factor(context)
    if failure:
        raise_for_failure(failure)
    return context
