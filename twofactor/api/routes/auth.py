from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from twofactor.api.deps import (
    get_bearer_token,
    get_current_account,
    get_db,
    get_login_flow,
    get_provisioning_service,
    get_token_service,
    get_verified_context,
    raise_for_failure,
)
from twofactor.config import settings
from twofactor.models.account import Account
from twofactor.schemas.auth import (
    AccountOut,
    LoginRequest,
    LoginResponse,
    LogoutResponse,
    RegisterRequest,
    SessionResponse,
    TwoFactorConfirmRequest,
    TwoFactorSetupResponse,
    VerifyRecoveryCodeRequest,
    VerifyTotpRequest,
)
from twofactor.services.accounts import register_account
from twofactor.services.audit import audit
from twofactor.services.login import LoginFlow
from twofactor.services.provisioning import EnrollmentBundle, ProvisioningService
from twofactor.services.results import Authenticated, ChallengeIssued, Failure, FailureKind, fail
from twofactor.services.tokens import SessionContext, TokenError, TokenService

router = APIRouter()


def _account_out(account: Account) -> AccountOut:
    return AccountOut(
        id=account.id,
        username=account.username,
        email=account.email,
        two_factor_enabled=account.two_factor_enabled,
        last_login_at=account.last_login_at,
        remaining_recovery_codes=len(account.two_factor_recovery_codes or []),
    )


def _session_response(result: Authenticated | Failure) -> SessionResponse:
    if isinstance(result, Failure):
        raise_for_failure(result)
    return SessionResponse(
        access_token=result.session_token,
        access_expires_in=result.expires_in,
        two_factor_verified=result.two_factor_verified,
        remaining_recovery_codes=result.remaining_recovery_codes,
    )


@router.post("/v1/auth/register", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
def register(
    payload: RegisterRequest,
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
) -> SessionResponse:
    account = register_account(db, payload.email, payload.username, payload.password)
    if isinstance(account, Failure):
        raise_for_failure(account)
    token = tokens.issue_session(db, account, two_factor_verified=False)
    audit(db, action="register", user_id=account.id)
    return SessionResponse(
        access_token=token,
        access_expires_in=settings.session_token_expires_seconds,
        two_factor_verified=False,
    )


@router.post("/v1/auth/login", response_model=LoginResponse)
def login(
    payload: LoginRequest,
    db: Session = Depends(get_db),
    flow: LoginFlow = Depends(get_login_flow),
) -> LoginResponse:
    result = flow.submit_credentials(db, payload.email, payload.password)
    if isinstance(result, Failure):
        raise_for_failure(result)
    if isinstance(result, ChallengeIssued):
        return LoginResponse(
            state=result.state.value,
            requires_2fa=True,
            challenge_token=result.challenge_token,
            challenge_expires_in=result.expires_in,
        )
    return LoginResponse(
        state=result.state.value,
        requires_2fa=False,
        access_token=result.session_token,
        access_expires_in=result.expires_in,
    )


@router.post("/v1/auth/verify-2fa", response_model=SessionResponse)
def verify_two_factor(
    payload: VerifyTotpRequest,
    db: Session = Depends(get_db),
    flow: LoginFlow = Depends(get_login_flow),
) -> SessionResponse:
    return _session_response(flow.submit_totp(db, payload.challenge_token, payload.code))


@router.post("/v1/auth/verify-recovery-code", response_model=SessionResponse)
def verify_recovery_code(
    payload: VerifyRecoveryCodeRequest,
    db: Session = Depends(get_db),
    flow: LoginFlow = Depends(get_login_flow),
) -> SessionResponse:
    return _session_response(flow.submit_recovery_code(db, payload.challenge_token, payload.recovery_code))


# ---------- 2FA enrollment ----------

@router.post("/v1/auth/2fa/setup", response_model=TwoFactorSetupResponse)
def two_factor_setup(
    context: SessionContext = Depends(get_verified_context),
    db: Session = Depends(get_db),
    provisioning: ProvisioningService = Depends(get_provisioning_service),
    tokens: TokenService = Depends(get_token_service),
) -> TwoFactorSetupResponse:
    account = context.account
    bundle = provisioning.begin_enrollment(account.email)
    if isinstance(bundle, Failure):
        raise_for_failure(bundle)
    return TwoFactorSetupResponse(
        secret=bundle.secret,
        otpauth_url=bundle.provisioning_uri,
        qr_code=provisioning.render_qr_data_url(bundle.provisioning_uri),
        recovery_codes=bundle.recovery_codes,
        enrollment_token=tokens.issue_enrollment(db, account, bundle.secret, bundle.recovery_codes),
    )


@router.post("/v1/auth/2fa/confirm", response_model=AccountOut)
def two_factor_confirm(
    payload: TwoFactorConfirmRequest,
    context: SessionContext = Depends(get_verified_context),
    db: Session = Depends(get_db),
    provisioning: ProvisioningService = Depends(get_provisioning_service),
    tokens: TokenService = Depends(get_token_service),
) -> AccountOut:
    try:
        claims = tokens.read_enrollment(payload.enrollment_token, context.account)
    except TokenError:
        raise_for_failure(fail(FailureKind.ENROLLMENT_INVALID))

    pending = EnrollmentBundle(secret=claims["secret"], provisioning_uri="", recovery_codes=claims["recoveryCodes"])
    account = provisioning.confirm_enrollment(db, context.account, pending, payload.code, enrollment_id=claims["jti"])
    if isinstance(account, Failure):
        raise_for_failure(account)
    return _account_out(account)


@router.post("/v1/auth/2fa/disable", response_model=AccountOut)
def two_factor_disable(
    context: SessionContext = Depends(get_verified_context),
    db: Session = Depends(get_db),
    provisioning: ProvisioningService = Depends(get_provisioning_service),
) -> AccountOut:
    account = provisioning.disable_two_factor(db, context.account)
    if isinstance(account, Failure):
        raise_for_failure(account)
    return _account_out(account)


# ---------- session ----------

@router.get("/v1/auth/profile", response_model=AccountOut)
def profile(context: SessionContext = Depends(get_verified_context)) -> AccountOut:
    return _account_out(context.account)


@router.post("/v1/auth/logout", response_model=LogoutResponse)
def logout(
    token: str = Depends(get_bearer_token),
    db: Session = Depends(get_db),
    flow: LoginFlow = Depends(get_login_flow),
) -> LogoutResponse:
    result = flow.logout(db, token)
    if isinstance(result, Failure):
        raise_for_failure(result)
    return LogoutResponse(revoked=result.revoked)


@router.post("/v1/auth/logout-all", response_model=LogoutResponse)
def logout_all(
    account: Account = Depends(get_current_account),
    db: Session = Depends(get_db),
    flow: LoginFlow = Depends(get_login_flow),
) -> LogoutResponse:
    result = flow.logout_all(db, account)
    return LogoutResponse(revoked=result.revoked)
