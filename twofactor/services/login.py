"""Login state machine: password, then (if enabled) a second factor, then a session token.

Every public method returns a result object from ``twofactor.services.results``;
verification failures are never raised to the caller.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Tuple

from sqlalchemy.orm import Session

from twofactor.config import Settings, settings as default_settings
from twofactor.models.account import Account
from twofactor.models.challenge import Challenge, ChallengePurpose
from twofactor.services import recovery
from twofactor.services.accounts import (
    get_account,
    get_account_by_email,
    get_challenge,
    run_with_retry,
    save_account,
    save_versioned,
)
from twofactor.services.audit import audit
from twofactor.services.clock import Clock, ensure_aware, system_clock
from twofactor.services.results import (
    Authenticated,
    ChallengeIssued,
    Failure,
    FailureKind,
    LoggedOut,
    LoginState,
    fail,
)
from twofactor.services.security import burn_password_check, verify_password
from twofactor.services.tokens import SCOPE_CHALLENGE, TokenExpired, TokenInvalid, TokenService
from twofactor.services.totp import TotpEngine

logger = logging.getLogger(__name__)


class LoginFlow:
    def __init__(
        self,
        tokens: TokenService,
        totp: TotpEngine,
        clock: Clock | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.tokens = tokens
        self.totp = totp
        self.clock = clock or system_clock
        self.settings = settings or default_settings

    # -- step 1: password --------------------------------------------------

    def submit_credentials(self, db: Session, email: str, password: str) -> ChallengeIssued | Authenticated | Failure:
        outcome = run_with_retry(db, self.settings.account_write_retries, lambda: self._check_password(db, email, password))
        if isinstance(outcome, Failure):
            return outcome
        account = outcome

        if account.two_factor_enabled:
            token = self.tokens.issue_challenge(db, account)
            audit(db, action="2fa_challenge_issued", user_id=account.id)
            return ChallengeIssued(
                account_id=account.id,
                challenge_token=token,
                expires_in=self.settings.challenge_token_expires_seconds,
            )

        # no second factor configured, so it is trivially satisfied
        return self._authenticated(db, account, action="login_success")

    def _check_password(self, db: Session, email: str, password: str) -> Account | Failure:
        account = get_account_by_email(db, email, lock=True)
        if account is None:
            db.rollback()
            burn_password_check()
            return fail(FailureKind.INVALID_CREDENTIALS)

        now = self.clock.now()
        if self._is_locked(account, now):
            logger.info("Login refused for locked account %s", account.id)
            db.rollback()
            return fail(FailureKind.ACCOUNT_LOCKED)

        if not verify_password(password, account.password_hash):
            return self._record_password_failure(db, account, now)

        account.failed_login_count = 0
        account.locked_until = None
        account.last_login_at = now
        return save_account(db, account)

    def _is_locked(self, account: Account, now: datetime) -> bool:
        return account.locked_until is not None and ensure_aware(account.locked_until) > now

    def _record_password_failure(self, db: Session, account: Account, now: datetime) -> Failure:
        limit = self.settings.max_failed_logins
        account_id = account.id
        count = (account.failed_login_count or 0) + 1
        locked = count >= limit
        account.failed_login_count = count
        if locked:
            account.locked_until = now + self.settings.lockout_duration()
        save_account(db, account)

        if locked:
            logger.warning("Account %s locked after %d failed logins", account_id, count)
            audit(db, action="account_locked", user_id=account_id, detail=f"{count} failed logins")
        else:
            audit(db, action="login_failed", user_id=account_id)
        return fail(FailureKind.INVALID_CREDENTIALS, remaining_attempts=max(0, limit - count))

    # -- step 2: second factor ---------------------------------------------

    def submit_totp(self, db: Session, challenge_token: str, code: str) -> Authenticated | Failure:
        claims = self._read_challenge(challenge_token)
        if isinstance(claims, Failure):
            return claims

        def _attempt() -> Account | Failure:
            opened = self._open_challenge(db, claims)
            if isinstance(opened, Failure):
                return opened
            challenge, account = opened
            if not account.two_factor_enabled or not account.two_factor_secret:
                db.rollback()
                return fail(FailureKind.TWO_FACTOR_NOT_ENABLED)

            if not self.totp.verify(account.two_factor_secret, code, window=self.settings.totp_valid_window):
                return self._record_second_factor_failure(db, challenge, FailureKind.INVALID_CODE)

            self._consume_challenge(db, challenge)
            return account

        outcome = run_with_retry(db, self.settings.account_write_retries, _attempt)
        if isinstance(outcome, Failure):
            return outcome
        return self._authenticated(db, outcome, action="2fa_verified")

    def submit_recovery_code(self, db: Session, challenge_token: str, code: str) -> Authenticated | Failure:
        claims = self._read_challenge(challenge_token)
        if isinstance(claims, Failure):
            return claims

        def _attempt() -> Account | Failure:
            opened = self._open_challenge(db, claims)
            if isinstance(opened, Failure):
                return opened
            challenge, account = opened
            if not account.two_factor_enabled:
                db.rollback()
                return fail(FailureKind.TWO_FACTOR_NOT_ENABLED)

            result = recovery.consume(account.two_factor_recovery_codes, code)
            if not result.matched:
                return self._record_second_factor_failure(db, challenge, FailureKind.INVALID_RECOVERY_CODE)

            # code removal and challenge consumption land in the same commit
            account.two_factor_recovery_codes = result.remaining
            challenge.consumed = True
            db.add(challenge)
            return save_account(db, account)

        outcome = run_with_retry(db, self.settings.account_write_retries, _attempt)
        if isinstance(outcome, Failure):
            return outcome
        remaining = len(outcome.two_factor_recovery_codes or [])
        if remaining == 0:
            logger.warning("Account %s has used its last recovery code", outcome.id)
        return self._authenticated(
            db,
            outcome,
            action="recovery_code_used",
            detail=f"{remaining} recovery codes left",
            remaining_recovery_codes=remaining,
        )

    def _read_challenge(self, challenge_token: str) -> Dict[str, Any] | Failure:
        try:
            claims = self.tokens.verify(challenge_token)
        except TokenExpired:
            return fail(FailureKind.CHALLENGE_EXPIRED)
        except TokenInvalid:
            return fail(FailureKind.CHALLENGE_INVALID)
        if claims.get("scope") != SCOPE_CHALLENGE or claims.get("twoFactorRequired") is not True:
            return fail(FailureKind.CHALLENGE_INVALID)
        return claims

    def _open_challenge(self, db: Session, claims: Dict[str, Any]) -> Tuple[Challenge, Account] | Failure:
        challenge = get_challenge(db, claims["jti"], lock=True)
        if (
            not challenge
            or challenge.purpose != ChallengePurpose.LOGIN
            or challenge.consumed
            or challenge.account_id != claims["userId"]
        ):
            db.rollback()
            return fail(FailureKind.CHALLENGE_INVALID)
        if ensure_aware(challenge.expires_at) <= self.clock.now():
            db.rollback()
            return fail(FailureKind.CHALLENGE_EXPIRED)
        if challenge.tries >= self.settings.max_second_factor_attempts:
            db.rollback()
            return fail(FailureKind.TOO_MANY_ATTEMPTS)

        account = get_account(db, challenge.account_id, lock=True)
        if account is None:
            db.rollback()
            return fail(FailureKind.TWO_FACTOR_NOT_ENABLED)
        return challenge, account

    def _consume_challenge(self, db: Session, challenge: Challenge) -> None:
        challenge.consumed = True
        save_versioned(db, challenge)

    def _record_second_factor_failure(self, db: Session, challenge: Challenge, kind: FailureKind) -> Failure:
        account_id = challenge.account_id
        tries = challenge.tries + 1
        challenge.tries = tries
        save_versioned(db, challenge)
        logger.info("Second factor rejected for account %s (%d tries)", account_id, tries)
        audit(db, action="2fa_failed", user_id=account_id, detail=kind.value)
        return fail(kind, state=LoginState.AWAITING_SECOND_FACTOR)

    def _authenticated(
        self,
        db: Session,
        account: Account,
        action: str,
        detail: str | None = None,
        remaining_recovery_codes: int | None = None,
    ) -> Authenticated:
        token = self.tokens.issue_session(db, account, two_factor_verified=True)
        audit(db, action=action, user_id=account.id, detail=detail)
        return Authenticated(
            account_id=account.id,
            session_token=token,
            expires_in=self.settings.session_token_expires_seconds,
            two_factor_verified=True,
            remaining_recovery_codes=remaining_recovery_codes,
        )

    # -- logout ------------------------------------------------------------

    def logout(self, db: Session, session_token: str) -> LoggedOut | Failure:
        context = self.tokens.authenticate_session(db, session_token)
        if isinstance(context, Failure):
            return context
        revoked = 1 if self.tokens.revoke(db, context.token_id) else 0
        audit(db, action="logout", user_id=context.account.id)
        return LoggedOut(account_id=context.account.id, revoked=revoked)

    def logout_all(self, db: Session, account: Account) -> LoggedOut:
        revoked = self.tokens.revoke_all(db, account.id)
        audit(db, action="logout_all", user_id=account.id, detail=f"{revoked} tokens revoked")
        logger.info("Revoked %d session tokens for account %s", revoked, account.id)
        return LoggedOut(account_id=account.id, revoked=revoked)
