import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict

from jose import JWTError, jwt
from sqlalchemy.orm import Session

from twofactor.config import Settings, settings as default_settings
from twofactor.models.account import Account
from twofactor.models.challenge import Challenge, ChallengePurpose
from twofactor.models.issued_token import IssuedToken, TokenStatus
from twofactor.services.clock import Clock, ensure_aware, system_clock
from twofactor.services.results import Failure, FailureKind, fail

logger = logging.getLogger(__name__)

SCOPE_SESSION = "session"
SCOPE_CHALLENGE = "challenge"
SCOPE_ENROLLMENT = "enrollment"


class TokenError(Exception):
    pass


class TokenExpired(TokenError):
    pass


class TokenInvalid(TokenError):
    pass


@dataclass(frozen=True)
class SessionContext:
    account: Account
    token_id: str
    two_factor_verified: bool
    claims: Dict[str, Any]


class TokenService:
    """Signs and checks the JWTs handed to clients and tracks issued session tokens."""

    def __init__(self, settings: Settings | None = None, clock: Clock | None = None) -> None:
        self.settings = settings or default_settings
        self.clock = clock or system_clock

    def sign(self, claims: Dict[str, Any], ttl: timedelta) -> str:
        now = self.clock.now()
        to_encode = claims.copy()
        to_encode.setdefault("jti", uuid.uuid4().hex)
        to_encode.update({"iat": int(now.timestamp()), "exp": int((now + ttl).timestamp())})
        return jwt.encode(to_encode, self.settings.jwt_secret_key, algorithm=self.settings.jwt_algorithm)

    def verify(self, token: str) -> Dict[str, Any]:
        """Return the claims of ``token`` or raise ``TokenExpired`` / ``TokenInvalid``.

        Expiry is judged against the injected clock, not the wall clock.
        """
        if not token:
            raise TokenInvalid("Empty token")
        try:
            claims = jwt.decode(
                token,
                self.settings.jwt_secret_key,
                algorithms=[self.settings.jwt_algorithm],
                options={"verify_exp": False},
            )
        except JWTError as e:
            raise TokenInvalid(str(e)) from e

        exp = claims.get("exp")
        if not isinstance(exp, (int, float)):
            raise TokenInvalid("Missing exp claim")
        if exp <= self.clock.timestamp():
            raise TokenExpired("Token expired")
        if not isinstance(claims.get("userId"), int) or not claims.get("jti"):
            raise TokenInvalid("Missing subject")
        return claims

    # -- challenge tokens --------------------------------------------------

    def issue_challenge(self, db: Session, account: Account) -> str:
        ttl = self.settings.challenge_token_ttl()
        jti = uuid.uuid4().hex
        db.add(Challenge(id=jti, account_id=account.id, purpose=ChallengePurpose.LOGIN, expires_at=self.clock.now() + ttl))
        db.commit()
        return self.sign(
            {"userId": account.id, "twoFactorRequired": True, "scope": SCOPE_CHALLENGE, "jti": jti},
            ttl,
        )

    # -- session tokens ----------------------------------------------------

    def issue_session(self, db: Session, account: Account, two_factor_verified: bool) -> str:
        ttl = self.settings.session_token_ttl()
        jti = uuid.uuid4().hex
        db.add(
            IssuedToken(
                id=jti,
                account_id=account.id,
                two_factor_verified=two_factor_verified,
                issued_at=self.clock.now(),
                expires_at=self.clock.now() + ttl,
            )
        )
        db.commit()
        return self.sign(
            {"userId": account.id, "twoFactorVerified": two_factor_verified, "scope": SCOPE_SESSION, "jti": jti},
            ttl,
        )

    def authenticate_session(self, db: Session, token: str) -> SessionContext | Failure:
        try:
            claims = self.verify(token)
        except TokenError:
            return fail(FailureKind.SESSION_INVALID)
        if claims.get("scope") != SCOPE_SESSION or "twoFactorVerified" not in claims:
            return fail(FailureKind.SESSION_INVALID)

        issued: IssuedToken | None = db.get(IssuedToken, claims["jti"])
        if not issued or issued.status != TokenStatus.ACTIVE or issued.account_id != claims["userId"]:
            return fail(FailureKind.SESSION_INVALID)
        if ensure_aware(issued.expires_at) <= self.clock.now():
            return fail(FailureKind.SESSION_INVALID)

        account: Account | None = db.get(Account, claims["userId"])
        if not account:
            return fail(FailureKind.SESSION_INVALID)
        return SessionContext(
            account=account,
            token_id=issued.id,
            two_factor_verified=claims["twoFactorVerified"] is True,
            claims=claims,
        )

    def revoke(self, db: Session, token_id: str) -> bool:
        issued: IssuedToken | None = db.get(IssuedToken, token_id)
        if not issued or issued.status != TokenStatus.ACTIVE:
            return False
        issued.status = TokenStatus.REVOKED
        issued.revoked_at = self.clock.now()
        db.add(issued)
        db.commit()
        return True

    def revoke_all(self, db: Session, account_id: int) -> int:
        revoked = (
            db.query(IssuedToken)
            .filter(IssuedToken.account_id == account_id, IssuedToken.status == TokenStatus.ACTIVE)
            .update(
                {IssuedToken.status: TokenStatus.REVOKED, IssuedToken.revoked_at: self.clock.now()},
                synchronize_session=False,
            )
        )
        db.commit()
        return revoked

    # -- enrollment tokens -------------------------------------------------

    def issue_enrollment(self, db: Session, account: Account, secret: str, recovery_codes: list[str]) -> str:
        """Sign the pending bundle; the backing row makes the token single-use."""
        ttl = self.settings.enrollment_token_ttl()
        jti = uuid.uuid4().hex
        db.add(
            Challenge(
                id=jti,
                account_id=account.id,
                purpose=ChallengePurpose.ENROLLMENT,
                expires_at=self.clock.now() + ttl,
            )
        )
        db.commit()
        return self.sign(
            {"userId": account.id, "scope": SCOPE_ENROLLMENT, "secret": secret, "recoveryCodes": recovery_codes, "jti": jti},
            ttl,
        )

    def read_enrollment(self, token: str, account: Account) -> Dict[str, Any]:
        claims = self.verify(token)
        if claims.get("scope") != SCOPE_ENROLLMENT or claims["userId"] != account.id:
            raise TokenInvalid("Not an enrollment token for this account")
        if not isinstance(claims.get("secret"), str) or not isinstance(claims.get("recoveryCodes"), list):
            raise TokenInvalid("Malformed enrollment token")
        return claims


def require_two_factor(context: SessionContext) -> Failure | None:
    """Step-up check: 2FA accounts need a token minted after a second factor."""
    if context.account.two_factor_enabled and not context.two_factor_verified:
        return fail(FailureKind.TWO_FACTOR_REQUIRED)
    return None
