"""Two-factor enrollment: secret + URI + recovery codes, QR image, confirm, disable."""

import base64
import logging
from dataclasses import dataclass, field
from io import BytesIO
from typing import Callable

import qrcode
from sqlalchemy.orm import Session

from twofactor.config import Settings, settings as default_settings
from twofactor.models.account import Account
from twofactor.models.challenge import ChallengePurpose
from twofactor.services import recovery
from twofactor.services.accounts import get_account, get_challenge, run_with_retry, save_account
from twofactor.services.audit import audit
from twofactor.services.results import Failure, FailureKind, fail
from twofactor.services.secret_codec import InvalidLabel, build_provisioning_uri, new_base32_secret
from twofactor.services.totp import TotpEngine

logger = logging.getLogger(__name__)

QrRenderer = Callable[[str], bytes]


@dataclass(frozen=True)
class EnrollmentBundle:
    secret: str
    provisioning_uri: str
    recovery_codes: list[str] = field(default_factory=list)


def render_qr_png(text: str) -> bytes:
    img = qrcode.make(text)
    buf = BytesIO()
    img.save(buf, "PNG")
    return buf.getvalue()


class ProvisioningService:
    def __init__(
        self,
        totp: TotpEngine,
        settings: Settings | None = None,
        qr_renderer: QrRenderer = render_qr_png,
    ) -> None:
        self.totp = totp
        self.settings = settings or default_settings
        self.qr_renderer = qr_renderer

    def begin_enrollment(self, account_label: str) -> EnrollmentBundle | Failure:
        """Create an uncommitted enrollment bundle. Nothing is persisted."""
        secret = new_base32_secret()
        try:
            uri = build_provisioning_uri(self.settings.issuer_label, account_label, secret)
        except InvalidLabel:
            return fail(FailureKind.INVALID_LABEL)
        codes = recovery.generate_batch(self.settings.recovery_code_count)
        return EnrollmentBundle(secret=secret, provisioning_uri=uri, recovery_codes=codes)

    def render_qr_image(self, provisioning_uri: str) -> bytes:
        return self.qr_renderer(provisioning_uri)

    def render_qr_data_url(self, provisioning_uri: str) -> str:
        encoded = base64.b64encode(self.render_qr_image(provisioning_uri)).decode("ascii")
        return f"data:image/png;base64,{encoded}"

    def confirm_enrollment(
        self,
        db: Session,
        account: Account,
        pending: EnrollmentBundle,
        submitted_code: str,
        enrollment_id: str | None = None,
    ) -> Account | Failure:
        """Activate 2FA once the user proves their authenticator holds ``pending.secret``.

        ``enrollment_id`` is the jti of the enrollment token that carried
        ``pending``; it is consumed in the same commit so the token cannot be
        replayed later.
        """
        if not self.totp.verify(pending.secret, submitted_code):
            logger.info("2FA confirmation rejected for account %s", account.id)
            return fail(FailureKind.VERIFICATION_FAILED)

        def _commit() -> Account | Failure:
            if enrollment_id is not None:
                enrollment = get_challenge(db, enrollment_id, lock=True)
                if (
                    not enrollment
                    or enrollment.purpose != ChallengePurpose.ENROLLMENT
                    or enrollment.consumed
                    or enrollment.account_id != account.id
                ):
                    db.rollback()
                    return fail(FailureKind.ENROLLMENT_INVALID)
                enrollment.consumed = True
                db.add(enrollment)

            fresh = get_account(db, account.id, lock=True)
            if fresh is None:
                db.rollback()
                return fail(FailureKind.VERIFICATION_FAILED)
            fresh.two_factor_secret = pending.secret
            fresh.two_factor_recovery_codes = list(pending.recovery_codes)
            fresh.two_factor_enabled = True
            return save_account(db, fresh)

        result = run_with_retry(db, self.settings.account_write_retries, _commit)
        if isinstance(result, Failure):
            return result
        audit(db, action="2fa_enabled", user_id=result.id, detail=f"{len(pending.recovery_codes)} recovery codes issued")
        logger.info("2FA enabled for account %s", result.id)
        return result

    def disable_two_factor(self, db: Session, account: Account) -> Account | Failure:
        def _commit() -> Account:
            fresh = get_account(db, account.id, lock=True) or account
            fresh.two_factor_enabled = False
            fresh.two_factor_secret = None
            fresh.two_factor_recovery_codes = []
            return save_account(db, fresh)

        result = run_with_retry(db, self.settings.account_write_retries, _commit)
        if isinstance(result, Failure):
            return result
        audit(db, action="2fa_disabled", user_id=result.id)
        logger.info("2FA disabled for account %s", result.id)
        return result
