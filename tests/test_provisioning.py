"""
Tests for enrollment: bundle creation, QR rendering, confirm and disable.
"""
import base64

from conftest import DEMO_CODES, DEMO_SECRET
from twofactor.models.audit import AuditLog
from twofactor.services import provisioning as provisioning_module
from twofactor.services.accounts import ConcurrentUpdate
from twofactor.services.provisioning import EnrollmentBundle, ProvisioningService, render_qr_png
from twofactor.services.results import Failure, FailureKind


class TestBeginEnrollment:
    def test_bundle_contents(self, provisioning):
        bundle = provisioning.begin_enrollment("jane@example.com")

        assert isinstance(bundle, EnrollmentBundle)
        assert len(bundle.secret) == 32
        assert bundle.provisioning_uri == (
            f"otpauth://totp/RMS%20System%20(jane%40example.com)?secret={bundle.secret}"
        )
        assert len(bundle.recovery_codes) == 10
        assert len(set(bundle.recovery_codes)) == 10

    def test_does_not_touch_account(self, provisioning, make_account, db_session):
        account = make_account()
        provisioning.begin_enrollment(account.email)

        db_session.refresh(account)
        assert account.two_factor_enabled is False
        assert account.two_factor_secret is None
        assert account.two_factor_recovery_codes == []

    def test_empty_label_fails(self, provisioning):
        result = provisioning.begin_enrollment("")
        assert isinstance(result, Failure)
        assert result.kind == FailureKind.INVALID_LABEL


class TestQrRendering:
    def test_delegates_to_renderer(self, provisioning):
        assert provisioning.render_qr_image("otpauth://totp/x?secret=A") == b"QR:otpauth://totp/x?secret=A"

    def test_data_url(self, provisioning):
        url = provisioning.render_qr_data_url("otpauth://totp/x?secret=A")
        assert url.startswith("data:image/png;base64,")
        assert base64.b64decode(url.split(",", 1)[1]) == b"QR:otpauth://totp/x?secret=A"

    def test_default_renderer_produces_png(self, totp):
        service = ProvisioningService(totp)
        image = service.render_qr_image("otpauth://totp/RMS%20System%20(a%40b.c)?secret=JBSWY3DPEHPK3PXP")
        assert image.startswith(b"\x89PNG\r\n\x1a\n")
        assert image == render_qr_png("otpauth://totp/RMS%20System%20(a%40b.c)?secret=JBSWY3DPEHPK3PXP")


class TestConfirmEnrollment:
    def test_wrong_code_leaves_account_unchanged(self, provisioning, make_account, db_session, wrong_code):
        account = make_account()

        result = provisioning.confirm_enrollment(db_session, account, _demo_bundle(), wrong_code())

        assert isinstance(result, Failure)
        assert result.kind == FailureKind.VERIFICATION_FAILED
        db_session.refresh(account)
        assert account.two_factor_enabled is False
        assert account.two_factor_secret is None
        assert account.two_factor_recovery_codes == []

    def test_correct_code_activates_secret_and_codes(self, provisioning, make_account, db_session, current_code):
        account = make_account()

        result = provisioning.confirm_enrollment(db_session, account, _demo_bundle(), current_code())

        assert not isinstance(result, Failure)
        db_session.refresh(account)
        assert account.two_factor_enabled is True
        assert account.two_factor_secret == DEMO_SECRET
        assert account.two_factor_recovery_codes == DEMO_CODES
        assert db_session.query(AuditLog).filter(AuditLog.action == "2fa_enabled").count() == 1

    def test_re_enrollment_replaces_recovery_codes(self, provisioning, make_account, db_session, current_code):
        account = make_account(two_factor=True)
        account.two_factor_recovery_codes = DEMO_CODES[:3]
        db_session.commit()

        fresh = provisioning.begin_enrollment(account.email)
        provisioning.confirm_enrollment(db_session, account, fresh, current_code(fresh.secret))

        db_session.refresh(account)
        assert account.two_factor_secret == fresh.secret
        assert account.two_factor_recovery_codes == fresh.recovery_codes
        assert len(account.two_factor_recovery_codes) == 10


class TestDisable:
    def test_clears_all_two_factor_state(self, provisioning, make_account, db_session):
        account = make_account(two_factor=True)

        provisioning.disable_two_factor(db_session, account)

        db_session.refresh(account)
        assert account.two_factor_enabled is False
        assert account.two_factor_secret is None
        assert account.two_factor_recovery_codes == []

    def test_reports_persistent_conflict(self, provisioning, make_account, db_session, monkeypatch):
        account = make_account(two_factor=True)
        monkeypatch.setattr(provisioning_module, "save_account", _always_conflict)

        result = provisioning.disable_two_factor(db_session, account)

        assert isinstance(result, Failure)
        assert result.kind == FailureKind.CONCURRENT_UPDATE
        db_session.refresh(account)
        assert account.two_factor_enabled is True


class TestEnrollmentTokenIsSingleUse:
    def _issue(self, tokens, db_session, account, bundle):
        token = tokens.issue_enrollment(db_session, account, bundle.secret, bundle.recovery_codes)
        return tokens.read_enrollment(token, account)["jti"]

    def test_confirmed_enrollment_cannot_be_replayed_after_disable(
        self, provisioning, tokens, make_account, db_session, current_code
    ):
        account = make_account()
        bundle = provisioning.begin_enrollment(account.email)
        enrollment_id = self._issue(tokens, db_session, account, bundle)
        code = current_code(bundle.secret)

        assert not isinstance(
            provisioning.confirm_enrollment(db_session, account, bundle, code, enrollment_id=enrollment_id), Failure
        )
        provisioning.disable_two_factor(db_session, account)

        replay = provisioning.confirm_enrollment(db_session, account, bundle, code, enrollment_id=enrollment_id)

        assert replay.kind == FailureKind.ENROLLMENT_INVALID
        db_session.refresh(account)
        assert account.two_factor_enabled is False
        assert account.two_factor_secret is None

    def test_wrong_code_keeps_enrollment_usable(self, provisioning, tokens, make_account, db_session, current_code, wrong_code):
        account = make_account()
        bundle = provisioning.begin_enrollment(account.email)
        enrollment_id = self._issue(tokens, db_session, account, bundle)

        first = provisioning.confirm_enrollment(
            db_session, account, bundle, wrong_code(bundle.secret), enrollment_id=enrollment_id
        )
        second = provisioning.confirm_enrollment(
            db_session, account, bundle, current_code(bundle.secret), enrollment_id=enrollment_id
        )

        assert first.kind == FailureKind.VERIFICATION_FAILED
        assert not isinstance(second, Failure)

    def test_login_challenge_is_not_an_enrollment(self, provisioning, tokens, make_account, db_session, current_code):
        account = make_account()
        challenge_id = tokens.verify(tokens.issue_challenge(db_session, account))["jti"]

        result = provisioning.confirm_enrollment(
            db_session, account, _demo_bundle(), current_code(), enrollment_id=challenge_id
        )

        assert result.kind == FailureKind.ENROLLMENT_INVALID

    def test_enrollment_of_another_account_rejected(self, provisioning, tokens, make_account, db_session, current_code):
        owner = make_account()
        other = make_account(email="other@example.com", username="other")
        bundle = provisioning.begin_enrollment(owner.email)
        enrollment_id = self._issue(tokens, db_session, owner, bundle)

        result = provisioning.confirm_enrollment(
            db_session, other, bundle, current_code(bundle.secret), enrollment_id=enrollment_id
        )

        assert result.kind == FailureKind.ENROLLMENT_INVALID


def _demo_bundle():
    return EnrollmentBundle(secret=DEMO_SECRET, provisioning_uri="", recovery_codes=list(DEMO_CODES))


def _always_conflict(*args, **kwargs):
    raise ConcurrentUpdate("conflict")
