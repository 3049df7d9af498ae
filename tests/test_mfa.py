import re

from security.crypto import sha256_hex
from security.errors import AuthError, DependencyError, InvalidCodeError, MFAStateError
from security.mfa import MFAService
from stores.memory import MemoryMFAStore
from tests.conftest import USER_EMAIL, USER_ID, USER_PASSWORD, totp_now


class BrokenSink:
    def record(self, event):
        raise DependencyError()


class BrokenMFAStore:
    def get(self, user_id):
        raise DependencyError()


def wrong_code(good: str) -> str:
    return f"{(int(good) + 1) % 1000000:06d}"


def test_enroll_returns_secret_codes_and_uri(mfa, mfa_store, audit_sink):
    result = mfa.enroll(USER_ID, USER_EMAIL)
    assert result.success
    assert re.fullmatch(r"[A-Z2-7]+", result.secret)
    assert len(result.backup_codes) == 10
    assert len(set(result.backup_codes)) == 10
    assert all(re.fullmatch(r"[0-9A-F]{12}", code) for code in result.backup_codes)

    assert result.qr_payload.startswith("otpauth://totp/Test%20Issuer:")
    assert f"secret={result.secret}" in result.qr_payload
    assert "issuer=Test%20Issuer" in result.qr_payload

    record = mfa_store.get(USER_ID)
    assert not record.enabled and not record.verified
    # only digests are stored
    assert result.backup_codes[0] not in record.backup_code_hashes
    assert sha256_hex(result.backup_codes[0]) in record.backup_code_hashes
    assert audit_sink.event_types(USER_ID) == ["mfa_setup_initiated"]


def test_confirm_enrollment_enables_once(mfa, mfa_store, audit_sink, clock):
    enrollment = mfa.enroll(USER_ID, USER_EMAIL)
    code = totp_now(enrollment.secret, clock)

    assert mfa.confirm_enrollment(USER_ID, code).success
    record = mfa_store.get(USER_ID)
    assert record.enabled and record.verified
    assert record.verified_at == clock.now
    assert "mfa_enabled" in audit_sink.event_types(USER_ID)

    again = mfa.confirm_enrollment(USER_ID, code)
    assert not again.success
    assert isinstance(again.error, MFAStateError)
    assert audit_sink.event_types(USER_ID).count("mfa_enabled") == 1


def test_confirm_with_wrong_code_changes_nothing(mfa, mfa_store, clock):
    enrollment = mfa.enroll(USER_ID, USER_EMAIL)
    before = mfa_store.get(USER_ID)

    result = mfa.confirm_enrollment(USER_ID, wrong_code(totp_now(enrollment.secret, clock)))
    assert not result.success
    assert isinstance(result.error, InvalidCodeError)
    assert mfa_store.get(USER_ID) == before


def test_confirm_rejects_malformed_tokens(mfa):
    mfa.enroll(USER_ID, USER_EMAIL)
    for token in ("12345", "1234567", "12a456", " 123456", "", None, "١٢٣٤٥٦"):
        result = mfa.confirm_enrollment(USER_ID, token)
        assert not result.success
        assert isinstance(result.error, InvalidCodeError)


def test_confirm_code_from_another_time_step_fails(mfa, clock):
    enrollment = mfa.enroll(USER_ID, USER_EMAIL)
    old = totp_now(enrollment.secret, clock)
    clock.advance(seconds=90)
    assert not mfa.confirm_enrollment(USER_ID, old).success


def test_confirm_without_enrollment(mfa):
    result = mfa.confirm_enrollment("nobody", "123456")
    assert isinstance(result.error, MFAStateError)


def test_enroll_rejected_while_enabled(mfa, mfa_store, enabled_user):
    result = mfa.enroll(USER_ID, USER_EMAIL)
    assert not result.success
    assert isinstance(result.error, MFAStateError)
    assert mfa_store.get(USER_ID).totp_secret == enabled_user.secret


def test_pending_enrollment_can_restart(mfa, mfa_store):
    first = mfa.enroll(USER_ID, USER_EMAIL)
    second = mfa.enroll(USER_ID, USER_EMAIL)
    assert second.success
    assert second.secret != first.secret
    assert mfa_store.get(USER_ID).totp_secret == second.secret


def test_verify_login_with_totp(mfa, audit_sink, clock, enabled_user):
    clock.advance(minutes=3)
    result = mfa.verify_login(USER_ID, token=totp_now(enabled_user.secret, clock))
    assert result.success
    assert audit_sink.event_types(USER_ID)[-1] == "mfa_verification_success"


def test_verify_login_bad_totp_hints_backup_code(mfa, audit_sink, clock, enabled_user):
    result = mfa.verify_login(USER_ID, token=wrong_code(totp_now(enabled_user.secret, clock)))
    assert not result.success
    assert result.requires_backup_code
    assert isinstance(result.error, InvalidCodeError)
    assert result.error.message == "invalid verification code"
    assert audit_sink.events[-1].event_type == "mfa_verification_failed"
    assert audit_sink.events[-1].metadata["reason"] == "invalid_totp"


def test_backup_code_is_single_use(mfa, mfa_store, audit_sink, enabled_user):
    code = enabled_user.backup_codes[3]

    assert mfa.verify_login(USER_ID, backup_code=code).success
    remaining = mfa_store.get(USER_ID).backup_code_hashes
    assert len(remaining) == 9
    assert sha256_hex(code) not in remaining
    assert all(sha256_hex(c) in remaining for c in enabled_user.backup_codes if c != code)
    assert "mfa_backup_code_used" in audit_sink.event_types(USER_ID)

    reused = mfa.verify_login(USER_ID, backup_code=code)
    assert not reused.success
    assert isinstance(reused.error, InvalidCodeError)
    assert len(mfa_store.get(USER_ID).backup_code_hashes) == 9


def test_backup_code_is_case_and_space_insensitive(mfa, enabled_user):
    code = enabled_user.backup_codes[0]
    assert mfa.verify_login(USER_ID, backup_code=f"  {code.lower()} ").success


def test_wrong_backup_code_leaves_set_alone(mfa, mfa_store, enabled_user):
    before = mfa_store.get(USER_ID).backup_code_hashes
    assert not mfa.verify_login(USER_ID, backup_code="000000000000").success
    assert mfa_store.get(USER_ID).backup_code_hashes == before


def test_verify_login_requires_enabled_mfa(mfa):
    enrollment = mfa.enroll(USER_ID, USER_EMAIL)
    result = mfa.verify_login(USER_ID, backup_code=enrollment.backup_codes[0])
    assert not result.success
    assert isinstance(result.error, MFAStateError)


def test_verify_login_needs_exactly_one_factor(mfa, clock, enabled_user):
    assert not mfa.verify_login(USER_ID).success
    both = mfa.verify_login(
        USER_ID,
        token=totp_now(enabled_user.secret, clock),
        backup_code=enabled_user.backup_codes[0],
    )
    assert not both.success
    assert isinstance(both.error, InvalidCodeError)


def test_disable_requires_password(mfa, mfa_store, audit_sink, enabled_user):
    result = mfa.disable(USER_ID, "wrong")
    assert not result.success
    assert isinstance(result.error, AuthError)
    assert mfa_store.get(USER_ID).enabled
    assert "mfa_disable_failed" in audit_sink.event_types(USER_ID)

    assert mfa.disable(USER_ID, USER_PASSWORD).success
    record = mfa_store.get(USER_ID)
    assert not record.enabled and not record.verified
    assert "mfa_disabled" in audit_sink.event_types(USER_ID)


def test_disable_wrong_password_hides_enrollment(mfa, audit_sink):
    result = mfa.disable("nobody", "wrong")
    assert isinstance(result.error, AuthError)
    assert "mfa_disable_failed" in audit_sink.event_types("nobody")

    # only a re-authenticated caller learns there is nothing to disable
    unenrolled = mfa.disable("nobody", USER_PASSWORD)
    assert isinstance(unenrolled.error, MFAStateError)


def test_disabled_user_can_enroll_again(mfa, clock, enabled_user):
    assert mfa.disable(USER_ID, USER_PASSWORD).success
    fresh = mfa.enroll(USER_ID, USER_EMAIL)
    assert fresh.success
    assert fresh.secret != enabled_user.secret
    assert mfa.confirm_enrollment(USER_ID, totp_now(fresh.secret, clock)).success
    assert mfa.get_status(USER_ID).enabled


def test_status(mfa, enabled_user):
    assert mfa.get_status("nobody").enabled is False
    assert mfa.get_status("nobody").backup_codes_remaining == 0

    mfa.verify_login(USER_ID, backup_code=enabled_user.backup_codes[0])
    status = mfa.get_status(USER_ID)
    assert status.enabled and status.verified
    assert status.backup_codes_remaining == 9


def test_regenerate_invalidates_old_codes(mfa, audit_sink, enabled_user):
    result = mfa.regenerate_backup_codes(USER_ID)
    assert result.success
    assert len(result.backup_codes) == 10
    assert not set(result.backup_codes) & set(enabled_user.backup_codes)

    assert not mfa.verify_login(USER_ID, backup_code=enabled_user.backup_codes[0]).success
    assert mfa.verify_login(USER_ID, backup_code=result.backup_codes[0]).success
    assert "mfa_backup_codes_regenerated" in audit_sink.event_types(USER_ID)


def test_regenerate_without_enrollment(mfa):
    result = mfa.regenerate_backup_codes("nobody")
    assert not result.success
    assert isinstance(result.error, MFAStateError)


def test_audit_failure_does_not_fail_operation(reauth, clock):
    mfa = MFAService(MemoryMFAStore(), BrokenSink(), reauth, clock=clock)
    enrollment = mfa.enroll(USER_ID, USER_EMAIL)
    assert enrollment.success
    assert mfa.confirm_enrollment(USER_ID, totp_now(enrollment.secret, clock)).success
    assert mfa.get_status(USER_ID).enabled


def test_store_errors_are_returned(audit_sink, reauth, clock):
    mfa = MFAService(BrokenMFAStore(), audit_sink, reauth, clock=clock)
    assert isinstance(mfa.enroll(USER_ID, USER_EMAIL).error, DependencyError)
    assert isinstance(mfa.verify_login(USER_ID, token="123456").error, DependencyError)
    assert mfa.get_status(USER_ID).enabled is False


def test_backup_code_entropy_is_configurable(mfa_store, audit_sink, reauth, clock):
    mfa = MFAService.from_config(
        {"MFA_BACKUP_CODE_BYTES": 10, "MFA_BACKUP_CODE_COUNT": 4},
        mfa_store, audit_sink, reauth, clock=clock,
    )
    result = mfa.enroll(USER_ID, USER_EMAIL)
    assert len(result.backup_codes) == 4
    assert all(len(code) == 20 for code in result.backup_codes)


def test_store_outage_on_login_is_audited(audit_sink, reauth, clock):
    mfa = MFAService(BrokenMFAStore(), audit_sink, reauth, clock=clock)
    result = mfa.verify_login(USER_ID, backup_code="ABCDEF012345")
    assert isinstance(result.error, DependencyError)
    assert audit_sink.events[-1].event_type == "mfa_verification_failed"
    assert audit_sink.events[-1].metadata["reason"] == "store_unavailable"


class RacingMFAStore(MemoryMFAStore):
    """Spends another code in between the service's read and its consume."""

    def __init__(self):
        super().__init__()
        self.other_code = None

    def consume_backup_code(self, user_id, code_hash, now):
        if self.other_code is not None:
            super().consume_backup_code(user_id, sha256_hex(self.other_code), now)
            self.other_code = None
        return super().consume_backup_code(user_id, code_hash, now)


def test_backup_code_audit_reports_count_after_consume(audit_sink, reauth, clock):
    store = RacingMFAStore()
    mfa = MFAService(store, audit_sink, reauth, clock=clock)
    enrollment = mfa.enroll(USER_ID, USER_EMAIL)
    assert mfa.confirm_enrollment(USER_ID, totp_now(enrollment.secret, clock)).success

    store.other_code = enrollment.backup_codes[1]
    assert mfa.verify_login(USER_ID, backup_code=enrollment.backup_codes[0]).success

    used = [e for e in audit_sink.events if e.event_type == "mfa_backup_code_used"]
    assert used[-1].metadata["backup_codes_remaining"] == 8
    assert mfa.get_status(USER_ID).backup_codes_remaining == 8
