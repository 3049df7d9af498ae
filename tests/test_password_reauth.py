from security.errors import AuthError
from security.mfa import MFAService
from security.password import deny_all, hash_password, make_reauthenticator, verify_password
from stores.memory import MemoryAuditSink, MemoryMFAStore
from tests.conftest import USER_EMAIL, USER_ID, totp_now

PASSWORD = "Sup3r-Secret!"


def test_bcrypt_roundtrip():
    hashed = hash_password(PASSWORD)
    assert hashed.startswith("$2")
    assert verify_password(PASSWORD, hashed)
    assert not verify_password("nope", hashed)
    assert not verify_password(PASSWORD, "not-a-bcrypt-hash")
    assert not verify_password(PASSWORD, None)


def test_disable_with_bcrypt_reauthenticator(clock):
    hashes = {USER_ID: hash_password(PASSWORD)}
    reauth = make_reauthenticator(hashes.get)
    mfa = MFAService(MemoryMFAStore(), MemoryAuditSink(), reauth, clock=clock)

    enrollment = mfa.enroll(USER_ID, USER_EMAIL)
    assert mfa.confirm_enrollment(USER_ID, totp_now(enrollment.secret, clock)).success

    assert isinstance(mfa.disable(USER_ID, "wrong").error, AuthError)
    assert mfa.disable(USER_ID, PASSWORD).success
    assert not mfa.get_status(USER_ID).enabled


def test_unknown_user_never_reauthenticates():
    reauth = make_reauthenticator({}.get)
    assert not reauth("ghost", PASSWORD)
    assert not deny_all(USER_ID, PASSWORD)
