"""
TOTP + backup code MFA.

Per user: NotEnrolled -> PendingVerification (enroll) -> Enabled
(confirm_enrollment) -> Disabled (disable) -> PendingVerification (enroll).

The service holds no state of its own; enrollments live in the injected
store and every outcome is written to the injected audit sink.
"""
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

import pyotp

from security.crypto import digest_in, new_totp_secret, random_code, sha256_hex
from security.errors import AuthError, DependencyError, InvalidCodeError, MFAStateError, SecurityError
from stores.records import AuditEvent, MFAEnrollmentRecord
from utils.timeutil import to_epoch, utcnow

logger = logging.getLogger(__name__)

DEFAULT_ISSUER = "Contract Management System"
BACKUP_CODE_COUNT = 10
BACKUP_CODE_BYTES = 6
TOTP_VALID_WINDOW = 0

_TOKEN_FORMAT = re.compile(r"[0-9]{6}")


@dataclass
class EnrollmentResult:
    success: bool
    secret: Optional[str] = None
    backup_codes: List[str] = field(default_factory=list)
    qr_payload: Optional[str] = None
    error: Optional[SecurityError] = None


@dataclass
class MFAResult:
    success: bool
    error: Optional[SecurityError] = None
    requires_backup_code: bool = False


@dataclass
class MFAStatus:
    enabled: bool = False
    verified: bool = False
    backup_codes_remaining: int = 0


@dataclass
class BackupCodesResult:
    success: bool
    backup_codes: List[str] = field(default_factory=list)
    error: Optional[SecurityError] = None


def _hash_backup_code(code: str) -> str:
    return sha256_hex(code.strip().upper())


def _token_well_formed(token) -> bool:
    return isinstance(token, str) and bool(_TOKEN_FORMAT.fullmatch(token))


class MFAService:
    def __init__(self, store, audit_sink, reauthenticate: Callable[[str, str], bool],
                 issuer: str = DEFAULT_ISSUER,
                 backup_code_count: int = BACKUP_CODE_COUNT,
                 backup_code_bytes: int = BACKUP_CODE_BYTES,
                 valid_window: int = TOTP_VALID_WINDOW,
                 clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.audit_sink = audit_sink
        self.reauthenticate = reauthenticate
        self.issuer = issuer
        self.backup_code_count = backup_code_count
        self.backup_code_bytes = backup_code_bytes
        self.valid_window = valid_window
        self.clock = clock

    @classmethod
    def from_config(cls, config, store, audit_sink, reauthenticate,
                    clock: Callable[[], datetime] = utcnow) -> "MFAService":
        return cls(
            store,
            audit_sink,
            reauthenticate,
            issuer=config.get("MFA_ISSUER", DEFAULT_ISSUER),
            backup_code_count=int(config.get("MFA_BACKUP_CODE_COUNT", BACKUP_CODE_COUNT)),
            backup_code_bytes=int(config.get("MFA_BACKUP_CODE_BYTES", BACKUP_CODE_BYTES)),
            valid_window=int(config.get("MFA_TOTP_VALID_WINDOW", TOTP_VALID_WINDOW)),
            clock=clock,
        )

    # -- helpers --------------------------------------------------------

    def _audit(self, event_type: str, user_id: str, **metadata) -> None:
        """Best effort: a failing sink is logged, never raised."""
        try:
            self.audit_sink.record(AuditEvent(
                event_type=event_type,
                user_id=user_id,
                metadata=metadata,
                timestamp=self.clock(),
            ))
        except Exception:
            logger.warning("audit event %s for user %s was not written", event_type, user_id, exc_info=True)

    def _generate_backup_codes(self) -> List[str]:
        return [random_code(self.backup_code_bytes) for _ in range(self.backup_code_count)]

    def _verify_totp(self, secret: str, token: str) -> bool:
        totp = pyotp.TOTP(secret)
        return totp.verify(token, for_time=to_epoch(self.clock()), valid_window=self.valid_window)

    def qr_payload(self, email: str, secret: str) -> str:
        return pyotp.TOTP(secret).provisioning_uri(name=email, issuer_name=self.issuer)

    # -- operations -----------------------------------------------------

    def enroll(self, user_id: str, email: str) -> EnrollmentResult:
        """
        Starts (or restarts) enrollment with a fresh secret and backup codes.
        The raw codes are only ever returned here; the store keeps digests.
        """
        try:
            existing = self.store.get(user_id)
        except DependencyError as exc:
            return EnrollmentResult(success=False, error=exc)

        if existing is not None and existing.enabled:
            return EnrollmentResult(success=False, error=MFAStateError("MFA is already enabled"))

        now = self.clock()
        secret = new_totp_secret()
        backup_codes = self._generate_backup_codes()

        try:
            self.store.upsert(MFAEnrollmentRecord(
                user_id=user_id,
                totp_secret=secret,
                backup_code_hashes=[_hash_backup_code(c) for c in backup_codes],
                enabled=False,
                verified=False,
                created_at=now,
                updated_at=now,
            ))
        except DependencyError as exc:
            return EnrollmentResult(success=False, error=exc)

        self._audit("mfa_setup_initiated", user_id, email=email)
        return EnrollmentResult(
            success=True,
            secret=secret,
            backup_codes=backup_codes,
            qr_payload=self.qr_payload(email, secret),
        )

    def confirm_enrollment(self, user_id: str, token: str) -> MFAResult:
        if not _token_well_formed(token):
            self._audit("mfa_setup_verification_failed", user_id, reason="invalid_format")
            return MFAResult(success=False, error=InvalidCodeError())

        try:
            record = self.store.get(user_id)
        except DependencyError as exc:
            return MFAResult(success=False, error=exc)

        if record is None:
            return MFAResult(success=False, error=MFAStateError("MFA is not set up"))
        if record.enabled:
            return MFAResult(success=False, error=MFAStateError("MFA is already enabled"))

        if not self._verify_totp(record.totp_secret, token):
            self._audit("mfa_setup_verification_failed", user_id, reason="invalid_totp")
            return MFAResult(success=False, error=InvalidCodeError())

        now = self.clock()
        try:
            updated = self.store.update(
                user_id,
                enabled=True,
                verified=True,
                verified_at=now,
                updated_at=now,
            )
        except DependencyError as exc:
            return MFAResult(success=False, error=exc)
        if not updated:
            return MFAResult(success=False, error=MFAStateError("MFA is not set up"))

        logger.info("MFA enabled for user %s", user_id)
        self._audit("mfa_enabled", user_id)
        return MFAResult(success=True)

    def verify_login(self, user_id: str, token: Optional[str] = None,
                     backup_code: Optional[str] = None) -> MFAResult:
        if (token is None) == (backup_code is None):
            self._audit("mfa_verification_failed", user_id, reason="expected_one_factor")
            return MFAResult(success=False, error=InvalidCodeError())

        try:
            record = self.store.get(user_id)
        except DependencyError as exc:
            self._audit("mfa_verification_failed", user_id, reason="store_unavailable")
            return MFAResult(success=False, error=exc)

        if record is None or not record.enabled:
            self._audit("mfa_verification_failed", user_id, reason="mfa_not_enabled")
            return MFAResult(success=False, error=MFAStateError("MFA is not enabled"))

        if backup_code is not None:
            return self._verify_backup_code(record, backup_code)

        if not _token_well_formed(token):
            self._audit("mfa_verification_failed", user_id, reason="invalid_format")
            return MFAResult(success=False, error=InvalidCodeError(), requires_backup_code=True)

        if not self._verify_totp(record.totp_secret, token):
            self._audit("mfa_verification_failed", user_id, reason="invalid_totp")
            return MFAResult(success=False, error=InvalidCodeError(), requires_backup_code=True)

        self._audit("mfa_verification_success", user_id, method="totp")
        return MFAResult(success=True)

    def _verify_backup_code(self, record: MFAEnrollmentRecord, backup_code: str) -> MFAResult:
        user_id = record.user_id
        code_hash = _hash_backup_code(backup_code) if isinstance(backup_code, str) else ""

        if not code_hash or not digest_in(code_hash, record.backup_code_hashes):
            self._audit("mfa_verification_failed", user_id, reason="invalid_backup_code")
            return MFAResult(success=False, error=InvalidCodeError())

        try:
            remaining = self.store.consume_backup_code(user_id, code_hash, self.clock())
        except DependencyError as exc:
            return MFAResult(success=False, error=exc)

        if remaining is None:
            # spent by a concurrent request between the read and the write
            self._audit("mfa_verification_failed", user_id, reason="invalid_backup_code")
            return MFAResult(success=False, error=InvalidCodeError())

        self._audit("mfa_backup_code_used", user_id, backup_codes_remaining=remaining)
        return MFAResult(success=True)

    def disable(self, user_id: str, password: str) -> MFAResult:
        # password first, so a wrong one says nothing about enrollment
        try:
            confirmed = self.reauthenticate(user_id, password)
        except DependencyError as exc:
            return MFAResult(success=False, error=exc)

        if not confirmed:
            self._audit("mfa_disable_failed", user_id, reason="invalid_password")
            return MFAResult(success=False, error=AuthError())

        try:
            record = self.store.get(user_id)
        except DependencyError as exc:
            return MFAResult(success=False, error=exc)
        if record is None:
            return MFAResult(success=False, error=MFAStateError("MFA is not set up"))

        now = self.clock()
        try:
            self.store.update(
                user_id,
                enabled=False,
                verified=False,
                disabled_at=now,
                updated_at=now,
            )
        except DependencyError as exc:
            return MFAResult(success=False, error=exc)

        logger.info("MFA disabled for user %s", user_id)
        self._audit("mfa_disabled", user_id)
        return MFAResult(success=True)

    def get_status(self, user_id: str) -> MFAStatus:
        try:
            record = self.store.get(user_id)
        except DependencyError as exc:
            logger.warning("MFA status unavailable for user %s: %s", user_id, exc)
            return MFAStatus()
        if record is None:
            return MFAStatus()
        return MFAStatus(
            enabled=record.enabled,
            verified=record.verified,
            backup_codes_remaining=len(record.backup_code_hashes),
        )

    def regenerate_backup_codes(self, user_id: str) -> BackupCodesResult:
        """Replaces the whole set; every earlier code stops working at once."""
        try:
            record = self.store.get(user_id)
        except DependencyError as exc:
            return BackupCodesResult(success=False, error=exc)
        if record is None:
            return BackupCodesResult(success=False, error=MFAStateError("MFA is not set up"))

        codes = self._generate_backup_codes()
        try:
            self.store.update(
                user_id,
                backup_code_hashes=[_hash_backup_code(c) for c in codes],
                updated_at=self.clock(),
            )
        except DependencyError as exc:
            return BackupCodesResult(success=False, error=exc)

        self._audit("mfa_backup_codes_regenerated", user_id, count=len(codes))
        return BackupCodesResult(success=True, backup_codes=codes)
