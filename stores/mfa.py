import json
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.mfa_enrollment import MFAEnrollment
from security.errors import DependencyError
from stores.records import MFAEnrollmentRecord
from utils.timeutil import utcnow

logger = logging.getLogger(__name__)

# a handful of concurrent logins for one user is plenty; more means something is wrong
MAX_CAS_ROUNDS = 5

_COLUMNS = {"totp_secret", "enabled", "verified", "updated_at", "verified_at", "disabled_at"}


def _to_record(row: MFAEnrollment) -> MFAEnrollmentRecord:
    return MFAEnrollmentRecord(
        user_id=row.user_id,
        totp_secret=row.totp_secret,
        backup_code_hashes=json.loads(row.backup_codes_json or "[]"),
        enabled=row.enabled,
        verified=row.verified,
        version=row.version,
        created_at=row.created_at,
        updated_at=row.updated_at,
        verified_at=row.verified_at,
        disabled_at=row.disabled_at,
    )


class SqlMFAStore:
    def get(self, user_id: str) -> Optional[MFAEnrollmentRecord]:
        try:
            row = MFAEnrollment.query.filter_by(user_id=user_id).first()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise DependencyError() from exc
        return _to_record(row) if row else None

    def upsert(self, record: MFAEnrollmentRecord) -> MFAEnrollmentRecord:
        try:
            row = MFAEnrollment.query.filter_by(user_id=record.user_id).first()
            if row is None:
                row = MFAEnrollment(user_id=record.user_id, version=0, created_at=record.created_at or utcnow())
                db.session.add(row)
            else:
                row.version = row.version + 1

            row.totp_secret = record.totp_secret
            row.backup_codes_json = json.dumps(list(record.backup_code_hashes))
            row.enabled = record.enabled
            row.verified = record.verified
            row.updated_at = record.updated_at or utcnow()
            row.verified_at = record.verified_at
            row.disabled_at = record.disabled_at

            db.session.commit()
            return _to_record(row)
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise DependencyError() from exc

    def update(self, user_id: str, **fields) -> bool:
        values = {}
        for name, value in fields.items():
            if name == "backup_code_hashes":
                values["backup_codes_json"] = json.dumps(list(value))
            elif name in _COLUMNS:
                values[name] = value
            else:
                raise TypeError(f"unknown MFA field: {name}")
        values["version"] = MFAEnrollment.version + 1

        try:
            result = db.session.execute(
                update(MFAEnrollment)
                .where(MFAEnrollment.user_id == user_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise DependencyError() from exc
        return result.rowcount > 0

    def consume_backup_code(self, user_id: str, code_hash: str, now: datetime) -> Optional[int]:
        """
        Removes one backup code digest and returns how many are left, or None
        when the code is not there. The write only lands if the row version is
        unchanged since it was read, so two requests racing on the same code
        cannot both succeed.
        """
        try:
            for _ in range(MAX_CAS_ROUNDS):
                row = db.session.execute(
                    select(MFAEnrollment.backup_codes_json, MFAEnrollment.version)
                    .where(MFAEnrollment.user_id == user_id)
                ).first()
                if row is None:
                    db.session.rollback()
                    return None

                hashes = json.loads(row.backup_codes_json or "[]")
                if code_hash not in hashes:
                    db.session.rollback()
                    return None
                hashes.remove(code_hash)

                result = db.session.execute(
                    update(MFAEnrollment)
                    .where(MFAEnrollment.user_id == user_id, MFAEnrollment.version == row.version)
                    .values(
                        backup_codes_json=json.dumps(hashes),
                        version=row.version + 1,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                db.session.commit()
                if result.rowcount == 1:
                    return len(hashes)
                logger.info("backup code update raced for user %s, re-reading", user_id)
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise DependencyError() from exc

        raise DependencyError()
