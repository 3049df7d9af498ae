from datetime import datetime
from typing import Optional

from sqlalchemy import case, null, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from models import db
from models.login_attempt import LoginAttempt
from security.errors import DependencyError
from stores.records import FailedLoginRecord


def _to_record(row: LoginAttempt) -> FailedLoginRecord:
    return FailedLoginRecord(
        email=row.email,
        ip=row.ip,
        attempt_count=row.fail_count,
        first_attempt_at=row.first_fail_at,
        last_attempt_at=row.last_fail_at,
        blocked_until=row.locked_until,
    )


class SqlAttemptStore:
    """
    login_attempts table access. increment() is a single UPDATE ... RETURNING
    so concurrent failures for one (email, ip) never overwrite each other.
    """

    def get(self, email: str, ip: str) -> Optional[FailedLoginRecord]:
        try:
            row = LoginAttempt.query.filter_by(email=email, ip=ip).first()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise DependencyError() from exc
        return _to_record(row) if row else None

    def increment(self, email: str, ip: str, now: datetime, window_start: datetime,
                  max_attempts: int, lock_until: datetime) -> FailedLoginRecord:
        try:
            record = self._atomic_increment(email, ip, now, window_start, max_attempts, lock_until)
            if record is not None:
                return record

            db.session.add(LoginAttempt(
                email=email,
                ip=ip,
                fail_count=1,
                first_fail_at=now,
                last_fail_at=now,
                locked_until=lock_until if max_attempts <= 1 else None,
            ))
            try:
                db.session.commit()
            except IntegrityError:
                # another request created the row first, count on top of it
                db.session.rollback()
                record = self._atomic_increment(email, ip, now, window_start, max_attempts, lock_until)
                if record is None:
                    raise DependencyError()
                return record

            return FailedLoginRecord(
                email=email,
                ip=ip,
                attempt_count=1,
                first_attempt_at=now,
                last_attempt_at=now,
                blocked_until=lock_until if max_attempts <= 1 else None,
            )
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise DependencyError() from exc

    def _atomic_increment(self, email, ip, now, window_start, max_attempts, lock_until):
        stale = LoginAttempt.last_fail_at <= window_start
        new_count = case((stale, 1), else_=LoginAttempt.fail_count + 1)
        stmt = (
            update(LoginAttempt)
            .where(LoginAttempt.email == email, LoginAttempt.ip == ip)
            .values(
                fail_count=new_count,
                first_fail_at=case((stale, now), else_=LoginAttempt.first_fail_at),
                last_fail_at=now,
                locked_until=case(
                    (new_count >= max_attempts, lock_until),
                    (stale, null()),
                    else_=LoginAttempt.locked_until,
                ),
                updated_at=now,
            )
            .returning(
                LoginAttempt.fail_count,
                LoginAttempt.first_fail_at,
                LoginAttempt.last_fail_at,
                LoginAttempt.locked_until,
            )
            .execution_options(synchronize_session=False)
        )
        row = db.session.execute(stmt).first()
        db.session.commit()
        if row is None:
            return None
        return FailedLoginRecord(
            email=email,
            ip=ip,
            attempt_count=row.fail_count,
            first_attempt_at=row.first_fail_at,
            last_attempt_at=row.last_fail_at,
            blocked_until=row.locked_until,
        )

    def reset(self, email: str, ip: str) -> None:
        try:
            db.session.execute(
                update(LoginAttempt)
                .where(LoginAttempt.email == email, LoginAttempt.ip == ip)
                .values(fail_count=0, locked_until=None)
                .execution_options(synchronize_session=False)
            )
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise DependencyError() from exc
