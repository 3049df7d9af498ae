from typing import List

from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.password_history import PasswordHistory
from security.errors import DependencyError


class SqlPasswordHistory:
    def recent_hashes(self, user_id: str, limit: int) -> List[str]:
        try:
            rows = (
                PasswordHistory.query
                .filter_by(user_id=user_id)
                .order_by(PasswordHistory.created_at.desc(), PasswordHistory.id.desc())
                .limit(limit)
                .all()
            )
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise DependencyError() from exc
        return [row.password_hash for row in rows]

    def add(self, user_id: str, password_hash: str) -> None:
        try:
            db.session.add(PasswordHistory(user_id=user_id, password_hash=password_hash))
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise DependencyError() from exc
