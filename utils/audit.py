import json

from flask import has_request_context, request
from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.audit_log import AuditLog
from security.errors import DependencyError
from stores.records import AuditEvent
from utils.request_context import client_ip


class SqlAuditSink:
    """Appends security events to security_audit_log."""

    def record(self, event: AuditEvent) -> None:
        ip = None
        user_agent = None
        if has_request_context():
            ip = client_ip(request.headers)
            user_agent = request.headers.get("User-Agent", "")

        row = AuditLog(
            user_id=str(event.user_id) if event.user_id is not None else None,
            event_type=event.event_type,
            ip=ip,
            user_agent=user_agent[:255] if user_agent else None,
            metadata_json=json.dumps(event.metadata, default=str) if event.metadata else None,
            timestamp=event.timestamp,
        )
        try:
            db.session.add(row)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise DependencyError() from exc


def log_event(event_type: str, user_id=None, metadata=None, sink=None):
    (sink or SqlAuditSink()).record(AuditEvent(event_type=event_type, user_id=user_id, metadata=metadata or {}))
