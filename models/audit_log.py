from utils.timeutil import utcnow
from models.db import db

class AuditLog(db.Model):
    __tablename__ = "security_audit_log"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), nullable=True, index=True)  # nullable for unauth events
    event_type = db.Column(db.String(80), nullable=False)  # e.g. mfa_enabled, mfa_backup_code_used

    ip = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(255), nullable=True)
    metadata_json = db.Column(db.Text, nullable=True)

    timestamp = db.Column(db.DateTime, default=utcnow, nullable=False)
