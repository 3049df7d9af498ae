from utils.timeutil import utcnow
from models.db import db


class MFAEnrollment(db.Model):
    __tablename__ = "user_mfa"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), unique=True, nullable=False, index=True)

    totp_secret = db.Column(db.String(64), nullable=False)
    # JSON list of SHA-256 digests, never the raw codes
    backup_codes_json = db.Column(db.Text, nullable=False, default="[]")

    enabled = db.Column(db.Boolean, default=False, nullable=False)
    verified = db.Column(db.Boolean, default=False, nullable=False)

    # bumped on every write; backup code consumption compares-and-swaps on it
    version = db.Column(db.Integer, default=0, nullable=False)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    verified_at = db.Column(db.DateTime, nullable=True)
    disabled_at = db.Column(db.DateTime, nullable=True)
