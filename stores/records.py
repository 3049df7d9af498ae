from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from utils.timeutil import utcnow


@dataclass
class FailedLoginRecord:
    email: str
    ip: str
    attempt_count: int = 0
    first_attempt_at: Optional[datetime] = None
    last_attempt_at: Optional[datetime] = None
    blocked_until: Optional[datetime] = None


@dataclass
class MFAEnrollmentRecord:
    user_id: str
    totp_secret: str
    backup_code_hashes: List[str] = field(default_factory=list)
    enabled: bool = False
    verified: bool = False
    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None
    disabled_at: Optional[datetime] = None


@dataclass
class AuditEvent:
    event_type: str
    user_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)
