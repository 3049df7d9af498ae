"""
In-process stores guarded by a lock.

Suitable for a single worker process and for tests. Every mutating method
holds the lock for the whole read-modify-write so concurrent callers never
lose an update.
"""
import threading
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from stores.records import AuditEvent, FailedLoginRecord, MFAEnrollmentRecord


class MemoryAttemptStore:
    def __init__(self):
        self._lock = threading.Lock()
        self._rows: Dict[Tuple[str, str], FailedLoginRecord] = {}

    def get(self, email: str, ip: str) -> Optional[FailedLoginRecord]:
        with self._lock:
            row = self._rows.get((email, ip))
            return replace(row) if row else None

    def increment(self, email: str, ip: str, now: datetime, window_start: datetime,
                  max_attempts: int, lock_until: datetime) -> FailedLoginRecord:
        with self._lock:
            row = self._rows.get((email, ip))
            if row is None:
                row = FailedLoginRecord(email=email, ip=ip, attempt_count=0, first_attempt_at=now)
                self._rows[(email, ip)] = row

            if row.last_attempt_at is not None and row.last_attempt_at <= window_start:
                row.attempt_count = 1
                row.first_attempt_at = now
                row.blocked_until = None
            else:
                row.attempt_count += 1
            row.last_attempt_at = now

            if row.attempt_count >= max_attempts:
                row.blocked_until = lock_until
            return replace(row)

    def reset(self, email: str, ip: str) -> None:
        with self._lock:
            row = self._rows.get((email, ip))
            if row is None:
                return
            row.attempt_count = 0
            row.blocked_until = None


class MemoryMFAStore:
    def __init__(self):
        self._lock = threading.Lock()
        self._rows: Dict[str, MFAEnrollmentRecord] = {}

    def get(self, user_id: str) -> Optional[MFAEnrollmentRecord]:
        with self._lock:
            row = self._rows.get(user_id)
            return replace(row, backup_code_hashes=list(row.backup_code_hashes)) if row else None

    def upsert(self, record: MFAEnrollmentRecord) -> MFAEnrollmentRecord:
        with self._lock:
            existing = self._rows.get(record.user_id)
            stored = replace(record, backup_code_hashes=list(record.backup_code_hashes))
            stored.version = existing.version + 1 if existing else 0
            if existing and existing.created_at:
                stored.created_at = existing.created_at
            self._rows[record.user_id] = stored
            return replace(stored, backup_code_hashes=list(stored.backup_code_hashes))

    def update(self, user_id: str, **fields) -> bool:
        with self._lock:
            row = self._rows.get(user_id)
            if row is None:
                return False
            for name, value in fields.items():
                setattr(row, name, list(value) if name == "backup_code_hashes" else value)
            row.version += 1
            return True

    def consume_backup_code(self, user_id: str, code_hash: str, now: datetime) -> Optional[int]:
        with self._lock:
            row = self._rows.get(user_id)
            if row is None or code_hash not in row.backup_code_hashes:
                return None
            row.backup_code_hashes.remove(code_hash)
            row.updated_at = now
            row.version += 1
            return len(row.backup_code_hashes)


class MemoryAuditSink:
    def __init__(self):
        self._lock = threading.Lock()
        self.events: List[AuditEvent] = []

    def record(self, event: AuditEvent) -> None:
        with self._lock:
            self.events.append(event)

    def event_types(self, user_id: Optional[str] = None) -> List[str]:
        with self._lock:
            return [e.event_type for e in self.events if user_id is None or e.user_id == user_id]


class MemoryPasswordHistory:
    def __init__(self):
        self._lock = threading.Lock()
        self._rows: Dict[str, List[str]] = {}

    def recent_hashes(self, user_id: str, limit: int) -> List[str]:
        with self._lock:
            rows = self._rows.get(user_id, [])
            return list(reversed(rows))[:limit]

    def add(self, user_id: str, password_hash: str) -> None:
        with self._lock:
            self._rows.setdefault(user_id, []).append(password_hash)
