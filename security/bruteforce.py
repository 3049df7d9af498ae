import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional, Tuple

from security.errors import DependencyError, LockoutError
from stores.records import FailedLoginRecord
from utils.request_context import normalize_email
from utils.timeutil import utcnow

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 5
WINDOW_MINUTES = 15
LOCKOUT_DURATION_MINUTES = 15


@dataclass
class LockoutStatus:
    is_blocked: bool
    attempts_remaining: int
    blocked_until: Optional[datetime] = None
    retry_after_seconds: int = 0

    def raise_for_status(self) -> None:
        if self.is_blocked:
            raise LockoutError(self.retry_after_seconds, self.blocked_until)


@dataclass
class AttemptUpdate:
    ok: bool
    attempt_count: int = 0
    locked_now: bool = False
    blocked_until: Optional[datetime] = None
    error: Optional[DependencyError] = None


class BruteForceGuard:
    """
    Failed-login lockout keyed by (normalized email, client ip).

    The attempt store must provide get(email, ip), an atomic
    increment(email, ip, now, window_start, max_attempts, lock_until)
    and reset(email, ip).
    """

    def __init__(self, store, max_attempts: int = MAX_ATTEMPTS,
                 window_minutes: int = WINDOW_MINUTES,
                 lockout_minutes: int = LOCKOUT_DURATION_MINUTES,
                 clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.max_attempts = max_attempts
        self.window = timedelta(minutes=window_minutes)
        self.lockout = timedelta(minutes=lockout_minutes)
        self.clock = clock

    @classmethod
    def from_config(cls, config, store, clock: Callable[[], datetime] = utcnow) -> "BruteForceGuard":
        return cls(
            store,
            max_attempts=int(config.get("MAX_LOGIN_ATTEMPTS", MAX_ATTEMPTS)),
            window_minutes=int(config.get("LOGIN_WINDOW_MINUTES", WINDOW_MINUTES)),
            lockout_minutes=int(config.get("LOCKOUT_MINUTES", LOCKOUT_DURATION_MINUTES)),
            clock=clock,
        )

    def _open(self) -> LockoutStatus:
        return LockoutStatus(is_blocked=False, attempts_remaining=self.max_attempts)

    def check(self, email: str, ip: str) -> Tuple[LockoutStatus, Optional[str]]:
        """
        Returns (status, warning). A store failure fails open: the status is
        "not blocked" and warning carries the reason for the caller to log.
        """
        email = normalize_email(email)
        now = self.clock()

        try:
            record = self.store.get(email, ip)
        except DependencyError as exc:
            logger.warning("lockout check unavailable for %s from %s, allowing: %s", email, ip, exc)
            return self._open(), f"lockout check unavailable: {exc.message}"

        if record is None:
            return self._open(), None

        if record.blocked_until is not None and record.blocked_until > now:
            seconds = math.ceil((record.blocked_until - now).total_seconds())
            return LockoutStatus(
                is_blocked=True,
                attempts_remaining=0,
                blocked_until=record.blocked_until,
                retry_after_seconds=max(seconds, 1),
            ), None

        if record.last_attempt_at is not None and record.last_attempt_at <= now - self.window:
            # stale window, forgive it; nothing to write once already forgiven
            if record.attempt_count or record.blocked_until is not None:
                try:
                    self.store.reset(email, ip)
                except DependencyError as exc:
                    logger.warning("could not reset stale attempts for %s from %s: %s", email, ip, exc)
                    return self._open(), f"lockout reset failed: {exc.message}"
            return self._open(), None

        return LockoutStatus(
            is_blocked=False,
            attempts_remaining=max(0, self.max_attempts - record.attempt_count),
        ), None

    def ensure_not_blocked(self, email: str, ip: str) -> Optional[str]:
        """
        Raises LockoutError when blocked, otherwise returns the fail-open warning (if any).
        """
        status, warning = self.check(email, ip)
        status.raise_for_status()
        return warning

    def record_failure(self, email: str, ip: str) -> AttemptUpdate:
        email = normalize_email(email)
        now = self.clock()

        try:
            record: FailedLoginRecord = self.store.increment(
                email,
                ip,
                now=now,
                window_start=now - self.window,
                max_attempts=self.max_attempts,
                lock_until=now + self.lockout,
            )
        except DependencyError as exc:
            logger.warning("failed login for %s from %s was not recorded: %s", email, ip, exc)
            return AttemptUpdate(ok=False, error=exc)

        locked_now = record.attempt_count >= self.max_attempts
        if locked_now:
            logger.info("login locked for %s from %s until %s", email, ip, record.blocked_until)

        return AttemptUpdate(
            ok=True,
            attempt_count=record.attempt_count,
            locked_now=locked_now,
            blocked_until=record.blocked_until,
        )

    def clear_failed_attempts(self, email: str, ip: str) -> AttemptUpdate:
        """
        Clears failure counter after successful login.
        """
        email = normalize_email(email)
        try:
            self.store.reset(email, ip)
        except DependencyError as exc:
            logger.warning("failed attempts for %s from %s were not cleared: %s", email, ip, exc)
            return AttemptUpdate(ok=False, error=exc)
        return AttemptUpdate(ok=True)
