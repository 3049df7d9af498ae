import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from flask import current_app

from security.breach import PwnedPasswordsClient
from security.bruteforce import BruteForceGuard
from security.mfa import MFAService
from security.password import deny_all
from stores.attempts import SqlAttemptStore
from stores.memory import MemoryAttemptStore, MemoryAuditSink, MemoryMFAStore, MemoryPasswordHistory
from stores.mfa import SqlMFAStore
from stores.password_history import SqlPasswordHistory
from utils.audit import SqlAuditSink
from utils.timeutil import utcnow

logger = logging.getLogger(__name__)

EXTENSION_KEY = "security"


@dataclass
class SecurityServices:
    guard: BruteForceGuard
    mfa: MFAService
    audit_sink: object
    breach_client: PwnedPasswordsClient
    history_store: object
    history_limit: int


def build_services(config, reauthenticate: Optional[Callable[[str, str], bool]] = None,
                   clock: Callable[[], datetime] = utcnow) -> SecurityServices:
    backend = config.get("SECURITY_STORE_BACKEND", "sql")
    if backend == "memory":
        attempts, mfa_store, audit_sink, history = (
            MemoryAttemptStore(), MemoryMFAStore(), MemoryAuditSink(), MemoryPasswordHistory()
        )
    elif backend == "sql":
        attempts, mfa_store, audit_sink, history = (
            SqlAttemptStore(), SqlMFAStore(), SqlAuditSink(), SqlPasswordHistory()
        )
    else:
        raise ValueError(f"unknown SECURITY_STORE_BACKEND: {backend!r}")

    if reauthenticate is None:
        logger.warning("no re-authentication wired, MFA can not be disabled")
        reauthenticate = deny_all

    return SecurityServices(
        guard=BruteForceGuard.from_config(config, attempts, clock=clock),
        mfa=MFAService.from_config(config, mfa_store, audit_sink, reauthenticate, clock=clock),
        audit_sink=audit_sink,
        breach_client=PwnedPasswordsClient.from_config(config),
        history_store=history,
        history_limit=int(config.get("PASSWORD_HISTORY_COUNT", 5)),
    )


def init_security(app, reauthenticate=None, clock: Callable[[], datetime] = utcnow) -> SecurityServices:
    services = build_services(app.config, reauthenticate=reauthenticate, clock=clock)
    app.extensions[EXTENSION_KEY] = services
    return services


def current_security() -> SecurityServices:
    return current_app.extensions[EXTENSION_KEY]
