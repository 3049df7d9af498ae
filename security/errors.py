"""
Error taxonomy for the login security core.

Messages are deliberately generic so they never tell a caller which factor
or which account detail was wrong.
"""
from datetime import datetime
from typing import List, Optional


class SecurityError(Exception):
    message = "security check failed"

    def __init__(self, message: Optional[str] = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


class ValidationError(SecurityError):
    message = "password does not meet policy"

    def __init__(self, message: Optional[str] = None, details: Optional[List[str]] = None):
        super().__init__(message)
        self.details = list(details or [])


class AuthError(SecurityError):
    message = "invalid credentials"


class LockoutError(SecurityError):
    message = "too many failed attempts, try again later"

    def __init__(self, retry_after_seconds: int, blocked_until: Optional[datetime] = None):
        super().__init__()
        self.retry_after_seconds = retry_after_seconds
        self.blocked_until = blocked_until


class InvalidCodeError(SecurityError):
    message = "invalid verification code"


class MFAStateError(SecurityError):
    message = "MFA is not available for this account"


class DependencyError(SecurityError):
    message = "a required security service is unavailable"
