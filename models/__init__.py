from .db import db
from .login_attempt import LoginAttempt
from .mfa_enrollment import MFAEnrollment
from .audit_log import AuditLog
from .password_history import PasswordHistory
