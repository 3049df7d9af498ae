import logging
import re
from dataclasses import asdict, dataclass
from typing import Callable, List, Optional

import requests

from security.breach import PwnedPasswordsClient, parse_range
from security.crypto import sha1_hex, sha256_hex
from security.errors import DependencyError, ValidationError

logger = logging.getLogger(__name__)

_UPPER = re.compile(r"[A-Z]")
_LOWER = re.compile(r"[a-z]")
_LETTER = re.compile(r"[a-zA-Z]")
_DIGIT = re.compile(r"[0-9]")
_SYMBOL = re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]")

_LETTERS_ONLY = re.compile(r"[a-z]+", re.IGNORECASE | re.ASCII)
_DIGITS_ONLY = re.compile(r"[0-9]+")
_REPEATED = re.compile(r"(.)\1{2,}")
_COMMON = re.compile(r"123|abc|qwerty|password|admin", re.IGNORECASE)

MIN_LENGTH = 8
MIN_ACCEPTABLE_SCORE = 2
DEFAULT_HISTORY_LIMIT = 5

BREACH_WARNING = "Unable to verify password security. Please ensure it meets all requirements."
WEAK_PASSWORD_ERROR = "Password is too weak. Please choose a stronger password."


@dataclass(frozen=True)
class PasswordRequirement:
    label: str
    description: str
    test: Callable[[str], bool]


PASSWORD_REQUIREMENTS = (
    PasswordRequirement(
        "Minimum 8 characters",
        "Password must be at least 8 characters long",
        lambda pw: len(pw) >= MIN_LENGTH,
    ),
    PasswordRequirement(
        "At least one uppercase letter",
        "Include at least one uppercase letter (A-Z)",
        lambda pw: bool(_UPPER.search(pw)),
    ),
    PasswordRequirement(
        "At least one lowercase letter",
        "Include at least one lowercase letter (a-z)",
        lambda pw: bool(_LOWER.search(pw)),
    ),
    PasswordRequirement(
        "At least one number",
        "Include at least one number (0-9)",
        lambda pw: bool(_DIGIT.search(pw)),
    ),
    PasswordRequirement(
        "At least one special character",
        "Include at least one special character (!@#$%^&*...)",
        lambda pw: bool(_SYMBOL.search(pw)),
    ),
)


@dataclass
class PasswordValidation:
    is_valid: bool
    errors: List[str]
    passed_requirements: List[str]
    failed_requirements: List[str]


@dataclass
class PasswordStrength:
    score: int
    label: str
    color: str
    percentage: int
    passed_requirements: List[str]
    failed_requirements: List[str]
    is_valid: bool

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class BreachResult:
    is_breached: bool
    breach_count: int = 0
    error: Optional[str] = None


@dataclass
class HistoryResult:
    is_reused: bool
    message: Optional[str] = None
    warning: Optional[str] = None


@dataclass
class ComprehensiveResult:
    is_valid: bool
    errors: List[str]
    warnings: List[str]
    strength: PasswordStrength
    breach: Optional[BreachResult] = None
    history: Optional[HistoryResult] = None

    def raise_for_errors(self) -> None:
        if not self.is_valid:
            raise ValidationError(details=self.errors)

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "errors": self.errors,
            "warnings": self.warnings,
            "strength": self.strength.to_dict(),
            "breach": asdict(self.breach) if self.breach else None,
            "history": asdict(self.history) if self.history else None,
        }


# score -> (label, color, percentage, follows requirement validity)
_STRENGTH_LEVELS = {
    0: ("very weak", "#ef4444", 20, False),
    1: ("weak", "#f97316", 40, False),
    2: ("medium", "#eab308", 60, True),
    3: ("strong", "#22c55e", 80, True),
    4: ("very strong", "#16a34a", 100, True),
}


def validate_password(pw: str) -> PasswordValidation:
    if not isinstance(pw, str):
        pw = ""

    errors: List[str] = []
    passed: List[str] = []
    failed: List[str] = []
    for requirement in PASSWORD_REQUIREMENTS:
        if requirement.test(pw):
            passed.append(requirement.label)
        else:
            failed.append(requirement.label)
            errors.append(requirement.description)

    return PasswordValidation(
        is_valid=not errors,
        errors=errors,
        passed_requirements=passed,
        failed_requirements=failed,
    )


def _raw_score(pw: str, validation: PasswordValidation) -> int:
    score = len(validation.passed_requirements)

    if len(pw) >= 12:
        score += 1
    if len(pw) >= 16:
        score += 1

    has_upper_and_lower = bool(_UPPER.search(pw)) and bool(_LOWER.search(pw))
    has_letters_and_digits = bool(_LETTER.search(pw)) and bool(_DIGIT.search(pw))
    if has_upper_and_lower and has_letters_and_digits:
        score += 1
    if _SYMBOL.search(pw) and len(pw) >= 10:
        score += 1

    if _LETTERS_ONLY.fullmatch(pw):
        score -= 1
    if _DIGITS_ONLY.fullmatch(pw):
        score -= 1
    if _REPEATED.search(pw):
        score -= 1
    if _COMMON.search(pw):
        score -= 2

    return score


def password_strength(pw: str) -> PasswordStrength:
    if not isinstance(pw, str) or not pw:
        label, color, _, _ = _STRENGTH_LEVELS[0]
        return PasswordStrength(
            score=0,
            label=label,
            color=color,
            percentage=0,
            passed_requirements=[],
            failed_requirements=[r.label for r in PASSWORD_REQUIREMENTS],
            is_valid=False,
        )

    validation = validate_password(pw)
    score = max(0, min(4, _raw_score(pw, validation)))
    label, color, percentage, follows_validity = _STRENGTH_LEVELS[score]

    return PasswordStrength(
        score=score,
        label=label,
        color=color,
        percentage=percentage,
        passed_requirements=validation.passed_requirements,
        failed_requirements=validation.failed_requirements,
        is_valid=validation.is_valid if follows_validity else False,
    )


def check_breach(password: str, client: Optional[PwnedPasswordsClient] = None) -> BreachResult:
    """
    Looks the password up in the breach corpus by hash prefix. Never raises on
    network trouble: the result comes back not-breached with error set.
    """
    if not isinstance(password, str):
        password = ""

    digest = sha1_hex(password)
    prefix, suffix = digest[:5], digest[5:]
    client = client or PwnedPasswordsClient()

    try:
        body = client.fetch_range(prefix)
    except requests.RequestException as exc:
        logger.warning("breach check failed, accepting without it: %s", exc)
        return BreachResult(is_breached=False, breach_count=0, error=BREACH_WARNING)

    count = parse_range(body, suffix)
    return BreachResult(is_breached=count > 0, breach_count=count)


def hash_password_for_history(password: str) -> str:
    return sha256_hex(password)


def check_history(user_id: Optional[str], new_password: str, store=None,
                  limit: int = DEFAULT_HISTORY_LIMIT) -> HistoryResult:
    """
    Compares against the user's `limit` most recent password digests.
    No user (signup) or no reachable store means not reused.
    """
    if not user_id or not isinstance(new_password, str):
        return HistoryResult(is_reused=False)
    if store is None:
        return HistoryResult(is_reused=False, warning="password history unavailable")

    digest = hash_password_for_history(new_password)
    try:
        previous = store.recent_hashes(user_id, limit)
    except DependencyError as exc:
        logger.warning("password history lookup failed for user %s: %s", user_id, exc)
        return HistoryResult(is_reused=False, warning="password history unavailable")

    if digest in set(previous):
        return HistoryResult(
            is_reused=True,
            message=(
                "This password was recently used. Please choose a different password. "
                f"You cannot reuse your last {limit} passwords."
            ),
        )
    return HistoryResult(is_reused=False)


def record_password_history(user_id: str, password: str, store) -> None:
    """Stores the digest of a newly set password. Raises DependencyError."""
    store.add(user_id, hash_password_for_history(password))


def validate_comprehensive(password: str, user_id: Optional[str] = None, *,
                           check_breach_db: bool = False,
                           check_password_history: bool = False,
                           require_minimum_strength: bool = False,
                           breach_client: Optional[PwnedPasswordsClient] = None,
                           history_store=None,
                           history_limit: int = DEFAULT_HISTORY_LIMIT) -> ComprehensiveResult:
    errors: List[str] = []
    warnings: List[str] = []

    validation = validate_password(password)
    if not validation.is_valid:
        errors.extend(validation.errors)

    strength = password_strength(password)
    if require_minimum_strength and strength.score < MIN_ACCEPTABLE_SCORE:
        errors.append(WEAK_PASSWORD_ERROR)

    breach = None
    if check_breach_db:
        breach = check_breach(password, breach_client)
        if breach.is_breached:
            errors.append(
                f"This password has been found in {breach.breach_count:,} data breaches. "
                "Please choose a different password."
            )
        if breach.error:
            warnings.append(breach.error)

    history = None
    if check_password_history:
        history = check_history(user_id, password, history_store, limit=history_limit)
        if history.is_reused and history.message:
            errors.append(history.message)
        if history.warning:
            warnings.append(history.warning)

    return ComprehensiveResult(
        is_valid=not errors,
        errors=errors,
        warnings=warnings,
        strength=strength,
        breach=breach,
        history=history,
    )
