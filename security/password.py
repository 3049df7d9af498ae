import logging
from typing import Callable, Optional

import bcrypt

logger = logging.getLogger(__name__)


def hash_password(plain_password: str) -> str:
    if not isinstance(plain_password, str) or len(plain_password) == 0:
        raise ValueError("Password must be a non-empty string")

    salt = bcrypt.gensalt(rounds=12)
    return bcrypt.hashpw(plain_password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain_password: str, password_hash: str) -> bool:
    if not plain_password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(plain_password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # malformed stored hash
        logger.warning("stored password hash is not a valid bcrypt hash")
        return False


def make_reauthenticator(lookup_hash: Callable[[str], Optional[str]]) -> Callable[[str, str], bool]:
    """
    Builds the (user_id, password) -> bool check MFA disable uses, from a
    lookup returning the auth provider's bcrypt hash for a user (or None).
    """
    def reauthenticate(user_id: str, password: str) -> bool:
        return verify_password(password, lookup_hash(user_id))

    return reauthenticate


def deny_all(user_id: str, password: str) -> bool:
    """Default when the host app wires no credential check: nothing re-authenticates."""
    return False
