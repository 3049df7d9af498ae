import hashlib
import hmac
import secrets

import pyotp


def sha1_hex(value: str) -> str:
    """Uppercase SHA-1 hex, the form the k-anonymity range API uses."""
    return hashlib.sha1(value.encode("utf-8")).hexdigest().upper()


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def random_code(nbytes: int) -> str:
    return secrets.token_hex(nbytes).upper()


def new_totp_secret() -> str:
    return pyotp.random_base32()


def digest_in(candidate: str, digests) -> bool:
    found = False
    for digest in digests:
        # no early exit, every stored digest is compared
        if hmac.compare_digest(candidate, digest):
            found = True
    return found
