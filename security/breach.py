import logging
from typing import Optional

import requests

logger = logging.getLogger(__name__)

PWNED_RANGE_API = "https://api.pwnedpasswords.com/range/"
DEFAULT_TIMEOUT_SECONDS = 5.0
DEFAULT_USER_AGENT = "Contract-Management-System"


class PwnedPasswordsClient:
    """k-anonymity range lookups: only a 5 character SHA-1 prefix leaves the process."""

    def __init__(self, base_url: str = PWNED_RANGE_API, timeout: float = DEFAULT_TIMEOUT_SECONDS,
                 user_agent: str = DEFAULT_USER_AGENT, session: Optional[requests.Session] = None):
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.timeout = timeout
        self.user_agent = user_agent
        if session is None:
            session = requests.Session()
            # a fixed public API, no reason to follow long redirect chains
            session.max_redirects = 3
        self.session = session

    @classmethod
    def from_config(cls, config) -> "PwnedPasswordsClient":
        return cls(
            base_url=config.get("BREACH_API_URL", PWNED_RANGE_API),
            timeout=float(config.get("BREACH_API_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS)),
            user_agent=config.get("BREACH_API_USER_AGENT", DEFAULT_USER_AGENT),
        )

    def fetch_range(self, prefix: str) -> str:
        """Raw "SUFFIX:COUNT" lines for a hash prefix. Raises requests.RequestException."""
        if len(prefix) != 5:
            raise ValueError("hash prefix must be 5 hex characters")
        resp = self.session.get(
            self.base_url + prefix,
            headers={"User-Agent": self.user_agent},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        return resp.text


def parse_range(body: str, suffix: str) -> int:
    """Breach count for suffix in a range response, 0 when absent or padding."""
    suffix = suffix.upper()
    for line in body.splitlines():
        hash_suffix, _, count = line.strip().partition(":")
        if hash_suffix.upper() != suffix or not count:
            continue
        try:
            return int(count)
        except ValueError:
            logger.warning("unparseable breach count %r", count)
            return 0
    return 0
