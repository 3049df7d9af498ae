from typing import Mapping, Optional

from flask import has_request_context, request

LOOPBACK_IP = "127.0.0.1"


def normalize_email(value: str) -> str:
    return (value or "").strip().lower()


def client_ip(headers: Optional[Mapping[str, str]] = None, default: str = LOOPBACK_IP) -> str:
    """
    Client address for rate limiting, in order of trust:
    CF-Connecting-IP, first X-Forwarded-For hop, X-Real-IP, then the default.
    """
    if headers is None:
        if not has_request_context():
            return default
        headers = request.headers

    cloudflare = (headers.get("CF-Connecting-IP") or "").strip()
    if cloudflare:
        return cloudflare

    forwarded = headers.get("X-Forwarded-For") or ""
    first_hop = forwarded.split(",")[0].strip()
    if first_hop:
        return first_hop

    real_ip = (headers.get("X-Real-IP") or "").strip()
    if real_ip:
        return real_ip

    return default
