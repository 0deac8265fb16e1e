"""
Requester fingerprinting.

fingerprint = HMAC-SHA256("{ip}|{user_agent}", secret), hex-truncated to 16 chars

Lets analytics count distinct requesters without storing raw IPs or UAs.
Keyed, so fingerprints can't be reversed by hashing candidate IPs.
"""

import hashlib
import hmac

from user_agents import parse as parse_ua

from app.config import get_settings
from app.core.engine import RequestMeta


def _sign(payload: str, secret: str) -> str:
    sig = hmac.new(secret.encode(), payload.encode(), hashlib.sha256).hexdigest()
    return sig[:16]


def requester_fingerprint(ip: str | None, user_agent: str | None, secret: str | None = None) -> str | None:
    """None when there is nothing to fingerprint."""
    if not ip and not user_agent:
        return None
    secret = secret or get_settings().fingerprint_secret
    return _sign(f"{ip or ''}|{user_agent or ''}", secret)


def device_class(user_agent: str | None) -> str | None:
    if not user_agent:
        return None
    parsed = parse_ua(user_agent)
    if parsed.is_bot:
        return "bot"
    if parsed.is_tablet:
        return "tablet"
    if parsed.is_mobile:
        return "mobile"
    if parsed.is_pc:
        return "desktop"
    return "other"


def build_request_meta(ip: str | None, user_agent: str | None) -> RequestMeta:
    return RequestMeta(
        requester_fingerprint=requester_fingerprint(ip, user_agent),
        device_class=device_class(user_agent),
    )
