"""
Rate limiter: in-process sliding window.

Limits:
  - Per IP on the resolve path: configurable (default 30/min)
  - Per API key on the admin path: configurable (default 120/min)
"""

import time
from fastapi import HTTPException, Request
from app.config import get_settings

import structlog

logger = structlog.get_logger()

_memory_store: dict[str, list[float]] = {}
_MAX_TRACKED_KEYS = 10000

_PRIVATE_PREFIXES = (
    "10.", "172.16.", "172.17.", "172.18.", "172.19.",
    "172.20.", "172.21.", "172.22.", "172.23.", "172.24.",
    "172.25.", "172.26.", "172.27.", "172.28.", "172.29.",
    "172.30.", "172.31.", "192.168.", "127.", "::1",
)


def _sliding_window_check(key: str, limit: int, window_seconds: int = 60) -> tuple[bool, int]:
    now = time.time()
    cutoff = now - window_seconds

    if key not in _memory_store:
        _memory_store[key] = []

    _memory_store[key] = [t for t in _memory_store[key] if t > cutoff]
    current_count = len(_memory_store[key])

    # Periodic cleanup: drop clients whose whole window has expired
    if len(_memory_store) > _MAX_TRACKED_KEYS:
        stale = [k for k, hits in _memory_store.items() if not hits or hits[-1] <= cutoff]
        for k in stale:
            del _memory_store[k]
        _memory_store.setdefault(key, [])

    if current_count >= limit:
        return False, 0

    _memory_store[key].append(now)
    return True, limit - current_count - 1


def check_rate_limit(key: str, limit: int, window: int = 60):
    allowed, remaining = _sliding_window_check(key, limit, window)
    if not allowed:
        logger.info("rate_limited", key=key.split(":", 1)[0], limit=limit)
        raise HTTPException(
            status_code=429,
            detail="Rate limit exceeded. Slow down.",
            headers={
                "Retry-After": str(window),
                "X-RateLimit-Limit": str(limit),
                "X-RateLimit-Remaining": "0",
            },
        )
    return remaining


def reset_rate_limits() -> None:
    _memory_store.clear()


def get_client_ip(request: Request) -> str | None:
    """Real client IP: first public hop of x-forwarded-for, then x-real-ip, then the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ips = [ip.strip() for ip in forwarded.split(",") if ip.strip()]
        for ip in ips:
            if not ip.startswith(_PRIVATE_PREFIXES):
                return ip
        if ips:
            return ips[0]
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else None


def rate_limit_ip(request: Request, limit: int | None = None):
    settings = get_settings()
    ip = get_client_ip(request) or "unknown"
    return check_rate_limit(
        f"ip:{ip}",
        limit or settings.rate_limit_per_ip_per_minute,
    )


def rate_limit_api_key(key_id: str, limit: int | None = None):
    return check_rate_limit(f"apikey:{key_id}", limit or get_settings().rate_limit_per_key_per_minute)
