# proofdesk/auth.py
"""
Admin session auth and a pluggable login rate-limiter.

Env vars:
- ADMIN_USERNAME, ADMIN_PASSWORD - the single dashboard account
- SESSION_SECRET - signs the session cookie
- LOGIN_RATE_LIMIT_PER_MINUTE (default: 5) - login attempts per client IP
- REDIS_URL - optional, enables Redis-based distributed limiter
"""

import hmac
import os
import time
import threading
from typing import Optional, Tuple, Dict

import redis

from proofdesk import monitoring

# Configuration
ADMIN_USERNAME = os.getenv("ADMIN_USERNAME", "")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "")
SESSION_SECRET = os.getenv("SESSION_SECRET", "default_secret")
LOGIN_RATE_LIMIT_PER_MINUTE = int(os.getenv("LOGIN_RATE_LIMIT_PER_MINUTE", "5"))
REDIS_URL = os.getenv("REDIS_URL", "")

SESSION_KEY = "logged_in"


class InMemoryFixedWindowLimiter:
    """Thread-safe in-memory fixed-window rate limiter (per-process)."""

    def __init__(self, limit_per_minute: int = 5):
        self.limit = limit_per_minute
        self._store: Dict[str, Tuple[int, int]] = {}  # key -> (window_minute, count)
        self._lock = threading.Lock()

    def allow_request(self, key: str) -> Tuple[bool, Optional[int]]:
        now = int(time.time())
        window = now // 60
        with self._lock:
            if key not in self._store:
                self._store[key] = (window, 1)
                return True, self.limit - 1
            wstart, count = self._store[key]
            if wstart == window:
                if count >= self.limit:
                    return False, 0
                self._store[key] = (wstart, count + 1)
                return True, self.limit - (count + 1)
            else:
                self._store[key] = (window, 1)
                return True, self.limit - 1

    def reset(self):
        """Reset all state (useful for tests)."""
        with self._lock:
            self._store.clear()


class RedisFixedWindowLimiter:
    """Redis fixed-window counter using INCR + EXPIRE."""

    def __init__(self, redis_url: str, limit_per_minute: int = 5):
        self.limit = limit_per_minute
        self._client = redis.from_url(redis_url, decode_responses=True)

    def allow_request(self, key: str) -> Tuple[bool, Optional[int]]:
        now = int(time.time())
        window = now // 60
        rkey = f"login:{key}:{window}"
        try:
            count = self._client.incr(rkey)
            if count == 1:
                self._client.expire(rkey, 120)
            if int(count) > self.limit:
                return False, 0
            return True, self.limit - int(count)
        except redis.RedisError:
            # Fail open on Redis errors
            monitoring.logger.warning("Redis limiter unavailable; allowing login attempt")
            return True, None


# Choose limiter instance
_rate_limiter: InMemoryFixedWindowLimiter
if REDIS_URL:
    _rate_limiter = RedisFixedWindowLimiter(REDIS_URL, LOGIN_RATE_LIMIT_PER_MINUTE)
else:
    _rate_limiter = InMemoryFixedWindowLimiter(LOGIN_RATE_LIMIT_PER_MINUTE)


def check_credentials(username: Optional[str], password: Optional[str]) -> bool:
    """Constant-time compare against ADMIN_USERNAME/ADMIN_PASSWORD. No account configured -> False."""
    if not ADMIN_USERNAME or not ADMIN_PASSWORD:
        return False
    user_ok = hmac.compare_digest((username or "").encode("utf-8"), ADMIN_USERNAME.encode("utf-8"))
    pass_ok = hmac.compare_digest((password or "").encode("utf-8"), ADMIN_PASSWORD.encode("utf-8"))
    return user_ok and pass_ok


def check_login_rate_limit(client_ip: str) -> Tuple[bool, Optional[int]]:
    """Check and consume quota. Returns (allowed, remaining)."""
    return _rate_limiter.allow_request(client_ip or "unknown")


def is_logged_in(session: dict) -> bool:
    return bool(session.get(SESSION_KEY))


def get_limiter() -> InMemoryFixedWindowLimiter:
    """Return the current limiter instance (for testing)."""
    return _rate_limiter
