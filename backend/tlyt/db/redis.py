"""Redis client for trial cooldowns and request rate limiting"""
import redis
import logging
from typing import Optional
from tlyt.core.config import settings

logger = logging.getLogger(__name__)

# Lazy initialization - no connection at import time
_client = None


def get_redis_client():
    """Get or create Redis client (lazy initialization)

    This prevents connection attempts during import, allowing mocks to be applied first.
    """
    global _client
    if _client is None:
        _client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _client


def increment_rate_limit(identifier: str, window: int) -> int:
    """Increment rate limit counter and return current count.
    Uses Lua script to atomically increment and set TTL only for new keys (fixed window rate limiting)."""
    key = f"ratelimit:{identifier}"

    lua_script = """
    local count = redis.call('INCR', KEYS[1])
    if count == 1 then
        redis.call('EXPIRE', KEYS[1], ARGV[1])
    end
    return count
    """

    count = get_redis_client().eval(lua_script, 1, key, window)
    return int(count)


def check_rate_limit(identifier: str) -> bool:
    """Check if request is within rate limit using Redis. Returns True if allowed, False if rate limited."""
    current_count = increment_rate_limit(identifier, settings.RATE_LIMIT_WINDOW)
    return current_count <= settings.RATE_LIMIT_REQUESTS


def claim_trial_cooldown(account_id: str, ttl: int) -> Optional[int]:
    """Start a trial cooldown window for an account.

    SET NX EX makes the check-and-start atomic, so two simultaneous trial
    requests cannot both get through.

    Args:
        account_id: Trial account ID
        ttl: Window length in seconds

    Returns:
        None if the window was claimed (request allowed), otherwise the
        number of seconds left in the current window
    """
    key = f"trial_cooldown:{account_id}"
    client = get_redis_client()
    if client.set(key, "1", nx=True, ex=ttl):
        return None

    remaining = client.ttl(key)
    if remaining == -2:
        # Window expired between SET and TTL
        return None if client.set(key, "1", nx=True, ex=ttl) else ttl
    if remaining == -1:
        # Key without expiry would lock the account out forever
        client.expire(key, ttl)
        return ttl
    return int(remaining)


def get_trial_cooldown_remaining(account_id: str) -> int:
    """Seconds left in an account's trial window (0 when none is active)"""
    remaining = get_redis_client().ttl(f"trial_cooldown:{account_id}")
    return int(remaining) if remaining and remaining > 0 else 0
