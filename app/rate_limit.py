"""
Rate limiting with slowapi.

Requests are keyed by the gateway-provided user id, falling back to the
client address for anonymous calls.
"""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address


def user_or_address_key(request: Request) -> str:
    """Rate-limit key: X-User-Id if present, else remote address."""
    user_id = request.headers.get("x-user-id")
    if user_id:
        return f"user:{user_id}"
    return get_remote_address(request)


limiter = Limiter(key_func=user_or_address_key)
