import os

from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

UPLOAD_RATE_LIMIT = (os.getenv("UPLOAD_RATE_LIMIT") or "10/minute").strip()


def user_rate_key(request: Request) -> str:
    """Per-user key when the auth dependency has set one; otherwise the client IP."""
    uid = getattr(request.state, "user_id", None)
    if uid:
        return str(uid)
    return get_remote_address(request)


limiter = Limiter(key_func=get_remote_address, default_limits=[])
