from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

from lendsafe.core.settings import settings


def rate_limit_key(request: Request) -> str:
    """Bucket per client address and bank so one tenant cannot starve another."""
    bank_id = (request.headers.get("x-bank-id") or "-").strip().lower()
    return f"{bank_id}:{get_remote_address(request)}"


limiter = Limiter(
    key_func=rate_limit_key,
    default_limits=[f"{settings.rate_limit_per_minute}/minute"],
    storage_uri=settings.redis_url,
)

__all__ = ["limiter", "rate_limit_key"]
