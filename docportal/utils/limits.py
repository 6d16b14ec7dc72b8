from fastapi import Request, Response
from fastapi_limiter.depends import RateLimiter
from docportal.utils.config import RATE_LIMIT_ENABLED, RATE_LIMIT_TIMES

limiter = RateLimiter(times=RATE_LIMIT_TIMES, minutes=1)


async def rate_limit(request: Request, response: Response):
    if not RATE_LIMIT_ENABLED:
        return
    await limiter(request, response)
