import asyncio
import functools
import random
from typing import Callable, Optional
import httpx
from storefront.common.logging_setup import get_logger

logger = get_logger("storefront.common")

TRANSIENT_HTTP_EXCEPTIONS = (asyncio.TimeoutError, httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError)


def is_transient_http_error(exc: BaseException) -> bool:
    if isinstance(exc, asyncio.CancelledError):
        return False
    if isinstance(exc, TRANSIENT_HTTP_EXCEPTIONS):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        # provider side errors are worth another try, 4xx are not
        return exc.response is not None and 500 <= exc.response.status_code < 600
    return False


async def _sleep_with_jitter(delay: float, jitter: float) -> None:
    jitter_val = random.uniform(-jitter * delay, jitter * delay)
    await asyncio.sleep(max(0.0, delay + jitter_val))


def retry_async(
    *,
    attempts: int = 3,
    base_delay: float = 0.2,
    factor: float = 2.0,
    max_delay: float = 2.0,
    jitter: float = 0.15,
    if_retryable: Optional[Callable[[BaseException], bool]] = None,
):

    if if_retryable is None:
        if_retryable = is_transient_http_error

    def deco(fn: Callable):
        @functools.wraps(fn)
        async def wrapper(*args, **kwargs):
            for attempt in range(1, attempts + 1):
                try:
                    return await fn(*args, **kwargs)
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    if not if_retryable(exc) or attempt == attempts:
                        raise

                    delay = min(max_delay, base_delay * (factor ** (attempt - 1)))
                    logger.debug("retry attempt %d of %s failed; retrying in %.2fs: %r",
                                 attempt, fn.__name__, delay, exc)
                    await _sleep_with_jitter(delay, jitter)
        return wrapper
    return deco
