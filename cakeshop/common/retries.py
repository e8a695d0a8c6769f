import asyncio
import functools
import random
from typing import Awaitable, Callable, Optional, Tuple, Type
import httpx
from cakeshop.common.logging_setup import get_logger

logger = get_logger("cakeshop.common")

# network level failures worth another attempt
TRANSIENT_EXCEPTIONS: Tuple[Type[BaseException], ...] = (
    httpx.ConnectError,
    httpx.ConnectTimeout,
    httpx.ReadTimeout,
    httpx.WriteTimeout,
    httpx.PoolTimeout,
    httpx.RemoteProtocolError,
)

DEFAULT_RETRIES = 3
DEFAULT_BACKOFF_BASE = 0.5
MAX_BACKOFF = 8.0


def is_retryable_http_error(exc: BaseException) -> bool:
    if isinstance(exc, asyncio.CancelledError):
        return False
    if isinstance(exc, TRANSIENT_EXCEPTIONS):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status_code = exc.response.status_code if exc.response is not None else None
        # provider side errors are retried, 4xx surface immediately
        return bool(status_code and 500 <= status_code < 600)
    return False


async def _sleep_with_jitter(delay: float, jitter: float) -> None:
    jitter_val = random.uniform(-jitter * delay, jitter * delay)
    await asyncio.sleep(max(0.0, delay + jitter_val))


def retry_http(
    *,
    max_retries: int = DEFAULT_RETRIES,
    backoff_base: float = DEFAULT_BACKOFF_BASE,
    jitter: float = 0.1,
    if_retryable: Optional[Callable[[BaseException], bool]] = None,
):
    """Retry an outbound http coroutine with exponential backoff. The last error is re-raised."""
    if if_retryable is None:
        if_retryable = is_retryable_http_error

    def deco(fn: Callable[..., Awaitable]):
        @functools.wraps(fn)
        async def wrapper(*args, **kwargs):
            for attempt in range(1, max_retries + 1):
                try:
                    return await fn(*args, **kwargs)
                except Exception as exc:
                    if not if_retryable(exc) or attempt == max_retries:
                        raise
                    delay = min(backoff_base * (2 ** (attempt - 1)), MAX_BACKOFF)
                    logger.warning("http.retry", extra={
                        "target": fn.__name__, "attempt": attempt, "delay": delay, "error": repr(exc),
                    })
                    await _sleep_with_jitter(delay, jitter)
        return wrapper
    return deco
