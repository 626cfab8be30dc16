import asyncio
import functools
import logging
import socket
from typing import Any, Dict

import aiohttp

_RATE_LIMIT_PHRASES = {'too many requests', 'rate limit', '429', 'max calls per sec'}

NETWORK_EXCEPTIONS = (
    TimeoutError, asyncio.TimeoutError, ConnectionResetError, socket.gaierror,
    aiohttp.ClientConnectorError, aiohttp.ClientOSError, aiohttp.ServerDisconnectedError,
    aiohttp.ClientPayloadError,
)

RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})


def _log(logger, level: str, message: str):
    log_func = getattr(logger, level) if logger else getattr(logging, level)
    if logger and hasattr(logger, 'findCaller'):
        log_func(message, stacklevel=3)
    else:
        log_func(message)


def is_retryable_status(e: Exception) -> bool:
    return isinstance(e, aiohttp.ClientResponseError) and e.status in RETRYABLE_STATUSES


def _classify_retryable_error(e: Exception) -> str:
    msg = str(e).lower()
    if (isinstance(e, aiohttp.ClientResponseError) and e.status == 429) or any(p in msg for p in _RATE_LIMIT_PHRASES):
        return "Rate limit. Retry {}"
    if isinstance(e, (TimeoutError, asyncio.TimeoutError)) or 'timeout' in msg:
        return "Timeout. Retry {}"
    if isinstance(e, aiohttp.ClientResponseError):
        return "Server error. Retry {}"
    return "Network issue. Retry {}"


def retry_async(max_retries: int = 3, initial_delay: float = 1, backoff_factor: float = 2, max_delay: float = 10):
    """Retry decorator for async instance methods that talk to a remote node.

    Network failures and retryable HTTP statuses (408, 429, 5xx) are retried with
    exponential backoff; anything else propagates immediately.

    Args:
        max_retries: -1 for infinite retries, otherwise max attempts before raising.
        initial_delay: Initial backoff delay seconds.
        backoff_factor: Multiplier applied each retry.
        max_delay: Upper bound for backoff delay.
    """
    def decorator(func: Any):
        @functools.wraps(func)
        async def wrapper(self, *args: Any, **kwargs: Any):
            context = _RetryContext(self, func, max_retries, initial_delay, backoff_factor, max_delay)
            while True:
                try:
                    return await func(self, *args, **kwargs)
                except NETWORK_EXCEPTIONS as e:
                    if not await context.handle_retryable_error(e):
                        raise
                except aiohttp.ClientResponseError as e:
                    if not is_retryable_status(e) or not await context.handle_retryable_error(e):
                        raise
        return wrapper
    return decorator


class _RetryContext:
    """Tracks attempts and backoff for one decorated call."""

    def __init__(self, instance, func, max_retries, initial_delay, backoff_factor, max_delay):
        self.logger = getattr(instance, 'logger', None)
        self.class_name = instance.__class__.__name__
        self.func_name = func.__name__
        self.max_retries = max_retries
        self.backoff_factor = backoff_factor
        self.max_delay = max_delay
        self.attempt = 0
        self.delay = initial_delay

    def _should_continue_retrying(self) -> bool:
        self.attempt += 1
        return self.max_retries == -1 or self.attempt <= self.max_retries

    async def handle_retryable_error(self, error: Exception) -> bool:
        if not self._should_continue_retrying():
            _log(self.logger, 'error',
                 f"Function {self.class_name}.{self.func_name} failed after {self.max_retries} retries. "
                 f"Last error: {type(error).__name__} - {error}")
            return False

        template = _classify_retryable_error(error)
        _log(self.logger, 'warning',
             f"{template.format(self.attempt)} for {self.class_name}.{self.func_name} "
             f"in {self.delay:.2f} seconds. Type: {type(error).__name__}, Error: {error}")
        await asyncio.sleep(self.delay)
        self.delay = min(self.delay * self.backoff_factor, self.max_delay)
        return True


def _is_rate_limited_response(response: Any) -> bool:
    """Explorer-style APIs answer HTTP 200 with status "0" and a rate-limit message."""
    if not isinstance(response, dict) or str(response.get('status', '1')) != '0':
        return False
    detail = f"{response.get('message', '')} {response.get('result', '')}".lower()
    return any(p in detail for p in _RATE_LIMIT_PHRASES)


def retry_api_call(max_retries: int = 3, initial_delay: float = 1, backoff_factor: float = 2, max_delay: float = 60):
    """Retry decorator for API methods whose dict response may signal a rate limit in its body."""
    def decorator(func: Any):
        @functools.wraps(func)
        async def wrapper(self, *args: Any, **kwargs: Any) -> Dict[str, Any]:
            logger = getattr(self, 'logger', None) or logging.getLogger(__name__)
            attempt = 0
            while True:
                response = await func(self, *args, **kwargs)
                if not _is_rate_limited_response(response):
                    return response
                if attempt >= max_retries:
                    logger.error(f"{self.__class__.__name__}.{func.__name__} still rate limited "
                                 f"after {max_retries} retries")
                    return response
                wait_time = min(initial_delay * (backoff_factor ** attempt), max_delay)
                logger.warning(f"{self.__class__.__name__}.{func.__name__} rate limited. "
                               f"Retrying in {wait_time:.2f}s ({attempt + 1}/{max_retries})")
                await asyncio.sleep(wait_time)
                attempt += 1
        return wrapper
    return decorator
