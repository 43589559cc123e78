"""
Resilience Infrastructure for Cloud Bulletin

Error taxonomy for the forecast pipeline plus retry with exponential backoff
for the cloud-cover providers.
Conservative strategy: 2 retries max, 1-5 second delays.

Error isolation:
- ProviderUnavailable: one (provider, point) fetch failed. Excluded from the
  ensemble, never fatal.
- NoDataForRegion: nothing usable for a region. That region reports "no data",
  other regions are unaffected.
- ConfigurationError: bad catalog entry. Fatal for that region only.

Features:
- @with_retry decorator for provider coroutines
- Error categorization (timeout, rate_limit, api_error, parse_error)
- Jitter so parallel point requests don't retry in lockstep
- first_success() ordered fallback resolver (first success wins)
"""

import asyncio
import functools
import json
import logging
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar('T')


class BulletinError(Exception):
    """Base class for all pipeline errors."""


class ProviderUnavailable(BulletinError):
    """A single provider fetch failed (network error, non-2xx, malformed body)."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class NoDataForRegion(BulletinError):
    """Every provider/point failed for a region, or the aggregation window was empty."""

    def __init__(self, region_id: str, reason: str = "no usable data"):
        super().__init__(f"{region_id}: {reason}")
        self.region_id = region_id


class ConfigurationError(BulletinError):
    """Invalid static configuration, e.g. a region with zero sample points."""


class ErrorType(Enum):
    """Failure categories recorded in the reliability analytics."""
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    API_ERROR = "api_error"
    PARSE_ERROR = "parse_error"
    UNKNOWN = "unknown"


# Parse failures come back identical on every attempt
PARSE_ERRORS = (json.JSONDecodeError, KeyError, ValueError, TypeError)


@dataclass
class RetryConfig:
    """Retry policy for one provider request."""
    max_retries: int = 2  # 3 attempts in total
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 5.0
    exponential_base: float = 2.0
    jitter: bool = True

    # Bad coordinates / bad key / unknown model: retrying won't help
    non_retryable_status_codes: tuple = (400, 401, 403, 404, 422)
    retryable_status_codes: tuple = (408, 429, 500, 502, 503, 504)


DEFAULT_RETRY_CONFIG = RetryConfig()

# Single attempt, no waiting
NO_RETRY_CONFIG = RetryConfig(max_retries=0, base_delay_seconds=0.0, max_delay_seconds=0.0, jitter=False)


def _root_cause(exception: BaseException) -> BaseException:
    """Unwrap ProviderUnavailable to the transport/parse error underneath."""
    while isinstance(exception, ProviderUnavailable) and exception.__cause__ is not None:
        exception = exception.__cause__
    return exception


def categorize_error(exception: BaseException) -> Tuple[ErrorType, str]:
    """
    Map a provider failure to (ErrorType, short message).

    ProviderUnavailable is judged by the error it wraps, so a 429 raised
    through check_response still counts as a rate limit.
    """
    message = str(exception)[:200]
    cause = _root_cause(exception)

    if isinstance(cause, httpx.TimeoutException):
        return ErrorType.TIMEOUT, f"Timeout: {message}"

    if isinstance(cause, httpx.HTTPStatusError):
        status = cause.response.status_code
        if status == 429:
            return ErrorType.RATE_LIMIT, "HTTP 429 Too Many Requests"
        if status == 503:
            return ErrorType.RATE_LIMIT, "HTTP 503 Service Unavailable (quota?)"
        return ErrorType.API_ERROR, f"HTTP {status}: {message}"

    if isinstance(cause, httpx.RequestError):
        return ErrorType.API_ERROR, f"Request error: {message}"

    if isinstance(cause, PARSE_ERRORS):
        return ErrorType.PARSE_ERROR, f"Parse error: {message}"

    return ErrorType.UNKNOWN, message


def calculate_backoff_delay(attempt: int, config: RetryConfig) -> float:
    """Seconds to wait before retry number `attempt` (0-based), capped, plus up to 25% jitter."""
    delay = min(config.base_delay_seconds * config.exponential_base ** attempt, config.max_delay_seconds)
    if config.jitter:
        delay *= 1.0 + 0.25 * random.random()
    return delay


def is_retryable_error(exception: BaseException, config: RetryConfig) -> bool:
    cause = _root_cause(exception)

    if isinstance(cause, httpx.HTTPStatusError):
        status = cause.response.status_code
        if status in config.non_retryable_status_codes:
            return False
        return status in config.retryable_status_codes or status >= 500

    if isinstance(cause, httpx.TransportError):
        return True

    return not isinstance(cause, PARSE_ERRORS)


def with_retry(
    config: Optional[RetryConfig] = None,
    provider_name: str = "unknown"
) -> Callable:
    """
    Decorator adding retry with exponential backoff to a provider coroutine.

    When every attempt fails the last error is re-raised as
    ProviderUnavailable (unchanged if it already is one) so the fetcher can
    exclude that provider from the ensemble.

    Usage:
        @with_retry(provider_name="open-meteo:gfs_seamless")
        async def _fetch():
            return await provider.fetch_series(point, client)
    """
    policy = config or DEFAULT_RETRY_CONFIG

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            started = time.time()
            attempts = policy.max_retries + 1
            last_error: Optional[BaseException] = None

            for attempt in range(1, attempts + 1):
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    last_error = e
                    kind, message = categorize_error(e)
                    logger.warning(f"[{provider_name}] Attempt {attempt}/{attempts} failed: "
                                   f"{kind.value} - {message}")

                    if not is_retryable_error(e, policy):
                        logger.error(f"[{provider_name}] {kind.value} is not retryable, giving up")
                        break
                    if attempt == attempts:
                        break

                    delay = calculate_backoff_delay(attempt - 1, policy)
                    logger.info(f"[{provider_name}] Retrying in {delay:.1f}s")
                    await asyncio.sleep(delay)
                    continue

                if attempt > 1:
                    logger.info(f"[{provider_name}] Succeeded on attempt {attempt} "
                                f"({time.time() - started:.2f}s total)")
                return result

            kind, message = categorize_error(last_error)
            logger.error(f"[{provider_name}] Giving up after {time.time() - started:.2f}s "
                         f"(last error: {kind.value})")

            if isinstance(last_error, ProviderUnavailable):
                raise last_error
            raise ProviderUnavailable(provider_name, message) from last_error

        return wrapper

    return decorator


async def first_success(
    candidates: Sequence[Tuple[str, Callable[[], Awaitable[Optional[T]]]]],
    what: str = "source"
) -> T:
    """
    Ordered fallback resolver: try each candidate in turn, first non-None wins.

    Args:
        candidates: (label, zero-argument coroutine factory) pairs, in priority order
        what: Name used in logs and in the final error

    Returns:
        The first non-None result

    Raises:
        ProviderUnavailable: every candidate failed or returned None, chained
            from the last exception raised by a candidate
    """
    failures: List[str] = []
    last_error: Optional[BaseException] = None

    for label, factory in candidates:
        try:
            result = await factory()
        except Exception as e:
            last_error = e
            _, message = categorize_error(e)
            logger.warning(f"[first_success] {what} candidate '{label}' failed: {message}")
            failures.append(f"{label}: {message}")
            continue

        if result is None:
            logger.info(f"[first_success] {what} candidate '{label}' returned nothing")
            failures.append(f"{label}: empty")
            continue

        logger.debug(f"[first_success] {what} resolved from '{label}'")
        return result

    raise ProviderUnavailable(what, "; ".join(failures) or "no candidates") from last_error
