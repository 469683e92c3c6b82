# Copyright 2016-2024, Pulumi Corporation.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Client-side rate limiting: bounded concurrency per API client plus exponential backoff on rate limit errors.
"""
import asyncio
import functools
import random
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar, Union

from . import log
from ._utils import _maybe_await
from .errors import RateLimitedError, RetryExhaustedError

T = TypeVar("T")

_RATE_LIMIT_CODES = (
    "rate_limit_exceeded",
    "insufficient_quota",
    "tokens_quota_exceeded",
    "requests_quota_exceeded",
)
_RATE_LIMIT_TYPES = ("tokens", "requests", "rate_limit", "capacity")
_RATE_LIMIT_WORDS = ("rate", "quota", "capacity", "throttle")


def _status_of(err: BaseException) -> Optional[int]:
    for attr in ("status", "status_code"):
        status = getattr(err, attr, None)
        if isinstance(status, int):
            return status
    response = getattr(err, "response", None)
    status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def is_rate_limit_error(err: BaseException) -> bool:
    """
    Classifies an API error as a rate limit (retryable) or not. Errors carrying a provider error `code`
    are judged by the code alone; otherwise an HTTP 429, then the error `type`, then the message decide.
    """
    if isinstance(err, RateLimitedError):
        return True
    code = getattr(err, "code", None)
    if isinstance(code, str) and code:
        return code in _RATE_LIMIT_CODES
    if _status_of(err) == 429:
        return True
    kind = getattr(err, "type", None)
    if isinstance(kind, str) and kind:
        return kind.lower() in _RATE_LIMIT_TYPES
    message = str(err).lower()
    return any(word in message for word in _RATE_LIMIT_WORDS)


class RetryPolicy:
    """
    RetryPolicy decides which errors are retried and how long to wait before each retry.
    """

    max_retries: int
    base_delay: float
    max_delay: float
    jitter: float

    def __init__(
        self,
        max_retries: int = 10,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        jitter: float = 0.1,
        is_retryable: Callable[[BaseException], bool] = is_rate_limit_error,
    ) -> None:
        """
        :param int max_retries: How many times a call is retried after its first attempt.
        :param float base_delay: Seconds to wait before the first retry.
        :param float max_delay: The cap, in seconds, of the exponential delay.
        :param float jitter: The fraction of the delay by which it is randomized up or down.
        :param is_retryable: Classifies errors; anything it rejects propagates immediately.
        """
        if max_retries < 0:
            raise ValueError("max_retries must not be negative")
        if not 0 <= jitter <= 1:
            raise ValueError("jitter must be between 0 and 1")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self.is_retryable = is_retryable

    def delay(self, attempt: int) -> float:
        """
        Seconds to wait after the failed attempt number `attempt` (zero based).
        """
        exponential = min(self.base_delay * (2 ** attempt), self.max_delay)
        return max(0.0, exponential + (random.random() * 2 - 1) * exponential * self.jitter)


class RateLimiter:
    """
    RateLimiter bounds the number of concurrent calls per logical client (e.g. "openai") and retries
    calls that fail with a rate limit error. Clients are independent: a saturated key never blocks
    another.
    """

    max_concurrent: int
    policy: RetryPolicy

    def __init__(self, max_concurrent: int = 3, policy: Optional[RetryPolicy] = None) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self.policy = policy or RetryPolicy()
        self._semaphores: Dict[str, asyncio.Semaphore] = {}

    def _semaphore(self, key: str) -> asyncio.Semaphore:
        semaphore = self._semaphores.get(key)
        if semaphore is None:
            semaphore = asyncio.Semaphore(self.max_concurrent)
            self._semaphores[key] = semaphore
        return semaphore

    async def call(
        self, key: str, fn: Callable[..., Union[T, Awaitable[T]]], *args: Any, **kwargs: Any
    ) -> T:
        """
        Calls `fn(*args, **kwargs)` holding one of `key`'s permits. The permit is given back while waiting
        to retry.

        :raises RetryExhaustedError: Every attempt failed with a retryable error.
        """
        semaphore = self._semaphore(key)
        attempts = self.policy.max_retries + 1
        for attempt in range(attempts):
            async with semaphore:
                try:
                    return await _maybe_await(fn(*args, **kwargs))
                except Exception as e:  # pylint: disable=broad-except
                    if not self.policy.is_retryable(e):
                        raise
                    if attempt == attempts - 1:
                        raise RetryExhaustedError(key, attempts, e) from e
                    delay = self.policy.delay(attempt)
                    if isinstance(e, RateLimitedError) and e.retry_after is not None:
                        delay = max(delay, e.retry_after)
            log.debug(f"'{key}' call rate limited, retrying (attempt {attempt + 1}/{attempts}, waiting {delay:.2f}s)")
            await asyncio.sleep(delay)
        raise AssertionError("unreachable")

    def limit(self, key: str) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
        """
        Decorator form of `call`:

            @limiter.limit("openai")
            async def complete(prompt): ...
        """

        def decorator(fn: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
            @functools.wraps(fn)
            async def wrapper(*args: Any, **kwargs: Any) -> T:
                return await self.call(key, fn, *args, **kwargs)

            return wrapper

        return decorator
