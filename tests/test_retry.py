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

import asyncio

import pytest

from crucible import RateLimitedError, RateLimiter, RetryExhaustedError, RetryPolicy, is_rate_limit_error
from crucible.runtime.mocks import CloudError


class ApiError(Exception):
    def __init__(self, message="", **attrs):
        super().__init__(message)
        for k, v in attrs.items():
            setattr(self, k, v)


class _Response:
    status_code = 429


@pytest.mark.parametrize(
    "err,expected",
    [
        (RateLimitedError(), True),
        (ApiError(code="rate_limit_exceeded"), True),
        (ApiError(code="insufficient_quota"), True),
        (ApiError(code="tokens_quota_exceeded"), True),
        (ApiError(code="requests_quota_exceeded"), True),
        (ApiError("rate limited", code="invalid_api_key"), False),
        (ApiError(status=429), True),
        (ApiError(status_code=429), True),
        (ApiError(response=_Response()), True),
        (ApiError(type="tokens"), True),
        (ApiError(type="Capacity"), True),
        (ApiError("rate", type="invalid_request"), False),
        (ApiError("Too many requests: rate exceeded"), True),
        (ApiError("monthly quota used"), True),
        (ApiError("request was throttled"), True),
        (ApiError("over capacity"), True),
        (ApiError("bad request"), False),
        (CloudError(429, "slow down"), True),
        (CloudError(500, "internal"), False),
    ],
)
def test_is_rate_limit_error(err, expected):
    assert is_rate_limit_error(err) is expected


def test_delay_grows_exponentially_and_is_capped():
    policy = RetryPolicy(base_delay=1.0, max_delay=30.0, jitter=0)
    assert [policy.delay(n) for n in range(7)] == [1, 2, 4, 8, 16, 30, 30]


def test_delay_jitter_is_symmetric():
    policy = RetryPolicy(base_delay=10.0, jitter=0.1)
    delays = [policy.delay(0) for _ in range(200)]
    assert all(9.0 <= d <= 11.0 for d in delays)
    assert min(delays) < 10.0 < max(delays)


def test_policy_validation():
    with pytest.raises(ValueError):
        RetryPolicy(max_retries=-1)
    with pytest.raises(ValueError):
        RetryPolicy(jitter=2)
    with pytest.raises(ValueError):
        RateLimiter(max_concurrent=0)


def _fast(max_retries=10):
    return RetryPolicy(max_retries=max_retries, base_delay=0, max_delay=0, jitter=0)


@pytest.mark.asyncio
async def test_retries_rate_limits_then_succeeds():
    limiter = RateLimiter(policy=_fast())
    attempts = []

    async def call(x):
        attempts.append(x)
        if len(attempts) < 3:
            raise RateLimitedError()
        return x * 2

    assert await limiter.call("openai", call, 21) == 42
    assert len(attempts) == 3


@pytest.mark.asyncio
async def test_fatal_errors_propagate_immediately():
    limiter = RateLimiter(policy=_fast())
    attempts = []

    def call():
        attempts.append(1)
        raise ValueError("bad request")

    with pytest.raises(ValueError):
        await limiter.call("openai", call)
    assert attempts == [1]


@pytest.mark.asyncio
async def test_retries_are_exhausted():
    limiter = RateLimiter(policy=_fast(max_retries=2))
    attempts = []

    async def call():
        attempts.append(1)
        raise ApiError(status=429)

    with pytest.raises(RetryExhaustedError) as info:
        await limiter.call("anthropic", call)
    assert len(attempts) == 3
    assert info.value.attempts == 3
    assert info.value.key == "anthropic"
    assert isinstance(info.value.__cause__, ApiError)


@pytest.mark.asyncio
@pytest.mark.timeout(10)
async def test_concurrency_is_bounded_per_key():
    limiter = RateLimiter(max_concurrent=2, policy=_fast())
    running = {"a": 0, "b": 0}
    peak = {"a": 0, "b": 0}

    async def call(key):
        running[key] += 1
        peak[key] = max(peak[key], running[key])
        await asyncio.sleep(0.01)
        running[key] -= 1

    await asyncio.gather(*(limiter.call(k, call, k) for k in ["a"] * 5 + ["b"] * 5))
    assert peak == {"a": 2, "b": 2}


@pytest.mark.asyncio
@pytest.mark.timeout(10)
async def test_permit_is_released_while_backing_off():
    limiter = RateLimiter(max_concurrent=1, policy=RetryPolicy(base_delay=0.05, max_delay=0.05, jitter=0))
    order = []
    first_attempt = True

    async def flaky():
        nonlocal first_attempt
        order.append("flaky")
        if first_attempt:
            first_attempt = False
            raise RateLimitedError()

    async def steady():
        order.append("steady")

    flaky_task = asyncio.ensure_future(limiter.call("k", flaky))
    await asyncio.sleep(0)
    await asyncio.gather(flaky_task, limiter.call("k", steady))
    assert order == ["flaky", "steady", "flaky"]


@pytest.mark.asyncio
async def test_limit_decorator():
    limiter = RateLimiter(policy=_fast())

    @limiter.limit("openai")
    async def complete(prompt):
        """Completes a prompt."""
        return prompt.upper()

    assert await complete("hi") == "HI"
    assert complete.__doc__ == "Completes a prompt."


@pytest.mark.asyncio
async def test_retry_after_is_honoured(monkeypatch):
    sleeps = []

    async def fake_sleep(delay):
        sleeps.append(delay)

    monkeypatch.setattr(asyncio, "sleep", fake_sleep)
    limiter = RateLimiter(policy=_fast())
    calls = []

    def call():
        calls.append(1)
        if len(calls) == 1:
            raise RateLimitedError(retry_after=7.0)
        return "ok"

    assert await limiter.call("k", call) == "ok"
    assert sleeps == [7.0]
