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
Polling of long-running remote operations.
"""
import asyncio
import time
from typing import Any, Awaitable, Callable, Iterable, List, Optional, TypeVar, Union

from . import log
from ._utils import _maybe_await
from .errors import OperationFailedError, OperationTimeoutError

S = TypeVar("S")

DEFAULT_INTERVAL = 2.0
DEFAULT_MAX_WAIT = 300.0


async def poll(
    fetch_status: Callable[[], Union[S, Awaitable[S]]],
    is_terminal: Callable[[S], bool],
    is_success: Callable[[S], bool],
    interval: float = DEFAULT_INTERVAL,
    max_wait: float = DEFAULT_MAX_WAIT,
    backoff: float = 1.0,
    max_interval: Optional[float] = None,
    description: Optional[str] = None,
) -> S:
    """
    Polls `fetch_status` until `is_terminal` holds for the status it returns.

    :param fetch_status: Returns the current status; may be a coroutine function.
    :param is_terminal: True once the operation has stopped running.
    :param is_success: True if a terminal status means the operation succeeded.
    :param float interval: Seconds to sleep between polls.
    :param float max_wait: Seconds after which polling gives up.
    :param float backoff: The factor the interval grows by after each poll; 1.0 keeps it fixed.
    :param Optional[float] max_interval: The upper bound of the interval when backing off.
    :param Optional[str] description: Names the operation in logs and errors.
    :return: The successful terminal status.
    :raises OperationFailedError: The operation reached a terminal status that is not a success.
    :raises OperationTimeoutError: The operation did not finish within `max_wait`.
    """
    if interval < 0 or max_wait < 0:
        raise ValueError("interval and max_wait must not be negative")
    if backoff < 1.0:
        raise ValueError("backoff must be at least 1.0")
    name = description or "operation"
    start = time.monotonic()
    delay = interval
    attempt = 0
    while True:
        attempt += 1
        status = await _maybe_await(fetch_status())
        if is_terminal(status):
            if is_success(status):
                log.debug(f"{name} finished after {attempt} poll(s)")
                return status
            raise OperationFailedError(name, status)

        elapsed = time.monotonic() - start
        if elapsed + delay > max_wait:
            raise OperationTimeoutError(name, elapsed)
        log.debug(f"{name} still running ({status!r}); checking again in {delay:.1f}s")
        await asyncio.sleep(delay)
        delay = delay * backoff
        if max_interval is not None:
            delay = min(delay, max_interval)


async def wait_for_operations(
    operations: Iterable[Any],
    fetch: Callable[[Any], Union[Any, Awaitable[Any]]],
    is_terminal: Callable[[Any], bool] = lambda status: status in ("finished", "failed"),
    is_success: Callable[[Any], bool] = lambda status: status == "finished",
    interval: float = DEFAULT_INTERVAL,
    max_wait: float = DEFAULT_MAX_WAIT,
    backoff: float = 1.0,
    max_interval: Optional[float] = None,
) -> List[Any]:
    """
    Waits for several operations, one after another, as returned by an API call that queues work. `fetch`
    is called with one operation and returns its current status. The defaults match APIs whose operations
    end in either a "finished" or a "failed" status.

    :return: The terminal status of each operation, in order.
    """
    statuses = []
    for operation in operations:
        statuses.append(
            await poll(
                lambda op=operation: fetch(op),
                is_terminal,
                is_success,
                interval=interval,
                max_wait=max_wait,
                backoff=backoff,
                max_interval=max_interval,
                description=f"operation {operation}",
            )
        )
    return statuses
