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
Process-wide runtimes that several resources share, such as a local emulator or a dev server. A runtime is
started once, reconfigured in place when its configuration changes and stopped when its owner closes.
"""
import asyncio
from typing import Any, Callable, Dict, List, Optional, TypeVar

from .. import log
from .._utils import _maybe_await

R = TypeVar("R", bound="SharedRuntime")

_UNSET = object()


class SharedRuntime:
    """
    SharedRuntime is the base class of shared runtimes. Subclasses implement `_start` and `_stop`, either of
    which may be a coroutine. Starts and stops are serialized, so concurrent handlers asking for the same
    runtime observe a single start.
    """

    def __init__(self) -> None:
        self._lock: Optional[asyncio.Lock] = None
        self._config: Any = _UNSET
        self._running = False

    def _get_lock(self) -> asyncio.Lock:
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    @property
    def running(self) -> bool:
        return self._running

    @property
    def config(self) -> Any:
        """
        The configuration the runtime was last started with, or None.
        """
        return None if self._config is _UNSET else self._config

    async def ensure(self: R, config: Any = None) -> R:
        """
        Starts the runtime with `config`, or restarts it if it is running with a different configuration.
        """
        async with self._get_lock():
            if self._running and self._config == config:
                return self
            if self._running:
                log.debug(f"restarting {type(self).__name__} with new configuration")
                await _maybe_await(self._stop())
                self._running = False
            await _maybe_await(self._start(config))
            self._config = config
            self._running = True
        return self

    async def stop(self) -> None:
        async with self._get_lock():
            if not self._running:
                return
            try:
                await _maybe_await(self._stop())
            finally:
                self._running = False
                self._config = _UNSET

    def _start(self, config: Any) -> Any:
        raise NotImplementedError()

    def _stop(self) -> Any:
        return None


class SharedRuntimes:
    """
    SharedRuntimes owns a set of shared runtimes by key. Whoever creates it is responsible for calling
    `close()`; it can also be used as an async context manager.
    """

    def __init__(self) -> None:
        self._runtimes: Dict[str, SharedRuntime] = {}

    def get(self, key: str, factory: Callable[[], R]) -> R:
        """
        Returns the runtime registered under `key`, creating it with `factory` on first use. The runtime is
        not started; call `ensure` on it.
        """
        runtime = self._runtimes.get(key)
        if runtime is None:
            runtime = factory()
            if not isinstance(runtime, SharedRuntime):
                raise TypeError(f"factory for shared runtime '{key}' must return a SharedRuntime")
            self._runtimes[key] = runtime
        return runtime  # type: ignore[return-value]

    def __contains__(self, key: str) -> bool:
        return key in self._runtimes

    def __len__(self) -> int:
        return len(self._runtimes)

    async def close(self) -> None:
        """
        Stops every runtime, most recently created first. All runtimes are stopped even if one fails; the
        first failure is raised afterwards.
        """
        errors: List[BaseException] = []
        for key, runtime in reversed(list(self._runtimes.items())):
            try:
                await runtime.stop()
            except Exception as e:  # pylint: disable=broad-except
                log.error(f"failed to stop shared runtime '{key}': {e}")
                errors.append(e)
        self._runtimes.clear()
        if errors:
            raise errors[0]

    async def __aenter__(self) -> "SharedRuntimes":
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.close()
