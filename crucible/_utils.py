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

import inspect
import typing
from contextvars import ContextVar

T = typing.TypeVar("T")


async def _maybe_await(value: typing.Union[T, typing.Awaitable[T]]) -> T:
    """
    Awaits `value` if it is awaitable, so that callers can accept both plain and async callables.
    """
    if inspect.isawaitable(value):
        return await value
    return value


class ContextProperty:
    """
    A property whose value lives in a ContextVar, so that concurrently running asyncio tasks (and the
    copied contexts they start with) never see each other's assignments.
    """

    def __init__(self, name: str, doc: typing.Optional[str] = None, default: typing.Any = None) -> None:
        self.__doc__ = doc
        self._name = name
        self._var: ContextVar = ContextVar(name, default=default)

    def __set_name__(self, _owner, name: str) -> None:
        self._name = name

    def __get__(self, obj: typing.Any, _owner=None) -> typing.Any:
        if obj is None:
            return self
        return self._var.get()

    def __set__(self, _obj, value: typing.Any) -> None:
        self._var.set(value)

    def __repr__(self):
        return f"<ContextProperty {self._name}={self._var.get()!r}>"


def contextproperty(fn: typing.Callable) -> ContextProperty:
    """
    Declares a context-local attribute with property syntax; the decorated function only supplies the name
    and docstring:

        class Settings:
            @contextproperty
            def stage(self) -> Optional[str]: ...
    """
    return ContextProperty(fn.__qualname__, fn.__doc__)
