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
Mocks for testing resource handlers without a real cloud.
"""
import functools
import itertools
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

from .._utils import _maybe_await
from ..errors import NotFoundError
from . import config
from .settings import reset_options


def test(fn):
    """
    Runs an async test body under fresh settings, restoring the runtime configuration afterwards.
    """

    @functools.wraps(fn)
    async def wrapper(*args, **kwargs):
        saved = dict(config.CONFIG)
        reset_options()
        try:
            return await _maybe_await(fn(*args, **kwargs))
        finally:
            config.set_all_config(saved)
            reset_options()

    return wrapper


class CloudError(Exception):
    """
    CloudError is what FakeCloud raises, shaped like the errors of typical HTTP API clients.
    """

    status: int
    code: Optional[str]
    type: Optional[str]

    def __init__(self, status: int, message: str, code: Optional[str] = None, type_: Optional[str] = None):
        self.status = status
        self.code = code
        self.type = type_
        super().__init__(message)


class CloudNotFound(CloudError, NotFoundError):
    def __init__(self, message: str):
        super().__init__(404, message)


class Call(NamedTuple):
    method: str
    collection: str
    name: Optional[str]


class FakeCloud:
    """
    FakeCloud is an in-memory remote API. Objects live in named collections and are addressed by name.
    Every call is recorded, failures can be injected per method and collection, and creates can return
    asynchronous operations that finish after a number of polls.
    """

    def __init__(self) -> None:
        self.collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.calls: List[Call] = []
        self.operations: Dict[str, Dict[str, Any]] = {}
        self._failures: Dict[Tuple[str, Optional[str]], List[BaseException]] = {}
        self._ids = itertools.count(1)

    def fail(self, method: str, collection: Optional[str] = None, error: Optional[BaseException] = None, times: int = 1):
        """
        Makes the next `times` calls of `method` (on `collection`, or any collection) raise `error`.
        """
        error = error or CloudError(500, f"injected {method} failure")
        self._failures.setdefault((method, collection), []).extend([error] * times)

    def _record(self, method: str, collection: str, name: Optional[str] = None) -> None:
        self.calls.append(Call(method, collection, name))
        for key in ((method, collection), (method, None)):
            queue = self._failures.get(key)
            if queue:
                raise queue.pop(0)

    def _collection(self, collection: str) -> Dict[str, Dict[str, Any]]:
        return self.collections.setdefault(collection, {})

    def count(self, method: Optional[str] = None, collection: Optional[str] = None) -> int:
        return sum(
            1
            for c in self.calls
            if (method is None or c.method == method) and (collection is None or c.collection == collection)
        )

    def exists(self, collection: str, name: str) -> bool:
        return name in self._collection(collection)

    def seed(self, collection: str, name: str, **fields: Any) -> Dict[str, Any]:
        """
        Puts an object in place without recording a call, as if someone created it out of band.
        """
        obj = {"id": f"{collection}-{next(self._ids)}", "name": name, **fields}
        self._collection(collection)[name] = obj
        return dict(obj)

    async def create(self, collection: str, name: str, operations: int = 0, **fields: Any) -> Dict[str, Any]:
        """
        Creates an object. If `operations` is positive the response lists one operation id that finishes
        after that many polls.

        :raises CloudError: 409 if an object with that name exists.
        """
        self._record("create", collection, name)
        if name in self._collection(collection):
            raise CloudError(409, f"{collection} '{name}' already exists", code="conflict")
        obj = self.seed(collection, name, **fields)
        if operations > 0:
            op_id = f"op-{next(self._ids)}"
            self.operations[op_id] = {"remaining": operations, "status": "finished"}
            obj["operations"] = [op_id]
        return obj

    async def get(self, collection: str, name: str) -> Dict[str, Any]:
        self._record("get", collection, name)
        obj = self._collection(collection).get(name)
        if obj is None:
            raise CloudNotFound(f"{collection} '{name}' not found")
        return dict(obj)

    async def list(self, collection: str) -> List[Dict[str, Any]]:
        self._record("list", collection)
        return [dict(obj) for obj in self._collection(collection).values()]

    async def update(self, collection: str, name: str, **fields: Any) -> Dict[str, Any]:
        self._record("update", collection, name)
        obj = self._collection(collection).get(name)
        if obj is None:
            raise CloudNotFound(f"{collection} '{name}' not found")
        obj.update(fields)
        return dict(obj)

    async def delete(self, collection: str, name: str) -> None:
        self._record("delete", collection, name)
        if self._collection(collection).pop(name, None) is None:
            raise CloudNotFound(f"{collection} '{name}' not found")

    def fail_operation(self, op_id: str) -> None:
        self.operations[op_id]["status"] = "failed"

    async def operation_status(self, op_id: str) -> str:
        """
        Returns "running" until the operation has been polled enough times, then its final status.
        """
        self._record("operation_status", "operations", op_id)
        operation = self.operations.get(op_id)
        if operation is None:
            raise CloudNotFound(f"operation '{op_id}' not found")
        if operation["remaining"] > 0:
            operation["remaining"] -= 1
            return "running"
        return operation["status"]
