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
Durable state: the last applied output, props and dependencies of every resource, keyed by identity.
"""
import asyncio
import copy
import json
import os
import tempfile
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Union
from urllib.parse import quote

from semver import VersionInfo

from .errors import StateVersionError
from .runtime.serde import deserialize, serialize
from .secret import Secret
from .urn import ResourceIdentity, parse_urn

STATE_VERSION = VersionInfo(1, 0, 0)
"""
The format version of persisted state documents. Documents with a different major version are rejected.
"""


class ResourceStatus(str, Enum):
    CREATED = "created"
    UPDATED = "updated"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class StateRecord:
    """
    StateRecord is the persisted state of one resource.
    """

    identity: ResourceIdentity
    status: ResourceStatus
    output: Any
    """
    The last committed output. Never None.
    """

    props: Any
    """
    The normalized props that produced `output`.
    """

    depends_on: List[ResourceIdentity]
    updated_at: datetime
    options: Dict[str, Any]
    data: Dict[str, Any]
    """
    Scratch data a handler stored through `ctx.data`.
    """

    def __init__(
        self,
        identity: ResourceIdentity,
        status: Union[ResourceStatus, str],
        output: Any,
        props: Any = None,
        depends_on: Optional[Sequence[ResourceIdentity]] = None,
        updated_at: Optional[datetime] = None,
        options: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        status = ResourceStatus(status)
        if output is None:
            raise ValueError(f"a '{status.value}' record for '{identity.urn}' must have an output")
        self.identity = identity
        self.status = status
        self.output = output
        self.props = props
        self.depends_on = list(depends_on or [])
        self.updated_at = updated_at or _now()
        self.options = dict(options or {})
        self.data = dict(data or {})

    @property
    def urn(self) -> str:
        return self.identity.urn

    def to_dict(self, password: Union[str, Secret, None] = None) -> Dict[str, Any]:
        return {
            "urn": self.identity.urn,
            "status": self.status.value,
            "output": serialize(self.output, password),
            "props": serialize(self.props, password),
            "dependsOn": [dep.urn for dep in self.depends_on],
            "updatedAt": self.updated_at.isoformat(),
            "options": self.options,
            "data": serialize(self.data, password),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any], password: Union[str, Secret, None] = None) -> "StateRecord":
        return StateRecord(
            identity=parse_urn(data["urn"]),
            status=data["status"],
            output=deserialize(data["output"], password),
            props=deserialize(data.get("props"), password),
            depends_on=[parse_urn(urn) for urn in data.get("dependsOn", [])],
            updated_at=datetime.fromisoformat(data["updatedAt"]) if data.get("updatedAt") else None,
            options=data.get("options"),
            data=deserialize(data.get("data"), password),
        )

    def __repr__(self):
        return f"<StateRecord {self.urn} status={self.status.value}>"


class StateStore:
    """
    StateStore is the durable mapping from resource identity to its last applied record. Records are the
    sole source of truth for whether a resource exists.
    """

    async def get(self, identity: ResourceIdentity) -> Optional[StateRecord]:
        raise NotImplementedError()

    async def put(self, record: StateRecord) -> None:
        raise NotImplementedError()

    async def delete(self, identity: ResourceIdentity) -> None:
        raise NotImplementedError()

    async def list_under(self, scope_path: Sequence[str]) -> List[StateRecord]:
        """
        Returns every record whose scope path starts with `scope_path`, child scopes included.
        """
        raise NotImplementedError()


class MemoryStateStore(StateStore):
    """
    A StateStore that lives only as long as the process. Records are copied in and out so that callers
    cannot mutate stored state behind the store's back.
    """

    def __init__(self) -> None:
        self._records: Dict[ResourceIdentity, StateRecord] = {}

    async def get(self, identity: ResourceIdentity) -> Optional[StateRecord]:
        record = self._records.get(identity)
        return copy.deepcopy(record) if record is not None else None

    async def put(self, record: StateRecord) -> None:
        self._records[record.identity] = copy.deepcopy(record)

    async def delete(self, identity: ResourceIdentity) -> None:
        self._records.pop(identity, None)

    async def list_under(self, scope_path: Sequence[str]) -> List[StateRecord]:
        return [copy.deepcopy(r) for i, r in self._records.items() if i.is_under(scope_path)]

    def __len__(self) -> int:
        return len(self._records)


class FileSystemStateStore(StateStore):
    """
    Stores one JSON document per resource under `root`, mirroring the scope hierarchy in directories.
    Secrets are encrypted with `password` before they reach the disk.

    File access and secret encryption run in the default executor, so handlers running concurrently keep
    making progress while state is read or written.
    """

    def __init__(self, root: str = ".crucible", password: Union[str, Secret, None] = None) -> None:
        self.root = root
        self.password = password

    def _dir(self, scope_path: Sequence[str]) -> str:
        return os.path.join(self.root, *(quote(segment, safe="") for segment in scope_path))

    def _path(self, identity: ResourceIdentity) -> str:
        name = quote(f"{identity.kind}::{identity.id}", safe="")
        return os.path.join(self._dir(identity.scope_path), f"{name}.json")

    def _load(self, path: str) -> StateRecord:
        with open(path, "r", encoding="utf-8") as f:
            document = json.load(f)
        version = VersionInfo.parse(document.get("version", "0.0.0"))
        if version.major != STATE_VERSION.major:
            raise StateVersionError(
                f"state file {path} has format version {version}, expected {STATE_VERSION.major}.x"
            )
        return StateRecord.from_dict(document["record"], self.password)

    def _get(self, identity: ResourceIdentity) -> Optional[StateRecord]:
        path = self._path(identity)
        if not os.path.exists(path):
            return None
        return self._load(path)

    def _put(self, record: StateRecord) -> None:
        # Serialize first so that a failure (e.g. a secret without a password) leaves the old file intact.
        document = {"version": str(STATE_VERSION), "record": record.to_dict(self.password)}
        path = self._path(record.identity)
        directory = os.path.dirname(path)
        os.makedirs(directory, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2)
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise

    def _delete(self, identity: ResourceIdentity) -> None:
        path = self._path(identity)
        if os.path.exists(path):
            os.remove(path)

    def _list_under(self, scope_path: Sequence[str]) -> List[StateRecord]:
        top = self._dir(scope_path)
        records = []
        for directory, _, files in sorted(os.walk(top)):
            for name in sorted(files):
                if name.endswith(".json"):
                    record = self._load(os.path.join(directory, name))
                    if record.identity.is_under(scope_path):
                        records.append(record)
        return records

    async def get(self, identity: ResourceIdentity) -> Optional[StateRecord]:
        return await asyncio.get_event_loop().run_in_executor(None, self._get, identity)

    async def put(self, record: StateRecord) -> None:
        await asyncio.get_event_loop().run_in_executor(None, self._put, record)

    async def delete(self, identity: ResourceIdentity) -> None:
        await asyncio.get_event_loop().run_in_executor(None, self._delete, identity)

    async def list_under(self, scope_path: Sequence[str]) -> List[StateRecord]:
        return await asyncio.get_event_loop().run_in_executor(None, self._list_under, tuple(scope_path))
