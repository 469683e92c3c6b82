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
Conversion between in-memory props/outputs and their persisted JSON representation.

Secrets are stored as `{"@secret": <ciphertext>}`, embedded resources as
`{"@resource": <urn>, "@output": <output>}` and datetimes as `{"@date": <iso 8601>}`.
"""
import dataclasses
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union

from ..errors import SecretEncryptionError
from ..resource import ResourceInstance, ResourceReference
from ..secret import Secret, decrypt, encrypt

SECRET_SIG = "@secret"
RESOURCE_SIG = "@resource"
OUTPUT_SIG = "@output"
DATE_SIG = "@date"

_Password = Union[str, Secret, None]


def _password_str(password: _Password) -> Optional[str]:
    if isinstance(password, Secret):
        return password.reveal()
    return password


def serialize(value: Any, password: _Password = None) -> Any:
    """
    Turns a props or output tree into JSON-compatible data, encrypting secrets with `password`.

    :raises SecretEncryptionError: A secret was found but no password was given.
    :raises TypeError: The tree holds a value that has no persisted representation.
    """
    return _serialize(value, _password_str(password))


def _serialize(value: Any, password: Optional[str]) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Enum):
        return _serialize(value.value, password)
    if isinstance(value, Secret):
        if not password:
            raise SecretEncryptionError(
                "cannot persist a secret without a password; set `crucible:password` or pass password="
            )
        return {SECRET_SIG: encrypt(value.reveal(), password)}
    if isinstance(value, (ResourceInstance, ResourceReference)):
        return {RESOURCE_SIG: value.urn, OUTPUT_SIG: _serialize(value.output, password)}
    if isinstance(value, datetime):
        return {DATE_SIG: value.isoformat()}
    if isinstance(value, dict):
        result = {}
        for k, v in value.items():
            if not isinstance(k, str):
                raise TypeError(f"cannot serialize a dict key of type {type(k).__name__}; keys must be strings")
            result[k] = _serialize(v, password)
        return result
    if isinstance(value, (list, tuple)):
        return [_serialize(v, password) for v in value]
    if isinstance(value, (set, frozenset)):
        return [_serialize(v, password) for v in sorted(value, key=repr)]
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: _serialize(getattr(value, f.name), password) for f in dataclasses.fields(value)}
    raise TypeError(f"cannot serialize a value of type {type(value).__name__}")


def deserialize(data: Any, password: _Password = None) -> Any:
    """
    Inverts `serialize`. Secrets come back as `Secret`, embedded resources as `ResourceReference`.
    """
    return _deserialize(data, _password_str(password))


def _deserialize(data: Any, password: Optional[str]) -> Any:
    if isinstance(data, dict):
        if SECRET_SIG in data and len(data) == 1:
            if not password:
                raise SecretEncryptionError("cannot read a persisted secret without a password")
            return Secret(decrypt(data[SECRET_SIG], password))
        if RESOURCE_SIG in data and set(data) <= {RESOURCE_SIG, OUTPUT_SIG}:
            return ResourceReference(data[RESOURCE_SIG], _deserialize(data.get(OUTPUT_SIG), password))
        if DATE_SIG in data and len(data) == 1:
            return datetime.fromisoformat(data[DATE_SIG])
        return {k: _deserialize(v, password) for k, v in data.items()}
    if isinstance(data, list):
        return [_deserialize(v, password) for v in data]
    return data


def normalize(value: Any) -> Any:
    """
    Returns the comparable in-memory form of a props or output tree: the shape `deserialize(serialize(value))`
    would have, without encrypting anything. Secrets are kept as `Secret` (compared by value) and embedded
    instances become `ResourceReference`s carrying the instance's current output.
    """
    if value is None or isinstance(value, (bool, int, float, str, Secret, datetime)):
        return value
    if isinstance(value, Enum):
        return normalize(value.value)
    if isinstance(value, ResourceInstance):
        return ResourceReference(value.urn, normalize(value.output))
    if isinstance(value, ResourceReference):
        return ResourceReference(value.urn, normalize(value.output))
    if isinstance(value, dict):
        return {k: normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [normalize(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return [normalize(v) for v in sorted(value, key=repr)]
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: normalize(getattr(value, f.name)) for f in dataclasses.fields(value)}
    return value

