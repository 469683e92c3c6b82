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

from typing import NamedTuple, Sequence, Tuple

_URN_PREFIX = "crucible:"
_SEPARATOR = "::"


class ResourceIdentity(NamedTuple):
    """
    The identity of a resource: the scope it was declared in, its provider-qualified kind and its
    user-assigned id. Identities are the only equality key for resources and state records.
    """

    scope_path: Tuple[str, ...]
    kind: str
    id: str

    @property
    def urn(self) -> str:
        return create_urn(self.scope_path, self.kind, self.id)

    @property
    def fqn(self) -> str:
        """
        The slash separated path of the resource, e.g. `app/dev/branch`.
        """
        return "/".join((*self.scope_path, self.id))

    def is_under(self, scope_path: Sequence[str]) -> bool:
        prefix = tuple(scope_path)
        return self.scope_path[: len(prefix)] == prefix

    def __str__(self) -> str:
        return self.urn


def validate_segment(value: str, what: str) -> str:
    if not isinstance(value, str) or not value:
        raise ValueError(f"{what} must be a non-empty string")
    if _SEPARATOR in value or "/" in value:
        raise ValueError(f"{what} '{value}' must not contain '{_SEPARATOR}' or '/'")
    return value


def create_urn(scope_path: Sequence[str], kind: str, id_: str) -> str:
    """
    Computes a URN of the form `crucible:<scope/path>::<kind>::<id>`.
    """
    return f"{_URN_PREFIX}{'/'.join(scope_path)}{_SEPARATOR}{kind}{_SEPARATOR}{id_}"


def parse_urn(urn: str) -> ResourceIdentity:
    if not urn.startswith(_URN_PREFIX):
        raise ValueError(f"Cannot parse URN: {urn}")
    try:
        rest = urn[len(_URN_PREFIX):]
        scope, _, remainder = rest.partition(_SEPARATOR)
        kind, _, id_ = remainder.rpartition(_SEPARATOR)
        if not kind or not id_:
            raise ValueError("missing kind or id")
        scope_path = tuple(scope.split("/")) if scope else ()
        return ResourceIdentity(scope_path, kind, id_)
    except Exception as e:
        raise ValueError(f"Cannot parse URN: {urn}") from e
