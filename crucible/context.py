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
The per-invocation handle passed to lifecycle handlers.
"""
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional

from . import log
from .errors import ContractViolationError
from .urn import ResourceIdentity

if TYPE_CHECKING:
    from .scope import Scope


class Phase(str, Enum):
    """
    The lifecycle operation a handler is asked to perform.
    """

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


_UNSET = object()


class Context:
    """
    Context is given to a lifecycle handler along with the desired props. It describes which phase is running
    and what was previously applied, and collects the handler's decisions through `commit`, `destroy_self`
    and `mark_for_replacement`.
    """

    phase: Phase
    identity: ResourceIdentity
    output: Optional[Any]
    """
    The previously committed output; None during create.
    """

    props: Optional[Any]
    """
    The props that produced `output`; None during create.
    """

    adopt: bool
    """
    True if the create phase should import an existing remote object instead of creating a new one.
    """

    data: Dict[str, Any]
    """
    Per-resource scratch data, persisted with the resource's record.
    """

    def __init__(
        self,
        phase: Phase,
        identity: ResourceIdentity,
        output: Optional[Any] = None,
        props: Optional[Any] = None,
        scope: Optional["Scope"] = None,
        adopt: bool = False,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.phase = Phase(phase)
        self.identity = identity
        self.output = output
        self.props = props
        self.scope = scope
        self.adopt = adopt
        self.data = dict(data or {})
        self._committed: Any = _UNSET
        self._destroyed = False
        self._replace = False

    @property
    def id(self) -> str:
        return self.identity.id

    @property
    def kind(self) -> str:
        return self.identity.kind

    @property
    def urn(self) -> str:
        return self.identity.urn

    def commit(self, output: Any) -> None:
        """
        Records `output` as the result of a create or update, as an alternative to returning it.
        """
        if self.phase == Phase.DELETE:
            raise ContractViolationError(self.urn, "commit() cannot be called while deleting")
        if output is None:
            raise ContractViolationError(self.urn, "commit() requires an output")
        self._committed = output

    def destroy_self(self) -> None:
        """
        Confirms that the remote object is gone. Every delete must call this, also when the object was
        already absent.
        """
        if self.phase != Phase.DELETE:
            raise ContractViolationError(self.urn, f"destroy_self() called during {self.phase.value}")
        self._destroyed = True

    def mark_for_replacement(self) -> None:
        """
        Asks the reconciler to delete this resource and create it again with the new props instead of
        updating it in place, e.g. because an immutable field changed. Only valid during update.
        """
        if self.phase != Phase.UPDATE:
            raise ContractViolationError(
                self.urn, f"mark_for_replacement() called during {self.phase.value}"
            )
        self._replace = True

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    @property
    def replacement_requested(self) -> bool:
        return self._replace

    def _result(self, returned: Any) -> Any:
        if returned is not None:
            return returned
        if self._committed is not _UNSET:
            return self._committed
        return None

    def debug(self, msg: str) -> None:
        log.debug(msg, self.identity)

    def info(self, msg: str) -> None:
        log.info(msg, self.identity)

    def warn(self, msg: str) -> None:
        log.warn(msg, self.identity)

    def __repr__(self):
        return f"<Context {self.phase.value} {self.urn}>"
