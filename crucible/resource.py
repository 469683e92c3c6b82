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
Resource definitions bind a provider-qualified kind to an async lifecycle handler. Calling a definition
inside an active scope declares a resource instance.
"""
import functools
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterator,
    List,
    Optional,
    Union,
)

from ._utils import _maybe_await
from .errors import RunError
from .runtime.settings import get_current_scope
from .urn import ResourceIdentity, parse_urn, validate_segment

if TYPE_CHECKING:
    from .context import Context
    from .scope import Scope

Handler = Callable[["Context", Any], Union[Any, Awaitable[Any]]]
"""
A lifecycle handler: `(ctx, props) -> output`. It may be a coroutine function.
"""

EqualsPolicy = Callable[[Any, Any], bool]


class ResourceOptions:
    """
    ResourceOptions is a bag of optional settings that control a resource's behavior.
    """

    adopt: bool
    """
    If True, the create phase should import a pre-existing remote object instead of failing on a conflict.
    """

    retain_on_delete: bool
    """
    If True, the handler's delete phase is not called for this resource; only its record is removed.
    """

    protect: bool
    """
    If True, this resource is not allowed to be deleted.
    """

    def __init__(
        self,
        adopt: Optional[bool] = None,
        retain_on_delete: Optional[bool] = None,
        protect: Optional[bool] = None,
    ) -> None:
        """
        :param Optional[bool] adopt: If True, adopt an existing remote object during create.
        :param Optional[bool] retain_on_delete: If True, the handler is not invoked to delete the resource.
        :param Optional[bool] protect: If True, destroying this resource fails.
        """
        self.adopt = bool(adopt)
        self.retain_on_delete = bool(retain_on_delete)
        self.protect = bool(protect)

    def to_dict(self) -> Dict[str, bool]:
        return {
            "adopt": self.adopt,
            "retainOnDelete": self.retain_on_delete,
            "protect": self.protect,
        }

    @staticmethod
    def from_dict(data: Optional[Dict[str, Any]]) -> "ResourceOptions":
        data = data or {}
        return ResourceOptions(
            adopt=data.get("adopt"),
            retain_on_delete=data.get("retainOnDelete"),
            protect=data.get("protect"),
        )

    def __repr__(self):
        return f"ResourceOptions({self.to_dict()!r})"


class InstanceStatus(str, Enum):
    """
    The outcome of an instance within the current run. Never persisted.
    """

    PENDING = "pending"
    APPLIED = "applied"
    FAILED = "failed"
    SKIPPED = "skipped"


def _default_equals(prev_props: Any, next_props: Any) -> bool:
    return prev_props == next_props


class ResourceDefinition:
    """
    ResourceDefinition is a named resource kind bound to its lifecycle handler.
    """

    kind: str
    handler: Handler
    equals: EqualsPolicy
    always_update: bool

    def __init__(
        self,
        kind: str,
        handler: Handler,
        equals: Optional[EqualsPolicy] = None,
        always_update: bool = False,
    ) -> None:
        """
        :param str kind: The provider-qualified type name, e.g. `neon::Branch`.
        :param Handler handler: The lifecycle function `(ctx, props) -> output`.
        :param Optional[EqualsPolicy] equals: Decides whether previously applied props and the new props are
               equivalent, in which case the resource is left untouched. Both arguments are normalized (see
               `crucible.runtime.serde.normalize`). Defaults to deep structural equality.
        :param bool always_update: If True, the update phase runs even when props are unchanged.
        """
        if not isinstance(kind, str) or not kind:
            raise ValueError("a resource kind must be a non-empty string")
        if "/" in kind:
            raise ValueError(f"resource kind '{kind}' must not contain '/'")
        self.kind = kind
        self.handler = handler
        self.equals = equals or _default_equals
        self.always_update = always_update

    async def invoke(self, ctx: "Context", props: Any) -> Any:
        return await _maybe_await(self.handler(ctx, props))

    def props_equal(self, prev_props: Any, next_props: Any) -> bool:
        return bool(self.equals(prev_props, next_props))

    def __call__(
        self,
        id_: str,
        props: Any = None,
        opts: Optional[ResourceOptions] = None,
    ) -> "ResourceInstance":
        """
        Declares an instance of this resource in the active scope.

        :param str id_: The user-assigned id, stable across runs and unique within the scope.
        :param Any props: The desired input. May embed other resource instances and secrets.
        :param Optional[ResourceOptions] opts: Options controlling the resource's behavior.
        """
        scope = get_current_scope()
        if scope is None:
            raise RunError(
                f"cannot declare '{self.kind}' resource '{id_}' outside of an active scope"
            )
        instance = ResourceInstance(self, scope, id_, props, opts)
        scope._register(instance)
        return instance

    def __repr__(self):
        return f"ResourceDefinition({self.kind!r})"


class DefinitionRegistry:
    """
    Maps resource kinds to their definitions. Teardown only has persisted records, so the handler of each
    recorded kind is looked up here.
    """

    def __init__(self) -> None:
        self._definitions: Dict[str, ResourceDefinition] = {}

    def register(self, definition: ResourceDefinition) -> ResourceDefinition:
        existing = self._definitions.get(definition.kind)
        if existing is not None and existing is not definition:
            raise ValueError(f"resource kind '{definition.kind}' is already registered")
        self._definitions[definition.kind] = definition
        return definition

    def get(self, kind: str) -> Optional[ResourceDefinition]:
        return self._definitions.get(kind)

    def __contains__(self, kind: str) -> bool:
        return kind in self._definitions

    def __iter__(self) -> Iterator[str]:
        return iter(self._definitions)

    def __len__(self) -> int:
        return len(self._definitions)


REGISTRY = DefinitionRegistry()
"""
The default registry that `@resource` registers definitions into.
"""


def resource(
    kind: str,
    *,
    equals: Optional[EqualsPolicy] = None,
    always_update: bool = False,
    registry: Optional[DefinitionRegistry] = None,
) -> Callable[[Handler], ResourceDefinition]:
    """
    Decorates a lifecycle handler, turning it into a resource definition:

        @resource("neon::Project")
        async def Project(ctx: Context, props: dict) -> dict:
            if ctx.phase == Phase.DELETE:
                await client.delete_project(ctx.output["id"])
                return ctx.destroy_self()
            ...

        project = Project("project", {"name": "my-project"})

    :param str kind: The provider-qualified type name.
    :param Optional[EqualsPolicy] equals: The props equality policy for this kind.
    :param bool always_update: Run the update phase even when props are unchanged.
    :param Optional[DefinitionRegistry] registry: Where to register the definition; the default registry if omitted.
    """

    def decorator(handler: Handler) -> ResourceDefinition:
        definition = ResourceDefinition(kind, handler, equals=equals, always_update=always_update)
        functools.update_wrapper(definition, handler)
        (registry if registry is not None else REGISTRY).register(definition)
        return definition

    return decorator


class ResourceInstance:
    """
    ResourceInstance is one declared, identity-addressed use of a resource definition. Its `output` is
    populated by the reconciler once the resource has been applied (or read).
    """

    identity: ResourceIdentity
    definition: ResourceDefinition
    props: Any
    opts: ResourceOptions
    output: Optional[Any]
    status: InstanceStatus
    error: Optional[BaseException]

    def __init__(
        self,
        definition: ResourceDefinition,
        scope: "Scope",
        id_: str,
        props: Any = None,
        opts: Optional[ResourceOptions] = None,
    ) -> None:
        validate_segment(id_, "resource id")
        self.definition = definition
        self.scope = scope
        self.identity = ResourceIdentity(tuple(scope.path), definition.kind, id_)
        self.props = props
        self.opts = opts or ResourceOptions()
        self.output = None
        self.status = InstanceStatus.PENDING
        self.error = None

    @property
    def id(self) -> str:
        return self.identity.id

    @property
    def kind(self) -> str:
        return self.identity.kind

    @property
    def urn(self) -> str:
        return self.identity.urn

    @property
    def depends_on(self) -> List[ResourceIdentity]:
        """
        The identities of the instances embedded in this instance's props. Derived, never user-set.
        """
        # pylint: disable=import-outside-toplevel
        from .runtime.graph import find_dependencies

        return [dep.identity for dep in find_dependencies(self.props)]

    def __getitem__(self, key: Any) -> Any:
        if self.output is None:
            raise RunError(f"resource '{self.urn}' has no output yet; it has not been applied")
        return self.output[key]

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, ResourceInstance):
            return NotImplemented
        return self.identity == other.identity

    def __hash__(self) -> int:
        return hash(self.identity)

    def __repr__(self):
        return f"<ResourceInstance {self.urn} status={self.status.value}>"


class ResourceReference:
    """
    A dependency pointer read back from state: the URN of the referenced resource and the output it had
    when the referencing props were applied.
    """

    urn: str
    output: Any

    def __init__(self, urn: str, output: Any = None) -> None:
        self.urn = urn
        self.output = output

    @property
    def identity(self) -> ResourceIdentity:
        return parse_urn(self.urn)

    def __getitem__(self, key: Any) -> Any:
        return self.output[key]

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, ResourceReference):
            return NotImplemented
        return self.urn == other.urn and self.output == other.output

    def __hash__(self) -> int:
        return hash(self.urn)

    def __repr__(self):
        return f"ResourceReference({self.urn!r})"
