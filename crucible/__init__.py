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
The Crucible SDK for Python. Crucible declares cloud resources as plain Python values, converges them with
a durable state store and tears them down again, running async lifecycle handlers in dependency order.
"""

# Make all module members inside of this package available as package members.
from .config import (
    Config,
    ConfigMissingError,
    ConfigTypeError,
)

from .context import (
    Context,
    Phase,
)

from .errors import (
    ApplyError,
    ContractViolationError,
    CyclicDependencyError,
    DestroyError,
    NotFoundError,
    OperationFailedError,
    OperationTimeoutError,
    ProviderError,
    RateLimitedError,
    ResourceFailure,
    ResourceNotFoundInStateError,
    RetryExhaustedError,
    RunError,
    SecretEncryptionError,
    StateVersionError,
)

from .metadata import (
    get_project,
    get_stage,
)

from .poll import (
    poll,
    wait_for_operations,
)

from .project import (
    ProjectSettings,
    load_project_settings,
    save_project_settings,
)

from .resource import (
    DefinitionRegistry,
    InstanceStatus,
    ResourceDefinition,
    ResourceInstance,
    ResourceOptions,
    ResourceReference,
    resource,
)

from .retry import (
    RateLimiter,
    RetryPolicy,
    is_rate_limit_error,
)

from .runtime.reconciler import (
    ReconcileResult,
    Reconciler,
)

from .runtime.shared import (
    SharedRuntime,
    SharedRuntimes,
)

from .scope import (
    App,
    RunMode,
    Scope,
    ScopePhase,
    create_scope,
    finalize,
    get_current_scope,
    run,
)

from .secret import (
    Secret,
    secret,
)

from .state import (
    FileSystemStateStore,
    MemoryStateStore,
    ResourceStatus,
    StateRecord,
    StateStore,
)

from .urn import (
    ResourceIdentity,
    create_urn,
    parse_urn,
)

from . import log

__all__ = [
    # config
    "Config",
    "ConfigMissingError",
    "ConfigTypeError",

    # context
    "Context",
    "Phase",

    # errors
    "ApplyError",
    "ContractViolationError",
    "CyclicDependencyError",
    "DestroyError",
    "NotFoundError",
    "OperationFailedError",
    "OperationTimeoutError",
    "ProviderError",
    "RateLimitedError",
    "ResourceFailure",
    "ResourceNotFoundInStateError",
    "RetryExhaustedError",
    "RunError",
    "SecretEncryptionError",
    "StateVersionError",

    # metadata
    "get_project",
    "get_stage",

    # poll
    "poll",
    "wait_for_operations",

    # project
    "ProjectSettings",
    "load_project_settings",
    "save_project_settings",

    # resource
    "DefinitionRegistry",
    "InstanceStatus",
    "ResourceDefinition",
    "ResourceInstance",
    "ResourceOptions",
    "ResourceReference",
    "resource",

    # retry
    "RateLimiter",
    "RetryPolicy",
    "is_rate_limit_error",

    # reconciler
    "ReconcileResult",
    "Reconciler",

    # shared runtimes
    "SharedRuntime",
    "SharedRuntimes",

    # scope
    "App",
    "RunMode",
    "Scope",
    "ScopePhase",
    "create_scope",
    "finalize",
    "get_current_scope",
    "run",

    # secret
    "Secret",
    "secret",

    # state
    "FileSystemStateStore",
    "MemoryStateStore",
    "ResourceStatus",
    "StateRecord",
    "StateStore",

    # urn
    "ResourceIdentity",
    "create_urn",
    "parse_urn",

    # log
    "log",
]
