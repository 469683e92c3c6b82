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
The runtime implementation of the Crucible SDK.

The reconciler, dependency graph, shared runtimes and test mocks live in the `crucible.runtime.reconciler`,
`crucible.runtime.graph`, `crucible.runtime.shared` and `crucible.runtime.mocks` submodules.
"""

from .config import (
    set_config,
    set_all_config,
    get_config,
    get_config_env,
    get_config_env_key,
    get_config_secret_keys_env,
    is_config_secret,
)

from .settings import (
    Settings,
    configure,
    reset_options,
    get_project,
    get_stage,
    get_parallel,
    get_current_scope,
)

__all__ = [
    # config
    "set_config",
    "set_all_config",
    "get_config",
    "get_config_env",
    "get_config_env_key",
    "get_config_secret_keys_env",
    "is_config_secret",
    # settings
    "Settings",
    "configure",
    "reset_options",
    "get_project",
    "get_stage",
    "get_parallel",
    "get_current_scope",
]
