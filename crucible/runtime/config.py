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
The process-wide configuration map behind `crucible.Config`. A key is looked up in the map first, then
in its own `CRUCIBLE_CONFIG_<KEY>` environment variable, then in the JSON bag held by `CRUCIBLE_CONFIG`.
"""
from typing import Any, Dict, Iterable, List, Optional, Set

import json
import os

ENV_BAG = "CRUCIBLE_CONFIG"
ENV_SECRET_KEYS = "CRUCIBLE_CONFIG_SECRET_KEYS"

CONFIG: Dict[str, Any] = {}

_SECRET_KEYS: Set[str] = set()


def set_config(k: str, v: Any) -> None:
    CONFIG[k] = v


def set_all_config(config: Dict[str, Any], secret_keys: Optional[Iterable[str]] = None) -> None:
    """
    Replaces the whole map and, if given, the set of keys holding secrets. Meant for program entry points
    and tests.
    """
    global CONFIG, _SECRET_KEYS
    CONFIG = dict(config)
    if secret_keys is not None:
        _SECRET_KEYS = set(secret_keys)


def _load_json_env(name: str, default: Any) -> Any:
    raw = os.environ.get(name)
    return json.loads(raw) if raw else default


def get_config_env() -> Dict[str, Any]:
    """
    Returns the bag of values serialized as JSON in `CRUCIBLE_CONFIG`.
    """
    return _load_json_env(ENV_BAG, {})


def get_config_env_key(k: str) -> str:
    """
    Returns the environment variable that holds `k`: letters are upper-cased, digits and underscores kept,
    anything else becomes an underscore. `neon:apiKey` is read from `CRUCIBLE_CONFIG_NEON_APIKEY`.
    """
    scrubbed = "".join(c.upper() if c.isascii() and (c.isalnum() or c == "_") else "_" for c in k)
    return f"{ENV_BAG}_{scrubbed}"


def get_config_secret_keys_env() -> List[str]:
    """
    Returns the secret keys listed, as a JSON array, in `CRUCIBLE_CONFIG_SECRET_KEYS`.
    """
    return _load_json_env(ENV_SECRET_KEYS, [])


def get_config(k: str) -> Any:
    """
    Returns the value of the fully qualified key `k`, or None if no source sets it.
    """
    if k in CONFIG:
        return CONFIG[k]
    env_key = get_config_env_key(k)
    if env_key in os.environ:
        return os.environ[env_key]
    return get_config_env().get(k)


def is_config_secret(k: str) -> bool:
    return k in _SECRET_KEYS or k in get_config_secret_keys_env()
