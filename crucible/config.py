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
Typed access to configuration. Values come from the runtime configuration map (`crucible.runtime.config`),
which is fed by the `config` section of `Crucible.yaml` and by `CRUCIBLE_CONFIG*` environment variables.
"""
import json
from typing import Any, Callable, Optional, TypeVar

from . import errors, log
from .runtime.config import get_config, get_config_env_key, is_config_secret
from .runtime.settings import get_project
from .secret import Secret

T = TypeVar("T")


def _parse_bool(v: Any) -> bool:
    if isinstance(v, bool):
        return v
    if v in ("true", "True"):
        return True
    if v in ("false", "False"):
        return False
    raise ValueError(v)


def _parse_object(v: Any) -> Any:
    return json.loads(v) if isinstance(v, str) else v


class Config:
    """
    Config is a namespaced view of the configuration map. Keys are qualified with the namespace, so the
    engine's own settings live under `crucible:` (`crucible:stage`, `crucible:parallel`) while a provider
    might read `neon:apiKey` through `Config("neon")`.
    """

    name: str
    """
    The namespace. Defaults to the name of the running project.
    """

    def __init__(self, name: Optional[str] = None) -> None:
        name = name or get_project()
        if not isinstance(name, str):
            raise TypeError("Expected name to be a string")
        self.name = name

    def full_key(self, key: str) -> str:
        return f"{self.name}:{key}"

    def _raw(self, key: str, secret: bool) -> Optional[Any]:
        full_key = self.full_key(key)
        if not secret and is_config_secret(full_key):
            log.warn(f"Configuration '{full_key}' value is a secret; use `get_secret` to read it")
        return get_config(full_key)

    def _typed(self, key: str, parse: Callable[[Any], T], expect: str) -> Optional[T]:
        v = self._raw(key, False)
        if v is None:
            return None
        try:
            return parse(v)
        except (TypeError, ValueError) as e:
            raise ConfigTypeError(self.full_key(key), v, expect) from e

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """
        Returns the value of `key`, or `default` if it is unset.
        """
        v = self._raw(key, False)
        return v if v is not None else default

    def get_secret(self, key: str, default: Optional[str] = None) -> Optional[Secret]:
        """
        Returns the value of `key` wrapped as a Secret, or `default` (also wrapped) if it is unset.
        """
        v = self._raw(key, True)
        v = v if v is not None else default
        return Secret.wrap(v) if v is not None else None

    def get_bool(self, key: str, default: Optional[bool] = None) -> Optional[bool]:
        """
        :raises ConfigTypeError: The value is not one of `true`, `True`, `false` or `False`.
        """
        v = self._typed(key, _parse_bool, "bool")
        return v if v is not None else default

    def get_int(self, key: str, default: Optional[int] = None) -> Optional[int]:
        """
        :raises ConfigTypeError: The value is not an integer.
        """
        v = self._typed(key, int, "int")
        return v if v is not None else default

    def get_float(self, key: str, default: Optional[float] = None) -> Optional[float]:
        v = self._typed(key, float, "float")
        return v if v is not None else default

    def get_object(self, key: str, default: Optional[Any] = None) -> Optional[Any]:
        """
        Returns a structured value. Strings, e.g. from environment variables, are parsed as JSON.

        :raises ConfigTypeError: The value is a string that is not valid JSON.
        """
        v = self._typed(key, _parse_object, "JSON object")
        return v if v is not None else default

    def require(self, key: str) -> str:
        """
        Returns the value of `key`.

        :raises ConfigMissingError: The value is unset.
        """
        v = self.get(key)
        if v is None:
            raise ConfigMissingError(self.full_key(key), False)
        return v

    def require_secret(self, key: str) -> Secret:
        v = self.get_secret(key)
        if v is None:
            raise ConfigMissingError(self.full_key(key), True)
        return v

    def require_int(self, key: str) -> int:
        v = self.get_int(key)
        if v is None:
            raise ConfigMissingError(self.full_key(key), False)
        return v

    def require_bool(self, key: str) -> bool:
        v = self.get_bool(key)
        if v is None:
            raise ConfigMissingError(self.full_key(key), False)
        return v


class ConfigTypeError(errors.RunError):
    """
    Indicates a configuration value is of the wrong type.
    """

    def __init__(self, key: str, value: Any, expect_type: str) -> None:
        self.key = key
        self.value = value
        self.expect_type = expect_type
        super().__init__(f"Configuration '{key}' value '{value}' is not a valid '{expect_type}'")


class ConfigMissingError(errors.RunError):
    """
    Indicates a required configuration value is missing.
    """

    def __init__(self, key: str, secret: bool) -> None:
        self.key = key
        self.secret = secret
        super().__init__(
            f"Missing required configuration variable '{key}'\n"
            + f"\tplease set it under `config` in Crucible.yaml or in the {get_config_env_key(key)} environment variable"
        )
