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
Runtime settings and configuration.
"""
from __future__ import annotations

import os
from contextvars import ContextVar, Token
from typing import TYPE_CHECKING, Any, Optional

from .._utils import contextproperty

if TYPE_CHECKING:
    from ..scope import Scope
    from ..secret import Secret

DEFAULT_PARALLEL = 10

# excessive_debug_output enables, well, pretty excessive debug output pertaining to resources and waves.
excessive_debug_output = bool(os.getenv("CRUCIBLE_DEBUG"))


class Settings:
    """
    A bag of properties for configuring the Crucible runtime.
    """

    def __init__(
        self,
        project: Optional[str] = None,
        stage: Optional[str] = None,
        parallel: Optional[int] = None,
        password: Optional["Secret"] = None,
        quiet: Optional[bool] = None,
        engine: Optional[Any] = None,
    ):
        """
        :param Optional[str] project: The name of the running application.
        :param Optional[str] stage: The stage (environment) the application is deployed to.
        :param Optional[int] parallel: The maximum number of handlers running at once.
        :param Optional[Secret] password: The passphrase used to encrypt secrets in persisted state.
        :param Optional[bool] quiet: Suppresses informational messages.
        :param Optional[Any] engine: A log sink; any object with a `log(severity, message, urn)` method.
        """
        self.project = project
        self.stage = stage
        self.parallel = parallel
        self.password = password
        self.quiet = quiet
        self.engine = engine

    @contextproperty
    def project(self) -> Optional[str]: ...

    @contextproperty
    def stage(self) -> Optional[str]: ...

    @contextproperty
    def parallel(self) -> Optional[int]: ...

    @contextproperty
    def password(self) -> Optional["Secret"]: ...

    @contextproperty
    def quiet(self) -> Optional[bool]: ...

    @contextproperty
    def engine(self) -> Optional[Any]: ...

    def __repr__(self):
        return f"<class Settings[project={self.project!r} stage={self.stage!r} parallel={self.parallel!r} quiet={self.quiet!r}]>"


# default to "empty" settings.
SETTINGS = Settings()


def configure(settings: Settings):
    """
    Configure sets the current ambient settings bag to the one given.
    """
    if not settings or not isinstance(settings, Settings):
        raise TypeError("Settings is expected to be non-None and of type Settings")
    SETTINGS.project = settings.project
    SETTINGS.stage = settings.stage
    SETTINGS.parallel = settings.parallel
    SETTINGS.password = settings.password
    SETTINGS.quiet = settings.quiet
    SETTINGS.engine = settings.engine


def get_project() -> Optional[str]:
    """
    Returns the current project name.
    """
    return SETTINGS.project


def get_stage() -> Optional[str]:
    """
    Returns the current stage name.
    """
    return SETTINGS.stage


def get_parallel() -> int:
    """
    Returns the maximum number of lifecycle handlers that may run at once.
    """
    return SETTINGS.parallel or DEFAULT_PARALLEL


def get_password() -> Optional["Secret"]:
    return SETTINGS.password


def is_quiet() -> bool:
    return bool(SETTINGS.quiet)


def get_engine() -> Optional[Any]:
    """
    Returns the log sink messages are sent to, or None if messages go to stderr.
    """
    return SETTINGS.engine


def reset_options(
    project: Optional[str] = None,
    stage: Optional[str] = None,
    parallel: Optional[int] = None,
    password: Optional["Secret"] = None,
    quiet: Optional[bool] = None,
    engine: Optional[Any] = None,
):
    """Resets the ambient settings. Meant for testing only."""
    configure(Settings(project, stage, parallel, password, quiet, engine))


# The scope newly declared resources are registered into.
SCOPE: ContextVar[Optional["Scope"]] = ContextVar("crucible_current_scope", default=None)


def get_current_scope() -> Optional["Scope"]:
    """
    Returns the innermost active scope, if any.
    """
    return SCOPE.get()


def _set_current_scope(scope: Optional["Scope"]) -> Token:
    return SCOPE.set(scope)


def _reset_current_scope(token: Token) -> None:
    SCOPE.reset(token)
