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
Utility functions for logging messages to the diagnostic stream of the Crucible engine.
"""
import sys
from typing import TYPE_CHECKING, Union

from .runtime import settings
from .runtime.settings import get_engine, is_quiet

if TYPE_CHECKING:
    from .resource import ResourceInstance
    from .urn import ResourceIdentity

DEBUG = "debug"
INFO = "info"
WARNING = "warning"
ERROR = "error"

_Subject = Union["ResourceInstance", "ResourceIdentity", str, None]


def debug(msg: str, resource: _Subject = None) -> None:
    """
    Logs a message to the debug channel, associating it with a resource if provided. Without an engine
    sink, debug messages are only printed when CRUCIBLE_DEBUG is set.

    :param str msg: The message to log.
    :param resource: If provided, associate this message with the given resource, identity or URN.
    """
    engine = get_engine()
    if engine is not None:
        _log(engine, DEBUG, msg, resource)
    elif settings.excessive_debug_output:
        _print(DEBUG, msg, resource)


def info(msg: str, resource: _Subject = None) -> None:
    """
    Logs a message to the info channel, associating it with a resource if provided. Informational
    messages are dropped when the run is quiet.

    :param str msg: The message to log.
    :param resource: If provided, associate this message with the given resource, identity or URN.
    """
    if is_quiet():
        return
    engine = get_engine()
    if engine is not None:
        _log(engine, INFO, msg, resource)
    else:
        _print(INFO, msg, resource)


def warn(msg: str, resource: _Subject = None) -> None:
    """
    Logs a message to the warning channel, associating it with a resource if provided.

    :param str msg: The message to log.
    :param resource: If provided, associate this message with the given resource, identity or URN.
    """
    engine = get_engine()
    if engine is not None:
        _log(engine, WARNING, msg, resource)
    else:
        _print(WARNING, msg, resource)


def error(msg: str, resource: _Subject = None) -> None:
    """
    Logs a message to the error channel, associating it with a resource if provided.

    :param str msg: The message to log.
    :param resource: If provided, associate this message with the given resource, identity or URN.
    """
    engine = get_engine()
    if engine is not None:
        _log(engine, ERROR, msg, resource)
    else:
        _print(ERROR, msg, resource)


def _urn_of(resource: _Subject) -> str:
    if resource is None:
        return ""
    if isinstance(resource, str):
        return resource
    return resource.urn


def _log(engine, severity: str, message: str, resource: _Subject) -> None:
    engine.log(severity, message, _urn_of(resource))


def _print(severity: str, message: str, resource: _Subject) -> None:
    urn = _urn_of(resource)
    prefix = f"{severity}: {urn}: " if urn else f"{severity}: "
    print(prefix + message, file=sys.stderr)
