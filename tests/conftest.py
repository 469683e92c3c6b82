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

import pytest

from crucible.resource import DefinitionRegistry
from crucible.runtime import config as runtime_config
from crucible.runtime.mocks import FakeCloud
from crucible.runtime.settings import SCOPE, reset_options
from crucible.state import MemoryStateStore

from .helpers import Neon


@pytest.fixture(autouse=True)
def _reset_runtime():
    """Restore configuration, settings and the current scope between tests."""
    saved = dict(runtime_config.CONFIG)
    token = SCOPE.set(None)
    reset_options()
    yield
    SCOPE.reset(token)
    runtime_config.set_all_config(saved)
    reset_options()


@pytest.fixture
def registry():
    return DefinitionRegistry()


@pytest.fixture
def store():
    return MemoryStateStore()


@pytest.fixture
def cloud():
    return FakeCloud()


@pytest.fixture
def neon(cloud, registry):
    return Neon(cloud, registry)
