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

from crucible import log
from crucible.runtime import settings
from crucible.urn import ResourceIdentity


class RecordingEngine:
    def __init__(self):
        self.messages = []

    def log(self, severity, message, urn):
        self.messages.append((severity, message, urn))


@pytest.fixture
def engine():
    engine = RecordingEngine()
    settings.reset_options(engine=engine)
    return engine


def test_messages_go_to_engine(engine):
    identity = ResourceIdentity(("app", "dev"), "neon::Project", "project")
    log.info("Create: project", identity)
    log.warn("careful")
    log.error("boom", "crucible:app/dev::neon::Branch::main")
    log.debug("details")
    assert engine.messages == [
        ("info", "Create: project", "crucible:app/dev::neon::Project::project"),
        ("warning", "careful", ""),
        ("error", "boom", "crucible:app/dev::neon::Branch::main"),
        ("debug", "details", ""),
    ]


def test_messages_go_to_stderr(capsys):
    log.info("hello")
    log.warn("careful", "crucible:app::k::x")
    err = capsys.readouterr().err
    assert "info: hello" in err
    assert "warning: crucible:app::k::x: careful" in err


def test_quiet_drops_info(capsys):
    settings.reset_options(quiet=True)
    log.info("hidden")
    log.error("shown")
    err = capsys.readouterr().err
    assert "hidden" not in err
    assert "error: shown" in err


def test_debug_requires_flag_without_engine(capsys, monkeypatch):
    log.debug("invisible")
    assert "invisible" not in capsys.readouterr().err

    monkeypatch.setattr(settings, "excessive_debug_output", True)
    log.debug("visible")
    assert "debug: visible" in capsys.readouterr().err
