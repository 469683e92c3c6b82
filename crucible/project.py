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
The project settings file, `Crucible.yaml` (or `.yml`/`.json`), kept next to the program.
"""
import json
import os
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

import yaml

_setting_extensions = [".yaml", ".yml", ".json"]
_settings_name = "Crucible"


class ProjectSettings:
    """A description of the project and its defaults."""

    name: str
    stage: Optional[str]
    parallel: Optional[int]
    state_dir: Optional[str]
    config: Optional[Mapping[str, Any]]

    def __init__(
        self,
        name: str,
        stage: Optional[str] = None,
        parallel: Optional[int] = None,
        state_dir: Optional[str] = None,
        config: Optional[Mapping[str, Any]] = None,
    ):
        """
        :param str name: The application name.
        :param Optional[str] stage: The default stage.
        :param Optional[int] parallel: The default handler concurrency.
        :param Optional[str] state_dir: Where the file system state store keeps its records.
        :param Optional[Mapping[str, Any]] config: Configuration values, keyed by fully qualified key
               (e.g. `neon:region`).
        """
        self.name = name
        self.stage = stage
        self.parallel = parallel
        self.state_dir = state_dir
        self.config = config

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "ProjectSettings":
        """Deserialize a ProjectSettings from a dictionary."""
        parallel = data.get("parallel")
        return ProjectSettings(
            name=data["name"],
            stage=data.get("stage"),
            parallel=int(parallel) if parallel is not None else None,
            state_dir=data.get("stateDir"),
            config=data.get("config"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize a ProjectSettings to a dictionary."""
        return _to_dict(
            [
                ("name", self.name),
                ("stage", self.stage),
                ("parallel", self.parallel),
                ("stateDir", self.state_dir),
                ("config", dict(self.config) if self.config is not None else None),
            ]
        )

    def __repr__(self):
        return f"ProjectSettings(name={self.name!r}, stage={self.stage!r}, parallel={self.parallel!r})"


def _to_dict(kvs: Iterable[Tuple[str, Any]]) -> Dict[str, Any]:
    """Convert a list of key-value pairs into a dictionary, filtering out None values."""
    return {k: v for k, v in kvs if v is not None}


def _find_settings_file(work_dir: str) -> Optional[str]:
    for ext in _setting_extensions:
        path = os.path.join(work_dir, f"{_settings_name}{ext}")
        if os.path.exists(path):
            return path
    return None


def load_project_settings(work_dir: str) -> Optional[ProjectSettings]:
    """
    Reads the project settings file in `work_dir`, or returns None if there is none.
    """
    path = _find_settings_file(work_dir)
    if path is None:
        return None
    with open(path, "r", encoding="utf-8") as file:
        settings = json.load(file) if path.endswith(".json") else yaml.safe_load(file)
    if not isinstance(settings, dict) or "name" not in settings:
        raise ValueError(f"project settings file {path} must be a mapping with a 'name'")
    return ProjectSettings.from_dict(settings)


def save_project_settings(work_dir: str, settings: ProjectSettings) -> str:
    """
    Writes `settings` to the project settings file in `work_dir`, keeping the format of an existing file.
    Returns the path written.
    """
    path = _find_settings_file(work_dir) or os.path.join(work_dir, f"{_settings_name}.yaml")
    writable_settings = settings.to_dict()
    with open(path, "w", encoding="utf-8") as file:
        if path.endswith(".json"):
            json.dump(writable_settings, file, indent=4)
        else:
            yaml.dump(writable_settings, stream=file)
    return path
