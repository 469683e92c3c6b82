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

import functools
import logging
from typing import Any, Dict, List, Tuple

import pytest

from crucible import Context, Phase, resource
from crucible.poll import wait_for_operations
from crucible.resource import DefinitionRegistry
from crucible.runtime.mocks import CloudNotFound, FakeCloud


def supress_unobserved_task_logging():
    """Suppresses logs about faulted tasks nobody awaited, e.g. handlers still running when a test fails."""
    logging.getLogger("asyncio").setLevel(logging.CRITICAL)


supress_unobserved_task_logging()


def raises(exception_type):
    """Decorates a test by wrapping its body in `pytest.raises`."""

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            with pytest.raises(exception_type):
                return fn(*args, **kwargs)

        return wrapper

    return decorator


class Neon:
    """
    A small Neon-like provider over a FakeCloud: projects contain branches, branches contain databases.
    Project and branch names are immutable, so renaming one asks for a replacement. Every handler
    invocation is recorded in `events` as `(phase, kind, id)`.
    """

    def __init__(self, cloud: FakeCloud, registry: DefinitionRegistry) -> None:
        self.cloud = cloud
        self.events: List[Tuple[str, str, str]] = []

        @resource("neon::Project", registry=registry)
        async def Project(ctx: Context, props: Dict[str, Any]) -> Any:
            self.events.append((ctx.phase.value, ctx.kind, ctx.id))
            if ctx.phase == Phase.DELETE:
                try:
                    await cloud.delete("projects", ctx.output["name"])
                except CloudNotFound:
                    pass
                return ctx.destroy_self()
            if ctx.phase == Phase.UPDATE:
                if props["name"] != ctx.props["name"]:
                    return ctx.mark_for_replacement()
                obj = await cloud.update("projects", props["name"], region=props.get("region"))
                return {"id": obj["id"], "name": obj["name"], "region": obj["region"]}
            if ctx.adopt:
                try:
                    obj = await cloud.get("projects", props["name"])
                    return {"id": obj["id"], "name": obj["name"], "region": obj["region"]}
                except CloudNotFound:
                    pass
            obj = await cloud.create("projects", props["name"], operations=2, region=props.get("region"))
            await wait_for_operations(obj.get("operations", []), cloud.operation_status, interval=0)
            return {"id": obj["id"], "name": obj["name"], "region": obj["region"]}

        @resource("neon::Branch", registry=registry)
        async def Branch(ctx: Context, props: Dict[str, Any]) -> Any:
            self.events.append((ctx.phase.value, ctx.kind, ctx.id))
            if ctx.phase == Phase.DELETE:
                try:
                    await cloud.delete("branches", ctx.output["name"])
                except CloudNotFound:
                    pass
                return ctx.destroy_self()
            name = f"{props['project']['id']}/{props['name']}"
            if ctx.phase == Phase.UPDATE:
                if name != ctx.output["name"]:
                    return ctx.mark_for_replacement()
                obj = await cloud.update("branches", name)
            else:
                obj = await cloud.create("branches", name)
            return {"id": obj["id"], "name": name, "project_id": props["project"]["id"]}

        @resource("neon::Database", registry=registry)
        async def Database(ctx: Context, props: Dict[str, Any]) -> Any:
            self.events.append((ctx.phase.value, ctx.kind, ctx.id))
            if ctx.phase == Phase.DELETE:
                try:
                    await cloud.delete("databases", ctx.output["name"])
                except CloudNotFound:
                    pass
                return ctx.destroy_self()
            name = props["name"]
            if ctx.phase == Phase.UPDATE:
                obj = await cloud.update("databases", ctx.output["name"], branch_id=props["branch"]["id"])
            else:
                obj = await cloud.create("databases", name, branch_id=props["branch"]["id"])
            ctx.commit({"id": obj["id"], "name": name, "branch_id": obj["branch_id"]})
            return None

        self.Project = Project
        self.Branch = Branch
        self.Database = Database

    def declare(self, project: str = "my-project", branch: str = "main", database: str = "app"):
        """
        Declares the project -> branch -> database chain in the current scope.
        """
        p = self.Project("project", {"name": project, "region": "aws-us-east-2"})
        b = self.Branch("branch", {"project": p, "name": branch})
        d = self.Database("database", {"branch": b, "name": database})
        return p, b, d

    def phases(self, phase: str) -> List[str]:
        return [id_ for p, _, id_ in self.events if p == phase]
