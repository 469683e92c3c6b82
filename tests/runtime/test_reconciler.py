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

import asyncio
import random

import pytest

from crucible import (
    ApplyError,
    ContractViolationError,
    CyclicDependencyError,
    InstanceStatus,
    MemoryStateStore,
    NotFoundError,
    Phase,
    ProviderError,
    ResourceNotFoundInStateError,
    ResourceOptions,
    Scope,
    resource,
)
from crucible.runtime.reconciler import Reconciler


def _declare(neon, **kwargs):
    with Scope("app") as scope:
        instances = neon.declare(**kwargs)
    return scope, instances


async def _up(reconciler, neon, **kwargs):
    scope, instances = _declare(neon, **kwargs)
    result = await reconciler.apply(scope.instances(), scope.path)
    return result, instances


@pytest.mark.asyncio
async def test_first_apply_creates_in_dependency_order(neon, store, registry):
    reconciler = Reconciler(store, registry)
    result, (p, b, d) = await _up(reconciler, neon)

    assert result.ok
    assert result.created == [p.identity, b.identity, d.identity]
    assert neon.events == [
        ("create", "neon::Project", "project"),
        ("create", "neon::Branch", "branch"),
        ("create", "neon::Database", "database"),
    ]
    assert all(i.status == InstanceStatus.APPLIED for i in (p, b, d))
    assert b["project_id"] == p["id"]
    assert d["branch_id"] == b["id"]

    record = await store.get(d.identity)
    assert record is not None
    assert record.output == d.output
    assert record.depends_on == [b.identity]


@pytest.mark.asyncio
async def test_second_apply_is_a_no_op(neon, store, registry, cloud):
    reconciler = Reconciler(store, registry)
    await _up(reconciler, neon)
    calls = len(cloud.calls)
    neon.events.clear()

    result, (p, b, d) = await _up(reconciler, neon)

    assert result.ok
    assert neon.events == []
    assert len(cloud.calls) == calls
    assert result.unchanged == [p.identity, b.identity, d.identity]
    assert d.output is not None and d["name"] == "app"


@pytest.mark.asyncio
async def test_changed_output_propagates_to_dependents(neon, store, registry):
    reconciler = Reconciler(store, registry)
    await _up(reconciler, neon)
    neon.events.clear()

    with Scope("app") as scope:
        p = neon.Project("project", {"name": "my-project", "region": "aws-eu-central-1"})
        b = neon.Branch("branch", {"project": p, "name": "main"})
        neon.Database("database", {"branch": b, "name": "app"})
    result = await reconciler.apply(scope.instances(), scope.path)

    assert result.ok
    # The project's output changed, so the branch embedding it is updated; the branch output did not change.
    assert neon.events == [("update", "neon::Project", "project"), ("update", "neon::Branch", "branch")]
    assert len(result.unchanged) == 1


@pytest.mark.asyncio
async def test_partial_failure_keeps_successes(neon, store, registry, cloud):
    reconciler = Reconciler(store, registry)
    cloud.fail("create", "branches", error=RuntimeError("quota"))

    with Scope("app") as scope:
        p, b, d = neon.declare()
        other = neon.Project("other", {"name": "other-project"})
    result = await reconciler.apply(scope.instances(), scope.path)

    assert not result.ok
    assert [f.identity for f in result.failures] == [b.identity]
    failure = result.failures[0]
    assert failure.phase == "create"
    assert isinstance(failure.error, ProviderError)
    assert isinstance(failure.error.cause, RuntimeError)
    assert d.identity in result.skipped
    assert b.status == InstanceStatus.FAILED
    assert d.status == InstanceStatus.SKIPPED

    assert await store.get(p.identity) is not None
    assert await store.get(other.identity) is not None
    assert await store.get(b.identity) is None
    assert await store.get(d.identity) is None

    with pytest.raises(ApplyError) as info:
        result.raise_for_failures()
    assert b.urn in str(info.value)
    assert info.value.failures == result.failures


@pytest.mark.asyncio
async def test_failed_run_resumes(neon, store, registry, cloud):
    reconciler = Reconciler(store, registry)
    cloud.fail("create", "databases")
    result, _ = await _up(reconciler, neon)
    assert len(result.failures) == 1
    neon.events.clear()

    result, _ = await _up(reconciler, neon)
    assert result.ok
    assert neon.events == [("create", "neon::Database", "database")]


@pytest.mark.asyncio
async def test_mark_for_replacement_recreates_before_dependents_update(neon, store, registry, cloud):
    reconciler = Reconciler(store, registry)
    _, (_, old_branch, _) = await _up(reconciler, neon)
    old_branch_id = old_branch["id"]
    neon.events.clear()

    result, (p, b, d) = await _up(reconciler, neon, branch="dev")

    assert result.ok
    assert neon.events == [
        ("update", "neon::Branch", "branch"),
        ("delete", "neon::Branch", "branch"),
        ("create", "neon::Branch", "branch"),
        ("update", "neon::Database", "database"),
    ]
    assert result.replaced == [b.identity]
    assert result.updated == [d.identity]
    assert b["id"] != old_branch_id
    assert d["branch_id"] == b["id"]
    assert not cloud.exists("branches", f"{p['id']}/main")
    assert cloud.exists("branches", f"{p['id']}/dev")
    record = await store.get(b.identity)
    assert record is not None and record.output == b.output


@pytest.mark.asyncio
async def test_replacing_a_root_replaces_its_chain(neon, store, registry):
    reconciler = Reconciler(store, registry)
    await _up(reconciler, neon)
    neon.events.clear()

    result, (p, b, d) = await _up(reconciler, neon, project="renamed")

    assert result.ok
    assert result.replaced == [p.identity, b.identity]
    assert result.updated == [d.identity]
    assert neon.phases("create") == ["project", "branch"]
    assert neon.events.index(("create", "neon::Project", "project")) < neon.events.index(
        ("update", "neon::Branch", "branch")
    )


@pytest.mark.asyncio
async def test_vanished_object_is_recreated_on_update(registry, store):
    calls = []

    @resource("test::Volatile", registry=registry)
    async def Volatile(ctx, props):
        calls.append(ctx.phase)
        if ctx.phase == Phase.UPDATE:
            raise NotFoundError("gone")
        return {"size": props["size"]}

    reconciler = Reconciler(store, registry)
    with Scope("app") as scope:
        Volatile("v", {"size": 1})
    await reconciler.apply(scope.instances(), scope.path)

    with Scope("app") as scope:
        v = Volatile("v", {"size": 2})
    result = await reconciler.apply(scope.instances(), scope.path)

    assert result.ok
    assert calls == [Phase.CREATE, Phase.UPDATE, Phase.CREATE]
    assert result.created == [v.identity]
    assert v["size"] == 2


@pytest.mark.asyncio
async def test_adoption_is_idempotent(neon, registry, cloud):
    reconciler = Reconciler(MemoryStateStore(), registry)
    with Scope("app") as scope:
        first = neon.Project("project", {"name": "shared"})
    await reconciler.apply(scope.instances())

    # A fresh state store knows nothing about the project; adoption imports the remote object.
    adopting = Reconciler(MemoryStateStore(), registry)
    with Scope("app") as scope:
        second = neon.Project("project", {"name": "shared"}, ResourceOptions(adopt=True))
    result = await adopting.apply(scope.instances())

    assert result.ok
    assert second.output == first.output
    assert cloud.count("create", "projects") == 1


@pytest.mark.asyncio
async def test_orphans_are_destroyed_in_reverse_order(neon, store, registry):
    reconciler = Reconciler(store, registry)
    _, (p, b, d) = await _up(reconciler, neon)
    neon.events.clear()

    with Scope("app") as scope:
        neon.Project("project", {"name": "my-project", "region": "aws-us-east-2"})
    result = await reconciler.apply(scope.instances(), scope.path)

    assert result.ok
    assert neon.events == [("delete", "neon::Database", "database"), ("delete", "neon::Branch", "branch")]
    assert result.deleted == [d.identity, b.identity]
    assert await store.get(b.identity) is None
    assert await store.get(p.identity) is not None


@pytest.mark.asyncio
async def test_orphans_outside_the_scope_path_are_kept(neon, store, registry):
    reconciler = Reconciler(store, registry)
    await _up(reconciler, neon)
    neon.events.clear()

    with Scope("elsewhere") as scope:
        neon.Project("project", {"name": "another"})
    result = await reconciler.apply(scope.instances(), scope.path)

    assert result.deleted == []
    assert len(await store.list_under(("app",))) == 3


@pytest.mark.asyncio
async def test_referenced_orphans_are_kept(registry, store):
    @resource("test::Node", registry=registry)
    async def Node(ctx, props):
        if ctx.phase == Phase.DELETE:
            return ctx.destroy_self()
        if props.get("fail"):
            raise RuntimeError("boom")
        return {"ok": True}

    reconciler = Reconciler(store, registry)
    with Scope("app") as scope:
        a = Node("a", {})
        Node("b", {"upstream": a})
    await reconciler.apply(scope.instances(), scope.path)

    # b stops referencing a but fails to update, so its record still points at a.
    with Scope("app") as scope:
        Node("b", {"fail": True})
    result = await reconciler.apply(scope.instances(), scope.path)

    assert len(result.failures) == 1
    assert result.deleted == []
    assert await store.get(a.identity) is not None


@pytest.mark.asyncio
async def test_cycle_is_rejected_before_any_handler(registry, store):
    calls = []

    @resource("test::Node", registry=registry)
    def Node(ctx, props):
        calls.append(ctx.id)
        return {}

    with Scope("app") as scope:
        a = Node("a", {})
        b = Node("b", {"a": a})
        a.props["b"] = b
    with pytest.raises(CyclicDependencyError):
        await Reconciler(store, registry).apply(scope.instances(), scope.path)
    assert calls == []
    assert len(store) == 0


@pytest.mark.asyncio
async def test_missing_output_is_a_contract_violation(registry, store):
    @resource("test::Silent", registry=registry)
    async def Silent(ctx, props):
        return None

    with Scope("app") as scope:
        s = Silent("s")
    result = await Reconciler(store, registry).apply(scope.instances())

    assert isinstance(result.failures[0].error, ContractViolationError)
    assert s.status == InstanceStatus.FAILED
    assert await store.get(s.identity) is None


@pytest.mark.asyncio
async def test_always_update(registry, store):
    phases = []

    @resource("test::Clock", registry=registry, always_update=True)
    async def Clock(ctx, props):
        phases.append(ctx.phase)
        return {"tick": len(phases)}

    reconciler = Reconciler(store, registry)
    for _ in range(2):
        with Scope("app") as scope:
            Clock("c", {"same": True})
        await reconciler.apply(scope.instances())
    assert phases == [Phase.CREATE, Phase.UPDATE]


@pytest.mark.asyncio
async def test_custom_equality_policy(registry, store):
    phases = []

    @resource("test::Tagged", registry=registry, equals=lambda prev, next_: prev["name"] == next_["name"])
    async def Tagged(ctx, props):
        phases.append(ctx.phase)
        return {"name": props["name"]}

    reconciler = Reconciler(store, registry)
    for nonce in (1, 2):
        with Scope("app") as scope:
            Tagged("t", {"name": "n", "nonce": nonce})
        await reconciler.apply(scope.instances())
    assert phases == [Phase.CREATE]


@pytest.mark.asyncio
async def test_data_is_persisted_with_the_record(registry, store):
    seen = []

    @resource("test::Cursor", registry=registry, always_update=True)
    async def Cursor(ctx, props):
        seen.append(dict(ctx.data))
        ctx.data["runs"] = ctx.data.get("runs", 0) + 1
        return {"ok": True}

    reconciler = Reconciler(store, registry)
    for _ in range(3):
        with Scope("app") as scope:
            Cursor("c")
        await reconciler.apply(scope.instances())
    assert seen == [{}, {"runs": 1}, {"runs": 2}]


@pytest.mark.asyncio
@pytest.mark.timeout(10)
async def test_parallelism_is_bounded(registry, store):
    running = 0
    peak = 0

    @resource("test::Slow", registry=registry)
    async def Slow(ctx, props):
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.01)
        running -= 1
        return {"ok": True}

    with Scope("app") as scope:
        for n in range(6):
            Slow(f"s{n}")
    result = await Reconciler(store, registry, parallel=2).apply(scope.instances())

    assert len(result.created) == 6
    assert peak == 2


@pytest.mark.parametrize("seed", range(5))
@pytest.mark.asyncio
async def test_dependencies_commit_before_dependents_start(seed, registry, store):
    rng = random.Random(seed)
    log = []

    @resource("test::Node", registry=registry)
    async def Node(ctx, props):
        log.append(("start", ctx.id))
        await asyncio.sleep(rng.random() / 1000)
        log.append(("end", ctx.id))
        return {"id": ctx.id}

    with Scope("app") as scope:
        nodes = []
        for n in range(12):
            deps = rng.sample(nodes, k=min(len(nodes), rng.randint(0, 3)))
            nodes.append(Node(f"n{n}", {"deps": deps}))
    result = await Reconciler(store, registry, parallel=4).apply(scope.instances())

    assert result.ok
    for node in nodes:
        for dep in node.props["deps"]:
            assert log.index(("end", dep.id)) < log.index(("start", node.id))
            record = await store.get(dep.identity)
            assert record is not None


@pytest.mark.asyncio
async def test_cancel_skips_unlaunched_handlers(registry, store):
    reconciler = Reconciler(store, registry)

    @resource("test::Node", registry=registry)
    async def Node(ctx, props):
        if ctx.id == "first":
            reconciler.cancel()
        return {"id": ctx.id}

    with Scope("app") as scope:
        first = Node("first")
        second = Node("second", {"after": first})
    result = await reconciler.apply(scope.instances(), scope.path)

    assert result.created == [first.identity]
    assert result.skipped == {second.identity: "cancelled"}
    assert await store.get(first.identity) is not None
    assert second.status == InstanceStatus.SKIPPED


@pytest.mark.asyncio
async def test_read_hydrates_outputs(neon, store, registry):
    reconciler = Reconciler(store, registry)
    _, (p, b, d) = await _up(reconciler, neon)
    neon.events.clear()

    _, (p2, b2, d2) = _declare(neon)
    await reconciler.read([d2])

    assert neon.events == []
    assert (p2.output, b2.output, d2.output) == (p.output, b.output, d.output)
    assert d2.status == InstanceStatus.APPLIED


@pytest.mark.asyncio
async def test_read_without_state(neon, store, registry):
    _, (_, _, d) = _declare(neon)
    with pytest.raises(ResourceNotFoundInStateError):
        await Reconciler(store, registry).read([d])
