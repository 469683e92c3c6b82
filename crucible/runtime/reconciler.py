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
The reconciler converges declared resources with their persisted state: it runs lifecycle handlers in
dependency order, commits what they produce and tears down whatever is no longer declared.
"""
import asyncio
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Dict,
    Iterable,
    List,
    NamedTuple,
    Optional,
    Sequence,
    Set,
)

from .. import log
from ..context import Context, Phase
from ..errors import (
    ApplyError,
    ContractViolationError,
    DestroyError,
    NotFoundError,
    ProviderError,
    ResourceFailure,
    ResourceNotFoundInStateError,
    RunError,
)
from ..resource import (
    REGISTRY,
    DefinitionRegistry,
    InstanceStatus,
    ResourceDefinition,
    ResourceInstance,
    ResourceOptions,
)
from ..state import ResourceStatus, StateRecord, StateStore
from . import settings
from .graph import DependencyGraph
from .serde import normalize

if TYPE_CHECKING:
    from ..urn import ResourceIdentity

CANCELLED = "cancelled"


class Action(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    REPLACED = "replaced"
    DELETED = "deleted"
    FAILED = "failed"
    SKIPPED = "skipped"
    PARKED = "parked"
    """
    The update handler asked for a replacement; the identity waits for the replacement pass.
    """


class Outcome(NamedTuple):
    """
    The result of running one identity. Handler errors are captured here instead of propagating so that one
    failure never aborts its siblings.
    """

    identity: "ResourceIdentity"
    action: Action
    phase: Optional[str] = None
    error: Optional[BaseException] = None
    reason: Optional[str] = None
    record: Optional[StateRecord] = None

    @staticmethod
    def failed(identity: "ResourceIdentity", phase: str, error: BaseException) -> "Outcome":
        return Outcome(identity, Action.FAILED, phase=phase, error=error)

    @staticmethod
    def skipped(identity: "ResourceIdentity", reason: str) -> "Outcome":
        return Outcome(identity, Action.SKIPPED, reason=reason)


class ReconcileResult:
    """
    ReconcileResult summarizes an apply or destroy: what changed, what failed and what was never attempted.
    """

    created: List["ResourceIdentity"]
    updated: List["ResourceIdentity"]
    unchanged: List["ResourceIdentity"]
    replaced: List["ResourceIdentity"]
    deleted: List["ResourceIdentity"]
    failures: List[ResourceFailure]
    skipped: Dict["ResourceIdentity", str]
    """
    Identities that were not attempted, with the reason.
    """

    def __init__(self) -> None:
        self.created = []
        self.updated = []
        self.unchanged = []
        self.replaced = []
        self.deleted = []
        self.failures = []
        self.skipped = {}

    @property
    def ok(self) -> bool:
        return not self.failures

    def add(self, outcome: Outcome) -> None:
        if outcome.action == Action.CREATED:
            self.created.append(outcome.identity)
        elif outcome.action == Action.UPDATED:
            self.updated.append(outcome.identity)
        elif outcome.action == Action.UNCHANGED:
            self.unchanged.append(outcome.identity)
        elif outcome.action == Action.REPLACED:
            self.replaced.append(outcome.identity)
        elif outcome.action == Action.DELETED:
            self.deleted.append(outcome.identity)
        elif outcome.action == Action.FAILED:
            assert outcome.error is not None
            self.failures.append(ResourceFailure(outcome.identity, outcome.phase or "", outcome.error))
        elif outcome.action == Action.SKIPPED:
            self.skipped[outcome.identity] = outcome.reason or ""

    def merge(self, other: "ReconcileResult") -> "ReconcileResult":
        self.created.extend(other.created)
        self.updated.extend(other.updated)
        self.unchanged.extend(other.unchanged)
        self.replaced.extend(other.replaced)
        self.deleted.extend(other.deleted)
        self.failures.extend(other.failures)
        self.skipped.update(other.skipped)
        return self

    def raise_for_failures(self, kind: str = "apply") -> None:
        """
        Raises an `ApplyError` (or a `DestroyError` if `kind` is "destroy") listing every failure, if any.
        """
        if self.ok:
            return
        if kind == "destroy":
            raise DestroyError(self)
        raise ApplyError(self)

    def __repr__(self):
        return (
            f"<ReconcileResult created={len(self.created)} updated={len(self.updated)} "
            f"unchanged={len(self.unchanged)} replaced={len(self.replaced)} deleted={len(self.deleted)} "
            f"failed={len(self.failures)} skipped={len(self.skipped)}>"
        )


class Reconciler:
    """
    Reconciler drives lifecycle handlers against a state store. Independent resources run concurrently,
    bounded by `parallel`; state writes are serialized through a single commit lock.
    """

    store: StateStore
    registry: DefinitionRegistry
    parallel: int

    def __init__(
        self,
        store: StateStore,
        registry: Optional[DefinitionRegistry] = None,
        parallel: Optional[int] = None,
    ) -> None:
        """
        :param StateStore store: Where records are read from and committed to.
        :param Optional[DefinitionRegistry] registry: Resolves recorded kinds to handlers during teardown.
        :param Optional[int] parallel: The maximum number of handlers running at once.
        """
        if parallel is not None and parallel < 1:
            raise ValueError("parallel must be at least 1")
        self.store = store
        self.registry = registry if registry is not None else REGISTRY
        self.parallel = parallel or settings.get_parallel()
        self._cancelled = False

    def cancel(self) -> None:
        """
        Stops launching handlers. Handlers already running finish and commit; everything else is skipped.
        """
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    # Apply

    async def apply(
        self,
        instances: Iterable[ResourceInstance],
        scope_path: Optional[Sequence[str]] = None,
        declared: Iterable["ResourceIdentity"] = (),
    ) -> ReconcileResult:
        """
        Converges `instances`, and every instance embedded in their props, with the store. If `scope_path` is
        given, records under it that were not part of this run, nor listed in `declared`, are destroyed
        afterwards.

        :raises CyclicDependencyError: The props form a cycle. Raised before any handler runs.
        """
        instances = list(instances)
        graph = DependencyGraph.from_instances(instances)
        order = graph.topological_order()

        self._cancelled = False
        result = ReconcileResult()
        semaphore = asyncio.Semaphore(self.parallel)
        commit_lock = asyncio.Lock()

        requested = {i.identity for i in instances}
        pending: List["ResourceIdentity"] = []
        for identity in order:
            instance = graph.node(identity)
            # Instances applied earlier in this process by another scope only need to be waited on.
            if identity in requested or instance.status != InstanceStatus.APPLIED:
                instance.status = InstanceStatus.PENDING
                instance.error = None
                pending.append(identity)

        parked: Dict["ResourceIdentity", StateRecord] = {}
        wave = 0
        while pending or parked:
            ready: List[ResourceInstance] = []
            waiting: List["ResourceIdentity"] = []
            for identity in pending:
                instance = graph.node(identity)
                blocked = _first_blocked(graph, identity)
                if blocked is not None:
                    self._skip(instance, result, f"dependency '{blocked.urn}' did not converge")
                elif all(graph.node(d).status == InstanceStatus.APPLIED for d in graph.dependencies_of(identity)):
                    ready.append(instance)
                else:
                    waiting.append(identity)
            pending = waiting

            if self._cancelled:
                for identity in [*parked, *(i.identity for i in ready), *pending]:
                    self._skip(graph.node(identity), result, CANCELLED)
                break

            if ready:
                wave += 1
                log.debug(f"apply wave {wave}: {', '.join(i.urn for i in ready)}")
                outcomes = await asyncio.gather(
                    *(self._apply_one(instance, semaphore, commit_lock) for instance in ready)
                )
                for instance, outcome in zip(ready, outcomes):
                    if outcome.action == Action.PARKED:
                        assert outcome.record is not None
                        parked[instance.identity] = outcome.record
                    else:
                        self._settle(instance, outcome, result)
                continue

            if parked:
                # Nothing else can make progress without the replaced identities; replace them in dependency
                # order, then let their dependents continue.
                for identity in [i for i in order if i in parked]:
                    instance = graph.node(identity)
                    if self._cancelled:
                        self._skip(instance, result, CANCELLED)
                        continue
                    blocked = _first_blocked(graph, identity)
                    if blocked is not None:
                        self._skip(instance, result, f"dependency '{blocked.urn}' did not converge")
                        continue
                    outcome = await self._replace_one(instance, parked[identity], commit_lock)
                    self._settle(instance, outcome, result)
                parked = {}
                continue

            # Unreachable for an acyclic graph; never spin.
            for identity in pending:
                self._skip(graph.node(identity), result, "dependencies never converged")
            break

        if scope_path is not None and not self._cancelled:
            result.merge(await self._sweep_orphans({*order, *declared}, scope_path))
        return result

    async def _apply_one(
        self, instance: ResourceInstance, semaphore: asyncio.Semaphore, commit_lock: asyncio.Lock
    ) -> Outcome:
        async with semaphore:
            if self._cancelled:
                return Outcome.skipped(instance.identity, CANCELLED)
            definition = instance.definition
            props = normalize(instance.props)
            try:
                record = await self.store.get(instance.identity)
            except Exception as e:  # pylint: disable=broad-except
                return Outcome.failed(instance.identity, "read state", e)

            if record is None:
                return await self._run(instance, Phase.CREATE, None, props, commit_lock)
            if definition.always_update or not definition.props_equal(record.props, props):
                return await self._run(instance, Phase.UPDATE, record, props, commit_lock)

            log.debug(f"props unchanged; skipping {instance.urn}")
            instance.output = record.output
            return Outcome(instance.identity, Action.UNCHANGED)

    async def _run(
        self,
        instance: ResourceInstance,
        phase: Phase,
        record: Optional[StateRecord],
        props,
        commit_lock: asyncio.Lock,
    ) -> Outcome:
        """
        Runs the create or update phase of `instance` and commits its output.
        """
        urn = instance.urn
        ctx = Context(
            phase,
            instance.identity,
            output=record.output if record is not None else None,
            props=record.props if record is not None else None,
            scope=instance.scope,
            adopt=instance.opts.adopt,
            data=record.data if record is not None else None,
        )
        log.info(f"{'Create' if phase == Phase.CREATE else 'Update'}: {urn}")
        try:
            returned = await instance.definition.invoke(ctx, instance.props)
        except NotFoundError as e:
            if phase != Phase.UPDATE:
                return Outcome.failed(instance.identity, phase.value, ProviderError(urn, phase.value, e))
            log.warn("remote object no longer exists; creating it again", instance.identity)
            return await self._run(instance, Phase.CREATE, None, props, commit_lock)
        except ContractViolationError as e:
            return Outcome.failed(instance.identity, phase.value, e)
        except Exception as e:  # pylint: disable=broad-except
            return Outcome.failed(instance.identity, phase.value, ProviderError(urn, phase.value, e))

        if ctx.replacement_requested:
            assert record is not None
            log.debug(f"{urn} requested replacement")
            return Outcome(instance.identity, Action.PARKED, phase=phase.value, record=record)

        output = ctx._result(returned)
        if output is None:
            return Outcome.failed(
                instance.identity,
                phase.value,
                ContractViolationError(urn, f"{phase.value} produced no output; return it or call ctx.commit()"),
            )

        status = ResourceStatus.CREATED if phase == Phase.CREATE else ResourceStatus.UPDATED
        committed = StateRecord(
            instance.identity,
            status,
            output,
            props=props,
            depends_on=instance.depends_on,
            options=instance.opts.to_dict(),
            data=ctx.data,
        )
        try:
            async with commit_lock:
                await self.store.put(committed)
        except Exception as e:  # pylint: disable=broad-except
            return Outcome.failed(instance.identity, "commit", e)

        instance.output = output
        log.info(f"{'Created' if phase == Phase.CREATE else 'Updated'}: {urn}")
        return Outcome(instance.identity, Action.CREATED if phase == Phase.CREATE else Action.UPDATED)

    async def _replace_one(
        self, instance: ResourceInstance, record: StateRecord, commit_lock: asyncio.Lock
    ) -> Outcome:
        log.info(f"Replace: {instance.urn}")
        try:
            await self._delete(instance.definition, record, instance)
            async with commit_lock:
                await self.store.delete(instance.identity)
        except Exception as e:  # pylint: disable=broad-except
            return Outcome.failed(instance.identity, "replace", e)

        outcome = await self._run(instance, Phase.CREATE, None, normalize(instance.props), commit_lock)
        if outcome.action == Action.CREATED:
            return Outcome(instance.identity, Action.REPLACED)
        return outcome

    def _settle(self, instance: ResourceInstance, outcome: Outcome, result: ReconcileResult) -> None:
        if outcome.action == Action.FAILED:
            instance.status = InstanceStatus.FAILED
            instance.error = outcome.error
            log.error(f"{outcome.phase} failed: {outcome.error}", instance.identity)
        elif outcome.action == Action.SKIPPED:
            instance.status = InstanceStatus.SKIPPED
        else:
            instance.status = InstanceStatus.APPLIED
        result.add(outcome)

    def _skip(self, instance: ResourceInstance, result: ReconcileResult, reason: str) -> None:
        log.debug(f"skipping: {reason}", instance.identity)
        self._settle(instance, Outcome.skipped(instance.identity, reason), result)

    async def _sweep_orphans(
        self, declared: Set["ResourceIdentity"], scope_path: Sequence[str]
    ) -> ReconcileResult:
        records = await self.store.list_under(scope_path)
        orphans = {r.identity: r for r in records if r.identity not in declared}
        if not orphans:
            return ReconcileResult()

        # An orphan that a surviving record still points at is kept, along with everything it points at.
        kept: Set["ResourceIdentity"] = set()
        frontier = [d for r in records if r.identity not in orphans for d in r.depends_on]
        while frontier:
            identity = frontier.pop()
            if identity in orphans and identity not in kept:
                kept.add(identity)
                frontier.extend(orphans[identity].depends_on)
        for identity in kept:
            log.warn("no longer declared but still referenced by another resource; keeping it", identity)

        doomed = [r for i, r in orphans.items() if i not in kept]
        if doomed:
            log.debug(f"sweeping {len(doomed)} orphan(s) under '{'/'.join(scope_path)}'")
        return await self.destroy(doomed)

    # Destroy

    async def destroy(self, records: Iterable[StateRecord]) -> ReconcileResult:
        """
        Deletes the remote objects of `records` and removes the records, dependents before their
        dependencies and child scopes before their parents. A failure blocks the identities the failed one
        depends on, and the records of enclosing scopes; other branches continue.
        """
        records = list(records)
        graph = DependencyGraph.from_records(records)
        order = graph.topological_order()
        index = {identity: n for n, identity in enumerate(order)}
        nested = {identity: _nested_in(identity, order) for identity in order}

        self._cancelled = False
        result = ReconcileResult()
        semaphore = asyncio.Semaphore(self.parallel)
        commit_lock = asyncio.Lock()
        done: Dict["ResourceIdentity", Action] = {}
        pending = list(reversed(order))

        while pending:
            ready: List[StateRecord] = []
            held: List[StateRecord] = []
            for identity in pending:
                dependents = graph.dependents_of(identity)
                blocked = next(
                    (d for d in (*dependents, *nested[identity]) if done.get(d) in (Action.FAILED, Action.SKIPPED)),
                    None,
                )
                if blocked is not None:
                    done[identity] = Action.SKIPPED
                    result.add(Outcome.skipped(identity, f"'{blocked.urn}' was not destroyed"))
                elif all(done.get(d) == Action.DELETED for d in dependents):
                    if all(done.get(n) == Action.DELETED for n in nested[identity]):
                        ready.append(graph.node(identity))
                    else:
                        held.append(graph.node(identity))

            if not ready and held:
                # Only dependency edges are left between the held records and the nested ones; dependency order
                # wins, deepest scope first.
                deepest = max(len(r.identity.scope_path) for r in held)
                ready = [r for r in held if len(r.identity.scope_path) == deepest]
                log.debug(f"deleting {', '.join(r.urn for r in ready)} before resources of nested scopes")
            launched = {r.identity for r in ready}
            pending = [i for i in pending if i not in done and i not in launched]

            if self._cancelled:
                for record in ready:
                    done[record.identity] = Action.SKIPPED
                    result.add(Outcome.skipped(record.identity, CANCELLED))
                for identity in pending:
                    result.add(Outcome.skipped(identity, CANCELLED))
                break
            if not ready:
                for identity in pending:
                    result.add(Outcome.skipped(identity, "dependents never destroyed"))
                break

            ready.sort(key=lambda r: (-len(r.identity.scope_path), -index[r.identity]))
            outcomes = await asyncio.gather(*(self._destroy_one(r, semaphore, commit_lock) for r in ready))
            for outcome in outcomes:
                done[outcome.identity] = outcome.action
                if outcome.action == Action.FAILED:
                    log.error(f"delete failed: {outcome.error}", outcome.identity)
                result.add(outcome)
        return result

    async def destroy_scope(self, scope_path: Sequence[str]) -> ReconcileResult:
        """
        Destroys every record under `scope_path`, child scopes included.
        """
        return await self.destroy(await self.store.list_under(scope_path))

    async def _destroy_one(
        self, record: StateRecord, semaphore: asyncio.Semaphore, commit_lock: asyncio.Lock
    ) -> Outcome:
        async with semaphore:
            if self._cancelled:
                return Outcome.skipped(record.identity, CANCELLED)
            urn = record.urn
            opts = ResourceOptions.from_dict(record.options)
            if opts.protect:
                return Outcome.failed(
                    record.identity,
                    Phase.DELETE.value,
                    ContractViolationError(urn, "resource is protected and cannot be deleted"),
                )
            try:
                if opts.retain_on_delete:
                    log.info(f"Retain: {urn}")
                else:
                    definition = self.registry.get(record.identity.kind)
                    if definition is None:
                        raise RunError(f"no resource definition is registered for kind '{record.identity.kind}'")
                    log.info(f"Delete: {urn}")
                    await self._delete(definition, record)
                async with commit_lock:
                    await self.store.delete(record.identity)
            except Exception as e:  # pylint: disable=broad-except
                return Outcome.failed(record.identity, Phase.DELETE.value, e)
            log.info(f"Deleted: {urn}")
            return Outcome(record.identity, Action.DELETED)

    async def _delete(
        self,
        definition: ResourceDefinition,
        record: StateRecord,
        instance: Optional[ResourceInstance] = None,
    ) -> None:
        """
        Runs the delete phase for `record`. A handler that finds the object already gone may either call
        `destroy_self()` or raise `NotFoundError`.
        """
        ctx = Context(
            Phase.DELETE,
            record.identity,
            output=record.output,
            props=record.props,
            scope=instance.scope if instance is not None else None,
            data=record.data,
        )
        try:
            await definition.invoke(ctx, record.props)
        except NotFoundError:
            log.debug("remote object was already gone", record.identity)
            return
        except ContractViolationError:
            raise
        except Exception as e:
            raise ProviderError(record.urn, Phase.DELETE.value, e) from e
        if not ctx.destroyed:
            raise ContractViolationError(record.urn, "delete returned without calling ctx.destroy_self()")

    # Read

    async def read(self, instances: Iterable[ResourceInstance]) -> None:
        """
        Hydrates the outputs of `instances`, and of every instance embedded in their props, from the store.
        No handler runs.

        :raises ResourceNotFoundInStateError: An instance has never been applied.
        """
        graph = DependencyGraph.from_instances(instances)
        for identity in graph.topological_order():
            instance = graph.node(identity)
            record = await self.store.get(identity)
            if record is None:
                raise ResourceNotFoundInStateError(identity.urn)
            instance.output = record.output
            instance.status = InstanceStatus.APPLIED


def _first_blocked(graph: DependencyGraph, identity: "ResourceIdentity") -> Optional["ResourceIdentity"]:
    for dep in graph.dependencies_of(identity):
        if graph.node(dep).status in (InstanceStatus.FAILED, InstanceStatus.SKIPPED):
            return dep
    return None


def _nested_in(identity: "ResourceIdentity", identities: Iterable["ResourceIdentity"]) -> List["ResourceIdentity"]:
    """
    The identities declared in scopes strictly below the scope of `identity`.
    """
    depth = len(identity.scope_path)
    return [i for i in identities if len(i.scope_path) > depth and i.is_under(identity.scope_path)]
