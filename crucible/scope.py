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
Scopes group resources hierarchically. The path of a scope namespaces the identities of the resources
declared in it; finalizing a scope converges those resources according to the run mode.
"""
import os
from contextvars import Token
from enum import Enum
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterator,
    List,
    Optional,
    Tuple,
    TypeVar,
    Union,
)

from . import log
from ._utils import _maybe_await
from .config import Config
from .errors import RunError
from .project import load_project_settings
from .resource import DefinitionRegistry, ResourceInstance
from .runtime.config import get_config, set_config
from .runtime.reconciler import ReconcileResult, Reconciler
from .runtime.settings import (
    DEFAULT_PARALLEL,
    Settings,
    _reset_current_scope,
    _set_current_scope,
    configure,
    get_current_scope,
    get_engine,
)
from .runtime.shared import SharedRuntime, SharedRuntimes
from .secret import Secret
from .state import FileSystemStateStore, StateStore
from .urn import validate_segment

T = TypeVar("T")
R = TypeVar("R", bound=SharedRuntime)


class ScopePhase(str, Enum):
    ACTIVE = "active"
    """
    Resources may be declared.
    """

    FINALIZING = "finalizing"
    FINALIZED = "finalized"


class RunMode(str, Enum):
    """
    What finalizing a scope does with its resources.
    """

    UP = "up"
    """
    Create or update every declared resource and delete the ones no longer declared.
    """

    DESTROY = "destroy"
    """
    Delete every recorded resource.
    """

    READ = "read"
    """
    Load outputs from state without running any handler.
    """


class Scope:
    """
    Scope is a named node in the resource hierarchy. A scope is made current with `with scope:` (or
    `async with scope:`, which also finalizes it on a clean exit), after which declared resources are
    registered into it.
    """

    name: str
    parent: Optional["Scope"]
    children: Dict[str, "Scope"]
    resources: Dict[str, ResourceInstance]
    """
    The resources declared directly in this scope, by id, in declaration order.
    """

    phase: ScopePhase
    result: Optional[ReconcileResult]
    """
    The result of the last finalize in up or destroy mode.
    """

    def __init__(self, name: str, parent: Optional["Scope"] = None) -> None:
        validate_segment(name, "scope name")
        self.name = name
        self.parent = parent
        self.children = {}
        self.resources = {}
        self.phase = ScopePhase.ACTIVE
        self.result = None
        self._tokens: List[Token] = []
        self._path: Tuple[str, ...] = (*parent.path, name) if parent is not None else (name,)
        if parent is not None:
            if parent.phase != ScopePhase.ACTIVE:
                raise RunError(f"cannot create scope '{name}' in {parent!r}, which is {parent.phase.value}")
            if name in parent.children:
                raise ValueError(f"scope '{name}' already exists in {parent!r}")
            parent.children[name] = self

    @property
    def path(self) -> Tuple[str, ...]:
        return self._path

    @property
    def root(self) -> "Scope":
        scope = self
        while scope.parent is not None:
            scope = scope.parent
        return scope

    @property
    def app(self) -> "App":
        root = self.root
        if not isinstance(root, App):
            raise RunError(f"{self!r} does not belong to an App")
        return root

    @property
    def mode(self) -> RunMode:
        return self.app._mode

    @property
    def store(self) -> StateStore:
        return self.app._store

    def scope(self, name: str) -> "Scope":
        """
        Creates a child scope.
        """
        return Scope(name, self)

    def _register(self, instance: ResourceInstance) -> None:
        if self.phase != ScopePhase.ACTIVE:
            raise RunError(f"cannot declare '{instance.urn}': {self!r} is {self.phase.value}")
        if instance.id in self.resources:
            raise RunError(f"resource id '{instance.id}' is already declared in {self!r}")
        self.resources[instance.id] = instance
        log.debug(f"declared {instance.urn}")

    def walk(self) -> Iterator["Scope"]:
        """
        Yields this scope and every scope below it, parents before children.
        """
        yield self
        for child in self.children.values():
            yield from child.walk()

    def instances(self) -> List[ResourceInstance]:
        """
        Every resource declared in this scope or below it, in declaration order.
        """
        return [instance for scope in self.walk() for instance in scope.resources.values()]

    async def _close(self) -> None:
        pass

    def __enter__(self) -> "Scope":
        self._tokens.append(_set_current_scope(self))
        return self

    def __exit__(self, *_: Any) -> None:
        _reset_current_scope(self._tokens.pop())

    async def __aenter__(self) -> "Scope":
        return self.__enter__()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.__exit__(exc_type, exc, tb)
        if exc_type is None:
            await finalize(self)
        else:
            log.warn(f"{self!r} failed; skipping finalize")
            if self.parent is None:
                await self._close()

    def __repr__(self):
        return f"Scope({'/'.join(self.path)})"


class App(Scope):
    """
    App is the root scope of a program run. Its path is `(name, stage)`, so stages of the same app never
    share resources.

    Every setting not passed explicitly is read from configuration (`crucible:<setting>`), then from the
    project settings file, then defaults.
    """

    stage: str
    password: Optional[Secret]
    parallel: int
    quiet: bool
    reconciler: Reconciler
    runtimes: SharedRuntimes

    def __init__(
        self,
        name: str,
        stage: Optional[str] = None,
        mode: Union[RunMode, str, None] = None,
        store: Optional[StateStore] = None,
        password: Union[str, Secret, None] = None,
        parallel: Optional[int] = None,
        quiet: Optional[bool] = None,
        work_dir: Optional[str] = None,
        registry: Optional[DefinitionRegistry] = None,
    ) -> None:
        """
        :param str name: The application name.
        :param Optional[str] stage: The stage to deploy, e.g. `dev` or `prod`. Defaults to `$USER`, else `dev`.
        :param Optional[RunMode] mode: What finalizing does; `up` by default.
        :param Optional[StateStore] store: Where state is kept. Defaults to files under `<work_dir>/.crucible`.
        :param Optional[str] password: The passphrase that encrypts persisted secrets.
        :param Optional[int] parallel: The maximum number of handlers running at once.
        :param Optional[bool] quiet: Suppresses informational messages.
        :param Optional[str] work_dir: Where the project settings file is looked up. Defaults to the current
               directory.
        :param Optional[DefinitionRegistry] registry: Resolves recorded kinds during teardown.
        """
        work_dir = work_dir or os.getcwd()
        project = load_project_settings(work_dir)
        if project is not None and project.config:
            for key, value in project.config.items():
                if get_config(key) is None:
                    set_config(key, value)

        config = Config("crucible")
        stage = (
            stage
            or config.get("stage")
            or (project.stage if project is not None else None)
            or os.getenv("USER")
            or "dev"
        )
        validate_segment(stage, "stage")
        super().__init__(name)
        self._path = (name, stage)
        self.stage = stage

        self._mode = RunMode(mode or config.get("mode") or RunMode.UP)
        self.parallel = (
            parallel
            or config.get_int("parallel")
            or (project.parallel if project is not None else None)
            or DEFAULT_PARALLEL
        )
        password = password or config.get_secret("password")
        self.password = Secret.wrap(password) if password is not None else None
        self.quiet = quiet if quiet is not None else bool(config.get_bool("quiet"))
        if store is None:
            state_dir = config.get("stateDir") or (project.state_dir if project is not None else None) or ".crucible"
            store = FileSystemStateStore(os.path.join(work_dir, state_dir), self.password)
        self._store = store
        self.reconciler = Reconciler(store, registry=registry, parallel=self.parallel)
        self.runtimes = SharedRuntimes()

        configure(
            Settings(
                project=name,
                stage=stage,
                parallel=self.parallel,
                password=self.password,
                quiet=self.quiet,
                engine=get_engine(),
            )
        )
        log.debug(f"app '{name}' stage '{stage}' mode '{self._mode.value}' parallel {self.parallel}")

    def shared(self, key: str, factory: Callable[[], R]) -> R:
        """
        Returns the shared runtime registered under `key`, creating it with `factory` on first use. Shared
        runtimes are stopped when the app is finalized.
        """
        return self.runtimes.get(key, factory)

    async def _close(self) -> None:
        await self.runtimes.close()

    def __repr__(self):
        return f"App({'/'.join(self.path)})"


def create_scope(name: str) -> Scope:
    """
    Creates a child of the current scope.
    """
    parent = get_current_scope()
    if parent is None:
        raise RunError(f"cannot create scope '{name}' outside of an active scope")
    return Scope(name, parent)


async def run(scope: Scope, fn: Callable[[Scope], Union[T, Awaitable[T]]]) -> T:
    """
    Calls `fn(scope)` with `scope` as the current scope, then finalizes the scope. `fn` may be a coroutine
    function. If `fn` raises, the scope is not finalized.
    """
    with scope:
        value = await _maybe_await(fn(scope))
    await finalize(scope)
    return value


async def finalize(scope: Scope) -> Optional[ReconcileResult]:
    """
    Converges the resources of `scope` and every scope below it according to the app's run mode. Finalizing
    a scope twice is a no-op.

    :raises ApplyError: Some resource failed to apply. Everything else stays committed.
    :raises DestroyError: Some resource failed to delete.
    """
    if scope.phase != ScopePhase.ACTIVE:
        return scope.result
    subtree = list(scope.walk())
    for s in subtree:
        if s.phase == ScopePhase.ACTIVE:
            s.phase = ScopePhase.FINALIZING

    app = scope.app
    try:
        if app.mode == RunMode.READ:
            await app.reconciler.read(_unfinalized_instances(scope))
            return None
        if app.mode == RunMode.DESTROY:
            result = await app.reconciler.destroy_scope(scope.path)
            scope.result = result
            result.raise_for_failures("destroy")
            return result

        declared = [i.identity for i in scope.instances()]
        result = await app.reconciler.apply(_unfinalized_instances(scope), scope.path, declared=declared)
        scope.result = result
        result.raise_for_failures("apply")
        return result
    finally:
        for s in subtree:
            s.phase = ScopePhase.FINALIZED
        if scope.parent is None:
            await scope._close()


def _unfinalized_instances(scope: Scope) -> List[ResourceInstance]:
    # Child scopes finalized on their own have already converged.
    return [
        instance
        for s in scope.walk()
        if s.phase != ScopePhase.FINALIZED
        for instance in s.resources.values()
    ]
