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
The dependency graph between resources. An edge A -> B means A's props embed B: B is applied first and
destroyed last.
"""
import dataclasses
from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
    Generic,
    Iterable,
    List,
    Optional,
    Set,
    TypeVar,
)

from ..errors import CyclicDependencyError
from ..resource import ResourceInstance
from ..secret import Secret

if TYPE_CHECKING:
    from ..state import StateRecord
    from ..urn import ResourceIdentity

N = TypeVar("N")


def find_dependencies(props: Any) -> List[ResourceInstance]:
    """
    Walks a props tree and returns the resource instances embedded in it, in the order they are found.
    Dicts (keys and values), lists, tuples, sets and dataclasses are traversed; strings, numbers and secrets
    are leaves. An embedded instance is not traversed further, its own props are its own business.
    """
    found: Dict["ResourceIdentity", ResourceInstance] = {}
    _walk(props, found, set())
    return list(found.values())


def _walk(value: Any, found: Dict["ResourceIdentity", ResourceInstance], visiting: Set[int]) -> None:
    if isinstance(value, ResourceInstance):
        found.setdefault(value.identity, value)
        return
    if value is None or isinstance(value, (str, bytes, bool, int, float, Secret)):
        return
    if id(value) in visiting:
        return
    if isinstance(value, dict):
        visiting.add(id(value))
        for k, v in value.items():
            _walk(k, found, visiting)
            _walk(v, found, visiting)
        visiting.discard(id(value))
    elif isinstance(value, (list, tuple, set, frozenset)):
        visiting.add(id(value))
        for v in value:
            _walk(v, found, visiting)
        visiting.discard(id(value))
    elif dataclasses.is_dataclass(value) and not isinstance(value, type):
        visiting.add(id(value))
        for f in dataclasses.fields(value):
            _walk(getattr(value, f.name), found, visiting)
        visiting.discard(id(value))


class DependencyGraph(Generic[N]):
    """
    A directed graph over resource identities. Nodes keep their insertion order, which is used to break
    ties so that orders are deterministic.
    """

    def __init__(self) -> None:
        self._nodes: Dict["ResourceIdentity", N] = {}
        self._deps: Dict["ResourceIdentity", List["ResourceIdentity"]] = {}
        self._dependents: Optional[Dict["ResourceIdentity", List["ResourceIdentity"]]] = None

    @staticmethod
    def from_instances(instances: Iterable[ResourceInstance]) -> "DependencyGraph[ResourceInstance]":
        """
        Builds the graph of the given instances plus every instance reachable through their props.
        """
        graph: DependencyGraph[ResourceInstance] = DependencyGraph()
        queue = list(instances)
        while queue:
            instance = queue.pop(0)
            if instance.identity in graph:
                continue
            deps = find_dependencies(instance.props)
            graph.add(instance.identity, instance, [d.identity for d in deps])
            queue.extend(d for d in deps if d.identity not in graph)
        return graph

    @staticmethod
    def from_records(records: Iterable["StateRecord"]) -> "DependencyGraph[StateRecord]":
        """
        Builds the graph of persisted records. Edges to identities outside `records` are dropped.
        """
        records = list(records)
        identities = {r.identity for r in records}
        graph: DependencyGraph[StateRecord] = DependencyGraph()
        for record in records:
            graph.add(record.identity, record, [d for d in record.depends_on if d in identities])
        return graph

    def add(self, identity: "ResourceIdentity", node: N, depends_on: Iterable["ResourceIdentity"]) -> None:
        if identity in self._nodes:
            raise ValueError(f"duplicate resource '{identity.urn}'")
        self._nodes[identity] = node
        deps: List["ResourceIdentity"] = []
        for dep in depends_on:
            if dep not in deps:
                deps.append(dep)
        self._deps[identity] = deps
        self._dependents = None

    def __contains__(self, identity: object) -> bool:
        return identity in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self):
        return iter(self._nodes)

    def node(self, identity: "ResourceIdentity") -> N:
        return self._nodes[identity]

    def nodes(self) -> List[N]:
        return list(self._nodes.values())

    def dependencies_of(self, identity: "ResourceIdentity") -> List["ResourceIdentity"]:
        """
        The identities `identity` depends on that are part of this graph.
        """
        return [d for d in self._deps[identity] if d in self._nodes]

    def dependents_of(self, identity: "ResourceIdentity") -> List["ResourceIdentity"]:
        """
        The identities in this graph that depend on `identity`.
        """
        if self._dependents is None:
            dependents: Dict["ResourceIdentity", List["ResourceIdentity"]] = {i: [] for i in self._nodes}
            for i in self._nodes:
                for d in self.dependencies_of(i):
                    dependents[d].append(i)
            self._dependents = dependents
        return list(self._dependents[identity])

    def topological_order(self) -> List["ResourceIdentity"]:
        """
        Returns every identity with dependencies before dependents.

        :raises CyclicDependencyError: The graph has a cycle; the error names it.
        """
        visited: Set["ResourceIdentity"] = set()
        path: List["ResourceIdentity"] = []
        on_path: Set["ResourceIdentity"] = set()
        order: List["ResourceIdentity"] = []

        def visit(identity: "ResourceIdentity") -> None:
            if identity in on_path:
                cycle = path[path.index(identity):] + [identity]
                raise CyclicDependencyError([i.urn for i in cycle])
            if identity in visited:
                return
            path.append(identity)
            on_path.add(identity)
            for dep in self.dependencies_of(identity):
                visit(dep)
            path.pop()
            on_path.discard(identity)
            visited.add(identity)
            order.append(identity)

        for identity in self._nodes:
            visit(identity)
        return order

    def reverse_order(self) -> List["ResourceIdentity"]:
        """
        Returns every identity with dependents before dependencies, the order to destroy in.
        """
        return list(reversed(self.topological_order()))

    def waves(self, done: Iterable["ResourceIdentity"] = ()) -> List[List["ResourceIdentity"]]:
        """
        Partitions the graph into waves: each wave holds the identities whose dependencies are all in
        earlier waves. Identities in `done` are left out and count as already satisfied.
        """
        done = set(done)
        order = [i for i in self.topological_order() if i not in done]
        level: Dict["ResourceIdentity", int] = {}
        for identity in order:
            deps = [d for d in self.dependencies_of(identity) if d not in done]
            level[identity] = 1 + max((level[d] for d in deps), default=-1)
        waves: List[List["ResourceIdentity"]] = [[] for _ in range(max(level.values(), default=-1) + 1)]
        for identity in order:
            waves[level[identity]].append(identity)
        return waves
