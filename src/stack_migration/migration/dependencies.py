"""Resource dependency graph and ordering.

The graph is rebuilt from a resource collection every time ordering matters,
so it always reflects the collection as it is now. Edges point from a
resource to the resources it depends on; "dependencies first" order is
therefore the reverse of networkx's topological order.

Implicit references are discovered inside resource properties:

- ``{"Ref": "Id"}``
- ``{"Fn::GetAtt": ["Id", "Attr"]}`` and ``{"Fn::GetAtt": "Id.Attr"}``
- ``{"Fn::Sub": "...${Id}..."}`` / ``${Id.Attr}``, string or list form

Only ids present in the collection become edges; references to anything
else (parameters, pseudo parameters, other stacks) are dropped.
"""

import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any

import networkx as nx

from stack_migration.exceptions import CircularDependencyError, DependencyError
from stack_migration.resources import Resource, ResourceCollection
from stack_migration.utils.logging import get_logger

logger = get_logger(__name__)

# ${Name} or ${Name.Attr}; ${!Literal} is an escape and never a reference
_SUB_VARIABLE = re.compile(r"\$\{(?!!)([^}.\s]+)(?:\.[^}]*)?\}")


def find_references(value: Any, known_ids: set[str] | frozenset[str]) -> set[str]:
    """Collect ids of ``known_ids`` referenced anywhere inside ``value``.

    Walks mappings and sequences with an explicit stack, so nesting depth is
    bounded by input size only. Containers already seen are skipped, which
    also stops self-referential structures.

    Args:
        value: Property payload (any JSON-like structure)
        known_ids: Ids that may be referenced

    Returns:
        Referenced ids present in ``known_ids``
    """
    found: set[str] = set()
    seen: set[int] = set()
    stack: list[Any] = [value]

    while stack:
        item = stack.pop()

        if isinstance(item, dict):
            if id(item) in seen:
                continue
            seen.add(id(item))

            ref = item.get("Ref")
            if isinstance(ref, str):
                found.add(ref)

            get_att = item.get("Fn::GetAtt")
            if isinstance(get_att, list) and get_att and isinstance(get_att[0], str):
                found.add(get_att[0])
            elif isinstance(get_att, str):
                found.add(get_att.split(".", 1)[0])

            sub = item.get("Fn::Sub")
            if isinstance(sub, str):
                found.update(_SUB_VARIABLE.findall(sub))
            elif isinstance(sub, list) and sub and isinstance(sub[0], str):
                found.update(_SUB_VARIABLE.findall(sub[0]))

            stack.extend(item.values())

        elif isinstance(item, (list, tuple)):
            if id(item) in seen:
                continue
            seen.add(id(item))
            stack.extend(item)

    return found & set(known_ids)


class DependencyGraph:
    """Directed graph of resource ids.

    Forward edges (``edges``) map a resource to the ids it depends on; reverse
    edges (``reverse_edges``) map it to its dependents. Both are read from one
    networkx DiGraph, so they are exact inverses by construction.

    A resource that references itself never gets a self-edge. It is recorded
    in ``self_references`` and reported as a cycle.
    """

    def __init__(self) -> None:
        self._graph: nx.DiGraph = nx.DiGraph()
        self._position: dict[str, int] = {}
        self.nodes: dict[str, Resource] = {}
        self.self_references: set[str] = set()

    @classmethod
    def build(cls, resources: ResourceCollection | Iterable[Resource]) -> "DependencyGraph":
        """Build the graph from explicit dependencies and implicit references.

        Args:
            resources: Resource collection (or any iterable of resources)

        Returns:
            DependencyGraph: Graph restricted to ids of ``resources``
        """
        items = resources.values() if isinstance(resources, ResourceCollection) else resources
        graph = cls()
        for resource in items:
            graph._add_node(resource)

        known = frozenset(graph.nodes)
        for resource in graph.nodes.values():
            explicit = {dep for dep in resource.dependencies if dep in known}
            implicit = find_references(resource.properties, known)
            for dep in explicit | implicit:
                if dep == resource.id:
                    graph.self_references.add(resource.id)
                    continue
                graph._graph.add_edge(resource.id, dep, explicit=dep in explicit)

        logger.debug(
            "dependency_graph_built",
            resources=len(graph.nodes),
            edges=graph._graph.number_of_edges(),
            self_references=sorted(graph.self_references),
        )
        return graph

    def _add_node(self, resource: Resource) -> None:
        if resource.id in self.nodes:
            raise DependencyError(f"Duplicate resource id in collection: {resource.id}")
        self._position[resource.id] = len(self._position)
        self.nodes[resource.id] = resource
        self._graph.add_node(resource.id)

    def __contains__(self, resource_id: object) -> bool:
        return resource_id in self.nodes

    def __len__(self) -> int:
        return len(self.nodes)

    def ids(self) -> list[str]:
        """Resource ids in collection order."""
        return list(self.nodes)

    def position(self, resource_id: str) -> int:
        return self._position[resource_id]

    def dependencies_of(self, resource_id: str) -> set[str]:
        if resource_id not in self.nodes:
            return set()
        return set(self._graph.successors(resource_id))

    def dependents_of(self, resource_id: str) -> set[str]:
        if resource_id not in self.nodes:
            return set()
        return set(self._graph.predecessors(resource_id))

    def is_explicit(self, resource_id: str, dependency_id: str) -> bool:
        """True when ``resource_id`` declares ``dependency_id`` explicitly."""
        return bool(self._graph.edges[resource_id, dependency_id]["explicit"])

    @property
    def edges(self) -> dict[str, set[str]]:
        return {rid: self.dependencies_of(rid) for rid in self.nodes}

    @property
    def reverse_edges(self) -> dict[str, set[str]]:
        return {rid: self.dependents_of(rid) for rid in self.nodes}

    def get_nx_graph(self) -> nx.DiGraph:
        """Frozen copy of the underlying graph (edge u -> v: u depends on v)."""
        return nx.freeze(self._graph.copy())

    def _ordered(self, ids: Iterable[str]) -> list[str]:
        return sorted(ids, key=self._position.__getitem__)


@dataclass
class OrderResult:
    """Ordering outcome without exceptions: either ``order`` or ``error``."""

    order: list[str] = field(default_factory=list)
    error: CircularDependencyError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class RemovalPlan:
    """Safe removal order plus the dependents left behind."""

    order: list[str]
    external_dependents: dict[str, list[str]] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)


def _cycle_from_edges(edges: list[tuple[str, str]]) -> list[str]:
    members = [u for u, _ in edges]
    return members + [members[0]]


def topological_order(graph: DependencyGraph, restrict_to: Iterable[str] | None = None) -> list[str]:
    """Order ids so every id comes after all ids it depends on.

    Ties are broken by collection order, so the result is deterministic.

    Args:
        graph: Dependency graph
        restrict_to: Optional subset of ids to order; unknown ids are ignored

    Returns:
        Ids, dependencies first

    Raises:
        CircularDependencyError: If the (restricted) graph contains a cycle
    """
    scope = graph.ids() if restrict_to is None else graph._ordered(set(restrict_to) & set(graph.nodes))

    for resource_id in scope:
        if resource_id in graph.self_references:
            raise CircularDependencyError([resource_id, resource_id])

    subgraph = graph._graph.subgraph(scope)
    # Reversed view: edge dependency -> dependent, so sort yields dependencies first
    try:
        return list(
            nx.lexicographical_topological_sort(subgraph.reverse(copy=False), key=graph.position)
        )
    except nx.NetworkXUnfeasible as e:
        cycle = _cycle_from_edges([(u, v) for u, v in nx.find_cycle(subgraph)])
        logger.warning("dependency_cycle_detected", cycle=cycle)
        raise CircularDependencyError(cycle) from e


def resolve_order(graph: DependencyGraph, restrict_to: Iterable[str] | None = None) -> OrderResult:
    """Like ``topological_order`` but returns the cycle as data instead of raising."""
    try:
        return OrderResult(order=topological_order(graph, restrict_to))
    except CircularDependencyError as e:
        return OrderResult(error=e)


def find_dependents(graph: DependencyGraph, resource_id: str) -> set[str]:
    """Ids that directly depend on ``resource_id``."""
    return graph.dependents_of(resource_id)


def find_all_dependencies(graph: DependencyGraph, resource_id: str) -> set[str]:
    """Transitive closure of what ``resource_id`` depends on (itself excluded)."""
    if resource_id not in graph:
        return set()
    closure = set(nx.descendants(graph._graph, resource_id))
    closure.discard(resource_id)
    return closure


def _iter_dependencies(graph: DependencyGraph, resource_id: str) -> Iterator[str]:
    return iter(graph._ordered(graph.dependencies_of(resource_id)))


def detect_cycles(graph: DependencyGraph) -> list[list[str]]:
    """Enumerate cycles found by depth-first traversal.

    A back-edge to a node still on the visiting stack yields the path from
    that node back to itself, e.g. ``["A", "B", "A"]``. Self references are
    reported as ``["A", "A"]``. Every node is visited once, so a cycle is
    reported for each back-edge found, not every elementary cycle.

    Args:
        graph: Dependency graph

    Returns:
        Cycles, each with its first id repeated at the end
    """
    cycles: list[list[str]] = [[rid, rid] for rid in graph._ordered(graph.self_references)]
    visited: set[str] = set()

    for start in graph.ids():
        if start in visited:
            continue

        visited.add(start)
        path = [start]
        on_path = {start}
        stack = [_iter_dependencies(graph, start)]

        while stack:
            for dep in stack[-1]:
                if dep in on_path:
                    cycles.append(path[path.index(dep) :] + [dep])
                elif dep not in visited:
                    visited.add(dep)
                    path.append(dep)
                    on_path.add(dep)
                    stack.append(_iter_dependencies(graph, dep))
                    break
            else:
                stack.pop()
                on_path.discard(path.pop())

    return cycles


def advisory_cycle_warnings(graph: DependencyGraph) -> list[str]:
    """Cycle diagnostics as warning messages; never raises."""
    return [f"Circular dependency: {' -> '.join(cycle)}" for cycle in detect_cycles(graph)]


def plan_removal(graph: DependencyGraph, resource_ids: Iterable[str]) -> RemovalPlan:
    """Compute a safe order for removing ``resource_ids``.

    The order is the reverse topological order over the removal set and its
    direct neighbours, restricted to the removal set: dependents are removed
    before what they depend on. Dependents that are not themselves being
    removed are reported, not blocked on.

    Args:
        graph: Dependency graph of the full collection
        resource_ids: Ids to remove

    Returns:
        RemovalPlan: Order, external dependents and warnings

    Raises:
        DependencyError: If an id is not in the graph
        CircularDependencyError: If the affected subgraph contains a cycle
    """
    removal = list(dict.fromkeys(resource_ids))
    unknown = [rid for rid in removal if rid not in graph]
    if unknown:
        raise DependencyError(f"Resources not found in template: {', '.join(unknown)}")

    removal_set = set(removal)
    closure = set(removal_set)
    for rid in removal:
        closure |= graph.dependencies_of(rid)
        closure |= graph.dependents_of(rid)

    order = [rid for rid in reversed(topological_order(graph, closure)) if rid in removal_set]

    plan = RemovalPlan(order=order)
    for rid in order:
        external = graph._ordered(graph.dependents_of(rid) - removal_set)
        if not external:
            continue
        plan.external_dependents[rid] = external

        explicit = [d for d in external if graph.is_explicit(d, rid)]
        implicit = [d for d in external if not graph.is_explicit(d, rid)]
        if explicit:
            plan.warnings.append(
                f"{len(explicit)} resource(s) explicitly depend on {rid}: {', '.join(explicit)}"
            )
        if implicit:
            plan.warnings.append(
                f"{len(implicit)} resource(s) implicitly reference {rid}: {', '.join(implicit)}; "
                "these references must be updated manually"
            )

    logger.info(
        "removal_planned",
        order=order,
        external_dependents=len(plan.external_dependents),
        warnings=len(plan.warnings),
    )
    return plan
