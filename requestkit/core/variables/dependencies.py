"""Dependency graph and cycle detection for variable references.

The graph is keyed by variable name: an edge ``a -> b`` means the value of
``a`` references ``${b}``. It is rebuilt for every top-level resolution and
covers only the names transitively reachable from the template.

Both the builder and the cycle detector use explicit stacks so that very long
reference chains cannot exhaust the interpreter stack.
"""

from collections import deque
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

import networkx as nx

from requestkit.logging import get_logger

from .errors import TemplateSyntaxError
from .parser import TemplateParser, get_template_parser
from .scopes import ScopeResolver
from .types import ReferenceNode, ResolutionContext, unique

logger = get_logger(__name__)


class DependencyGraph:
    """Directed graph of variable references for one resolution pass."""

    def __init__(self, roots: Sequence[str] = ()):
        self.graph = nx.DiGraph()
        self.roots: List[str] = unique(roots)

    def add_variable(
        self,
        name: str,
        defined: bool,
        scope: Optional[str] = None,
        value: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        """Add a node, or update the attributes of an existing one."""
        self.graph.add_node(
            name, defined=defined, scope=scope, value=value, error=error
        )

    def add_dependency(self, name: str, referenced: str) -> None:
        self.graph.add_edge(name, referenced)

    def dependencies(self, name: str) -> Set[str]:
        """Names referenced by ``name``'s value."""
        if name not in self.graph:
            return set()
        return set(self.graph.successors(name))

    def dependents(self, name: str) -> Set[str]:
        """Names whose values reference ``name``."""
        if name not in self.graph:
            return set()
        return set(self.graph.predecessors(name))

    def nodes(self) -> List[str]:
        return list(self.graph.nodes())

    def edges(self) -> List[Tuple[str, str]]:
        return list(self.graph.edges())

    def is_defined(self, name: str) -> bool:
        return bool(self.graph.nodes[name].get("defined")) if name in self else False

    def node_attributes(self, name: str) -> Dict[str, Any]:
        return dict(self.graph.nodes[name]) if name in self else {}

    def adjacency(self) -> Dict[str, List[str]]:
        """Successor lists in insertion order."""
        return {name: list(self.graph.successors(name)) for name in self.graph.nodes()}

    def __contains__(self, name: str) -> bool:
        return name in self.graph

    def __len__(self) -> int:
        return self.graph.number_of_nodes()


class DependencyGraphBuilder:
    """Builds the dependency graph over the transitive closure of references."""

    def __init__(
        self,
        parser: Optional[TemplateParser] = None,
        scope_resolver: Optional[ScopeResolver] = None,
    ):
        self.parser = parser or get_template_parser()
        self.scope_resolver = scope_resolver or ScopeResolver()

    def build(
        self, roots: Iterable[str], context: ResolutionContext
    ) -> DependencyGraph:
        """Walk every name reachable from ``roots`` and record its references.

        Undefined names become nodes with ``defined=False``; variables whose
        value fails to parse keep the syntax error as a node attribute and
        contribute no edges.
        """
        roots = unique(list(roots))
        graph = DependencyGraph(roots)
        stack = list(reversed(roots))
        seen: Set[str] = set()

        while stack:
            name = stack.pop()
            if name in seen:
                continue
            seen.add(name)

            lookup = self.scope_resolver.lookup(name, context)
            if not lookup.found:
                graph.add_variable(name, defined=False)
                continue

            scope = lookup.scope.value
            try:
                segments = self.parser.parse(lookup.value)
            except TemplateSyntaxError as e:
                graph.add_variable(
                    name, defined=True, scope=scope, value=lookup.value, error=str(e)
                )
                continue

            graph.add_variable(name, defined=True, scope=scope, value=lookup.value)
            references = unique(
                [
                    segment.name
                    for segment in segments
                    if isinstance(segment, ReferenceNode) and not segment.is_function
                ]
            )
            for referenced in references:
                graph.add_dependency(name, referenced)
                if referenced not in seen:
                    stack.append(referenced)

        logger.debug(
            f"Dependency graph built with {len(graph)} variables and "
            f"{graph.graph.number_of_edges()} edges"
        )
        return graph

    def build_for_template(
        self, template: str, context: ResolutionContext
    ) -> DependencyGraph:
        return self.build(self.parser.get_referenced_variables(template), context)


class CycleDetector:
    """Finds reference cycles with an iterative depth-first search."""

    def find_cycles(self, graph: DependencyGraph) -> List[List[str]]:
        """Report every cycle as an ordered list of names.

        Each cycle is the slice of the DFS path starting at the revisited
        node. Names that sit in a cyclic component but on no cycle found by
        the search get the shortest cycle through them, so every name taking
        part in a cycle is covered. Rotations of the same cycle are reported
        once.
        """
        adjacency = graph.adjacency()
        cycles: List[List[str]] = []
        seen_keys: Set[Tuple[str, ...]] = set()
        visited: Set[str] = set()
        in_progress: Set[str] = set()

        for start in unique(graph.roots + graph.nodes()):
            if start in visited or start not in adjacency:
                continue

            path = [start]
            in_progress.add(start)
            stack = [(start, iter(adjacency[start]))]

            while stack:
                node, children = stack[-1]
                child = next(children, None)

                if child is None:
                    stack.pop()
                    path.pop()
                    in_progress.discard(node)
                    visited.add(node)
                elif child in in_progress:
                    self._add_cycle(cycles, seen_keys, path[path.index(child) :])
                elif child not in visited:
                    in_progress.add(child)
                    path.append(child)
                    stack.append((child, iter(adjacency.get(child, ()))))

        covered = {name for cycle in cycles for name in cycle}
        for component in nx.strongly_connected_components(graph.graph):
            if len(component) == 1:
                (only,) = component
                if not graph.graph.has_edge(only, only):
                    continue
            for name in graph.nodes():
                if name in component and name not in covered:
                    cycle = self._shortest_cycle(adjacency, name, component)
                    if cycle:
                        self._add_cycle(cycles, seen_keys, cycle)
                        covered.update(cycle)

        if cycles:
            logger.debug(f"Detected {len(cycles)} reference cycle(s): {cycles}")
        return cycles

    @staticmethod
    def _add_cycle(
        cycles: List[List[str]], seen_keys: Set[Tuple[str, ...]], cycle: List[str]
    ) -> None:
        pivot = cycle.index(min(cycle))
        key = tuple(cycle[pivot:] + cycle[:pivot])
        if key not in seen_keys:
            seen_keys.add(key)
            cycles.append(list(cycle))

    @staticmethod
    def _shortest_cycle(
        adjacency: Dict[str, List[str]], source: str, members: Set[str]
    ) -> List[str]:
        """Breadth-first search for the shortest cycle through ``source``."""
        parents: Dict[str, str] = {}
        queue = deque()

        for child in adjacency.get(source, ()):
            if child == source:
                return [source]
            if child in members and child not in parents:
                parents[child] = source
                queue.append(child)

        while queue:
            node = queue.popleft()
            for child in adjacency.get(node, ()):
                if child == source:
                    path = [node]
                    while path[-1] != source:
                        path.append(parents[path[-1]])
                    path.reverse()
                    return path
                if child in members and child not in parents:
                    parents[child] = node
                    queue.append(child)
        return []


def cycle_members(cycles: Iterable[Sequence[str]]) -> Dict[str, List[str]]:
    """Map each name to the first cycle it appears in."""
    members: Dict[str, List[str]] = {}
    for cycle in cycles:
        for name in cycle:
            members.setdefault(name, list(cycle))
    return members
