"""Dependency tree built from a finished resolution trace.

The tree is a read-only view over ``ResolutionTrace`` data: the dependency
adjacency recorded by the resolver plus the steps it took. Building it never
resolves anything.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

import networkx as nx

from requestkit.core.variables.errors import (
    FunctionInvocationError,
    TemplateSyntaxError,
)
from requestkit.core.variables.parser import TemplateParser, get_template_parser
from requestkit.core.variables.types import ResolutionTrace, StepType
from requestkit.logging import get_logger

logger = get_logger(__name__)

_NODE_STEPS = (StepType.VARIABLE, StepType.CACHE_HIT, StepType.FUNCTION)


@dataclass
class VariableDependency:
    """One variable or function call of the tree."""

    name: str
    value: str = ""
    scope: str = "unknown"
    dependencies: List[str] = field(default_factory=list)
    dependents: List[str] = field(default_factory=list)
    resolution_order: int = 0
    resolved: bool = False
    resolution_time_ms: float = 0.0
    error: Optional[str] = None
    is_function: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "value": self.value,
            "scope": self.scope,
            "dependencies": list(self.dependencies),
            "dependents": list(self.dependents),
            "resolution_order": self.resolution_order,
            "resolved": self.resolved,
            "resolution_time_ms": self.resolution_time_ms,
            "error": self.error,
            "is_function": self.is_function,
        }


class DependencyTree:
    """Variables of a trace linked by their references."""

    def __init__(self):
        """Initialize an empty DependencyTree."""
        self.graph = nx.DiGraph()
        self.variables: Dict[str, VariableDependency] = {}
        self.roots: List[str] = []
        self.circular_dependencies: List[List[str]] = []

    def get_variable(self, name: str) -> Optional[VariableDependency]:
        return self.variables.get(name)

    def get_children(self, name: str) -> List[str]:
        """Get the names a node references.

        Args:
        ----
            name: Variable or function name

        Returns:
        -------
            Referenced names in the order they were recorded

        """
        if not self.graph.has_node(name):
            return []
        return list(self.graph.successors(name))

    def leaves(self) -> List[str]:
        """Names that reference nothing."""
        return [node for node, out_degree in self.graph.out_degree if out_degree == 0]

    def has_cycles(self) -> bool:
        return not nx.is_directed_acyclic_graph(self.graph)

    def resolution_sequence(self) -> List[str]:
        """Names ordered so every name comes after what it references.

        Falls back to the order the resolver visited names when the graph
        has cycles.
        """
        if self.has_cycles():
            return sorted(
                self.variables,
                key=lambda name: (
                    self.variables[name].resolution_order or len(self.variables) + 1
                ),
            )
        return list(reversed(list(nx.topological_sort(self.graph))))

    def walk(self) -> Iterator[Tuple[int, str, str]]:
        """Depth-first walk from the roots.

        Yields ``(depth, name, marker)`` where marker is ``""`` for a first
        visit, ``"circular"`` when the name is already on the current path
        and ``"repeated"`` when it was expanded earlier.
        """
        expanded = set()
        for root in self.roots:
            stack: List[Tuple[int, str, Tuple[str, ...]]] = [(0, root, ())]
            while stack:
                depth, name, path = stack.pop()
                if name in path:
                    yield depth, name, "circular"
                    continue
                if name in expanded:
                    yield depth, name, "repeated"
                    continue
                expanded.add(name)
                yield depth, name, ""
                children = self.get_children(name)
                for child in reversed(children):
                    stack.append((depth + 1, child, path + (name,)))

    def to_text(self) -> str:
        """Render the tree as indented plain text."""
        lines = []
        for depth, name, marker in self.walk():
            variable = self.variables[name]
            status = "ok" if variable.resolved else "failed"
            label = f"{name} [{variable.scope}] {status}"
            if marker:
                label += f" ({marker})"
            elif variable.error:
                label += f": {variable.error}"
            lines.append("  " * depth + label)
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "roots": list(self.roots),
            "variables": {name: v.to_dict() for name, v in self.variables.items()},
            "circular_dependencies": [list(c) for c in self.circular_dependencies],
        }


class DependencyTreeBuilder:
    """Builds a DependencyTree from a ResolutionTrace."""

    def __init__(self, parser: Optional[TemplateParser] = None):
        self.parser = parser or get_template_parser()

    def build(self, trace: ResolutionTrace) -> DependencyTree:
        """Build the tree.

        Args:
        ----
            trace: Finished resolution trace

        Returns:
        -------
            DependencyTree rooted at the template's direct references

        """
        tree = DependencyTree()
        tree.roots = self._template_references(trace.original_template)
        tree.circular_dependencies = [list(cycle) for cycle in trace.cycles]

        for name in tree.roots:
            self._ensure_node(tree, name)
        for name, dependencies in trace.dependencies.items():
            self._ensure_node(tree, name)
            for dependency in dependencies:
                self._ensure_node(tree, dependency)
                tree.graph.add_edge(name, dependency)

        self._apply_steps(tree, trace)
        self._link_functions(tree)
        self._apply_status(tree, trace)

        for name, variable in tree.variables.items():
            variable.dependencies = list(tree.graph.successors(name))
            variable.dependents = list(tree.graph.predecessors(name))

        logger.debug(
            f"Built dependency tree with {len(tree.variables)} nodes "
            f"for trace {trace.id}"
        )
        return tree

    def _template_references(self, template: str) -> List[str]:
        try:
            names = self.parser.get_referenced_variables(template)
            functions = self.parser.get_referenced_functions(template)
        except TemplateSyntaxError:
            return []
        return list(dict.fromkeys(names + [node.display_name for node in functions]))

    @staticmethod
    def _ensure_node(tree: DependencyTree, name: str) -> VariableDependency:
        if name not in tree.variables:
            tree.graph.add_node(name)
            tree.variables[name] = VariableDependency(
                name=name, is_function=name.endswith("()")
            )
        return tree.variables[name]

    def _apply_steps(self, tree: DependencyTree, trace: ResolutionTrace) -> None:
        order = 0
        for step in trace.steps:
            if step.type not in _NODE_STEPS:
                continue
            variable = self._ensure_node(tree, step.name)
            variable.resolution_time_ms += step.execution_time_ms
            if variable.resolution_order:
                continue

            order += 1
            variable.resolution_order = order
            variable.value = step.output
            if step.scope:
                variable.scope = step.scope
            elif step.type is StepType.FUNCTION:
                variable.scope = "function"
            if step.error:
                variable.error = step.error

    def _link_functions(self, tree: DependencyTree) -> None:
        # Function calls inside variable values are not part of the
        # recorded adjacency; recover them from the raw values
        for name, variable in list(tree.variables.items()):
            if variable.is_function or not variable.value:
                continue
            try:
                functions = self.parser.get_referenced_functions(variable.value)
            except TemplateSyntaxError:
                continue
            for node in functions:
                child = node.display_name
                if child in tree.variables:
                    tree.graph.add_edge(name, child)

    @staticmethod
    def _apply_status(tree: DependencyTree, trace: ResolutionTrace) -> None:
        resolved = set(trace.resolved_variables)
        for name, variable in tree.variables.items():
            variable.resolved = name in resolved

        for error in trace.errors:
            name = getattr(error, "name", None)
            if name is None:
                continue
            if isinstance(error, FunctionInvocationError):
                name = f"{name}()"
            variable = tree.variables.get(name)
            if variable is not None and variable.error is None:
                variable.error = str(error)


def build_dependency_tree(trace: ResolutionTrace) -> DependencyTree:
    return DependencyTreeBuilder().build(trace)
