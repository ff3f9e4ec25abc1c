"""Tests for the dependency graph builder and the cycle detector."""

import pytest

from requestkit.core.variables.dependencies import (
    CycleDetector,
    DependencyGraph,
    DependencyGraphBuilder,
    cycle_members,
)


def _graph(edges, roots=()):
    graph = DependencyGraph(roots)
    for name, referenced in edges:
        graph.add_dependency(name, referenced)
    return graph


def _normalize(cycle):
    pivot = cycle.index(min(cycle))
    return tuple(cycle[pivot:] + cycle[:pivot])


class TestDependencyGraphBuilder:
    """Test cases for DependencyGraphBuilder."""

    def test_transitive_closure(self, make_context):
        """Test that only names reachable from the roots are walked."""
        context = make_context(
            global_vars={
                "AUTH": "Bearer ${TOKEN}",
                "TOKEN": "${PREFIX}-${SUFFIX}",
                "PREFIX": "abc",
                "SUFFIX": "123",
                "UNRELATED": "${PREFIX}",
            }
        )
        graph = DependencyGraphBuilder().build(["AUTH"], context)

        assert set(graph.nodes()) == {"AUTH", "TOKEN", "PREFIX", "SUFFIX"}
        assert graph.dependencies("AUTH") == {"TOKEN"}
        assert graph.dependencies("TOKEN") == {"PREFIX", "SUFFIX"}
        assert graph.dependents("PREFIX") == {"TOKEN"}
        assert graph.adjacency()["TOKEN"] == ["PREFIX", "SUFFIX"]

    def test_undefined_names_are_flagged(self, make_context):
        """Test that undefined names become nodes with defined=False."""
        context = make_context(global_vars={"A": "${MISSING}"})
        graph = DependencyGraphBuilder().build(["A"], context)

        assert graph.is_defined("A")
        assert not graph.is_defined("MISSING")
        assert graph.node_attributes("A")["scope"] == "global"

    def test_syntax_errors_are_flagged(self, make_context):
        """Test that a malformed value is recorded without edges."""
        context = make_context(global_vars={"BAD": "${oops"})
        graph = DependencyGraphBuilder().build(["BAD"], context)

        assert "Unterminated reference" in graph.node_attributes("BAD")["error"]
        assert graph.dependencies("BAD") == set()

    def test_function_calls_are_not_edges(self, make_context):
        """Test that function calls do not become graph nodes."""
        context = make_context(global_vars={"A": "${uuid()}-${B}", "B": "b"})
        graph = DependencyGraphBuilder().build(["A"], context)
        assert graph.dependencies("A") == {"B"}
        assert "uuid" not in graph

    def test_build_for_template(self, make_context):
        """Test building straight from a template."""
        context = make_context(global_vars={"A": "a"})
        graph = DependencyGraphBuilder().build_for_template("x ${A} ${B}", context)
        assert graph.roots == ["A", "B"]
        assert len(graph) == 2

    def test_long_chain_does_not_recurse(self, make_context):
        """Test that a very long chain is walked without native recursion."""
        chain = {f"v{i}": f"${{v{i + 1}}}" for i in range(5000)}
        chain["v5000"] = "end"
        graph = DependencyGraphBuilder().build(["v0"], make_context(global_vars=chain))
        assert len(graph) == 5001


class TestCycleDetector:
    """Test cases for CycleDetector."""

    def test_acyclic_graph(self):
        """Test that a DAG has no cycles."""
        graph = _graph([("a", "b"), ("b", "c"), ("a", "c")], roots=["a"])
        assert CycleDetector().find_cycles(graph) == []

    def test_two_node_cycle(self):
        """Test the a -> b -> a cycle."""
        graph = _graph([("a", "b"), ("b", "a")], roots=["a"])
        assert CycleDetector().find_cycles(graph) == [["a", "b"]]

    def test_self_reference(self):
        """Test that a variable referencing itself is a cycle."""
        graph = _graph([("a", "a")], roots=["a"])
        assert CycleDetector().find_cycles(graph) == [["a"]]

    def test_cycle_reported_from_the_repeated_node(self):
        """Test that the cycle is the path slice starting at the repeated node."""
        graph = _graph([("x", "a"), ("a", "b"), ("b", "c"), ("c", "a")], roots=["x"])
        assert CycleDetector().find_cycles(graph) == [["a", "b", "c"]]

    def test_independent_cycles(self):
        """Test that separate cycles are reported separately."""
        graph = _graph(
            [("a", "b"), ("b", "a"), ("c", "d"), ("d", "c"), ("e", "f")],
            roots=["a", "c", "e"],
        )
        cycles = CycleDetector().find_cycles(graph)
        assert {_normalize(c) for c in cycles} == {("a", "b"), ("c", "d")}

    def test_every_member_of_a_cyclic_component_is_covered(self):
        """Test that names missed by the search still get a cycle."""
        # The search finds a->b->a and finishes b before reaching c, so the
        # edge c->b never closes a path; c only cycles through c->b->a->c
        graph = _graph([("a", "b"), ("b", "a"), ("a", "c"), ("c", "b")], roots=["a"])
        cycles = CycleDetector().find_cycles(graph)

        assert cycles == [["a", "b"], ["c", "b", "a"]]
        assert set(cycle_members(cycles)) == {"a", "b", "c"}

    def test_rotations_are_deduplicated(self):
        """Test that the same cycle is not reported twice from different roots."""
        graph = _graph([("a", "b"), ("b", "a")], roots=["a", "b"])
        assert len(CycleDetector().find_cycles(graph)) == 1

    @pytest.mark.parametrize("length", [2, 50, 5000])
    def test_long_cycle_without_stack_overflow(self, length):
        """Test cycles of any length are detected iteratively."""
        edges = [(f"n{i}", f"n{(i + 1) % length}") for i in range(length)]
        cycles = CycleDetector().find_cycles(_graph(edges, roots=["n0"]))
        assert len(cycles) == 1
        assert len(cycles[0]) == length

    def test_cycle_members_maps_first_cycle(self):
        """Test cycle_members keeps the first cycle of each name."""
        members = cycle_members([["a", "b"], ["b", "c"]])
        assert members == {"a": ["a", "b"], "b": ["a", "b"], "c": ["b", "c"]}
