"""Tests for dependency trees built from resolution traces."""

import json

import pytest

from requestkit.visualizer.dependency_tree import (
    DependencyTreeBuilder,
    build_dependency_tree,
)


@pytest.fixture
def auth_context(make_context):
    return make_context(
        global_vars={
            "AUTH": "Bearer ${TOKEN}",
            "TOKEN": "${PREFIX}-${SUFFIX}",
            "PREFIX": "abc",
            "SUFFIX": "123",
        }
    )


class TestDependencyTreeBuilder:
    """Test cases for DependencyTreeBuilder."""

    def test_nodes_and_edges(self, resolver, auth_context):
        """Test that the tree mirrors the recorded dependencies."""
        trace = resolver.resolve("${AUTH} ${uuid()}", auth_context).trace
        tree = DependencyTreeBuilder().build(trace)

        assert tree.roots == ["AUTH", "uuid()"]
        assert tree.get_children("AUTH") == ["TOKEN"]
        assert tree.get_children("TOKEN") == ["PREFIX", "SUFFIX"]
        assert tree.get_children("missing") == []
        assert sorted(tree.leaves()) == ["PREFIX", "SUFFIX", "uuid()"]
        assert tree.get_variable("TOKEN").dependents == ["AUTH"]

    def test_node_details(self, resolver, auth_context):
        """Test order, raw value, scope and status of each node."""
        trace = resolver.resolve("${AUTH} ${uuid()}", auth_context).trace
        tree = build_dependency_tree(trace)

        auth = tree.get_variable("AUTH")
        assert auth.value == "Bearer ${TOKEN}"
        assert auth.scope == "global"
        assert auth.resolved
        assert auth.resolution_order == 1

        uuid_call = tree.get_variable("uuid()")
        assert uuid_call.is_function
        assert uuid_call.scope == "function"
        assert uuid_call.resolution_order == 5

    def test_resolution_sequence(self, resolver, auth_context):
        """Test that every name comes after what it references."""
        trace = resolver.resolve("${AUTH}", auth_context).trace
        sequence = build_dependency_tree(trace).resolution_sequence()

        assert sequence.index("PREFIX") < sequence.index("TOKEN")
        assert sequence.index("SUFFIX") < sequence.index("TOKEN")
        assert sequence.index("TOKEN") < sequence.index("AUTH")

    def test_walk_and_text(self, resolver, auth_context):
        """Test the indented text rendering."""
        trace = resolver.resolve("${AUTH} ${uuid()}", auth_context).trace
        tree = build_dependency_tree(trace)

        assert list(tree.walk()) == [
            (0, "AUTH", ""),
            (1, "TOKEN", ""),
            (2, "PREFIX", ""),
            (2, "SUFFIX", ""),
            (0, "uuid()", ""),
        ]
        assert tree.to_text() == (
            "AUTH [global] ok\n"
            "  TOKEN [global] ok\n"
            "    PREFIX [global] ok\n"
            "    SUFFIX [global] ok\n"
            "uuid() [function] ok"
        )

    def test_repeated_nodes(self, resolver, make_context):
        """Test that a shared dependency is expanded only once."""
        context = make_context(global_vars={"x": "${z}", "y": "${z}", "z": "1"})
        tree = build_dependency_tree(resolver.resolve("${x} ${y}", context).trace)

        assert list(tree.walk()) == [
            (0, "x", ""),
            (1, "z", ""),
            (0, "y", ""),
            (1, "z", "repeated"),
        ]

    def test_cycles(self, resolver, make_context):
        """Test that cycles are reported and marked in the walk."""
        context = make_context(global_vars={"a": "${b}", "b": "${a}"})
        tree = build_dependency_tree(resolver.resolve("${a}", context).trace)

        assert tree.has_cycles()
        assert tree.circular_dependencies == [["a", "b"]]
        assert list(tree.walk()) == [(0, "a", ""), (1, "b", ""), (2, "a", "circular")]
        assert not tree.get_variable("a").resolved
        assert "circular" in tree.get_variable("b").error
        assert tree.resolution_sequence()[0] == "a"

    def test_functions_inside_variables(self, resolver, make_context):
        """Test that calls made by a variable's value become its children."""
        context = make_context(global_vars={"REQ": "req-${uuid()}"})
        tree = build_dependency_tree(resolver.resolve("${REQ}", context).trace)

        assert tree.get_children("REQ") == ["uuid()"]
        assert tree.get_variable("uuid()").resolved

    def test_failures(self, resolver, make_context):
        """Test that failing references carry their errors."""
        context = make_context(global_vars={"BAD": "${oops"})
        trace = resolver.resolve("${BAD} ${MISSING} ${random(5, 1)}", context).trace
        tree = build_dependency_tree(trace)

        assert "Unterminated" in tree.get_variable("BAD").error
        assert "not defined" in tree.get_variable("MISSING").error
        assert "greater than max" in tree.get_variable("random()").error
        assert not any(v.resolved for v in tree.variables.values())

    def test_malformed_template(self, resolver, make_context):
        """Test that a trace of a malformed template yields an empty tree."""
        tree = build_dependency_tree(resolver.resolve("${oops", make_context()).trace)
        assert tree.roots == []
        assert tree.to_text() == ""

    def test_to_dict(self, resolver, auth_context):
        """Test the JSON ready form."""
        trace = resolver.resolve("${AUTH}", auth_context).trace
        data = build_dependency_tree(trace).to_dict()

        json.dumps(data)
        assert data["roots"] == ["AUTH"]
        assert data["variables"]["TOKEN"]["dependencies"] == ["PREFIX", "SUFFIX"]
        assert data["circular_dependencies"] == []
