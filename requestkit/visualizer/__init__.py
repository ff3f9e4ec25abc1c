"""Read-only views over resolution traces."""

from .dependency_tree import (
    DependencyTree,
    DependencyTreeBuilder,
    VariableDependency,
    build_dependency_tree,
)

__all__ = [
    "DependencyTree",
    "DependencyTreeBuilder",
    "VariableDependency",
    "build_dependency_tree",
]
