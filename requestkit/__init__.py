"""RequestKit - scoped variable resolution for request header templates."""

__version__ = "0.1.0"
__package_name__ = "requestkit"

from requestkit.core.variables import (
    ResolutionCache,
    ResolutionContext,
    Variable,
    VariableResolutionError,
    VariableResolver,
    VariableScope,
)

__all__ = [
    "ResolutionCache",
    "ResolutionContext",
    "Variable",
    "VariableResolutionError",
    "VariableResolver",
    "VariableScope",
]
