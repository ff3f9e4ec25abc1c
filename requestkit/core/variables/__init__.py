"""RequestKit variable resolution engine.

Expands ``${name}`` references and ``${name(args)}`` function calls against
scoped variables, with cycle detection, caching of pure lookups and a full
resolution trace.
"""

from .cache import CacheEntry, ResolutionCache
from .dependencies import CycleDetector, DependencyGraph, DependencyGraphBuilder
from .errors import (
    CircularDependencyError,
    ConfigurationError,
    DepthExceededError,
    FunctionInvocationError,
    TemplateSyntaxError,
    UndefinedVariableError,
    VariableResolutionError,
)
from .functions import (
    FunctionLibrary,
    FunctionParameter,
    VariableFunction,
    create_default_library,
    create_preview_library,
)
from .loader import VariablesFile, build_context_from_file, load_variables_file
from .parser import TemplateParser, get_template_parser
from .resolver import (
    DEFAULT_MAX_DEPTH,
    VariableResolver,
    find_unresolved_markers,
    unresolved_marker,
)
from .scopes import ScopeResolver
from .tracer import ResolutionTracer, TrackingConfig
from .types import (
    RequestContext,
    ResolutionContext,
    ResolutionResult,
    ResolutionStep,
    ResolutionTrace,
    StepType,
    Variable,
    VariableScope,
)

__all__ = [
    "CacheEntry",
    "CircularDependencyError",
    "ConfigurationError",
    "CycleDetector",
    "DEFAULT_MAX_DEPTH",
    "DependencyGraph",
    "DependencyGraphBuilder",
    "DepthExceededError",
    "FunctionInvocationError",
    "FunctionLibrary",
    "FunctionParameter",
    "RequestContext",
    "ResolutionCache",
    "ResolutionContext",
    "ResolutionResult",
    "ResolutionStep",
    "ResolutionTrace",
    "ResolutionTracer",
    "ScopeResolver",
    "StepType",
    "TemplateParser",
    "TemplateSyntaxError",
    "TrackingConfig",
    "UndefinedVariableError",
    "Variable",
    "VariableFunction",
    "VariableResolutionError",
    "VariableResolver",
    "VariableScope",
    "VariablesFile",
    "build_context_from_file",
    "create_default_library",
    "create_preview_library",
    "find_unresolved_markers",
    "get_template_parser",
    "load_variables_file",
    "unresolved_marker",
]
