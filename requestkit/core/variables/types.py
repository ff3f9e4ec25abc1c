"""Type definitions for the variable resolution engine.

This module contains the enums and dataclasses shared by the parser, the
scope resolver, the cache, the tracer and the resolver. Inputs handed to the
engine (variables, contexts) are frozen; so are the records it produces
(segments, steps, traces).
"""

import hashlib
import json
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union
from urllib.parse import parse_qsl, urlsplit


class VariableScope(Enum):
    """Visibility tier of a variable."""

    SYSTEM = "system"
    GLOBAL = "global"
    PROFILE = "profile"
    RULE = "rule"


# Highest precedence first
SCOPE_PRECEDENCE: Tuple[VariableScope, ...] = (
    VariableScope.RULE,
    VariableScope.PROFILE,
    VariableScope.GLOBAL,
    VariableScope.SYSTEM,
)


@dataclass(frozen=True)
class Variable:
    """A named template value owned by a scope.

    ``owner_id`` is the profile or rule identifier and is only meaningful for
    profile and rule scoped variables.
    """

    name: str
    value: str
    scope: VariableScope = VariableScope.GLOBAL
    owner_id: Optional[str] = None
    enabled: bool = True
    is_secret: bool = False
    tags: Tuple[str, ...] = ()
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    usage_count: int = 0

    def __post_init__(self):
        if not isinstance(self.scope, VariableScope):
            object.__setattr__(self, "scope", VariableScope(self.scope))
        if not isinstance(self.tags, tuple):
            object.__setattr__(self, "tags", tuple(self.tags or ()))


@dataclass(frozen=True)
class RequestContext:
    """Details of the request a template is being resolved for."""

    url: str
    method: str
    headers: Dict[str, str] = field(default_factory=dict)
    timestamp: float = 0.0
    domain: str = ""
    path: str = ""
    protocol: str = ""
    query: Dict[str, str] = field(default_factory=dict)
    referrer: Optional[str] = None
    user_agent: Optional[str] = None
    tab_id: Optional[int] = None

    @classmethod
    def from_request(
        cls,
        url: str,
        method: str = "GET",
        headers: Optional[Dict[str, str]] = None,
        tab_id: Optional[int] = None,
        timestamp: Optional[float] = None,
    ) -> "RequestContext":
        """Build a request context from raw request details."""
        headers = dict(headers or {})
        lowered = {key.lower(): value for key, value in headers.items()}
        parts = urlsplit(url)

        return cls(
            url=url,
            method=method.upper(),
            headers=headers,
            timestamp=time.time() if timestamp is None else timestamp,
            domain=parts.hostname or "",
            path=parts.path or "/",
            protocol=parts.scheme,
            query=dict(parse_qsl(parts.query)),
            referrer=lowered.get("referer"),
            user_agent=lowered.get("user-agent"),
            tab_id=tab_id,
        )


@dataclass(frozen=True)
class ResolutionContext:
    """Immutable snapshot of the variables visible to one resolution request.

    Each scope holds one ordered list of variables. The first enabled
    variable with a given name wins within a scope.
    """

    system_variables: Tuple[Variable, ...] = ()
    global_variables: Tuple[Variable, ...] = ()
    profile_variables: Tuple[Variable, ...] = ()
    rule_variables: Tuple[Variable, ...] = ()
    profile_id: Optional[str] = None
    rule_id: Optional[str] = None
    request: Optional[RequestContext] = None

    def __post_init__(self):
        index: Dict[VariableScope, Dict[str, Variable]] = {}
        for scope in SCOPE_PRECEDENCE:
            attr = f"{scope.value}_variables"
            variables = tuple(getattr(self, attr) or ())
            for variable in variables:
                if not isinstance(variable, Variable):
                    raise TypeError(
                        f"{attr} must contain Variable instances, "
                        f"got {type(variable).__name__}"
                    )
            object.__setattr__(self, attr, variables)

            visible: Dict[str, Variable] = {}
            for variable in variables:
                if variable.enabled and variable.name not in visible:
                    visible[variable.name] = variable
            index[scope] = visible

        object.__setattr__(self, "_index", index)
        object.__setattr__(self, "_fingerprint", self._compute_fingerprint(index))

    @staticmethod
    def _compute_fingerprint(index: Dict[VariableScope, Dict[str, Variable]]) -> str:
        payload = [
            [
                scope.value,
                sorted((name, var.value) for name, var in index[scope].items()),
            ]
            for scope in SCOPE_PRECEDENCE
        ]
        encoded = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
        return hashlib.sha256(encoded.encode("utf-8")).hexdigest()

    @property
    def fingerprint(self) -> str:
        """Digest of the visible name->value mapping of every scope."""
        return self._fingerprint

    def visible_variables(self, scope: VariableScope) -> Dict[str, Variable]:
        """Enabled variables of one scope keyed by name."""
        return dict(self._index[scope])

    def get_variable(self, scope: VariableScope, name: str) -> Optional[Variable]:
        return self._index[scope].get(name)

    def effective_variables(self) -> Dict[str, Variable]:
        """Every visible name mapped to the variable that wins precedence."""
        merged: Dict[str, Variable] = {}
        for scope in reversed(SCOPE_PRECEDENCE):
            merged.update(self._index[scope])
        return merged

    def describe(self) -> Dict[str, Any]:
        """Summary recorded on traces."""
        return {
            "profile_id": self.profile_id,
            "rule_id": self.rule_id,
            "request_url": self.request.url if self.request else None,
            "request_method": self.request.method if self.request else None,
            "fingerprint": self.fingerprint,
        }

    @classmethod
    def build(
        cls,
        global_variables: Iterable[Variable] = (),
        profile_variables: Iterable[Variable] = (),
        rule_variables: Iterable[Variable] = (),
        system_variables: Optional[Iterable[Variable]] = None,
        profile_id: Optional[str] = None,
        rule_id: Optional[str] = None,
        request: Optional[RequestContext] = None,
    ) -> "ResolutionContext":
        """Build a context, seeding the system scope with the built-ins.

        Disabled variables are dropped. When ``system_variables`` is None the
        built-in system variables are used, followed by the request derived
        ones when a request is given.
        """
        from .scopes import default_system_variables, request_system_variables

        if system_variables is None:
            system = list(default_system_variables())
            if request is not None:
                system = list(request_system_variables(request)) + system
        else:
            system = list(system_variables)

        def _enabled(variables: Iterable[Variable]) -> Tuple[Variable, ...]:
            return tuple(v for v in variables if v.enabled)

        return cls(
            system_variables=_enabled(system),
            global_variables=_enabled(global_variables),
            profile_variables=_enabled(profile_variables),
            rule_variables=_enabled(rule_variables),
            profile_id=profile_id,
            rule_id=rule_id,
            request=request,
        )


@dataclass(frozen=True)
class LookupResult:
    """Outcome of a scope lookup."""

    found: bool
    value: Optional[str] = None
    scope: Optional[VariableScope] = None
    variable: Optional[Variable] = None


NOT_FOUND = LookupResult(found=False)


class ReferenceKind(Enum):
    VARIABLE = "variable"
    FUNCTION = "function"


ArgumentValue = Union[str, int, float, bool]


@dataclass(frozen=True)
class LiteralSegment:
    """A run of literal template text."""

    text: str
    span: Tuple[int, int]


@dataclass(frozen=True)
class ReferenceNode:
    """A ``${...}`` expression: a variable reference or a function call."""

    kind: ReferenceKind
    name: str
    raw: str
    span: Tuple[int, int]
    args: Tuple[ArgumentValue, ...] = ()

    @property
    def is_function(self) -> bool:
        return self.kind is ReferenceKind.FUNCTION

    @property
    def display_name(self) -> str:
        return f"{self.name}()" if self.is_function else self.name


Segment = Union[LiteralSegment, ReferenceNode]


@dataclass(frozen=True)
class TemplateValidationResult:
    """Result of template validation."""

    is_valid: bool
    errors: List[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.is_valid


class StepType(Enum):
    VARIABLE = "variable"
    FUNCTION = "function"
    NESTED = "nested"
    CACHE_HIT = "cache_hit"
    CACHE_MISS = "cache_miss"


@dataclass(frozen=True)
class ResolutionStep:
    """One recorded event of a resolution pass."""

    step_number: int
    type: StepType
    name: str
    input: str
    output: str
    scope: Optional[str] = None
    execution_time_ms: float = 0.0
    cache_hit: Optional[bool] = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step_number": self.step_number,
            "type": self.type.value,
            "name": self.name,
            "input": self.input,
            "output": self.output,
            "scope": self.scope,
            "execution_time_ms": self.execution_time_ms,
            "cache_hit": self.cache_hit,
            "error": self.error,
            "metadata": dict(self.metadata),
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class ResolutionMetrics:
    variable_count: int = 0
    function_count: int = 0
    max_depth: int = 0
    cache_hits: int = 0
    cache_misses: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "variable_count": self.variable_count,
            "function_count": self.function_count,
            "max_depth": self.max_depth,
            "cache_hits": self.cache_hits,
            "cache_misses": self.cache_misses,
        }


@dataclass(frozen=True)
class ResolutionTrace:
    """Complete record of one ``resolve()`` call."""

    id: str
    original_template: str
    final_value: str
    success: bool
    steps: Tuple[ResolutionStep, ...]
    resolved_variables: List[str]
    unresolved_variables: List[str]
    errors: List[Exception]
    metrics: ResolutionMetrics
    start_time: float
    end_time: float
    context: Dict[str, Any] = field(default_factory=dict)
    dependencies: Dict[str, List[str]] = field(default_factory=dict)
    cycles: List[List[str]] = field(default_factory=list)
    truncated: bool = False

    @property
    def total_time_ms(self) -> float:
        return (self.end_time - self.start_time) * 1000

    def steps_of_type(self, step_type: StepType) -> List[ResolutionStep]:
        return [step for step in self.steps if step.type is step_type]

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready representation for observability consumers."""
        return {
            "id": self.id,
            "original_template": self.original_template,
            "final_value": self.final_value,
            "success": self.success,
            "steps": [step.to_dict() for step in self.steps],
            "resolved_variables": list(self.resolved_variables),
            "unresolved_variables": list(self.unresolved_variables),
            "errors": [_error_to_dict(error) for error in self.errors],
            "metrics": self.metrics.to_dict(),
            "start_time": self.start_time,
            "end_time": self.end_time,
            "total_time_ms": self.total_time_ms,
            "context": dict(self.context),
            "dependencies": {k: list(v) for k, v in self.dependencies.items()},
            "cycles": [list(cycle) for cycle in self.cycles],
            "truncated": self.truncated,
        }


def _error_to_dict(error: Exception) -> Dict[str, Any]:
    if hasattr(error, "to_dict"):
        return error.to_dict()
    return {"type": type(error).__name__, "message": str(error)}


@dataclass(frozen=True)
class ResolutionResult:
    """Value returned by ``VariableResolver.resolve``."""

    value: str
    trace: ResolutionTrace

    @property
    def success(self) -> bool:
        return self.trace.success


def unique(names: Sequence[str]) -> List[str]:
    """Deduplicate preserving first appearance."""
    return list(dict.fromkeys(names))
