"""Resolution orchestrator.

``VariableResolver.resolve`` expands a template against a
``ResolutionContext`` and returns the value together with a trace of every
step taken. Resolution is best effort: a failing reference is substituted
with an unresolved marker and recorded in the trace while the rest of the
template still resolves.

Flow of one call:
1. Parse the template; a syntax error ends the call with the template
   returned unchanged.
2. Build the dependency graph of everything the template reaches and mark
   every member of a reference cycle unresolved up front.
3. Expand references in template order, consulting the cache before the
   scope lookup and recursing into values that hold further references.
4. Substitute and freeze the trace.
"""

import dataclasses
import re
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Sequence, Set, Tuple

from requestkit.logging import get_logger

from .cache import ResolutionCache
from .dependencies import CycleDetector, DependencyGraphBuilder, cycle_members
from .errors import (
    CircularDependencyError,
    DepthExceededError,
    FunctionInvocationError,
    TemplateSyntaxError,
    UndefinedVariableError,
)
from .functions import (
    PREVIEW_TIMESTAMP,
    FunctionLibrary,
    create_default_library,
    create_preview_library,
)
from .parser import TemplateParser, get_template_parser
from .scopes import ScopeResolver
from .tracer import ResolutionTracer, TrackingConfig
from .types import (
    LiteralSegment,
    ReferenceNode,
    RequestContext,
    ResolutionContext,
    ResolutionResult,
    Segment,
    StepType,
    TemplateValidationResult,
    Variable,
    VariableScope,
)

logger = get_logger(__name__)

DEFAULT_MAX_DEPTH = 10
_PASS_MEMO_SIZE = 10_000

# "<<" and ">>" never form a ${...} expression, so a marker is not re-expanded
UNRESOLVED_MARKER = "<<unresolved:{name}>>"
UNRESOLVED_MARKER_PATTERN = re.compile(
    r"<<unresolved:([A-Za-z_][A-Za-z0-9_]*(?:\(\))?)>>"
)

PREVIEW_URL = "https://example.com/api/v1/users"


def unresolved_marker(name: str) -> str:
    """Marker substituted for a reference that could not be resolved."""
    return UNRESOLVED_MARKER.format(name=name)


def find_unresolved_markers(value: str) -> List[str]:
    """Names of the unresolved markers in a resolved value, in order."""
    return UNRESOLVED_MARKER_PATTERN.findall(value)


@dataclass(frozen=True)
class _Expansion:
    """Outcome of expanding a reference or a segment list.

    ``pure`` is false once a function ran or anything failed. ``height`` is
    the number of variable nesting levels beneath the expansion.
    """

    value: str
    ok: bool = True
    pure: bool = True
    height: int = 0


class _DepthLimitReached(Exception):
    """Unwinds a reference chain that went past the depth bound."""

    def __init__(self, name: str):
        super().__init__(name)
        self.chain = [name]


class VariableResolver:
    """Expands templates against resolution contexts.

    Args:
        cache: Cache of pure expansions shared across passes; a private one
            is created when omitted
        functions: Function library; defaults to the built-ins
        max_depth: Nesting depth at which a variable reference fails
        tracking: Trace detail settings
        use_cache: When false no cache outlives a single resolve() call
    """

    def __init__(
        self,
        cache: Optional[ResolutionCache] = None,
        functions: Optional[FunctionLibrary] = None,
        max_depth: int = DEFAULT_MAX_DEPTH,
        tracking: Optional[TrackingConfig] = None,
        parser: Optional[TemplateParser] = None,
        scope_resolver: Optional[ScopeResolver] = None,
        use_cache: bool = True,
    ):
        if max_depth < 1:
            raise ValueError(f"max_depth must be at least 1, got {max_depth}")

        if cache is None and use_cache:
            cache = ResolutionCache()
        self.cache = cache if use_cache else None
        self.functions = functions or create_default_library()
        self.max_depth = max_depth
        self.tracking = tracking or TrackingConfig()
        self.parser = parser or get_template_parser()
        self.scope_resolver = scope_resolver or ScopeResolver()
        self.graph_builder = DependencyGraphBuilder(self.parser, self.scope_resolver)
        self.cycle_detector = CycleDetector()

    def resolve(self, template: str, context: ResolutionContext) -> ResolutionResult:
        """Resolve every reference in ``template``.

        Raises:
            TypeError: If template is not a string or context is not a
                ResolutionContext
        """
        if not isinstance(template, str):
            raise TypeError(f"Template must be a string, got {type(template).__name__}")
        if not isinstance(context, ResolutionContext):
            raise TypeError(
                f"Context must be a ResolutionContext, got {type(context).__name__}"
            )

        tracer = ResolutionTracer(template, context, self.tracking)

        try:
            segments = self.parser.parse(template)
        except TemplateSyntaxError as e:
            logger.warning(f"Template not resolved: {e}")
            trace = tracer.finish(template, [], [], errors=[e])
            return ResolutionResult(value=template, trace=trace)

        resolution = _ResolutionPass(self, context, tracer)
        return resolution.run(segments)

    def validate_template(self, template: str) -> TemplateValidationResult:
        return self.parser.validate_template(template)

    def get_referenced_variables(self, template: str) -> List[str]:
        return self.parser.get_referenced_variables(template)

    def get_referenced_functions(self, template: str) -> List[ReferenceNode]:
        return self.parser.get_referenced_functions(template)

    def invalidate(
        self,
        name: str,
        scope: Optional[VariableScope] = None,
        owner_id: Optional[str] = None,
    ) -> int:
        """Drop cached expansions of ``name`` after the variable was written.

        Returns:
            Number of cache entries removed
        """
        if self.cache is None:
            return 0
        return self.cache.invalidate(name, scope, owner_id)

    def preview(
        self, template: str, sample_variables: Optional[Mapping[str, str]] = None
    ) -> ResolutionResult:
        """Resolve against sample values without touching the cache.

        Sample variables act as globals. ``domain``, ``path`` and ``method``
        come from a sample request and time, UUID and random functions return
        fixed values.
        """
        functions = create_preview_library()
        for function in self.functions.list_functions():
            if not function.is_built_in:
                functions.register(function, replace=True)

        request = RequestContext.from_request(
            PREVIEW_URL, "GET", timestamp=PREVIEW_TIMESTAMP
        )
        context = ResolutionContext.build(
            global_variables=[
                Variable(name=name, value=str(value))
                for name, value in (sample_variables or {}).items()
            ],
            request=request,
        )
        previewer = VariableResolver(
            use_cache=False,
            functions=functions,
            max_depth=self.max_depth,
            tracking=self.tracking,
            parser=self.parser,
            scope_resolver=self.scope_resolver,
        )
        return previewer.resolve(template, context)

    def pre_resolve_variable(
        self, variable: Variable, context: Optional[ResolutionContext] = None
    ) -> Variable:
        """Expand the function calls in a variable's value ahead of use.

        Returns the original variable when its value calls no function or
        does not resolve cleanly.
        """
        if not self.parser.get_referenced_functions(variable.value):
            return variable

        result = self.resolve(variable.value, context or ResolutionContext())
        if not result.success:
            logger.warning(
                f"Failed to pre-resolve variable {variable.name}: "
                f"{'; '.join(str(e) for e in result.trace.errors)}"
            )
            return variable

        return dataclasses.replace(
            variable,
            value=result.value,
            created_at=variable.created_at or datetime.now(),
            updated_at=datetime.now(),
        )


class _ResolutionPass:
    """State of a single resolve() call."""

    def __init__(
        self,
        resolver: VariableResolver,
        context: ResolutionContext,
        tracer: ResolutionTracer,
    ):
        self.resolver = resolver
        self.context = context
        self.tracer = tracer
        # Without a shared cache, repeats within this pass are still memoized
        self.cache = resolver.cache
        if self.cache is None:
            self.cache = ResolutionCache(max_size=_PASS_MEMO_SIZE)
        self.max_depth = resolver.max_depth
        self._status: Dict[str, bool] = {}
        self._circular: Dict[str, List[str]] = {}
        self._reported: Set[Tuple[type, str]] = set()

    def run(self, segments: Sequence[Segment]) -> ResolutionResult:
        roots = [
            segment.name
            for segment in segments
            if isinstance(segment, ReferenceNode) and not segment.is_function
        ]
        graph = self.resolver.graph_builder.build(roots, self.context)
        cycles = self.resolver.cycle_detector.find_cycles(graph)

        self._circular = cycle_members(cycles)
        for name, cycle in self._circular.items():
            self._fail(name, CircularDependencyError(name, cycle))

        expansion = self._expand(segments, 0)

        trace = self.tracer.finish(
            expansion.value,
            resolved=[name for name, ok in self._status.items() if ok],
            unresolved=[name for name, ok in self._status.items() if not ok],
            dependencies={name: deps for name, deps in graph.adjacency().items()},
            cycles=cycles,
        )
        return ResolutionResult(value=expansion.value, trace=trace)

    def _expand(self, segments: Sequence[Segment], depth: int) -> _Expansion:
        parts = []
        ok = pure = True
        height = 0

        for segment in segments:
            if isinstance(segment, LiteralSegment):
                parts.append(segment.text)
                continue

            if segment.is_function:
                expansion = self._call_function(segment, depth)
            elif depth == 0:
                expansion = self._resolve_top_level(segment.name)
            else:
                expansion = self._resolve_variable(segment.name, depth)
                height = max(height, expansion.height + 1)

            parts.append(expansion.value)
            ok = ok and expansion.ok
            pure = pure and expansion.pure

        return _Expansion("".join(parts), ok=ok, pure=pure, height=height)

    def _resolve_top_level(self, name: str) -> _Expansion:
        try:
            return self._resolve_variable(name, 0)
        except _DepthLimitReached as signal:
            self._fail(name, DepthExceededError(signal.chain, self.max_depth))
            return _Expansion(unresolved_marker(name), ok=False, pure=False)

    def _resolve_variable(self, name: str, depth: int) -> _Expansion:
        marker = unresolved_marker(name)

        if name in self._circular:
            self.tracer.record_step(
                StepType.VARIABLE,
                name,
                input=name,
                output=marker,
                error="circular reference",
                depth=depth,
                metadata={"cycle": list(self._circular[name])},
            )
            return _Expansion(marker, ok=False, pure=False)

        if depth >= self.max_depth:
            self.tracer.record_step(
                StepType.VARIABLE,
                name,
                input=name,
                error=f"maximum nesting depth of {self.max_depth} reached",
                depth=depth,
            )
            raise _DepthLimitReached(name)

        cached = self._lookup_cache(name, depth)
        if cached is not None:
            return cached

        start = time.perf_counter()
        lookup = self.resolver.scope_resolver.lookup(name, self.context)
        if not lookup.found:
            error = UndefinedVariableError(name)
            self.tracer.record_step(
                StepType.VARIABLE,
                name,
                input=name,
                output=marker,
                execution_time_ms=_elapsed_ms(start),
                error=str(error),
                depth=depth,
            )
            self._fail(name, error)
            return _Expansion(marker, ok=False, pure=False)

        variable = lookup.variable
        scope = lookup.scope.value
        metadata = {"secret": variable.is_secret}
        if variable.owner_id:
            metadata["owner_id"] = variable.owner_id
        shadowed = self.resolver.scope_resolver.shadowed(name, self.context)
        if shadowed:
            metadata["shadowed"] = [v.scope.value for v in shadowed]

        try:
            segments = self.resolver.parser.parse(lookup.value)
        except TemplateSyntaxError as e:
            self.tracer.record_step(
                StepType.VARIABLE,
                name,
                input=name,
                output=lookup.value,
                scope=scope,
                execution_time_ms=_elapsed_ms(start),
                error=str(e),
                depth=depth,
                metadata=metadata,
            )
            self._fail(name, e)
            return _Expansion(marker, ok=False, pure=False)

        recursive = any(isinstance(s, ReferenceNode) for s in segments)
        metadata["recursive"] = recursive
        self.tracer.record_step(
            StepType.VARIABLE,
            name,
            input=name,
            output=lookup.value,
            scope=scope,
            execution_time_ms=_elapsed_ms(start),
            depth=depth,
            metadata=metadata,
        )

        if recursive:
            nested_start = time.perf_counter()
            try:
                expansion = self._expand(segments, depth + 1)
            except _DepthLimitReached as signal:
                signal.chain.insert(0, name)
                raise
            self.tracer.record_step(
                StepType.NESTED,
                name,
                input=lookup.value,
                output=expansion.value,
                scope=scope,
                execution_time_ms=_elapsed_ms(nested_start),
                depth=depth,
                metadata={"secret": variable.is_secret, "height": expansion.height},
            )
        else:
            expansion = _Expansion(lookup.value)

        if not expansion.ok:
            # The nested failures carry their own errors
            self._mark(name, False)
            return expansion

        self._mark(name, True)
        if expansion.pure:
            self.cache.put(
                name,
                self.context,
                expansion.value,
                scope=lookup.scope,
                owner_id=variable.owner_id,
                height=expansion.height,
            )
        return expansion

    def _lookup_cache(self, name: str, depth: int) -> Optional[_Expansion]:
        start = time.perf_counter()
        entry = self.cache.get_entry(name, self.context)
        elapsed = _elapsed_ms(start)

        if entry is None:
            self.tracer.record_step(
                StepType.CACHE_MISS,
                name,
                input=name,
                execution_time_ms=elapsed,
                cache_hit=False,
                depth=depth,
            )
            return None

        exceeded = depth + entry.height >= self.max_depth
        variable = self._visible_variable(name)
        self.tracer.record_step(
            StepType.CACHE_HIT,
            name,
            input=name,
            output=entry.value,
            scope=entry.scope.value if entry.scope else None,
            execution_time_ms=elapsed,
            cache_hit=True,
            error=(
                f"maximum nesting depth of {self.max_depth} reached"
                if exceeded
                else None
            ),
            depth=depth,
            metadata={
                "secret": bool(variable and variable.is_secret),
                "height": entry.height,
                "hit_count": entry.hit_count,
            },
        )
        if exceeded:
            raise _DepthLimitReached(name)

        self._mark(name, True)
        return _Expansion(entry.value, height=entry.height)

    def _call_function(self, node: ReferenceNode, depth: int) -> _Expansion:
        display_name = node.display_name
        start = time.perf_counter()
        try:
            value = self.resolver.functions.invoke(node.name, node.args)
        except FunctionInvocationError as e:
            self.tracer.record_step(
                StepType.FUNCTION,
                display_name,
                input=node.raw,
                output=unresolved_marker(display_name),
                execution_time_ms=_elapsed_ms(start),
                error=str(e),
                depth=depth,
                metadata={"args": list(node.args)},
            )
            self._fail(display_name, e, repeatable=True)
            return _Expansion(unresolved_marker(display_name), ok=False, pure=False)

        self.tracer.record_step(
            StepType.FUNCTION,
            display_name,
            input=node.raw,
            output=value,
            execution_time_ms=_elapsed_ms(start),
            depth=depth,
            metadata={"args": list(node.args)},
        )
        self._mark(display_name, True)
        return _Expansion(value, pure=False)

    def _visible_variable(self, name: str) -> Optional[Variable]:
        return self.resolver.scope_resolver.lookup(name, self.context).variable

    def _fail(self, name: str, error: Exception, repeatable: bool = False) -> None:
        """Mark ``name`` unresolved, recording one error per name and kind.

        Function calls are repeatable since each call has its own arguments.
        """
        key = (type(error), name)
        if repeatable or key not in self._reported:
            self._reported.add(key)
            logger.warning(f"Reference '{name}' not resolved: {error}")
            self.tracer.record_error(error)
        self._mark(name, False)

    def _mark(self, name: str, resolved: bool) -> None:
        # Unresolved is sticky: a name that failed anywhere stays unresolved
        if resolved:
            self._status.setdefault(name, True)
        else:
            self._status[name] = False


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000
