"""Append-only recorder of resolution steps.

One tracer is created per ``resolve()`` call and turned into an immutable
``ResolutionTrace`` by ``finish()``.
"""

import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from requestkit.logging import get_logger

from .types import (
    ResolutionContext,
    ResolutionMetrics,
    ResolutionStep,
    ResolutionTrace,
    StepType,
)

logger = get_logger(__name__)

_CACHE_STEPS = (StepType.CACHE_HIT, StepType.CACHE_MISS)


@dataclass(frozen=True)
class TrackingConfig:
    """Controls how much detail a trace keeps.

    Metrics count every event regardless of these settings.
    """

    enabled: bool = True
    max_steps: int = 1000
    track_cache: bool = True
    track_timing: bool = True
    include_metadata: bool = True

    def __post_init__(self):
        if self.max_steps < 0:
            raise ValueError(f"max_steps must not be negative, got {self.max_steps}")


class ResolutionTracer:
    """Collects steps, errors and metrics for a single resolution pass."""

    def __init__(
        self,
        template: str,
        context: Optional[ResolutionContext] = None,
        config: Optional[TrackingConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.template = template
        self.context = context
        self.config = config or TrackingConfig()
        self.trace_id = f"trace_{uuid.uuid4().hex}"
        self._clock = clock
        self._steps: List[ResolutionStep] = []
        self._errors: List[Exception] = []
        self._step_counter = 0
        self._truncated = False
        self._finished = False

        self._variable_count = 0
        self._function_count = 0
        self._max_depth = 0
        self._cache_hits = 0
        self._cache_misses = 0

        self.start_time = clock()

    def record_step(
        self,
        step_type: StepType,
        name: str,
        input: str = "",
        output: str = "",
        scope: Optional[str] = None,
        execution_time_ms: float = 0.0,
        cache_hit: Optional[bool] = None,
        error: Optional[str] = None,
        depth: int = 0,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[ResolutionStep]:
        """Append a step and update the metrics.

        Returns:
            The recorded step, or None when tracking settings dropped it
        """
        self._ensure_open()
        self._count(step_type, depth)

        if not self.config.enabled:
            return None
        if step_type in _CACHE_STEPS and not self.config.track_cache:
            return None
        if len(self._steps) >= self.config.max_steps:
            if not self._truncated:
                logger.debug(
                    f"Trace {self.trace_id} reached {self.config.max_steps} steps, "
                    "dropping the rest"
                )
            self._truncated = True
            return None

        self._step_counter += 1
        details = {"depth": depth}
        details.update(metadata or {})
        step = ResolutionStep(
            step_number=self._step_counter,
            type=step_type,
            name=name,
            input=input,
            output=output,
            scope=scope,
            execution_time_ms=execution_time_ms if self.config.track_timing else 0.0,
            cache_hit=cache_hit,
            error=error,
            metadata=details if self.config.include_metadata else {},
            timestamp=self._clock(),
        )
        self._steps.append(step)
        return step

    def record_error(self, error: Exception) -> None:
        self._ensure_open()
        self._errors.append(error)

    @property
    def steps(self) -> List[ResolutionStep]:
        return list(self._steps)

    @property
    def errors(self) -> List[Exception]:
        return list(self._errors)

    def finish(
        self,
        final_value: str,
        resolved: Sequence[str],
        unresolved: Sequence[str],
        errors: Optional[Sequence[Exception]] = None,
        dependencies: Optional[Dict[str, List[str]]] = None,
        cycles: Optional[List[List[str]]] = None,
    ) -> ResolutionTrace:
        """Freeze the collected data into a trace.

        ``errors`` are appended to the errors already recorded.
        """
        self._ensure_open()
        self._finished = True
        all_errors = self._errors + list(errors or ())

        unresolved = list(unresolved)
        blocked = set(unresolved)
        resolved = [name for name in resolved if name not in blocked]

        trace = ResolutionTrace(
            id=self.trace_id,
            original_template=self.template,
            final_value=final_value,
            success=not all_errors,
            steps=tuple(self._steps),
            resolved_variables=resolved,
            unresolved_variables=unresolved,
            errors=all_errors,
            metrics=ResolutionMetrics(
                variable_count=self._variable_count,
                function_count=self._function_count,
                max_depth=self._max_depth,
                cache_hits=self._cache_hits,
                cache_misses=self._cache_misses,
            ),
            start_time=self.start_time,
            end_time=self._clock(),
            context=self.context.describe() if self.context is not None else {},
            dependencies=dict(dependencies or {}),
            cycles=[list(cycle) for cycle in cycles or ()],
            truncated=self._truncated,
        )
        logger.debug(
            f"Trace {trace.id}: {len(trace.steps)} steps, "
            f"{len(resolved)} resolved, {len(unresolved)} unresolved"
        )
        return trace

    def _count(self, step_type: StepType, depth: int) -> None:
        if step_type in (StepType.VARIABLE, StepType.CACHE_HIT):
            self._variable_count += 1
        elif step_type is StepType.FUNCTION:
            self._function_count += 1

        if step_type is StepType.CACHE_HIT:
            self._cache_hits += 1
        elif step_type is StepType.CACHE_MISS:
            self._cache_misses += 1

        self._max_depth = max(self._max_depth, depth)

    def _ensure_open(self) -> None:
        if self._finished:
            raise RuntimeError(f"Trace {self.trace_id} is already finished")
