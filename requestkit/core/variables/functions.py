"""Function library for template function calls.

Functions are registered by name and declare their parameters. The library
checks arity and argument types before calling the implementation and turns
every failure into a ``FunctionInvocationError``. Results are never cached:
several built-ins depend on the clock or on randomness.
"""

import base64
import random
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from requestkit.logging import get_logger

from .errors import FunctionInvocationError

logger = get_logger(__name__)

PARAMETER_TYPES = ("string", "number", "boolean")

# Fixed values used by the preview library
PREVIEW_TIMESTAMP = 1704067200.0
PREVIEW_UUID = "550e8400-e29b-41d4-a716-446655440000"


@dataclass(frozen=True)
class FunctionParameter:
    """Declared parameter of a template function."""

    name: str
    type: str = "string"
    required: bool = True
    description: str = ""
    default: Any = None

    def __post_init__(self):
        if self.type not in PARAMETER_TYPES:
            raise ValueError(
                f"Parameter '{self.name}' has unsupported type '{self.type}'"
            )


@dataclass(frozen=True)
class VariableFunction:
    """A named callable usable as ``${name(args)}`` in templates.

    ``execute`` receives the validated argument list, with defaults filled in
    for omitted optional parameters, and returns the substituted text.
    """

    name: str
    execute: Callable[[List[Any]], Any]
    description: str = ""
    parameters: Sequence[FunctionParameter] = field(default_factory=tuple)
    is_built_in: bool = False

    @property
    def min_arity(self) -> int:
        return sum(1 for p in self.parameters if p.required)

    @property
    def max_arity(self) -> int:
        return len(self.parameters)

    @property
    def signature(self) -> str:
        params = [p.name if p.required else f"{p.name}?" for p in self.parameters]
        return f"{self.name}({', '.join(params)})"


class FunctionLibrary:
    """Name-keyed registry of template functions."""

    def __init__(self, functions: Optional[Sequence[VariableFunction]] = None):
        self._functions: Dict[str, VariableFunction] = {}
        self._lock = threading.Lock()
        for function in functions or ():
            self.register(function)

    def register(self, function: VariableFunction, replace: bool = False) -> None:
        """Register a function.

        Raises:
            ValueError: If the name is already registered and replace is False
        """
        with self._lock:
            if function.name in self._functions and not replace:
                raise ValueError(f"Function '{function.name}' is already registered")
            self._functions[function.name] = function
        logger.debug(f"Registered function {function.signature}")

    def unregister(self, name: str) -> bool:
        with self._lock:
            return self._functions.pop(name, None) is not None

    def get(self, name: str) -> Optional[VariableFunction]:
        return self._functions.get(name)

    def has(self, name: str) -> bool:
        return name in self._functions

    def names(self) -> List[str]:
        return sorted(self._functions)

    def list_functions(self) -> List[VariableFunction]:
        return [self._functions[name] for name in self.names()]

    def invoke(self, name: str, args: Sequence[Any] = ()) -> str:
        """Call a function with literal arguments.

        Raises:
            FunctionInvocationError: For unknown functions, wrong arity, bad
                argument types or a failing implementation
        """
        function = self._functions.get(name)
        if function is None:
            raise FunctionInvocationError(name, "unknown function")

        values = self._bind_arguments(function, list(args))
        try:
            result = function.execute(values)
        except FunctionInvocationError:
            raise
        except Exception as e:
            raise FunctionInvocationError(name, f"{type(e).__name__}: {e}") from e

        return "" if result is None else str(result)

    def _bind_arguments(self, function: VariableFunction, args: List[Any]) -> List[Any]:
        if not function.min_arity <= len(args) <= function.max_arity:
            if function.min_arity == function.max_arity:
                expected = str(function.max_arity)
            else:
                expected = f"{function.min_arity} to {function.max_arity}"
            raise FunctionInvocationError(
                function.name,
                f"expected {expected} argument(s), got {len(args)}",
            )

        values = []
        for index, parameter in enumerate(function.parameters):
            if index >= len(args):
                values.append(parameter.default)
                continue
            values.append(_coerce(function.name, parameter, args[index]))
        return values


def _coerce(function_name: str, parameter: FunctionParameter, value: Any) -> Any:
    if parameter.type == "number":
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise FunctionInvocationError(
                function_name,
                f"argument '{parameter.name}' must be a number, got {value!r}",
            )
        return value
    if parameter.type == "boolean":
        if not isinstance(value, bool):
            raise FunctionInvocationError(
                function_name,
                f"argument '{parameter.name}' must be true or false, got {value!r}",
            )
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


# ----------------------------------------------------------------------
# Built-in functions
# ----------------------------------------------------------------------


def _iso_format(moment: datetime) -> str:
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _format_date(epoch: float, fmt: str) -> str:
    moment = datetime.fromtimestamp(epoch, tz=timezone.utc)
    fmt = (fmt or "iso").lower()
    if fmt == "locale":
        return moment.astimezone().strftime("%c")
    if fmt == "timestamp":
        return str(int(epoch))
    if fmt == "yyyy-mm-dd":
        return moment.strftime("%Y-%m-%d")
    if fmt == "mm-dd-yy":
        return moment.strftime("%m-%d-%y")
    return _iso_format(moment)


def _random_between(rng: random.Random, low: Any, high: Any) -> str:
    if int(low) != low or int(high) != high:
        raise FunctionInvocationError("random", "bounds must be whole numbers")
    low, high = int(low), int(high)
    if low > high:
        raise FunctionInvocationError("random", f"min {low} is greater than max {high}")
    return str(rng.randint(low, high))


def create_builtin_functions(
    clock: Optional[Callable[[], float]] = None,
    uuid_factory: Optional[Callable[[], str]] = None,
    rng: Optional[random.Random] = None,
) -> List[VariableFunction]:
    """Build the built-in functions bound to a clock, UUID source and RNG."""
    clock = clock or time.time
    uuid_factory = uuid_factory or (lambda: str(uuid.uuid4()))
    rng = rng or random.Random()

    def now() -> datetime:
        return datetime.fromtimestamp(clock(), tz=timezone.utc)

    return [
        VariableFunction(
            name="timestamp",
            description="Current Unix timestamp in seconds",
            execute=lambda args: str(int(clock())),
            is_built_in=True,
        ),
        VariableFunction(
            name="iso_date",
            description="Current date and time as an ISO 8601 string (UTC)",
            execute=lambda args: _iso_format(now()),
            is_built_in=True,
        ),
        VariableFunction(
            name="uuid",
            description="Random UUID v4",
            execute=lambda args: uuid_factory(),
            is_built_in=True,
        ),
        VariableFunction(
            name="random",
            description="Random whole number between min and max, inclusive",
            parameters=(
                FunctionParameter("min", "number", description="Minimum value"),
                FunctionParameter("max", "number", description="Maximum value"),
            ),
            execute=lambda args: _random_between(rng, args[0], args[1]),
            is_built_in=True,
        ),
        VariableFunction(
            name="base64",
            description="Base64 encode a value",
            parameters=(
                FunctionParameter("value", "string", description="Value to encode"),
            ),
            execute=lambda args: base64.b64encode(args[0].encode("utf-8")).decode(
                "ascii"
            ),
            is_built_in=True,
        ),
        VariableFunction(
            name="date",
            description=(
                "Current date (formats: iso, locale, timestamp, yyyy-mm-dd, mm-dd-yy)"
            ),
            parameters=(
                FunctionParameter(
                    "format",
                    "string",
                    required=False,
                    description="Date format",
                    default="iso",
                ),
            ),
            execute=lambda args: _format_date(clock(), args[0]),
            is_built_in=True,
        ),
    ]


def create_default_library(
    clock: Optional[Callable[[], float]] = None,
    uuid_factory: Optional[Callable[[], str]] = None,
    rng: Optional[random.Random] = None,
) -> FunctionLibrary:
    """Library holding the built-in functions."""
    return FunctionLibrary(create_builtin_functions(clock, uuid_factory, rng))


def create_preview_library() -> FunctionLibrary:
    """Library whose time and UUID functions return fixed sample values."""
    return create_default_library(
        clock=lambda: PREVIEW_TIMESTAMP,
        uuid_factory=lambda: PREVIEW_UUID,
        rng=random.Random(0),
    )
