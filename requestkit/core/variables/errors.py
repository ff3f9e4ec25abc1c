"""Error taxonomy for variable resolution.

Every failure the resolver can capture for a single reference has its own
exception class. The resolver records instances of these classes in the
resolution trace instead of raising them, except for ``TemplateSyntaxError``
raised by the parser on a malformed top-level template.
"""

from typing import Any, Dict, Optional, Sequence, Tuple


class VariableResolutionError(Exception):
    """Base class for all resolution errors.

    Provides consistent message formatting with context information.
    """

    kind = "resolution_error"

    def __init__(
        self,
        message: str,
        name: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.name = name
        self.context = context or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format error message with context information."""
        formatted = self.message

        if self.context:
            context_parts = []
            for key, value in self.context.items():
                if isinstance(value, (list, tuple)) and len(value) > 0:
                    context_parts.append(f"{key}: {', '.join(map(str, value))}")
                elif value:
                    context_parts.append(f"{key}: {value}")

            if context_parts:
                formatted += " (" + "; ".join(context_parts) + ")"

        return formatted

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the error for traces and JSON output."""
        return {
            "type": type(self).__name__,
            "kind": self.kind,
            "name": self.name,
            "message": str(self),
        }


class TemplateSyntaxError(VariableResolutionError):
    """Raised when a template contains a malformed ``${...}`` expression."""

    kind = "syntax"

    def __init__(
        self,
        reason: str,
        template: str,
        span: Tuple[int, int],
        name: Optional[str] = None,
    ):
        self.reason = reason
        self.template = template
        self.span = span
        self.fragment = template[span[0] : span[1]]
        super().__init__(
            f"{reason} at {span[0]}-{span[1]}: {self.fragment!r}",
            name=name,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["span"] = list(self.span)
        return data


class UndefinedVariableError(VariableResolutionError):
    """Raised when a name is not visible in any scope."""

    kind = "undefined"

    def __init__(self, name: str):
        super().__init__(f"Variable '{name}' is not defined in any scope", name=name)


class CircularDependencyError(VariableResolutionError):
    """Raised for a variable that participates in a reference cycle."""

    kind = "circular"

    def __init__(self, name: str, cycle: Sequence[str]):
        self.cycle = list(cycle)
        path = " -> ".join(self.cycle + self.cycle[:1])
        super().__init__(
            f"Variable '{name}' is part of a circular reference: {path}", name=name
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["cycle"] = list(self.cycle)
        return data


class FunctionInvocationError(VariableResolutionError):
    """Raised for unknown functions, bad arguments or failing implementations."""

    kind = "function"

    def __init__(self, function_name: str, reason: str):
        self.function_name = function_name
        self.reason = reason
        super().__init__(
            f"Function '{function_name}' failed: {reason}", name=function_name
        )


class DepthExceededError(VariableResolutionError):
    """Raised when a nested reference chain goes deeper than ``max_depth``.

    ``name`` is the outermost reference of the chain, the one that fails.
    """

    kind = "depth"

    def __init__(self, chain: Sequence[str], max_depth: int):
        self.chain = list(chain)
        self.max_depth = max_depth
        super().__init__(
            f"Variable '{self.chain[0]}' exceeds the maximum nesting depth "
            f"of {max_depth}",
            name=self.chain[0],
            context={"chain": " -> ".join(self.chain)},
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["chain"] = list(self.chain)
        data["max_depth"] = self.max_depth
        return data


class ConfigurationError(ValueError):
    """Raised for invalid engine settings or variables files."""

    def __init__(self, message: str, source: Optional[str] = None):
        self.source = source
        if source:
            message = f"{source}: {message}"
        super().__init__(message)
