"""Scope lookup for variable names.

Priority order (highest to lowest):
1. Rule variables
2. Profile variables
3. Global variables
4. System variables (built-ins and request details)
"""

from typing import List

from requestkit.logging import get_logger

from .types import (
    NOT_FOUND,
    SCOPE_PRECEDENCE,
    LookupResult,
    RequestContext,
    ResolutionContext,
    Variable,
    VariableScope,
)

logger = get_logger(__name__)

# Built-in system variables; their values are expanded on every use.
SYSTEM_VARIABLES = {
    "timestamp": ("${timestamp()}", "Current Unix timestamp", ("time", "system")),
    "iso_date": ("${iso_date()}", "Current ISO date string", ("time", "system")),
    "uuid": ("${uuid()}", "Generated UUID v4", ("random", "system")),
    "request_id": ("${uuid()}", "Unique request identifier", ("request", "system")),
}


def default_system_variables() -> List[Variable]:
    """The built-in system variables."""
    return [
        Variable(
            name=name,
            value=value,
            scope=VariableScope.SYSTEM,
            description=description,
            tags=tags,
        )
        for name, (value, description, tags) in SYSTEM_VARIABLES.items()
    ]


def request_system_variables(request: RequestContext) -> List[Variable]:
    """System variables describing the request being modified."""
    values = {
        "url": request.url,
        "method": request.method,
        "domain": request.domain,
        "path": request.path,
        "protocol": request.protocol,
    }
    return [
        Variable(
            name=name,
            value=value,
            scope=VariableScope.SYSTEM,
            description=f"Request {name}",
            tags=("request", "system"),
        )
        for name, value in values.items()
    ]


class ScopeResolver:
    """Looks up raw (unexpanded) variable values by scope precedence.

    Lookup is a pure function of (name, context).
    """

    def lookup(self, name: str, context: ResolutionContext) -> LookupResult:
        """Find the visible variable with the highest precedence.

        Returns:
            LookupResult with found=False when no enabled variable has the name
        """
        for scope in SCOPE_PRECEDENCE:
            variable = context.get_variable(scope, name)
            if variable is not None:
                return LookupResult(
                    found=True, value=variable.value, scope=scope, variable=variable
                )
        return NOT_FOUND

    def shadowed(self, name: str, context: ResolutionContext) -> List[Variable]:
        """Lower precedence variables hidden by the winning definition."""
        matches = []
        for scope in SCOPE_PRECEDENCE:
            variable = context.get_variable(scope, name)
            if variable is not None:
                matches.append(variable)
        return matches[1:]
