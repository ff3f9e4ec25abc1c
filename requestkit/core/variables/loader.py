"""Load variable definitions from a YAML variables file.

Layout::

    variables:
      system:
        region: eu-west-1
      global:
        API_TOKEN:
          value: abc123
          secret: true
        BASE_URL: https://api.example.com
      profiles:
        staging:
          BASE_URL: https://staging.example.com
      rules:
        auth-header:
          AUTH: "Bearer ${API_TOKEN}"

Each entry is either ``NAME: value`` or ``NAME: {value, enabled, secret,
tags, description}``.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml

from requestkit.logging import get_logger

from .errors import ConfigurationError
from .parser import IDENTIFIER_PATTERN
from .scopes import default_system_variables, request_system_variables
from .types import RequestContext, ResolutionContext, Variable, VariableScope

logger = get_logger(__name__)

SECTIONS = ("system", "global", "profiles", "rules")
ENTRY_KEYS = {"value", "enabled", "secret", "tags", "description"}


@dataclass
class VariablesFile:
    """Variables declared in a variables file, grouped by scope and owner."""

    path: Optional[str] = None
    system_variables: List[Variable] = field(default_factory=list)
    global_variables: List[Variable] = field(default_factory=list)
    profiles: Dict[str, List[Variable]] = field(default_factory=dict)
    rules: Dict[str, List[Variable]] = field(default_factory=dict)

    def build_context(
        self,
        profile_id: Optional[str] = None,
        rule_id: Optional[str] = None,
        request: Optional[RequestContext] = None,
    ) -> ResolutionContext:
        """Assemble the context seen by a rule of a profile.

        Declared system variables come before the request-derived and
        built-in ones, so they win within the system scope.

        Raises:
            ConfigurationError: If the profile or rule is not declared
        """
        profile_variables = self._owned(self.profiles, profile_id, "profile")
        rule_variables = self._owned(self.rules, rule_id, "rule")

        system = list(self.system_variables)
        if request is not None:
            system.extend(request_system_variables(request))
        system.extend(default_system_variables())

        return ResolutionContext.build(
            global_variables=self.global_variables,
            profile_variables=profile_variables,
            rule_variables=rule_variables,
            system_variables=system,
            profile_id=profile_id,
            rule_id=rule_id,
            request=request,
        )

    def all_variables(self) -> List[Variable]:
        variables = list(self.system_variables) + list(self.global_variables)
        for owned in list(self.profiles.values()) + list(self.rules.values()):
            variables.extend(owned)
        return variables

    def _owned(
        self, groups: Dict[str, List[Variable]], owner_id: Optional[str], kind: str
    ) -> List[Variable]:
        if owner_id is None:
            return []
        if owner_id not in groups:
            available = ", ".join(sorted(groups)) or "none"
            raise ConfigurationError(
                f"Unknown {kind} '{owner_id}' (available: {available})", self.path
            )
        return groups[owner_id]


def load_variables_file(path: str) -> VariablesFile:
    """Read and validate a variables file.

    Raises:
        ConfigurationError: If the file is missing, not valid YAML or
            malformed
    """
    if not os.path.exists(path):
        raise ConfigurationError("Variables file not found", path)

    logger.debug(f"Loading variables from '{path}'")
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML: {e}", path)

    variables_file = parse_variables(data or {}, source=path)
    logger.debug(
        f"Loaded {len(variables_file.all_variables())} variables from '{path}'"
    )
    return variables_file


def parse_variables(
    data: Dict[str, Any], source: Optional[str] = None
) -> VariablesFile:
    """Build a ``VariablesFile`` from already-parsed YAML data."""
    if not isinstance(data, dict):
        raise ConfigurationError("Expected a mapping at the top level", source)

    section = data.get("variables", {}) or {}
    if not isinstance(section, dict):
        raise ConfigurationError("'variables' must be a mapping", source)

    unknown = sorted(set(section) - set(SECTIONS))
    if unknown:
        raise ConfigurationError(
            f"Unknown variables section(s): {', '.join(map(str, unknown))}", source
        )

    result = VariablesFile(path=source)
    result.system_variables = _parse_entries(
        section.get("system"), VariableScope.SYSTEM, None, source
    )
    result.global_variables = _parse_entries(
        section.get("global"), VariableScope.GLOBAL, None, source
    )
    result.profiles = _parse_groups(
        section.get("profiles"), VariableScope.PROFILE, source
    )
    result.rules = _parse_groups(section.get("rules"), VariableScope.RULE, source)
    return result


def build_context_from_file(
    path: str,
    profile_id: Optional[str] = None,
    rule_id: Optional[str] = None,
    request: Optional[RequestContext] = None,
) -> ResolutionContext:
    """Load a variables file and assemble the context for a profile and rule."""
    return load_variables_file(path).build_context(profile_id, rule_id, request)


def _parse_groups(
    groups: Any, scope: VariableScope, source: Optional[str]
) -> Dict[str, List[Variable]]:
    if groups is None:
        return {}
    if not isinstance(groups, dict):
        raise ConfigurationError(
            f"'{scope.value}' variables must be grouped by {scope.value} id", source
        )
    return {
        str(owner_id): _parse_entries(entries, scope, str(owner_id), source)
        for owner_id, entries in groups.items()
    }


def _parse_entries(
    entries: Any,
    scope: VariableScope,
    owner_id: Optional[str],
    source: Optional[str],
) -> List[Variable]:
    if entries is None:
        return []
    if not isinstance(entries, dict):
        raise ConfigurationError(
            f"Variables of scope '{scope.value}' must be a mapping of name to value",
            source,
        )
    return [
        _parse_entry(str(name), raw, scope, owner_id, source)
        for name, raw in entries.items()
    ]


def _parse_entry(
    name: str,
    raw: Any,
    scope: VariableScope,
    owner_id: Optional[str],
    source: Optional[str],
) -> Variable:
    if not IDENTIFIER_PATTERN.match(name):
        raise ConfigurationError(f"Invalid variable name {name!r}", source)

    options: Dict[str, Any] = {}
    if isinstance(raw, dict):
        unknown = sorted(set(raw) - ENTRY_KEYS)
        if unknown:
            raise ConfigurationError(
                f"Variable '{name}' has unknown key(s): {', '.join(map(str, unknown))}",
                source,
            )
        if "value" not in raw:
            raise ConfigurationError(f"Variable '{name}' is missing 'value'", source)
        options = raw
        raw = raw["value"]

    tags = options.get("tags") or []
    if not isinstance(tags, list):
        raise ConfigurationError(f"Tags of variable '{name}' must be a list", source)

    return Variable(
        name=name,
        value=_to_text(name, raw, source),
        scope=scope,
        owner_id=owner_id,
        enabled=_flag(name, options, "enabled", True, source),
        is_secret=_flag(name, options, "secret", False, source),
        tags=tuple(str(tag) for tag in tags),
        description=options.get("description"),
    )


def _flag(
    name: str, options: Dict[str, Any], key: str, default: bool, source: Optional[str]
) -> bool:
    value = options.get(key, default)
    if not isinstance(value, bool):
        raise ConfigurationError(
            f"'{key}' of variable '{name}' must be true or false, got {value!r}",
            source,
        )
    return value


def _to_text(name: str, value: Any, source: Optional[str]) -> str:
    if value is None or isinstance(value, (dict, list)):
        raise ConfigurationError(
            f"Value of variable '{name}' must be a string, number or boolean", source
        )
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
