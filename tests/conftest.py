"""Pytest configuration for RequestKit tests."""

import tempfile
from typing import Callable, Dict, Generator, Optional

import pytest

from requestkit.core.variables import (
    ResolutionCache,
    ResolutionContext,
    Variable,
    VariableResolver,
    VariableScope,
    create_default_library,
)

FIXED_EPOCH = 1704067200.0  # 2024-01-01T00:00:00Z
FIXED_UUID = "123e4567-e89b-42d3-a456-426614174000"


@pytest.fixture
def temp_dir() -> Generator[str, None, None]:
    """Create a temporary directory for tests.

    Yields
    ------
        Path to the temporary directory

    """
    with tempfile.TemporaryDirectory() as tmp_dir:
        yield tmp_dir


@pytest.fixture
def make_context() -> Callable[..., ResolutionContext]:
    """Return a factory building contexts from plain name/value mappings."""

    def _make(
        global_vars: Optional[Dict[str, str]] = None,
        profile_vars: Optional[Dict[str, str]] = None,
        rule_vars: Optional[Dict[str, str]] = None,
        profile_id: Optional[str] = "profile-1",
        rule_id: Optional[str] = "rule-1",
    ) -> ResolutionContext:
        return ResolutionContext.build(
            global_variables=[
                Variable(name, value, VariableScope.GLOBAL)
                for name, value in (global_vars or {}).items()
            ],
            profile_variables=[
                Variable(name, value, VariableScope.PROFILE, owner_id=profile_id)
                for name, value in (profile_vars or {}).items()
            ],
            rule_variables=[
                Variable(name, value, VariableScope.RULE, owner_id=rule_id)
                for name, value in (rule_vars or {}).items()
            ],
            profile_id=profile_id,
            rule_id=rule_id,
        )

    return _make


@pytest.fixture
def fixed_functions():
    """Function library with a pinned clock and UUID source."""
    return create_default_library(
        clock=lambda: FIXED_EPOCH, uuid_factory=lambda: FIXED_UUID
    )


@pytest.fixture
def cache() -> ResolutionCache:
    return ResolutionCache(max_size=100)


@pytest.fixture
def resolver(cache, fixed_functions) -> VariableResolver:
    """Resolver with a fresh cache and deterministic functions."""
    return VariableResolver(cache=cache, functions=fixed_functions)


@pytest.fixture
def variables_file(temp_dir) -> str:
    """Write a sample variables file and return its path."""
    content = """
variables:
  global:
    API_TOKEN:
      value: abc123
      secret: true
      tags: [auth]
      description: API token
    BASE_URL: https://api.example.com
    GREETING: hello
    OLD_FLAG:
      value: legacy
      enabled: false
  profiles:
    staging:
      BASE_URL: https://staging.example.com
  rules:
    auth-header:
      AUTH: "Bearer ${API_TOKEN}"
      GREETING: hi
"""
    path = f"{temp_dir}/variables.yml"
    with open(path, "w", encoding="utf-8") as f:
        f.write(content)
    return path
