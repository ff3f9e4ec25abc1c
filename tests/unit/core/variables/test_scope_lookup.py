"""Tests for scope precedence and resolution contexts."""

import pytest

from requestkit.core.variables.scopes import (
    SYSTEM_VARIABLES,
    ScopeResolver,
    default_system_variables,
    request_system_variables,
)
from requestkit.core.variables.types import (
    RequestContext,
    ResolutionContext,
    Variable,
    VariableScope,
)


@pytest.fixture
def scopes():
    return ScopeResolver()


class TestScopeResolver:
    """Test cases for ScopeResolver.lookup."""

    def test_rule_beats_profile_global_and_system(self, scopes):
        """Test the full precedence chain."""
        context = ResolutionContext(
            system_variables=(Variable("x", "system", VariableScope.SYSTEM),),
            global_variables=(Variable("x", "global"),),
            profile_variables=(Variable("x", "profile", VariableScope.PROFILE),),
            rule_variables=(Variable("x", "rule", VariableScope.RULE),),
        )
        result = scopes.lookup("x", context)

        assert result.found
        assert result.value == "rule"
        assert result.scope is VariableScope.RULE
        assert result.variable.value == "rule"

    def test_profile_beats_global(self, make_context, scopes):
        """Test that profile variables shadow globals."""
        context = make_context(global_vars={"x": "g"}, profile_vars={"x": "p"})
        result = scopes.lookup("x", context)
        assert (result.value, result.scope) == ("p", VariableScope.PROFILE)

    def test_global_beats_system(self, scopes):
        """Test that globals shadow built-in system variables."""
        context = ResolutionContext.build(global_variables=[Variable("uuid", "mine")])
        assert scopes.lookup("uuid", context).value == "mine"

    def test_missing_name(self, make_context, scopes):
        """Test that an unknown name is not found."""
        result = scopes.lookup("missing", make_context(global_vars={"x": "1"}))
        assert not result.found
        assert result.value is None
        assert result.scope is None

    def test_disabled_variables_are_invisible(self, scopes):
        """Test that disabled variables never win."""
        context = ResolutionContext(
            global_variables=(Variable("x", "global"),),
            rule_variables=(Variable("x", "off", VariableScope.RULE, enabled=False),),
        )
        assert scopes.lookup("x", context).value == "global"

    def test_first_enabled_wins_within_scope(self, scopes):
        """Test that the first enabled definition in a scope wins."""
        context = ResolutionContext(
            global_variables=(
                Variable("x", "disabled", enabled=False),
                Variable("x", "first"),
                Variable("x", "second"),
            )
        )
        assert scopes.lookup("x", context).value == "first"

    def test_shadowed_definitions(self, make_context, scopes):
        """Test that shadowed lists lower precedence definitions."""
        context = make_context(global_vars={"x": "g"}, rule_vars={"x": "r"})
        shadowed = scopes.shadowed("x", context)
        assert [v.scope for v in shadowed] == [VariableScope.GLOBAL]


class TestResolutionContext:
    """Test cases for ResolutionContext."""

    def test_build_seeds_system_variables(self):
        """Test that build adds the built-in system variables."""
        context = ResolutionContext.build()
        names = [v.name for v in context.system_variables]
        assert names == list(SYSTEM_VARIABLES)
        assert context.get_variable(VariableScope.SYSTEM, "timestamp").value == (
            "${timestamp()}"
        )

    def test_build_with_request(self):
        """Test that a request adds url, method, domain, path and protocol."""
        request = RequestContext.from_request(
            "https://api.example.com/v1/users?page=2", "post", timestamp=1.0
        )
        context = ResolutionContext.build(request=request)
        system = context.visible_variables(VariableScope.SYSTEM)

        assert system["domain"].value == "api.example.com"
        assert system["path"].value == "/v1/users"
        assert system["protocol"].value == "https"
        assert system["method"].value == "POST"
        assert system["url"].value == "https://api.example.com/v1/users?page=2"
        assert "request_id" in system

    def test_build_drops_disabled_variables(self):
        """Test that build filters disabled variables out."""
        context = ResolutionContext.build(
            global_variables=[Variable("a", "1"), Variable("b", "2", enabled=False)]
        )
        assert [v.name for v in context.global_variables] == ["a"]

    def test_rejects_non_variables(self):
        """Test that scope tuples must hold Variable instances."""
        with pytest.raises(TypeError):
            ResolutionContext(global_variables=({"name": "x", "value": "1"},))

    def test_equal_visible_mappings_share_fingerprint(self):
        """Test that metadata and disabled entries do not affect the fingerprint."""
        first = ResolutionContext(
            global_variables=(Variable("a", "1", description="one"),),
            profile_id="p1",
        )
        second = ResolutionContext(
            global_variables=(
                Variable("a", "1", tags=("x",)),
                Variable("b", "2", enabled=False),
            ),
            profile_id="p2",
        )
        assert first.fingerprint == second.fingerprint

    def test_different_values_change_fingerprint(self):
        """Test that a changed value changes the fingerprint."""
        first = ResolutionContext(global_variables=(Variable("a", "1"),))
        second = ResolutionContext(global_variables=(Variable("a", "2"),))
        assert first.fingerprint != second.fingerprint

    def test_same_mapping_in_different_scope_changes_fingerprint(self):
        """Test that the scope of a definition is part of the fingerprint."""
        first = ResolutionContext(global_variables=(Variable("a", "1"),))
        second = ResolutionContext(
            rule_variables=(Variable("a", "1", VariableScope.RULE),)
        )
        assert first.fingerprint != second.fingerprint

    def test_effective_variables(self, make_context):
        """Test the merged view of every visible name."""
        context = make_context(global_vars={"a": "g", "b": "g"}, rule_vars={"a": "r"})
        effective = context.effective_variables()
        assert effective["a"].value == "r"
        assert effective["b"].value == "g"
        assert "timestamp" in effective

    def test_describe(self):
        """Test the trace summary of a context."""
        request = RequestContext.from_request("http://localhost/x", timestamp=0.0)
        context = ResolutionContext.build(profile_id="p", rule_id="r", request=request)
        summary = context.describe()
        assert summary["profile_id"] == "p"
        assert summary["rule_id"] == "r"
        assert summary["request_url"] == "http://localhost/x"
        assert summary["request_method"] == "GET"
        assert summary["fingerprint"] == context.fingerprint


class TestRequestContext:
    """Test cases for RequestContext.from_request."""

    def test_headers_and_query(self):
        """Test referrer, user agent and query extraction."""
        request = RequestContext.from_request(
            "https://example.com/search?q=python&lang=en",
            headers={"Referer": "https://google.com", "User-Agent": "pytest"},
            tab_id=7,
        )
        assert request.query == {"q": "python", "lang": "en"}
        assert request.referrer == "https://google.com"
        assert request.user_agent == "pytest"
        assert request.tab_id == 7
        assert request.timestamp > 0

    def test_empty_path_defaults_to_root(self):
        """Test that a URL without a path gets '/'."""
        assert RequestContext.from_request("https://example.com").path == "/"


class TestSystemVariables:
    """Test cases for the system variable helpers."""

    def test_default_system_variables(self):
        """Test that built-in system variables are function templates."""
        variables = {v.name: v for v in default_system_variables()}
        assert variables["uuid"].value == "${uuid()}"
        assert variables["request_id"].value == "${uuid()}"
        assert all(v.scope is VariableScope.SYSTEM for v in variables.values())

    def test_request_system_variables(self):
        """Test the request derived variables."""
        request = RequestContext.from_request("http://a.test/p", "GET")
        names = [v.name for v in request_system_variables(request)]
        assert names == ["url", "method", "domain", "path", "protocol"]
