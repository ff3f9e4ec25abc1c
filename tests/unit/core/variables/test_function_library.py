"""Tests for the function library and the built-in functions."""

import base64
import random
import re

import pytest

from requestkit.core.variables.errors import FunctionInvocationError
from requestkit.core.variables.functions import (
    PREVIEW_UUID,
    FunctionLibrary,
    FunctionParameter,
    VariableFunction,
    create_default_library,
    create_preview_library,
)

EPOCH = 1704067200.0  # 2024-01-01T00:00:00Z


@pytest.fixture
def library():
    return create_default_library(
        clock=lambda: EPOCH,
        uuid_factory=lambda: "fixed-uuid",
        rng=random.Random(42),
    )


class TestBuiltins:
    """Test cases for the built-in functions."""

    def test_builtin_names(self, library):
        """Test that every built-in is registered."""
        assert library.names() == [
            "base64",
            "date",
            "iso_date",
            "random",
            "timestamp",
            "uuid",
        ]
        assert all(f.is_built_in for f in library.list_functions())

    def test_timestamp(self, library):
        """Test that timestamp returns whole seconds."""
        assert library.invoke("timestamp") == "1704067200"

    def test_iso_date(self, library):
        """Test ISO 8601 output with milliseconds and a Z suffix."""
        assert library.invoke("iso_date") == "2024-01-01T00:00:00.000Z"

    def test_uuid_uses_factory(self, library):
        """Test that uuid delegates to the injected factory."""
        assert library.invoke("uuid") == "fixed-uuid"

    def test_default_uuid_is_v4(self):
        """Test that the default uuid factory yields UUID v4 strings."""
        value = create_default_library().invoke("uuid")
        assert re.match(
            r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
            value,
        )

    def test_random_within_bounds(self, library):
        """Test that random stays inside the inclusive range."""
        values = {int(library.invoke("random", [1, 3])) for _ in range(50)}
        assert values <= {1, 2, 3}

    def test_random_equal_bounds(self, library):
        """Test that equal bounds always return that value."""
        assert library.invoke("random", [7, 7]) == "7"

    def test_random_rejects_inverted_bounds(self, library):
        """Test that min greater than max fails."""
        with pytest.raises(FunctionInvocationError) as excinfo:
            library.invoke("random", [5, 1])
        assert "greater than max" in str(excinfo.value)

    def test_random_rejects_fractional_bounds(self, library):
        """Test that fractional bounds fail."""
        with pytest.raises(FunctionInvocationError):
            library.invoke("random", [1.5, 3])

    def test_base64(self, library):
        """Test base64 encoding of a string argument."""
        assert library.invoke("base64", ["user:pass"]) == base64.b64encode(
            b"user:pass"
        ).decode("ascii")

    def test_base64_coerces_numbers(self, library):
        """Test that string parameters accept numbers."""
        assert library.invoke("base64", [42]) == "NDI="

    @pytest.mark.parametrize(
        "fmt,expected",
        [
            ("iso", "2024-01-01T00:00:00.000Z"),
            ("timestamp", "1704067200"),
            ("yyyy-mm-dd", "2024-01-01"),
            ("mm-dd-yy", "01-01-24"),
            ("YYYY-MM-DD", "2024-01-01"),
            ("unknown-format", "2024-01-01T00:00:00.000Z"),
        ],
    )
    def test_date_formats(self, library, fmt, expected):
        """Test each date format, with unknown formats falling back to iso."""
        assert library.invoke("date", [fmt]) == expected

    def test_date_without_format(self, library):
        """Test that the format parameter is optional."""
        assert library.invoke("date") == "2024-01-01T00:00:00.000Z"

    def test_date_locale_is_not_empty(self, library):
        """Test the locale format."""
        assert library.invoke("date", ["locale"])


class TestInvocationErrors:
    """Test cases for arity and type checking."""

    def test_unknown_function(self, library):
        """Test that unknown names fail with the function name."""
        with pytest.raises(FunctionInvocationError) as excinfo:
            library.invoke("nope")
        assert excinfo.value.function_name == "nope"
        assert "unknown function" in str(excinfo.value)

    def test_too_many_arguments(self, library):
        """Test that extra arguments fail."""
        with pytest.raises(FunctionInvocationError) as excinfo:
            library.invoke("uuid", ["extra"])
        assert "expected 0 argument(s), got 1" in str(excinfo.value)

    def test_too_few_arguments(self, library):
        """Test that missing required arguments fail."""
        with pytest.raises(FunctionInvocationError) as excinfo:
            library.invoke("random", [1])
        assert "expected 2 argument(s), got 1" in str(excinfo.value)

    def test_optional_arity_message(self, library):
        """Test the message for a function with optional parameters."""
        with pytest.raises(FunctionInvocationError) as excinfo:
            library.invoke("date", ["iso", "extra"])
        assert "expected 0 to 1 argument(s)" in str(excinfo.value)

    @pytest.mark.parametrize("bad", ["five", True])
    def test_number_parameter_rejects_non_numbers(self, library, bad):
        """Test that number parameters reject strings and booleans."""
        with pytest.raises(FunctionInvocationError) as excinfo:
            library.invoke("random", [bad, 10])
        assert "must be a number" in str(excinfo.value)

    def test_failing_implementation_is_wrapped(self):
        """Test that implementation exceptions become FunctionInvocationError."""

        def explode(args):
            raise RuntimeError("boom")

        library = FunctionLibrary([VariableFunction("explode", explode)])
        with pytest.raises(FunctionInvocationError) as excinfo:
            library.invoke("explode")
        assert "RuntimeError: boom" in str(excinfo.value)
        assert isinstance(excinfo.value.__cause__, RuntimeError)


class TestRegistration:
    """Test cases for custom function registration."""

    def test_register_custom_function(self):
        """Test registering and invoking a custom function."""
        library = FunctionLibrary()
        library.register(
            VariableFunction(
                name="upper",
                execute=lambda args: args[0].upper(),
                parameters=(FunctionParameter("value"),),
            )
        )
        assert library.has("upper")
        assert library.invoke("upper", ["abc"]) == "ABC"

    def test_duplicate_registration_fails(self, library):
        """Test that names cannot be registered twice without replace."""
        with pytest.raises(ValueError):
            library.register(VariableFunction("uuid", lambda args: "x"))

        library.register(VariableFunction("uuid", lambda args: "x"), replace=True)
        assert library.invoke("uuid") == "x"

    def test_unregister(self, library):
        """Test removing a function."""
        assert library.unregister("uuid") is True
        assert library.unregister("uuid") is False
        assert library.get("uuid") is None

    def test_boolean_parameter(self):
        """Test that boolean parameters only accept booleans."""
        library = FunctionLibrary(
            [
                VariableFunction(
                    "flag",
                    execute=lambda args: "on" if args[0] else "off",
                    parameters=(FunctionParameter("enabled", "boolean"),),
                )
            ]
        )
        assert library.invoke("flag", [True]) == "on"
        with pytest.raises(FunctionInvocationError):
            library.invoke("flag", ["yes"])

    def test_none_result_becomes_empty_string(self):
        """Test that a None result is substituted as an empty string."""
        library = FunctionLibrary([VariableFunction("nothing", lambda args: None)])
        assert library.invoke("nothing") == ""

    def test_invalid_parameter_type(self):
        """Test that unsupported parameter types are rejected."""
        with pytest.raises(ValueError):
            FunctionParameter("x", "list")

    def test_signature(self, library):
        """Test the human readable signature."""
        assert library.get("random").signature == "random(min, max)"
        assert library.get("date").signature == "date(format?)"


class TestPreviewLibrary:
    """Test cases for the preview library."""

    def test_fixed_values(self):
        """Test that time and uuid functions return fixed sample values."""
        library = create_preview_library()
        assert library.invoke("timestamp") == "1704067200"
        assert library.invoke("iso_date") == "2024-01-01T00:00:00.000Z"
        assert library.invoke("uuid") == PREVIEW_UUID
