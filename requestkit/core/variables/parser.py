"""Template parser for RequestKit variable templates.

Templates are literal text interspersed with ``${name}`` variable references
and ``${name(arg, ...)}`` function calls. Arguments are literals only:
quoted strings, numbers, ``true``/``false`` or bare words. Nesting happens
through variable values, never inside a single expression.

The scanner walks the template once. ``parse`` stops at the first malformed
expression and raises ``TemplateSyntaxError``; ``validate_template`` and the
reference helpers keep scanning past malformed spans so every problem is
reported.
"""

import logging
import re
import time
from typing import Any, Dict, List, Optional, Tuple

from requestkit.logging import get_logger

from .errors import TemplateSyntaxError
from .types import (
    ArgumentValue,
    LiteralSegment,
    ReferenceKind,
    ReferenceNode,
    Segment,
    TemplateValidationResult,
    unique,
)

logger = get_logger(__name__)

IDENTIFIER_PATTERN = re.compile(r"[A-Za-z_][A-Za-z0-9_]*\Z")
_INTEGER_PATTERN = re.compile(r"[+-]?\d+\Z")
_FLOAT_PATTERN = re.compile(r"[+-]?(?:\d+\.\d*|\.\d+|\d+)(?:[eE][+-]?\d+)?\Z")
_QUOTES = "'\""

ScanResult = Tuple[Tuple[Segment, ...], List[TemplateSyntaxError]]


class TemplateParser:
    """Single source of truth for template parsing.

    Parse results are memoized per template string; templates are immutable
    strings so a cached result never goes stale.
    """

    def __init__(self, max_cache_size: int = 2048):
        self._parse_cache: Dict[str, Tuple[Segment, ...]] = {}
        self._max_cache_size = max_cache_size

    def parse(self, template: str) -> Tuple[Segment, ...]:
        """Split a template into literal segments and reference nodes.

        Raises:
            TypeError: If template is not a string
            TemplateSyntaxError: On the first malformed expression
        """
        _require_text(template)

        cached = self._parse_cache.get(template)
        if cached is not None:
            return cached

        start_time = time.perf_counter()
        segments, errors = self._scan(template)
        if errors:
            raise errors[0]

        if len(self._parse_cache) >= self._max_cache_size:
            self._parse_cache.clear()
        self._parse_cache[template] = segments

        if logger.isEnabledFor(logging.DEBUG):
            parse_time = (time.perf_counter() - start_time) * 1000
            logger.debug(
                f"Parsed {len(segments)} segments in {parse_time:.2f}ms: "
                f"{[s.display_name for s in segments if isinstance(s, ReferenceNode)]}"
            )
        return segments

    def get_referenced_variables(self, template: str) -> List[str]:
        """Names of variable references, in order of first appearance.

        Function names are ignored and malformed spans are skipped.
        """
        _require_text(template)
        segments, _ = self._scan(template)
        return unique(
            [
                segment.name
                for segment in segments
                if isinstance(segment, ReferenceNode) and not segment.is_function
            ]
        )

    def get_referenced_functions(self, template: str) -> List[ReferenceNode]:
        """Function call nodes in template order."""
        _require_text(template)
        segments, _ = self._scan(template)
        return [
            segment
            for segment in segments
            if isinstance(segment, ReferenceNode) and segment.is_function
        ]

    def validate_template(self, template: str) -> TemplateValidationResult:
        """Report every malformed expression in the template."""
        _require_text(template)
        _, errors = self._scan(template)
        return TemplateValidationResult(
            is_valid=not errors, errors=[str(error) for error in errors]
        )

    def clear_cache(self) -> None:
        self._parse_cache.clear()
        logger.debug("Template parser cache cleared")

    def get_cache_stats(self) -> Dict[str, Any]:
        return {
            "cache_size": len(self._parse_cache),
            "max_cache_size": self._max_cache_size,
        }

    # ------------------------------------------------------------------
    # Scanner
    # ------------------------------------------------------------------

    def _scan(self, template: str) -> ScanResult:
        segments: List[Segment] = []
        errors: List[TemplateSyntaxError] = []
        literal_start = 0
        pos = 0

        while True:
            start = template.find("${", pos)
            if start == -1:
                break

            try:
                end, node = self._scan_reference(template, start)
            except TemplateSyntaxError as error:
                # Keep the malformed text as literal and carry on scanning
                errors.append(error)
                pos = max(error.span[1], start + 2)
                continue

            if start > literal_start:
                segments.append(
                    LiteralSegment(
                        template[literal_start:start], (literal_start, start)
                    )
                )
            segments.append(node)
            pos = literal_start = end

        if literal_start < len(template):
            segments.append(
                LiteralSegment(template[literal_start:], (literal_start, len(template)))
            )
        return tuple(segments), errors

    def _scan_reference(self, template: str, start: int) -> Tuple[int, ReferenceNode]:
        n = len(template)
        i = start + 2
        while i < n and template[i] not in "(}":
            if template.startswith("${", i):
                raise TemplateSyntaxError(
                    "Nested reference inside an expression", template, (start, i)
                )
            i += 1

        if i >= n:
            raise TemplateSyntaxError(
                "Unterminated reference, missing '}'", template, (start, n)
            )

        name = template[start + 2 : i].strip()
        if not name:
            raise TemplateSyntaxError("Empty identifier", template, (start, i + 1))
        if not IDENTIFIER_PATTERN.match(name):
            raise TemplateSyntaxError(
                f"Invalid identifier {name!r}", template, (start, i + 1), name=name
            )

        if template[i] == "}":
            end = i + 1
            return end, ReferenceNode(
                kind=ReferenceKind.VARIABLE,
                name=name,
                raw=template[start:end],
                span=(start, end),
            )

        args, i = self._scan_arguments(template, start, i + 1, name)
        i = _skip_whitespace(template, i)
        if i >= n or template[i] != "}":
            raise TemplateSyntaxError(
                "Expected '}' after argument list",
                template,
                (start, min(i + 1, n)),
                name=name,
            )
        end = i + 1
        return end, ReferenceNode(
            kind=ReferenceKind.FUNCTION,
            name=name,
            raw=template[start:end],
            span=(start, end),
            args=tuple(args),
        )

    def _scan_arguments(
        self, template: str, start: int, i: int, name: str
    ) -> Tuple[List[ArgumentValue], int]:
        """Scan a comma separated literal list up to and including ')'."""
        n = len(template)
        args: List[ArgumentValue] = []

        i = _skip_whitespace(template, i)
        if i < n and template[i] == ")":
            return args, i + 1

        while True:
            i = _skip_whitespace(template, i)
            if i >= n:
                raise TemplateSyntaxError(
                    "Unterminated argument list", template, (start, n), name=name
                )

            if template[i] in _QUOTES:
                value, i = _scan_string(template, start, i, name)
                args.append(value)
            else:
                token_start = i
                while i < n and template[i] not in ",)}":
                    if template[i] == "(" or template.startswith("${", i):
                        # A nested reference is scanned again on its own
                        end = i if template[i] == "$" else i + 1
                        raise TemplateSyntaxError(
                            "Nested calls and references are not allowed in arguments",
                            template,
                            (start, end),
                            name=name,
                        )
                    i += 1
                if i >= n or template[i] == "}":
                    raise TemplateSyntaxError(
                        "Unterminated argument list, missing ')'",
                        template,
                        (start, min(i + 1, n)),
                        name=name,
                    )
                token = template[token_start:i].strip()
                if not token:
                    raise TemplateSyntaxError(
                        "Empty argument", template, (start, i + 1), name=name
                    )
                args.append(_convert_literal(token))

            i = _skip_whitespace(template, i)
            if i < n and template[i] == ",":
                i += 1
                continue
            if i < n and template[i] == ")":
                return args, i + 1
            raise TemplateSyntaxError(
                "Expected ',' or ')' in argument list",
                template,
                (start, min(i + 1, n)),
                name=name,
            )


def _require_text(template: Any) -> None:
    if not isinstance(template, str):
        raise TypeError(f"Template must be a string, got {type(template).__name__}")


def _skip_whitespace(template: str, i: int) -> int:
    n = len(template)
    while i < n and template[i].isspace():
        i += 1
    return i


def _scan_string(template: str, start: int, i: int, name: str) -> Tuple[str, int]:
    """Scan a quoted string starting at ``i``; returns (value, index after quote)."""
    quote = template[i]
    n = len(template)
    chars: List[str] = []
    i += 1
    while i < n:
        c = template[i]
        if c == "\\" and i + 1 < n:
            chars.append(template[i + 1])
            i += 2
            continue
        if c == quote:
            return "".join(chars), i + 1
        chars.append(c)
        i += 1
    raise TemplateSyntaxError(
        "Unterminated string argument", template, (start, n), name=name
    )


def _convert_literal(token: str) -> ArgumentValue:
    if _INTEGER_PATTERN.match(token):
        return int(token)
    if _FLOAT_PATTERN.match(token):
        return float(token)
    lowered = token.lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    return token


# Shared default instance
_parser_instance: Optional[TemplateParser] = None


def get_template_parser() -> TemplateParser:
    """Get the shared parser instance."""
    global _parser_instance
    if _parser_instance is None:
        _parser_instance = TemplateParser()
        logger.debug("Shared template parser instance created")
    return _parser_instance
