"""Structural repair engine for malformed model JSON.

Turns a raw response that is *supposed* to hold one JSON object (possibly
fenced, wrapped in prose, truncated mid-object or carrying trailing commas)
into text that ``json.loads`` accepts, or raises
:class:`~src.exceptions.MalformedOutputError` with both the original and the
cleaned text attached.

The engine is pure and deterministic: no I/O, no shared state, and text that
already parses as an object is returned unchanged, so ``repair`` is a fixed
point on its own output.

Usage::

    from src.services.repair import RepairEngine

    result = RepairEngine().repair('Sure! {"x":1} Hope this helps.')
    result.cleaned_text                      # '{"x":1}'
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from src.exceptions import MalformedOutputError
from src.schemas.generation import RepairDiagnostics, Strictness
from src.services.normalizer import isolate_object, strip_code_fences

logger = logging.getLogger(__name__)

_STRUCTURAL = frozenset("{}[]:,")
_LITERALS = frozenset({"true", "false", "null"})
_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")
_ANSWER_KEYS = frozenset({"correctAnswer", "correct_answer"})

# Heuristics that can misfire on legitimate content; only run when relaxed.
RELAXED_HEURISTICS = frozenset({"quoted_bare_words", "quoted_numeric_answer"})


# ---------------------------------------------------------------------------
# Data containers
# ---------------------------------------------------------------------------


@dataclass
class StructureScan:
    """Delimiter bookkeeping from one left-to-right scan.

    Attributes:
        boundary: Index of the ``}`` closing the first complete top-level
            object, or ``None`` if the braces never balanced.
        open_braces / close_braces / open_brackets / close_brackets:
            Delimiter counts outside quoted strings, up to the boundary.
        open_stack: Still-open delimiters, outermost first.
        ends_in_string: The text ended inside a quoted string.
        ends_with_escape: The text ended right after a backslash.
    """

    boundary: int | None = None
    open_braces: int = 0
    close_braces: int = 0
    open_brackets: int = 0
    close_brackets: int = 0
    open_stack: list[str] = field(default_factory=list)
    ends_in_string: bool = False
    ends_with_escape: bool = False

    @property
    def brace_deficit(self) -> int:
        return max(0, self.open_braces - self.close_braces)

    @property
    def bracket_deficit(self) -> int:
        return max(0, self.open_brackets - self.close_brackets)

    def closing_suffix(self) -> str:
        """Closers needed to balance the text, innermost first.

        Falls back to "all brackets, then all braces" when the open stack
        disagrees with the raw counters (mismatched closers in the input).
        """
        from_stack = "".join("}" if c == "{" else "]" for c in reversed(self.open_stack))
        if (
            from_stack.count("}") == self.brace_deficit
            and from_stack.count("]") == self.bracket_deficit
        ):
            return from_stack
        return "]" * self.bracket_deficit + "}" * self.brace_deficit


@dataclass
class RepairResult:
    """Outcome of a successful repair.

    Attributes:
        original_text: Raw text as received.
        cleaned_text: Text that parsed under ``json.loads``.
        data: The parsed top-level object.
        heuristics: Names of the repair steps that changed the text, in order.
    """

    original_text: str
    cleaned_text: str
    data: dict[str, Any]
    heuristics: list[str] = field(default_factory=list)

    @property
    def non_authoritative(self) -> bool:
        return any(h in RELAXED_HEURISTICS for h in self.heuristics)

    def to_diagnostics(self) -> RepairDiagnostics:
        return RepairDiagnostics(
            raw_text=self.original_text,
            cleaned_text=self.cleaned_text,
            heuristics=list(self.heuristics),
            non_authoritative=self.non_authoritative,
        )


# ---------------------------------------------------------------------------
# Scanner
# ---------------------------------------------------------------------------


def scan_structure(text: str) -> StructureScan:
    """Scan ``text`` once, tracking strings, escapes and delimiter balance.

    Characters inside quoted strings never touch the counters. The scan stops
    at the first index where the brace counter returns to zero after having
    been positive.

    Args:
        text: Candidate object text, normally starting with ``{``.

    Returns:
        The :class:`StructureScan` for ``text``.
    """
    scan = StructureScan()
    in_string = False
    escape = False

    for index, char in enumerate(text):
        if in_string:
            if escape:
                escape = False
            elif char == "\\":
                escape = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char == "{":
            scan.open_braces += 1
            scan.open_stack.append("{")
        elif char == "[":
            scan.open_brackets += 1
            scan.open_stack.append("[")
        elif char == "}":
            scan.close_braces += 1
            _pop_until(scan.open_stack, "{")
            if scan.open_braces > 0 and scan.open_braces == scan.close_braces:
                scan.boundary = index
                break
        elif char == "]":
            scan.close_brackets += 1
            _pop_until(scan.open_stack, "[")

    scan.ends_in_string = in_string and scan.boundary is None
    scan.ends_with_escape = escape and scan.boundary is None
    return scan


def _pop_until(stack: list[str], opener: str) -> None:
    if opener not in stack:
        return
    while stack and stack.pop() != opener:
        pass


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class RepairEngine:
    """Deterministic repair of malformed JSON objects.

    Args:
        strictness: ``conservative`` runs structural repair only;
            ``relaxed`` also quotes bare-word values and numeric answers.
    """

    def __init__(self, strictness: Strictness = Strictness.CONSERVATIVE) -> None:
        self.strictness = strictness

    @property
    def relaxed(self) -> bool:
        return self.strictness is Strictness.RELAXED

    def repair(self, text: str) -> RepairResult:
        """Repair ``text`` and parse it.

        Args:
            text: Raw model output.

        Returns:
            :class:`RepairResult` holding the cleaned text and parsed object.

        Raises:
            MalformedOutputError: If no object is present or the cleaned text
                still does not parse as a JSON object.
        """
        already_valid = _loads_object(text)
        if already_valid is not None:
            return RepairResult(original_text=text, cleaned_text=text, data=already_valid)

        heuristics: list[str] = []

        unfenced = strip_code_fences(text)
        if unfenced != text:
            heuristics.append("stripped_code_fences")

        candidate = isolate_object(unfenced)
        if candidate is None:
            raise MalformedOutputError(
                "No JSON object found in response", original_text=text, cleaned_text=""
            )
        if unfenced[: len(unfenced) - len(candidate)].strip():
            heuristics.append("discarded_leading_text")

        candidate = self._balance(candidate, heuristics)
        cleaned = self._normalize_tokens(candidate, heuristics)

        try:
            data = json.loads(cleaned)
        except json.JSONDecodeError as exc:
            logger.error(
                "Repaired text still not valid JSON (first 500 chars): %s", cleaned[:500]
            )
            raise MalformedOutputError(
                f"Response is not valid JSON after repair: {exc}",
                original_text=text,
                cleaned_text=cleaned,
            ) from exc

        if not isinstance(data, dict):
            raise MalformedOutputError(
                f"Expected a JSON object, got {type(data).__name__}",
                original_text=text,
                cleaned_text=cleaned,
            )

        logger.debug("Repair applied %s", heuristics or "no changes")
        return RepairResult(
            original_text=text, cleaned_text=cleaned, data=data, heuristics=heuristics
        )

    def repair_text(self, text: str) -> str:
        """Return only the cleaned text of :meth:`repair`."""
        return self.repair(text).cleaned_text

    def parse(self, text: str) -> dict[str, Any]:
        """Return only the parsed object of :meth:`repair`."""
        return self.repair(text).data

    # ------------------------------------------------------------------
    # Structural balancing
    # ------------------------------------------------------------------

    def _balance(self, candidate: str, heuristics: list[str]) -> str:
        scan = scan_structure(candidate)
        logger.debug(
            "Structure analysis: {%d/%d} [%d/%d] boundary=%s",
            scan.open_braces,
            scan.close_braces,
            scan.open_brackets,
            scan.close_brackets,
            scan.boundary,
        )

        if scan.boundary is not None:
            if candidate[scan.boundary + 1 :].strip():
                heuristics.append("discarded_trailing_text")
            return candidate[: scan.boundary + 1]

        balanced = candidate.rstrip()
        if scan.ends_in_string:
            if scan.ends_with_escape:
                balanced = candidate[:-1]
            else:
                balanced = candidate
            balanced += '"'
            heuristics.append("closed_open_string")

        suffix = scan.closing_suffix()
        if suffix:
            heuristics.append("appended_closers")
        return balanced + suffix

    # ------------------------------------------------------------------
    # Token normalization (string-aware)
    # ------------------------------------------------------------------

    def _normalize_tokens(self, text: str, heuristics: list[str]) -> str:
        out: list[str] = []
        fired: set[str] = set()
        in_string = False
        escape = False
        string_start = 0
        last_string = ""
        pending_space = False
        i = 0
        n = len(text)

        while i < n:
            char = text[i]

            if in_string:
                if escape:
                    out.append(char)
                    escape = False
                elif char == "\\":
                    out.append(char)
                    escape = True
                elif char == '"':
                    out.append(char)
                    in_string = False
                    last_string = text[string_start + 1 : i]
                elif char < " ":
                    out.append(_escape_control(char))
                    fired.add("escaped_control_characters")
                else:
                    out.append(char)
                i += 1
                continue

            if char.isspace():
                j = i
                while j < n and text[j].isspace():
                    j += 1
                if text[i:j] != " ":
                    fired.add("collapsed_whitespace")
                pending_space = True
                i = j
                continue

            if char == "," and _next_significant(text, i + 1) in ("}", "]"):
                fired.add("removed_trailing_commas")
                i += 1
                continue

            if pending_space:
                if out and out[-1] not in _STRUCTURAL and char not in _STRUCTURAL:
                    out.append(" ")
                else:
                    fired.add("collapsed_whitespace")
                pending_space = False

            if char == ":" and self.relaxed:
                coerced, end, name = _coerce_value(text, i + 1, last_string)
                if coerced is not None:
                    out.append(":")
                    out.append(coerced)
                    fired.add(name)
                    i = end
                    continue

            if char == '"':
                in_string = True
                string_start = i
            out.append(char)
            i += 1

        if pending_space:
            fired.add("collapsed_whitespace")

        heuristics.extend(
            name
            for name in (
                "escaped_control_characters",
                "removed_trailing_commas",
                "collapsed_whitespace",
                "quoted_numeric_answer",
                "quoted_bare_words",
            )
            if name in fired
        )
        return "".join(out)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _loads_object(text: str) -> dict[str, Any] | None:
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return None
    return data if isinstance(data, dict) else None


def _next_significant(text: str, start: int) -> str:
    for char in text[start:]:
        if not char.isspace():
            return char
    return ""


def _escape_control(char: str) -> str:
    escapes = {"\n": "\\n", "\r": "\\r", "\t": "\\t"}
    return escapes.get(char, f"\\u{ord(char):04x}")


def _coerce_value(text: str, start: int, key: str) -> tuple[str | None, int, str]:
    """Quote an unquoted value following a colon, conservatively.

    Returns ``(quoted_value, end_index, heuristic_name)``; ``quoted_value`` is
    ``None`` when the value is left alone. The value runs up to the next
    ``,``, ``}`` or ``]`` and must not contain quotes, colons or openers.
    """
    j = start
    while j < len(text) and text[j].isspace():
        j += 1
    k = j
    while k < len(text) and text[k] not in ",}]":
        k += 1
    raw = text[j:k].strip()

    if not raw or k >= len(text) or any(c in raw for c in '"{[:'):
        return None, start, ""

    if key in _ANSWER_KEYS and _NUMBER_RE.fullmatch(raw):
        return json.dumps(raw), k, "quoted_numeric_answer"

    if raw[0].isalpha() and raw not in _LITERALS:
        return json.dumps(raw, ensure_ascii=False), k, "quoted_bare_words"

    return None, start, ""
