"""Text normalizer for raw model output.

Strips markdown code fences and leading prose so the repair engine starts
scanning at the first candidate object. Fence markers inside JSON string
values are content and are left alone.
"""

import re

_FENCE_OPEN_RE = re.compile(r"```[ \t]*(?:json|javascript|js)?[ \t]*\r?\n?", re.IGNORECASE)
_FENCE_CLOSE_RE = re.compile(r"```")
_FENCE = "```"


def strip_code_fences(text: str) -> str:
    """Remove markdown code-fence markers, keeping the fenced content.

    Handles both ```` ```json ```` and plain ```` ``` ```` fences. Before the
    first ``{`` every marker is removed (models often prefix the fence with
    prose); from the first ``{`` on, only markers outside quoted strings are.

    Args:
        text: Raw response text.

    Returns:
        Text with every fence marker outside string values removed.
    """
    start = text.find("{")
    if start == -1:
        return _strip_all(text)
    return _strip_all(text[:start]) + _strip_outside_strings(text[start:])


def isolate_object(text: str) -> str | None:
    """Return ``text`` from its first opening brace, or ``None`` if there is none."""
    start = text.find("{")
    if start == -1:
        return None
    return text[start:]


def _strip_all(text: str) -> str:
    return _FENCE_CLOSE_RE.sub("", _FENCE_OPEN_RE.sub("", text))


def _strip_outside_strings(text: str) -> str:
    out: list[str] = []
    in_string = False
    escape = False
    i = 0

    while i < len(text):
        char = text[i]
        if in_string:
            if escape:
                escape = False
            elif char == "\\":
                escape = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif text.startswith(_FENCE, i):
            i = _FENCE_OPEN_RE.match(text, i).end()
            continue
        out.append(char)
        i += 1

    return "".join(out)
