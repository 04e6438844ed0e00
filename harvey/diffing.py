from __future__ import annotations

import difflib
import html
import re
from dataclasses import dataclass

# Words, runs of whitespace and single punctuation marks are separate tokens,
# so a whitespace-only change shows up as an ordinary add/remove.
_TOKEN_RE = re.compile(r"\s+|\w+|[^\w\s]", re.UNICODE)

_ADDED_STYLE = "background-color: #e6ffec; color: #24292f; text-decoration: none;"
_REMOVED_STYLE = "background-color: #ffebe9; color: #24292f; text-decoration: line-through;"
_UNCHANGED_STYLE = "color: #24292f;"


@dataclass(frozen=True, slots=True)
class DiffPart:
    value: str
    added: bool = False
    removed: bool = False


def tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(text)


def diff_words(old: str, new: str) -> list[DiffPart]:
    """Word-level diff of ``old`` against ``new``.

    Adjacent tokens with the same disposition are merged. For replaced
    spans the removal is listed before the addition.
    """
    old_tokens = tokenize(old)
    new_tokens = tokenize(new)
    matcher = difflib.SequenceMatcher(a=old_tokens, b=new_tokens, autojunk=False)
    parts: list[DiffPart] = []
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            _append(parts, "".join(old_tokens[i1:i2]))
            continue
        if tag in ("delete", "replace"):
            _append(parts, "".join(old_tokens[i1:i2]), removed=True)
        if tag in ("insert", "replace"):
            _append(parts, "".join(new_tokens[j1:j2]), added=True)
    return parts


def added_text(parts: list[DiffPart]) -> str:
    return "".join(part.value for part in parts if part.added)


def removed_text(parts: list[DiffPart]) -> str:
    return "".join(part.value for part in parts if part.removed)


def has_changes(parts: list[DiffPart]) -> bool:
    return any(part.added or part.removed for part in parts)


def render_html(old: str, new: str) -> str:
    spans = []
    for part in diff_words(old, new):
        if part.added:
            style = _ADDED_STYLE
        elif part.removed:
            style = _REMOVED_STYLE
        else:
            style = _UNCHANGED_STYLE
        spans.append(f'<span style="{style}">{html.escape(part.value)}</span>')
    return "".join(spans)


def render_text(old: str, new: str) -> str:
    """Line-oriented rendering with ``+ `` / ``- `` markers; blank changed lines are dropped."""
    lines: list[str] = []
    for line in difflib.ndiff(old.splitlines(), new.splitlines()):
        marker, text = line[:2], line[2:]
        if marker == "? ":
            continue
        if marker in ("+ ", "- "):
            if text.strip():
                lines.append(f"{marker}{text}")
            continue
        lines.append(text)
    return "\n".join(lines)


def _append(parts: list[DiffPart], value: str, *, added: bool = False, removed: bool = False) -> None:
    if not value:
        return
    if parts and parts[-1].added == added and parts[-1].removed == removed:
        parts[-1] = DiffPart(parts[-1].value + value, added=added, removed=removed)
        return
    parts.append(DiffPart(value, added=added, removed=removed))
