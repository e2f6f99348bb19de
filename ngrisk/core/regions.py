"""Lexical regions of a source file: comments, string literals, template interpolations.

This is a single-pass character scanner, not a parser. It knows just enough
about TypeScript, SCSS and HTML to tell code apart from comments and quoted
text, so that textual rules can be restricted to a region and structural rules
can work on masked text without tripping over braces inside strings.
"""
from __future__ import annotations

import re
from bisect import bisect_right

from .models import SourceFile

REGIONS = ("any", "code", "interpolation")

_MARKUP_COMMENT = re.compile(r"<!--.*?(?:-->|\Z)", re.DOTALL)
_INTERPOLATION = re.compile(r"\{\{.*?\}\}", re.DOTALL)


class SpanSet:
    """Sorted, non-overlapping [start, end) spans with O(log n) membership."""

    def __init__(self, spans: list[tuple[int, int]]) -> None:
        merged: list[tuple[int, int]] = []
        for start, end in sorted(spans):
            if merged and start <= merged[-1][1]:
                merged[-1] = (merged[-1][0], max(end, merged[-1][1]))
            else:
                merged.append((start, end))
        self._starts = [s for s, _ in merged]
        self._spans = merged

    def __contains__(self, offset: int) -> bool:
        i = bisect_right(self._starts, offset) - 1
        return i >= 0 and offset < self._spans[i][1]

    def __iter__(self):
        return iter(self._spans)

    def __len__(self) -> int:
        return len(self._spans)


def lex(text: str, line_comments: bool = True, quotes: str = "'\"`") -> tuple[list[tuple[int, int]], list[tuple[int, int]]]:
    """Return (comment spans, string-literal spans) for C-family text.

    String spans cover the contents only, not the quote characters.
    """
    comments: list[tuple[int, int]] = []
    strings: list[tuple[int, int]] = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        nxt = text[i + 1] if i + 1 < n else ""
        if ch == "/" and nxt == "*":
            end = text.find("*/", i + 2)
            end = n if end < 0 else end + 2
            comments.append((i, end))
            i = end
        elif ch == "/" and nxt == "/" and line_comments and (i == 0 or text[i - 1] != ":"):
            end = text.find("\n", i)
            end = n if end < 0 else end
            comments.append((i, end))
            i = end
        elif ch in quotes:
            j = i + 1
            while j < n and text[j] != ch:
                if text[j] == "\\":
                    j += 1
                elif text[j] == "\n" and ch != "`":
                    # unterminated single-line string
                    break
                j += 1
            strings.append((i + 1, min(j, n)))
            i = j + 1
        else:
            i += 1
    return comments, strings


def masked(text: str, spans) -> str:
    """Replace every character inside spans with a space, keeping newlines and offsets."""
    chars = list(text)
    for start, end in spans:
        for k in range(start, end):
            if chars[k] != "\n":
                chars[k] = " "
    return "".join(chars)


def excluded_spans(file: SourceFile) -> SpanSet:
    """Spans that are not code for the file's kind."""
    if file.kind == "markup":
        spans = [(m.start(), m.end()) for m in _MARKUP_COMMENT.finditer(file.text)]
        # quoted text inside {{ }} is data, not template expression
        for start, end in interpolation_spans(file):
            _, strings = lex(file.text[start:end], line_comments=False, quotes="'\"")
            spans.extend((start + s, start + e) for s, e in strings)
        return SpanSet(spans)
    if file.kind in ("script", "stylesheet"):
        comments, strings = lex(file.text, quotes="'\"`" if file.kind == "script" else "'\"")
        return SpanSet(comments + strings)
    return SpanSet([])


def interpolation_spans(file: SourceFile) -> SpanSet:
    return SpanSet([(m.start() + 2, m.end() - 2) for m in _INTERPOLATION.finditer(file.text)])


def code_text(file: SourceFile) -> str:
    """File text with comments and string contents blanked out."""
    return masked(file.text, excluded_spans(file))


class RegionFilter:
    """Decides whether an offset lies in a named region of one file."""

    def __init__(self, file: SourceFile) -> None:
        self._file = file
        self._excluded: SpanSet | None = None
        self._interpolations: SpanSet | None = None

    def accepts(self, region: str, offset: int) -> bool:
        if region == "any":
            return True
        if self._excluded is None:
            self._excluded = excluded_spans(self._file)
        if offset in self._excluded:
            return False
        if region == "interpolation":
            if self._interpolations is None:
                self._interpolations = interpolation_spans(self._file)
            return offset in self._interpolations
        return True
