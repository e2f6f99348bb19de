from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Callable, NamedTuple

SEVERITY_RANK = {"low": 0, "medium": 1, "high": 2, "critical": 3}

# Report order: most severe first
SEVERITIES = ("critical", "high", "medium", "low")

FILE_KINDS = ("markup", "script", "stylesheet", "other")

_KIND_BY_SUFFIX = {
    ".html": "markup",
    ".htm": "markup",
    ".ts": "script",
    ".mts": "script",
    ".js": "script",
    ".mjs": "script",
    ".scss": "stylesheet",
    ".sass": "stylesheet",
    ".css": "stylesheet",
    ".less": "stylesheet",
}


def kind_for_path(path: Path | str) -> str:
    return _KIND_BY_SUFFIX.get(PurePosixPath(str(path)).suffix.lower(), "other")


def normalize_severity(value: str) -> str:
    """Return the canonical lowercase severity name, or raise ValueError."""
    lowered = str(value).strip().lower()
    if lowered not in SEVERITY_RANK:
        raise ValueError(f"unknown severity {value!r} (valid: {', '.join(SEVERITIES)})")
    return lowered


@dataclass(frozen=True, eq=False)
class SourceFile:
    """One loaded file. Immutable; shared read-only between workers."""

    path: Path
    rel_path: str
    kind: str
    text: str
    line_starts: tuple[int, ...] = field(repr=False)

    @classmethod
    def from_text(cls, path: Path, rel_path: str, text: str) -> SourceFile:
        starts = [0]
        for i, ch in enumerate(text):
            if ch == "\n":
                starts.append(i + 1)
        return cls(path=path, rel_path=rel_path, kind=kind_for_path(path), text=text, line_starts=tuple(starts))

    @property
    def component_key(self) -> str:
        """Root-relative path without its last suffix: 'app/x.component.html' -> 'app/x.component'."""
        rel = PurePosixPath(self.rel_path)
        return str(rel.with_suffix("")) if rel.suffix else self.rel_path

    def line_of(self, offset: int) -> int:
        """1-based line number of a character offset."""
        return bisect_right(self.line_starts, offset)

    def column_of(self, offset: int) -> int:
        """1-based column of a character offset."""
        return offset - self.line_starts[self.line_of(offset) - 1] + 1


class Hit(NamedTuple):
    """A span reported by a rule procedure, in absolute character offsets."""

    start: int
    end: int
    captured: str


@dataclass(frozen=True)
class RuleContext:
    lookup: str  # "confirm" | "suppress"
    scope: str = "file"  # "file" | "component"


@dataclass(frozen=True)
class Rule:
    id: str
    title: str
    severity: str
    kinds: frozenset[str]
    procedure: Callable = field(repr=False, compare=False)
    message: str
    context: RuleContext | None = None
    upgrade_to: str | None = None
    structural: bool = False

    @property
    def max_severity(self) -> str:
        if self.upgrade_to and SEVERITY_RANK[self.upgrade_to] > SEVERITY_RANK[self.severity]:
            return self.upgrade_to
        return self.severity

    def applies_to(self, kind: str) -> bool:
        return kind in self.kinds

    def render(self, captured: str) -> str:
        return self.message.format(name=captured)


@dataclass(frozen=True)
class RawMatch:
    rule_id: str
    file: SourceFile = field(repr=False)
    line: int
    column: int
    end_column: int
    captured: str


@dataclass(frozen=True)
class Finding:
    rule_id: str
    severity: str
    file: str
    line: int
    message: str
    cross_ref: str | None = None

    def sort_key(self) -> tuple:
        return (-SEVERITY_RANK[self.severity], self.file, self.line, self.rule_id, self.message)


@dataclass(frozen=True)
class Diagnostic:
    kind: str  # "skipped_file" | "rule_failed"
    path: str
    reason: str
    rule_id: str | None = None

    def describe(self) -> str:
        if self.kind == "rule_failed":
            return f"rule {self.rule_id} failed on {self.path}: {self.reason}"
        return f"skipped {self.path}: {self.reason}"


@dataclass
class Report:
    findings: list[Finding]
    summary: dict[str, int]
    groups: dict[str, dict[str, list[Finding]]]
    rule_counts: dict[str, int]
    files_scanned: int = 0
    diagnostics: list[Diagnostic] = field(default_factory=list)

    @property
    def skipped_files(self) -> int:
        return sum(1 for d in self.diagnostics if d.kind == "skipped_file")

    @property
    def failed_rules(self) -> int:
        return sum(1 for d in self.diagnostics if d.kind == "rule_failed")

    def has_findings_at_or_above(self, level: str) -> bool:
        threshold = SEVERITY_RANK[level]
        return any(SEVERITY_RANK[f.severity] >= threshold for f in self.findings)
