from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor

from ..rules.sites import ScriptView, ViewCache
from .errors import ScanCancelled
from .models import Diagnostic, Hit, RawMatch, Rule, SourceFile
from .regions import RegionFilter

log = logging.getLogger(__name__)


class FileContext:
    """Per-file state handed to rule procedures: region filter and script view, both lazy."""

    def __init__(self, file: SourceFile, views: ViewCache | None = None) -> None:
        self.file = file
        self.regions = RegionFilter(file)
        self._views = views if views is not None else ViewCache()

    @property
    def script(self) -> ScriptView:
        return self._views.get(self.file)


def match(
    file: SourceFile,
    rules: list[Rule],
    views: ViewCache | None = None,
) -> tuple[list[RawMatch], list[Diagnostic]]:
    """Apply every rule that targets the file's kind. A failing rule is recorded, not raised."""
    ctx = FileContext(file, views)
    matches: list[RawMatch] = []
    diagnostics: list[Diagnostic] = []

    for rule in rules:
        if not rule.applies_to(file.kind):
            continue
        try:
            hits = rule.procedure(file, ctx)
            matches.extend(_to_matches(rule, file, hits))
        except Exception as e:
            log.warning("rule %s failed on %s: %s", rule.id, file.rel_path, e)
            diagnostics.append(Diagnostic(
                kind="rule_failed",
                path=file.rel_path,
                reason=f"{type(e).__name__}: {e}",
                rule_id=rule.id,
            ))
    return matches, diagnostics


def match_corpus(
    files: list[SourceFile],
    rules: list[Rule],
    workers: int = 4,
    cancel: threading.Event | None = None,
    views: ViewCache | None = None,
) -> tuple[list[RawMatch], list[Diagnostic]]:
    """Match all files on a bounded pool. Returns only once every file is done."""
    views = views if views is not None else ViewCache()
    matches: list[RawMatch] = []
    diagnostics: list[Diagnostic] = []
    sink = threading.Lock()

    def work(file: SourceFile) -> None:
        if cancel is not None and cancel.is_set():
            return
        file_matches, file_diagnostics = match(file, rules, views)
        with sink:
            matches.extend(file_matches)
            diagnostics.extend(file_diagnostics)

    with ThreadPoolExecutor(max_workers=max(1, workers), thread_name_prefix="ngrisk-match") as pool:
        futures = [pool.submit(work, f) for f in files]
        for future in futures:
            # surfaces anything match() did not turn into a diagnostic
            future.result()

    if cancel is not None and cancel.is_set():
        raise ScanCancelled("scan cancelled during matching")

    matches.sort(key=lambda m: (m.file.rel_path, m.line, m.column, m.rule_id))
    diagnostics.sort(key=lambda d: (d.path, d.rule_id or "", d.reason))
    log.debug("matched %d files: %d raw matches, %d rule failures", len(files), len(matches), len(diagnostics))
    return matches, diagnostics


def _to_matches(rule: Rule, file: SourceFile, hits: list[Hit]) -> list[RawMatch]:
    """Convert hits to RawMatches, dropping repeats and overlaps."""
    out: list[RawMatch] = []
    last_end = -1
    size = len(file.text)
    for hit in sorted(set(hits), key=lambda h: (h.start, h.end)):
        if not 0 <= hit.start <= hit.end <= size:
            raise ValueError(f"hit span {hit.start}..{hit.end} outside file of length {size}")
        if hit.start < last_end:
            continue
        last_end = hit.end
        line = file.line_of(hit.start)
        column = file.column_of(hit.start)
        end_column = column + (hit.end - hit.start) if file.line_of(hit.end) == line else column
        out.append(RawMatch(
            rule_id=rule.id,
            file=file,
            line=line,
            column=column,
            end_column=end_column,
            captured=hit.captured,
        ))
    return out
