"""Turns raw matches into findings using corpus-wide context.

Runs only after matching has finished for every file: base classes and sibling
component files may live anywhere in the corpus.
"""
from __future__ import annotations

import logging
import re
from collections import defaultdict

from ..rules.sites import Declaration, ViewCache
from .errors import InvariantViolation
from .models import SEVERITY_RANK, Finding, RawMatch, Rule, SourceFile

log = logging.getLogger(__name__)

INLINE_IGNORE_PATTERN = re.compile(r"ngrisk:ignore(?:\s+([A-Za-z0-9_, -]+))?", re.IGNORECASE)
_RULE_TOKEN = re.compile(r"[A-Za-z]+[0-9]+")

UNCONFIRMED_SEVERITY = "low"
UNCONFIRMED_SUFFIX = " (unconfirmed: no signal declaration found)"


class CorpusIndex:
    """Lookups across the loaded corpus: component siblings and class declarations."""

    def __init__(self, corpus: list[SourceFile], views: ViewCache | None = None) -> None:
        self._views = views if views is not None else ViewCache()
        self._scripts = sorted((f for f in corpus if f.kind == "script"), key=lambda f: f.rel_path)
        self._by_component: dict[str, list[SourceFile]] = defaultdict(list)
        for f in self._scripts:
            self._by_component[f.component_key].append(f)
        self._classes: dict[str, list[SourceFile]] | None = None

    def lookup_space(self, file: SourceFile, scope: str) -> list[SourceFile]:
        """Script files whose declarations count for a match in ``file``."""
        space = [file] if file.kind == "script" else []
        if scope == "component":
            space.extend(f for f in self._by_component.get(file.component_key, []) if f is not file)
        return space

    def find_declaration(self, name: str, file: SourceFile, scope: str) -> tuple[SourceFile, Declaration] | None:
        """Search the lookup space, then base classes transitively, for a signal named ``name``."""
        queue = list(self.lookup_space(file, scope))
        visited: set[str] = set()
        while queue:
            candidate = queue.pop(0)
            if candidate.rel_path in visited:
                continue
            visited.add(candidate.rel_path)
            view = self._views.get(candidate)
            decl = view.declarations.get(name)
            if decl is not None:
                return candidate, decl
            for site in view.classes:
                if site.base:
                    queue.extend(self.files_declaring(site.base))
        return None

    def files_declaring(self, class_name: str) -> list[SourceFile]:
        if self._classes is None:
            self._classes = defaultdict(list)
            for f in self._scripts:
                for site in self._views.get(f).classes:
                    self._classes[site.name].append(f)
        return self._classes.get(class_name, [])


def classify(
    matches: list[RawMatch],
    corpus: list[SourceFile],
    rules: list[Rule],
    views: ViewCache | None = None,
) -> list[Finding]:
    """Resolve, deduplicate and order findings.

    Order: severity (critical first), file path, line; rule id and message
    break remaining ties.
    """
    rules_by_id = {rule.id: rule for rule in rules}
    index = CorpusIndex(corpus, views)
    ignore_maps: dict[str, dict[int, set[str]]] = {}
    findings: dict[tuple[str, str, int, str], Finding] = {}

    for raw in matches:
        rule = rules_by_id.get(raw.rule_id)
        if rule is None:
            raise InvariantViolation(f"match for unknown rule {raw.rule_id}")

        key = (rule.id, raw.file.rel_path, raw.line, raw.captured)
        if key in findings:
            continue
        if _inline_ignored(raw, ignore_maps):
            log.debug("%s:%d: %s suppressed inline", raw.file.rel_path, raw.line, rule.id)
            continue

        finding = _classify_one(rule, raw, index)
        if finding is None:
            continue
        _check_severity(rule, finding)
        findings[key] = finding

    return sorted(findings.values(), key=Finding.sort_key)


def _classify_one(rule: Rule, raw: RawMatch, index: CorpusIndex) -> Finding | None:
    message = rule.render(raw.captured)
    if rule.context is None:
        return _finding(rule, raw, rule.severity, message)

    found = index.find_declaration(raw.captured, raw.file, rule.context.scope)
    cross_ref = None
    if found is not None:
        decl_file, decl = found
        cross_ref = f"{decl_file.rel_path}:{decl_file.line_of(decl.offset)}"

    if rule.context.lookup == "suppress":
        if found is not None:
            log.debug("%s:%d: %s suppressed by %s", raw.file.rel_path, raw.line, rule.id, cross_ref)
            return None
        return _finding(rule, raw, rule.severity, message)

    # confirm
    if found is not None:
        return _finding(rule, raw, rule.upgrade_to or rule.severity, message, cross_ref)
    if rule.upgrade_to:
        return _finding(rule, raw, rule.severity, message)
    return _finding(rule, raw, UNCONFIRMED_SEVERITY, message + UNCONFIRMED_SUFFIX)


def _finding(rule: Rule, raw: RawMatch, severity: str, message: str, cross_ref: str | None = None) -> Finding:
    return Finding(
        rule_id=rule.id,
        severity=severity,
        file=raw.file.rel_path,
        line=raw.line,
        message=message,
        cross_ref=cross_ref,
    )


def _check_severity(rule: Rule, finding: Finding) -> None:
    if finding.severity not in SEVERITY_RANK:
        raise InvariantViolation(f"{rule.id}: unknown severity '{finding.severity}'")
    if SEVERITY_RANK[finding.severity] > SEVERITY_RANK[rule.max_severity]:
        raise InvariantViolation(
            f"{rule.id}: finding severity '{finding.severity}' exceeds rule maximum '{rule.max_severity}'"
        )


def _inline_ignored(raw: RawMatch, cache: dict[str, dict[int, set[str]]]) -> bool:
    rel = raw.file.rel_path
    if rel not in cache:
        cache[rel] = _inline_ignore_map(raw.file.text)
    ignored = cache[rel].get(raw.line)
    return ignored is not None and ("*" in ignored or raw.rule_id in ignored)


def _inline_ignore_map(text: str) -> dict[int, set[str]]:
    rule_map: dict[int, set[str]] = {}
    for idx, line in enumerate(text.split("\n"), start=1):
        match = INLINE_IGNORE_PATTERN.search(line)
        if not match:
            continue
        rules = match.group(1)
        if rules is None:
            rule_map[idx] = {"*"}
            continue
        parsed = {token.upper() for token in _RULE_TOKEN.findall(rules)}
        rule_map[idx] = parsed if parsed else {"*"}
    return rule_map
