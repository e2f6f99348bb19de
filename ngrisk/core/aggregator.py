from __future__ import annotations

from collections import Counter

from .errors import InvariantViolation
from .models import SEVERITIES, SEVERITY_RANK, Diagnostic, Finding, Report


def aggregate(
    findings: list[Finding],
    files_scanned: int = 0,
    diagnostics: list[Diagnostic] | None = None,
    threshold: str = "low",
) -> Report:
    """Group classified findings into a Report. Pure; the input list is not modified."""
    floor = SEVERITY_RANK[threshold]
    kept = [f for f in findings if SEVERITY_RANK[f.severity] >= floor]
    _verify_order(kept)

    groups: dict[str, dict[str, list[Finding]]] = {}
    for severity in SEVERITIES:
        tier = [f for f in kept if f.severity == severity]
        if not tier:
            continue
        by_rule: dict[str, list[Finding]] = {}
        for rule_id in sorted({f.rule_id for f in tier}):
            by_rule[rule_id] = [f for f in tier if f.rule_id == rule_id]
        groups[severity] = by_rule

    counts = Counter(f.severity for f in kept)
    rule_counts = Counter(f.rule_id for f in kept)
    return Report(
        findings=kept,
        summary={severity: counts.get(severity, 0) for severity in SEVERITIES},
        groups=groups,
        rule_counts=dict(sorted(rule_counts.items())),
        files_scanned=files_scanned,
        diagnostics=sorted(diagnostics or [], key=lambda d: (d.kind, d.path, d.rule_id or "", d.reason)),
    )


def _verify_order(findings: list[Finding]) -> None:
    for prev, cur in zip(findings, findings[1:]):
        if prev.sort_key() > cur.sort_key():
            raise InvariantViolation(
                f"findings out of order: {prev.rule_id} {prev.file}:{prev.line} "
                f"before {cur.rule_id} {cur.file}:{cur.line}"
            )
