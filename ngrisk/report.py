"""Report emitters. Both are read-only views of a Report; only the JSON shape is a stable contract."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from .core.models import SEVERITIES, Finding, Report, Rule


def to_json_report(report: Report) -> dict[str, Any]:
    return {
        "summary": {severity: report.summary.get(severity, 0) for severity in SEVERITIES},
        "findings": [_finding_to_dict(f) for f in report.findings],
    }


def render_json(report: Report) -> str:
    return json.dumps(to_json_report(report), indent=2)


def render_human(report: Report, rules: list[Rule] | None = None) -> str:
    titles = {rule.id: rule.title for rule in rules or []}
    lines: list[str] = []

    if not report.findings:
        lines.append("Scan complete. No findings for the rules checked.")
    for severity, by_rule in report.groups.items():
        lines.append(f"{severity.upper()} ({report.summary[severity]})")
        for rule_id, findings in by_rule.items():
            title = titles.get(rule_id)
            lines.append(f"  {rule_id}: {title}" if title else f"  {rule_id}")
            for finding in findings:
                lines.append(f"    {finding.file}:{finding.line}  {finding.message}")
                if finding.cross_ref:
                    lines.append(f"      declared at {finding.cross_ref}")
        lines.append("")

    if report.diagnostics:
        lines.append("Diagnostics:")
        for diagnostic in report.diagnostics:
            lines.append(f"  - {diagnostic.describe()}")
        lines.append("")

    lines.append(_summary_line(report))
    return "\n".join(lines)


def render(report: Report, output_format: str, rules: list[Rule] | None = None) -> str:
    if output_format == "json":
        return render_json(report)
    if output_format == "human":
        return render_human(report, rules)
    raise ValueError(f"Unsupported report format: {output_format}")


def write_report(rendered: str, out: str | None) -> None:
    if out is None:
        print(rendered)
        return
    output_path = Path(out)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(rendered + "\n", encoding="utf-8")


def _summary_line(report: Report) -> str:
    counts = " ".join(f"{severity}={report.summary.get(severity, 0)}" for severity in SEVERITIES)
    return (
        f"Summary: {counts} | files scanned={report.files_scanned} "
        f"skipped files={report.skipped_files} failed rules={report.failed_rules}"
    )


def _finding_to_dict(finding: Finding) -> dict[str, Any]:
    return {
        "rule": finding.rule_id,
        "severity": finding.severity.upper(),
        "file": finding.file,
        "line": finding.line,
        "message": finding.message,
    }
