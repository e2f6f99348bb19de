"""End-to-end scans of the fixture projects."""
import threading
from pathlib import Path

import pytest

from ngrisk.config import ScanConfig
from ngrisk.core.catalogue import build_catalogue
from ngrisk.core.errors import NotFound, ScanCancelled
from ngrisk.core.models import Rule
from ngrisk.core.scan import scan
from ngrisk.report import render_json

FIXTURES = Path(__file__).parent / "fixtures"
SAMPLE_APP = FIXTURES / "sample_app"
CLEAN_APP = FIXTURES / "clean_app"

DASHBOARD = "src/app/dashboard/dashboard.component"

EXPECTED = [
    ("NG001", "critical", f"{DASHBOARD}.html", 2),
    ("NG002", "critical", f"{DASHBOARD}.html", 8),
    ("NG004", "critical", f"{DASHBOARD}.ts", 30),
    ("NG005", "high", f"{DASHBOARD}.html", 11),
    ("NG101", "high", f"{DASHBOARD}.ts", 33),
    ("NG006", "high", f"{DASHBOARD}.ts", 34),
    ("NG007", "medium", f"{DASHBOARD}.scss", 1),
    ("NG102", "medium", f"{DASHBOARD}.ts", 25),
    ("NG103", "medium", "src/app/shared/item.service.ts", 10),
    ("NG102", "medium", "src/app/shared/item.service.ts", 11),
    ("NG003", "low", f"{DASHBOARD}.html", 9),
    ("NG008", "low", f"{DASHBOARD}.scss", 5),
    ("NG009", "low", f"{DASHBOARD}.spec.ts", 6),
]


def _summary(report):
    return [(f.rule_id, f.severity, f.file, f.line) for f in report.findings]


# --- fixture project ---

def test_sample_app_findings():
    report = scan(SAMPLE_APP)

    assert _summary(report) == EXPECTED
    assert report.summary == {"critical": 3, "high": 3, "medium": 4, "low": 3}
    assert report.files_scanned == 6
    assert report.diagnostics == []


def test_sample_app_cross_references():
    report = scan(SAMPLE_APP)
    refs = {(f.rule_id, f.line): f.cross_ref for f in report.findings}

    assert refs[("NG001", 2)] == f"{DASHBOARD}.ts:15"
    assert refs[("NG002", 8)] == "src/app/shared/base-list.component.ts:4"
    assert refs[("NG101", 33)] == f"{DASHBOARD}.ts:16"
    assert refs[("NG003", 9)] is None


def test_clean_app_has_no_findings():
    report = scan(CLEAN_APP)
    assert report.findings == []
    assert report.summary == {"critical": 0, "high": 0, "medium": 0, "low": 0}
    assert report.files_scanned == 2


def test_repeated_scans_are_identical():
    first = render_json(scan(SAMPLE_APP, ScanConfig(workers=1)))
    second = render_json(scan(SAMPLE_APP, ScanConfig(workers=8)))
    assert first == second


def test_threshold_and_disabled_rules():
    config = ScanConfig(severity_threshold="high", disabled_rules=["NG001", "NG002"])
    report = scan(SAMPLE_APP, config)

    assert [f.rule_id for f in report.findings] == ["NG004", "NG005", "NG101", "NG006"]


def test_excluded_vendor_tree(tmp_path):
    (tmp_path / "node_modules" / "lib").mkdir(parents=True)
    (tmp_path / "node_modules" / "lib" / "index.ts").write_text("if (this.open) {}\n", encoding="utf-8")
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "main.ts").write_text("export const ok = 1;\n", encoding="utf-8")

    report = scan(tmp_path)

    assert report.findings == []
    assert report.files_scanned == 1


# --- failures ---

def test_missing_root():
    with pytest.raises(NotFound):
        scan(FIXTURES / "does-not-exist")


def test_failing_rule_does_not_stop_the_scan(tmp_path):
    (tmp_path / "a.ts").write_text("export class A {\n  f() { this.x.mutate(g); }\n}\n", encoding="utf-8")
    (tmp_path / "b.ts").write_text("export const b = 1;\n", encoding="utf-8")

    def fails_on_b(file, ctx):
        if file.rel_path == "b.ts":
            raise KeyError("missing")
        return []

    broken = Rule(id="X900", title="Broken", severity="high", kinds=frozenset({"script"}),
                  procedure=fails_on_b, message="x")
    rules = build_catalogue()[:10] + [broken]

    report = scan(tmp_path, rules=rules)

    assert len(rules) == 11
    assert [(f.rule_id, f.file) for f in report.findings] == [("NG006", "a.ts")]
    assert report.failed_rules == 1
    assert report.diagnostics[0].rule_id == "X900"
    assert report.diagnostics[0].path == "b.ts"


def test_skipped_files_are_counted(tmp_path):
    (tmp_path / "a.ts").write_text("export const a = 1;\n", encoding="utf-8")
    (tmp_path / "b.ts").write_bytes(b"\x00\x00")

    report = scan(tmp_path)

    assert report.files_scanned == 1
    assert report.skipped_files == 1


def test_cancelled_scan():
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(ScanCancelled):
        scan(SAMPLE_APP, cancel=cancel)
