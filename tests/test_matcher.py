import threading
from pathlib import Path

import pytest

from ngrisk.core.catalogue import TextualProcedure, build_catalogue
from ngrisk.core.errors import ScanCancelled
from ngrisk.core.matcher import match, match_corpus
from ngrisk.core.models import Hit, Rule, SourceFile


def _file(rel, text):
    return SourceFile.from_text(Path(rel), rel, text)


def _textual(rule_id, pattern, kinds=("script",), region="any", severity="low"):
    return Rule(
        id=rule_id,
        title=rule_id,
        severity=severity,
        kinds=frozenset(kinds),
        procedure=TextualProcedure(pattern, region),
        message="found {name}",
    )


def _failing(rule_id="X900", kinds=("script",)):
    def explode(file, ctx):
        raise RuntimeError("boom")
    return Rule(id=rule_id, title="Broken", severity="low", kinds=frozenset(kinds), procedure=explode, message="x")


# --- textual rules ---

def test_rule_only_applies_to_its_kinds():
    rule = _textual("X001", r"(?P<name>foo)", kinds=("markup",))
    matches, _ = match(_file("a.ts", "foo\n"), [rule])
    assert matches == []

    matches, _ = match(_file("a.html", "foo\n"), [rule])
    assert [(m.rule_id, m.line, m.column, m.captured) for m in matches] == [("X001", 1, 1, "foo")]


def test_textual_match_positions():
    rule = _textual("X001", r"console\.(?P<name>log)\(")
    f = _file("a.ts", "const a = 1;\n  console.log(a);\n")

    matches, diagnostics = match(f, [rule])

    assert diagnostics == []
    (m,) = matches
    assert (m.line, m.column, m.end_column, m.captured) == (2, 3, 15, "log")


def test_textual_match_does_not_cross_lines():
    rule = _textual("X001", r"foo\s+bar")
    matches, _ = match(_file("a.ts", "foo\nbar\n"), [rule])
    assert matches == []


def test_code_region_skips_comments_and_strings():
    rule = _textual("X001", r"(?P<name>TODO)", region="code")
    f = _file("a.ts", "// TODO\nconst s = 'TODO';\nTODO();\n")

    matches, _ = match(f, [rule])

    assert [m.line for m in matches] == [3]


def test_captured_defaults_to_whole_match():
    rule = _textual("X001", r"::ng-deep", kinds=("stylesheet",))
    matches, _ = match(_file("a.scss", ":host ::ng-deep p {}\n"), [rule])
    assert matches[0].captured == "::ng-deep"


# --- failures ---

def test_failing_rule_becomes_diagnostic_and_others_continue():
    good = _textual("X001", r"(?P<name>foo)")
    f = _file("src/a.ts", "foo\n")

    matches, diagnostics = match(f, [_failing(), good])

    assert [m.rule_id for m in matches] == ["X001"]
    assert len(diagnostics) == 1
    d = diagnostics[0]
    assert (d.kind, d.path, d.rule_id) == ("rule_failed", "src/a.ts", "X900")
    assert d.reason == "RuntimeError: boom"


def test_out_of_range_hit_is_a_rule_failure():
    rule = Rule(
        id="X901",
        title="Bad span",
        severity="low",
        kinds=frozenset({"script"}),
        procedure=lambda file, ctx: [Hit(0, 999, "x")],
        message="x",
    )
    matches, diagnostics = match(_file("a.ts", "abc\n"), [rule])
    assert matches == []
    assert diagnostics[0].rule_id == "X901"
    assert diagnostics[0].reason.startswith("ValueError:")


def test_overlapping_and_repeated_hits_are_dropped():
    rule = Rule(
        id="X902",
        title="Overlaps",
        severity="low",
        kinds=frozenset({"script"}),
        procedure=lambda file, ctx: [Hit(0, 5, "a"), Hit(0, 5, "a"), Hit(2, 6, "b"), Hit(6, 7, "c")],
        message="x",
    )
    matches, _ = match(_file("a.ts", "abcdefgh\n"), [rule])
    assert [m.captured for m in matches] == ["a", "c"]


# --- corpus matching ---

def test_match_corpus_is_independent_of_worker_count():
    files = [
        _file(f"src/f{i}.ts", f"if (this.flag{i}) {{}}\nthis.items().push({i});\n")
        for i in range(12)
    ]
    rules = build_catalogue()

    one, _ = match_corpus(files, rules, workers=1)
    many, _ = match_corpus(list(reversed(files)), rules, workers=6)

    key = lambda m: (m.rule_id, m.file.rel_path, m.line, m.column, m.captured)  # noqa: E731
    assert [key(m) for m in one] == [key(m) for m in many]
    assert {m.rule_id for m in one} == {"NG004", "NG101"}


def test_match_corpus_collects_failures_from_every_file():
    files = [_file("a.ts", "x\n"), _file("b.ts", "y\n"), _file("c.html", "<p></p>\n")]
    _, diagnostics = match_corpus(files, [_failing()], workers=3)
    assert [d.path for d in diagnostics] == ["a.ts", "b.ts"]


def test_match_corpus_cancelled():
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(ScanCancelled):
        match_corpus([_file("a.ts", "x\n")], build_catalogue(), cancel=cancel)
