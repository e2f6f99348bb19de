from unittest.mock import patch

import pytest
import yaml

from ngrisk.core.catalogue import BUNDLED_CATALOGUE, build_catalogue, load_catalogue
from ngrisk.core.errors import CatalogueLoadError
from ngrisk.rules import get_procedure, registered_procedures, structural_rule

BUNDLED_IDS = [
    "NG001", "NG002", "NG003", "NG004", "NG005", "NG006",
    "NG007", "NG008", "NG009", "NG101", "NG102", "NG103",
]


def _rule(**overrides):
    rule = {
        "id": "X001",
        "title": "Console logging",
        "severity": "low",
        "kinds": ["script"],
        "pattern": r"console\.(?P<name>log)\(",
        "message": "console.{name}() left in code",
    }
    rule.update(overrides)
    return {k: v for k, v in rule.items() if v is not None}


def _write_catalogue(tmp_path, *rules, name="extra.yaml"):
    path = tmp_path / name
    path.write_text(yaml.safe_dump({"rules": list(rules)}), encoding="utf-8")
    return path


# --- bundled catalogue ---

def test_bundled_catalogue_loads():
    rules = load_catalogue(BUNDLED_CATALOGUE)
    assert [r.id for r in rules] == BUNDLED_IDS


def test_bundled_structural_rules_bind_registered_procedures():
    rules = {r.id: r for r in build_catalogue()}
    for rule_id, name in (
        ("NG101", "accessor_mutation"),
        ("NG102", "subscription_assignment"),
        ("NG103", "subscription_teardown"),
    ):
        assert rules[rule_id].structural
        assert rules[rule_id].procedure is get_procedure(name)
    assert not rules["NG001"].structural


def test_upgradeable_rule_max_severity():
    rules = {r.id: r for r in build_catalogue()}
    assert rules["NG005"].severity == "low"
    assert rules["NG005"].max_severity == "high"
    assert rules["NG001"].max_severity == "critical"


def test_registered_procedures_lists_bundled_names():
    assert registered_procedures() == ["accessor_mutation", "subscription_assignment", "subscription_teardown"]


def test_registering_a_procedure_twice_fails():
    with pytest.raises(ValueError, match="registered twice"):
        structural_rule("accessor_mutation")(lambda file, ctx: [])


# --- extra catalogues and disabling ---

def test_extra_catalogue_is_appended(tmp_path):
    path = _write_catalogue(tmp_path, _rule())
    rules = build_catalogue([str(path)])
    assert [r.id for r in rules] == BUNDLED_IDS + ["X001"]


def test_duplicate_id_across_catalogues_fails(tmp_path):
    path = _write_catalogue(tmp_path, _rule(id="NG001"))
    with pytest.raises(CatalogueLoadError, match="duplicate rule ids"):
        build_catalogue([str(path)])


def test_disabled_rules_are_removed():
    rules = build_catalogue(disabled=["ng001", "NG103"])
    ids = [r.id for r in rules]
    assert "NG001" not in ids
    assert "NG103" not in ids
    assert len(ids) == 10


def test_unknown_disabled_rule_is_only_a_warning():
    with patch("ngrisk.core.catalogue.log") as log:
        rules = build_catalogue(disabled=["NG999"])
    assert len(rules) == 12
    log.warning.assert_called_once()
    assert "NG999" in log.warning.call_args.args


# --- validation ---

def test_missing_catalogue_file(tmp_path):
    with pytest.raises(CatalogueLoadError, match="catalogue file not found"):
        load_catalogue(tmp_path / "missing.yaml")


def test_invalid_yaml(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("rules: [unclosed\n", encoding="utf-8")
    with pytest.raises(CatalogueLoadError, match="invalid YAML"):
        load_catalogue(path)


def test_non_mapping_top_level(tmp_path):
    path = tmp_path / "list.yaml"
    path.write_text("- id: X001\n", encoding="utf-8")
    with pytest.raises(CatalogueLoadError, match="mapping"):
        load_catalogue(path)


@pytest.mark.parametrize("overrides, message", [
    ({"title": None}, "missing keys"),
    ({"severity": "urgent"}, "unknown severity"),
    ({"kinds": ["python"]}, "unknown kinds"),
    ({"kinds": []}, "non-empty list"),
    ({"pattern": "console.log("}, "invalid pattern"),
    ({"procedure": "accessor_mutation"}, "exactly one of"),
    ({"pattern": None, "procedure": "no_such_check"}, "unknown procedure"),
    ({"region": "everywhere"}, "unknown region"),
    ({"message": "bad {other} placeholder"}, "may only use {name}"),
    ({"context": {"lookup": "maybe"}}, "lookup must be one of"),
    ({"context": {"lookup": "confirm", "scope": "project"}}, "scope must be one of"),
    ({"context": "confirm"}, "expected dict"),
    ({"upgrade_to": "high"}, "requires a 'confirm' context"),
    ({"severity": "high", "upgrade_to": "low", "context": {"lookup": "confirm"}}, "must be above"),
    ({"autofix": True}, "unknown keys"),
    ({"message": 123}, "'message' must be a string"),
    ({"title": ["a", "b"]}, "'title' must be a string"),
    ({"context": {"lookup": ["confirm"]}}, "lookup must be one of"),
    ({"context": {"lookup": "confirm", "scope": ["file"]}}, "scope must be one of"),
])
def test_invalid_rule_is_rejected(tmp_path, overrides, message):
    path = _write_catalogue(tmp_path, _rule(**overrides))
    with pytest.raises(CatalogueLoadError) as exc_info:
        load_catalogue(path)
    assert message in str(exc_info.value)


def test_duplicate_id_within_catalogue(tmp_path):
    path = _write_catalogue(tmp_path, _rule(), _rule())
    with pytest.raises(CatalogueLoadError, match="duplicate id"):
        load_catalogue(path)


def test_valid_rule_with_context_builds(tmp_path):
    path = _write_catalogue(tmp_path, _rule(
        severity="low",
        upgrade_to="medium",
        region="code",
        context={"lookup": "confirm", "scope": "component"},
    ))
    (rule,) = load_catalogue(path)
    assert rule.context.lookup == "confirm"
    assert rule.context.scope == "component"
    assert rule.max_severity == "medium"
    assert rule.render("log") == "console.log() left in code"
