from __future__ import annotations

import logging
import re
from pathlib import Path

import yaml

from ..rules import get_procedure, registered_procedures
from .errors import CatalogueLoadError
from .models import FILE_KINDS, SEVERITY_RANK, Hit, Rule, RuleContext, SourceFile
from .regions import REGIONS

log = logging.getLogger(__name__)

BUNDLED_CATALOGUE = Path(__file__).resolve().parent.parent / "catalogues" / "signals.yaml"

_REQUIRED_RULE_KEYS = {"id", "title", "severity", "kinds", "message"}
_OPTIONAL_RULE_KEYS = {"pattern", "procedure", "region", "context", "upgrade_to", "description"}
_LOOKUPS = {"confirm", "suppress"}
_SCOPES = {"file", "component"}


class TextualProcedure:
    """Line-oriented regex matching, optionally restricted to a lexical region.

    The named group ``name`` (when present) is the captured identifier;
    otherwise the whole match is captured.
    """

    def __init__(self, pattern: str, region: str = "any") -> None:
        self.pattern = re.compile(pattern)
        self.region = region
        self._has_name = "name" in self.pattern.groupindex

    def __call__(self, file: SourceFile, ctx) -> list[Hit]:
        hits: list[Hit] = []
        text = file.text
        starts = file.line_starts
        for idx, line_start in enumerate(starts):
            line_end = starts[idx + 1] - 1 if idx + 1 < len(starts) else len(text)
            line = text[line_start:line_end]
            for m in self.pattern.finditer(line):
                if m.end() == m.start():
                    continue
                offset = line_start + m.start()
                if not ctx.regions.accepts(self.region, offset):
                    continue
                captured = m.group("name") if self._has_name and m.group("name") else m.group(0)
                hits.append(Hit(offset, line_start + m.end(), captured))
        return hits

    def __repr__(self) -> str:
        return f"TextualProcedure({self.pattern.pattern!r}, region={self.region!r})"


def load_catalogue(path: Path | str) -> list[Rule]:
    """Load and validate one YAML catalogue file."""
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            payload = yaml.safe_load(f)
    except FileNotFoundError:
        raise CatalogueLoadError(f"catalogue file not found: {path}") from None
    except OSError as e:
        raise CatalogueLoadError(f"{path}: cannot read catalogue: {e}") from None
    except yaml.YAMLError as e:
        raise CatalogueLoadError(f"{path}: invalid YAML: {e}") from None

    if not isinstance(payload, dict):
        raise CatalogueLoadError(f"{path}: expected a YAML mapping at top level")

    entries = payload.get("rules", [])
    if not isinstance(entries, list):
        raise CatalogueLoadError(f"{path}: 'rules' must be a list")

    errors = _validate_rules(entries)
    if errors:
        joined = "\n  ".join(errors)
        raise CatalogueLoadError(f"{path}: catalogue validation failed:\n  {joined}")

    rules = [_build_rule(entry) for entry in entries]
    log.debug("loaded %d rules from %s", len(rules), path)
    return rules


def build_catalogue(
    extra_paths: list[str] | tuple[str, ...] = (),
    disabled: list[str] | tuple[str, ...] = (),
) -> list[Rule]:
    """Bundled rules followed by any extra catalogues, minus disabled ids."""
    rules = load_catalogue(BUNDLED_CATALOGUE)
    for extra in extra_paths:
        rules.extend(load_catalogue(extra))

    seen: dict[str, int] = {}
    for rule in rules:
        seen[rule.id] = seen.get(rule.id, 0) + 1
    duplicates = sorted(rule_id for rule_id, count in seen.items() if count > 1)
    if duplicates:
        raise CatalogueLoadError(f"duplicate rule ids across catalogues: {', '.join(duplicates)}")

    disabled_set = {d.upper() for d in disabled}
    unknown = sorted(disabled_set - seen.keys())
    if unknown:
        log.warning("disabled rule ids not in catalogue: %s", ", ".join(unknown))
    return [rule for rule in rules if rule.id not in disabled_set]


def _build_rule(entry: dict) -> Rule:
    if "pattern" in entry:
        procedure = TextualProcedure(entry["pattern"], entry.get("region", "any"))
        structural = False
    else:
        procedure = get_procedure(entry["procedure"])
        structural = True

    context = None
    if "context" in entry:
        ctx = entry["context"]
        context = RuleContext(lookup=ctx["lookup"], scope=ctx.get("scope", "file"))

    upgrade_to = entry.get("upgrade_to")
    return Rule(
        id=str(entry["id"]).upper(),
        title=entry["title"],
        severity=str(entry["severity"]).lower(),
        kinds=frozenset(entry["kinds"]),
        procedure=procedure,
        message=entry["message"],
        context=context,
        upgrade_to=str(upgrade_to).lower() if upgrade_to else None,
        structural=structural,
    )


def _validate_rules(entries: list) -> list[str]:
    """Validate that every rule has required keys and well-formed fields."""
    errors: list[str] = []
    ids: set[str] = set()
    for i, rule in enumerate(entries):
        if not isinstance(rule, dict):
            errors.append(f"rules[{i}]: expected dict, got {type(rule).__name__}")
            continue
        label = f"rules[{i}] (id={rule.get('id', '?')})"

        missing = _REQUIRED_RULE_KEYS - rule.keys()
        if missing:
            errors.append(f"{label}: missing keys: {sorted(missing)}")
        unknown = rule.keys() - _REQUIRED_RULE_KEYS - _OPTIONAL_RULE_KEYS
        if unknown:
            errors.append(f"{label}: unknown keys: {sorted(unknown)}")

        rule_id = str(rule.get("id", "")).upper()
        if rule_id in ids:
            errors.append(f"{label}: duplicate id")
        ids.add(rule_id)

        severity = str(rule.get("severity", "")).lower()
        if "severity" in rule and severity not in SEVERITY_RANK:
            errors.append(f"{label}: unknown severity '{rule['severity']}'")

        kinds = rule.get("kinds")
        if "kinds" in rule:
            if not isinstance(kinds, list) or not kinds:
                errors.append(f"{label}: 'kinds' must be a non-empty list")
            else:
                bad = [k for k in kinds if k not in FILE_KINDS]
                if bad:
                    errors.append(f"{label}: unknown kinds {bad} (valid: {list(FILE_KINDS)})")

        errors.extend(_validate_procedure(rule, label))

        for key in ("title", "message"):
            if key in rule and not isinstance(rule[key], str):
                errors.append(f"{label}: '{key}' must be a string")

        if isinstance(rule.get("message"), str):
            try:
                rule["message"].format(name="x")
            except (KeyError, IndexError, ValueError) as e:
                errors.append(f"{label}: message template may only use {{name}}: {e}")

        if "context" in rule:
            errors.extend(_validate_context(rule["context"], label))

        if "upgrade_to" in rule:
            target = str(rule["upgrade_to"]).lower()
            if target not in SEVERITY_RANK:
                errors.append(f"{label}: unknown upgrade_to severity '{rule['upgrade_to']}'")
            elif severity in SEVERITY_RANK and SEVERITY_RANK[target] <= SEVERITY_RANK[severity]:
                errors.append(f"{label}: upgrade_to must be above severity '{severity}'")
            elif not isinstance(rule.get("context"), dict) or rule["context"].get("lookup") != "confirm":
                errors.append(f"{label}: upgrade_to requires a 'confirm' context lookup")
    return errors


def _validate_procedure(rule: dict, label: str) -> list[str]:
    errors: list[str] = []
    has_pattern = "pattern" in rule
    has_procedure = "procedure" in rule
    if has_pattern == has_procedure:
        errors.append(f"{label}: exactly one of 'pattern' or 'procedure' is required")
        return errors
    if has_pattern:
        try:
            re.compile(rule["pattern"])
        except (re.error, TypeError) as e:
            errors.append(f"{label}: invalid pattern: {e}")
        region = rule.get("region", "any")
        if region not in REGIONS:
            errors.append(f"{label}: unknown region '{region}' (valid: {list(REGIONS)})")
    else:
        if "region" in rule:
            errors.append(f"{label}: 'region' only applies to pattern rules")
        if get_procedure(str(rule["procedure"])) is None:
            errors.append(
                f"{label}: unknown procedure '{rule['procedure']}' (registered: {registered_procedures()})"
            )
    return errors


def _validate_context(context, label: str) -> list[str]:
    if not isinstance(context, dict):
        return [f"{label}.context: expected dict, got {type(context).__name__}"]
    errors: list[str] = []
    lookup = context.get("lookup")
    if not isinstance(lookup, str) or lookup not in _LOOKUPS:
        errors.append(f"{label}.context: lookup must be one of {sorted(_LOOKUPS)}")
    scope = context.get("scope", "file")
    if not isinstance(scope, str) or scope not in _SCOPES:
        errors.append(f"{label}.context: scope must be one of {sorted(_SCOPES)}")
    return errors
