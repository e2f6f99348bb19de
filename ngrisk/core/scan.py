from __future__ import annotations

import logging
import threading
from pathlib import Path

from ..config import ScanConfig
from ..rules.sites import ViewCache
from .aggregator import aggregate
from .catalogue import build_catalogue
from .classifier import classify
from .loader import load_corpus
from .matcher import match_corpus
from .models import Report, Rule

log = logging.getLogger(__name__)


def scan(
    root: str | Path,
    config: ScanConfig | None = None,
    rules: list[Rule] | None = None,
    cancel: threading.Event | None = None,
) -> Report:
    """Load, match, classify and aggregate one source tree.

    ``rules`` defaults to the catalogue described by ``config``. Setting
    ``cancel`` from another thread aborts the scan with ScanCancelled; nothing
    partial is returned.
    """
    config = config or ScanConfig()
    if rules is None:
        rules = build_catalogue(config.catalogues, config.disabled_rules)

    corpus, diagnostics = load_corpus(
        root,
        include=config.include,
        exclude=config.exclude,
        workers=config.workers,
        cancel=cancel,
        max_file_size_kb=config.max_file_size_kb,
    )
    log.info("loaded %d files (%d skipped) from %s", len(corpus), len(diagnostics), root)

    views = ViewCache()
    matches, rule_diagnostics = match_corpus(corpus, rules, workers=config.workers, cancel=cancel, views=views)

    findings = classify(matches, corpus, rules, views)
    log.info("%d raw matches classified into %d findings", len(matches), len(findings))

    return aggregate(
        findings,
        files_scanned=len(corpus),
        diagnostics=diagnostics + rule_diagnostics,
        threshold=config.severity_threshold,
    )
