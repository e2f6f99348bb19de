"""Entry point: python -m ngrisk scan [--format json] [--fail-on LEVEL] <root>"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from . import __version__
from .config import OUTPUT_FORMATS, ScanConfig, load_config, split_csv, validate_config
from .core.catalogue import build_catalogue
from .core.errors import InvariantViolation, InvocationError, ScanCancelled
from .core.models import SEVERITY_RANK
from .core.scan import scan
from .report import render, write_report

log = logging.getLogger("ngrisk")

EXIT_CLEAN = 0
EXIT_FINDINGS = 1
EXIT_INVOCATION = 2
EXIT_INTERNAL = 3


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ngrisk",
        description="Static upgrade-risk scanner for Angular source trees",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    scan_cmd = subparsers.add_parser("scan", help="Scan a source tree and report findings")
    scan_cmd.add_argument("root", help="Project root (or a single file) to scan")
    scan_cmd.add_argument("--include", type=split_csv, help="Comma-separated file extensions (default: ts,html,scss)")
    scan_cmd.add_argument(
        "--exclude",
        type=split_csv,
        help="Comma-separated path globs to skip (default: node_modules/**,dist/**)",
    )
    scan_cmd.add_argument(
        "--severity-threshold",
        type=str.lower,
        choices=list(SEVERITY_RANK),
        help="Lowest severity to report (default: low)",
    )
    scan_cmd.add_argument("--format", type=str.lower, choices=OUTPUT_FORMATS, help="Report format (default: human)")
    scan_cmd.add_argument(
        "--fail-on",
        type=str.lower,
        choices=list(SEVERITY_RANK),
        help="Minimum severity that causes exit code 1 (default: critical)",
    )
    scan_cmd.add_argument("--config", type=Path, help="YAML config file (default: <root>/.ngrisk.yaml if present)")
    scan_cmd.add_argument(
        "--catalogue",
        action="append",
        default=[],
        help="Extra YAML rule catalogue, applied after the bundled rules (repeatable)",
    )
    scan_cmd.add_argument("--disable-rule", action="append", default=[], help="Rule id to skip (repeatable)")
    scan_cmd.add_argument("--workers", type=int, help="Worker threads for reading and matching")
    scan_cmd.add_argument("--max-file-size-kb", type=int, help="Skip files larger than this (0 = no limit)")
    scan_cmd.add_argument("--out", help="Write the report to a file instead of stdout")
    scan_cmd.add_argument("-v", "--verbose", action="store_true", help="Debug logging on stderr")

    rules_cmd = subparsers.add_parser("rules", help="List the rule catalogue")
    rules_cmd.add_argument("--catalogue", action="append", default=[], help="Extra YAML rule catalogue (repeatable)")
    rules_cmd.add_argument("-v", "--verbose", action="store_true", help="Debug logging on stderr")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    if args.command == "rules":
        return list_rules(args)
    return run_scan(args)


def configure_logging(verbose: bool) -> None:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    log.handlers[:] = [handler]
    log.setLevel(logging.DEBUG if verbose else logging.WARNING)
    log.propagate = False


def run_scan(args: argparse.Namespace) -> int:
    try:
        config = merge_cli_with_config(args, load_config(args.config, args.root))
        errors = validate_config(config)
        if errors:
            for error in errors:
                print(f"error: {error}", file=sys.stderr)
            return EXIT_INVOCATION
        rules = build_catalogue(config.catalogues, config.disabled_rules)
        report = scan(args.root, config, rules)
    except InvocationError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_INVOCATION
    except InvariantViolation as e:
        log.error("internal error, scan aborted: %s", e)
        return EXIT_INTERNAL
    except (ScanCancelled, KeyboardInterrupt):
        print("error: scan cancelled", file=sys.stderr)
        return EXIT_INTERNAL
    except Exception:
        log.exception("scan failed")
        return EXIT_INTERNAL

    try:
        write_report(render(report, config.output_format, rules), config.out)
    except OSError as e:
        print(f"error: cannot write report to {config.out}: {e.strerror or e}", file=sys.stderr)
        return EXIT_INVOCATION

    # Exit code based on --fail-on threshold; diagnostics never change it
    return EXIT_FINDINGS if report.has_findings_at_or_above(config.fail_on) else EXIT_CLEAN


def merge_cli_with_config(args: argparse.Namespace, config: ScanConfig) -> ScanConfig:
    merged = config
    if args.include is not None:
        merged.include = args.include
    if args.exclude is not None:
        merged.exclude = args.exclude
    if args.severity_threshold:
        merged.severity_threshold = args.severity_threshold
    if args.format:
        merged.output_format = args.format
    if args.fail_on:
        merged.fail_on = args.fail_on
    if args.catalogue:
        merged.catalogues = list(dict.fromkeys([*merged.catalogues, *args.catalogue]))
    if args.disable_rule:
        merged.disabled_rules = list(
            dict.fromkeys([*merged.disabled_rules, *(rule.upper() for rule in args.disable_rule)])
        )
    if args.workers is not None:
        merged.workers = args.workers
    if args.max_file_size_kb is not None:
        merged.max_file_size_kb = args.max_file_size_kb
    if args.out:
        merged.out = args.out
    return merged


def list_rules(args: argparse.Namespace) -> int:
    try:
        rules = build_catalogue(args.catalogue)
    except InvocationError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_INVOCATION

    for rule in rules:
        severity = rule.severity.upper()
        if rule.upgrade_to:
            severity += f"->{rule.upgrade_to.upper()}"
        shape = "structural" if rule.structural else "textual"
        print(f"{rule.id}  {severity:<12} {','.join(sorted(rule.kinds)):<11} {shape:<10} {rule.title}")
    return EXIT_CLEAN


if __name__ == "__main__":
    sys.exit(main())
