"""File corpus loader: walks a project root and reads the files rules apply to.

Read-only. Directory entries are visited in sorted order and symbolic links
are never followed, so two loads of the same tree yield the same sequence.
"""
from __future__ import annotations

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from fnmatch import fnmatchcase
from pathlib import Path

from .errors import NotFound, PermissionDenied, ScanCancelled
from .models import Diagnostic, SourceFile

log = logging.getLogger(__name__)

DEFAULT_INCLUDE = ["ts", "html", "scss"]
DEFAULT_EXCLUDE = ["node_modules/**", "dist/**"]

# Only the head of a file is checked for NUL bytes
_BINARY_SNIFF_BYTES = 8192


def load_corpus(
    root: str | Path,
    include: list[str] | None = None,
    exclude: list[str] | None = None,
    workers: int = 4,
    cancel: threading.Event | None = None,
    max_file_size_kb: int = 0,
) -> tuple[list[SourceFile], list[Diagnostic]]:
    """Return (path-sorted SourceFiles, skipped-file diagnostics).

    Raises NotFound / PermissionDenied before reading anything if the root is
    missing or unreadable.
    """
    root_path = Path(root)
    check_root(root_path)
    extensions = normalize_extensions(DEFAULT_INCLUDE if include is None else include)
    patterns = list(DEFAULT_EXCLUDE if exclude is None else exclude)

    diagnostics: list[Diagnostic] = []
    candidates = discover(root_path, extensions, patterns, diagnostics)
    log.debug("discovered %d candidate files under %s", len(candidates), root_path)

    def read(candidate: tuple[Path, str]) -> SourceFile | Diagnostic | None:
        if cancel is not None and cancel.is_set():
            return None
        return read_source(candidate[0], candidate[1], max_file_size_kb)

    with ThreadPoolExecutor(max_workers=max(1, workers), thread_name_prefix="ngrisk-load") as pool:
        results = list(pool.map(read, candidates))

    if cancel is not None and cancel.is_set():
        raise ScanCancelled("scan cancelled while loading files")

    files: list[SourceFile] = []
    for result in results:
        if isinstance(result, SourceFile):
            files.append(result)
        elif isinstance(result, Diagnostic):
            log.warning("%s", result.describe())
            diagnostics.append(result)
    return files, diagnostics


def check_root(root: Path) -> None:
    if not root.exists():
        raise NotFound(f"scan root not found: {root}")
    mode = os.R_OK | os.X_OK if root.is_dir() else os.R_OK
    if not os.access(root, mode):
        raise PermissionDenied(f"scan root is not readable: {root}")


def normalize_extensions(include: list[str]) -> set[str]:
    return {f".{ext.strip().lstrip('.').lower()}" for ext in include if ext.strip()}


def is_excluded(rel_path: str, patterns: list[str]) -> bool:
    """Match a root-relative POSIX path against exclusion globs.

    A glob matches the whole path or any tail of it that starts at a path
    segment, so ``node_modules/**`` excludes nested ``a/node_modules/x.ts`` but
    not ``node_modules_backup/x.ts``. A leading ``/`` anchors the glob to the root.
    """
    parts = rel_path.split("/")
    for pattern in patterns:
        if pattern.startswith("/"):
            if fnmatchcase(rel_path, pattern[1:]):
                return True
            continue
        for i in range(len(parts)):
            if fnmatchcase("/".join(parts[i:]), pattern):
                return True
    return False


def discover(
    root: Path,
    extensions: set[str],
    patterns: list[str],
    diagnostics: list[Diagnostic],
) -> list[tuple[Path, str]]:
    """Sorted (absolute path, relative path) pairs of files to load."""
    if root.is_file():
        return [(root.resolve(), root.name)] if root.suffix.lower() in extensions else []

    root = root.resolve()
    found: list[tuple[Path, str]] = []

    def on_error(err: OSError) -> None:
        rel = _relative(Path(err.filename), root) if err.filename else "."
        diagnostics.append(Diagnostic(kind="skipped_file", path=rel, reason=f"unreadable directory: {err.strerror}"))

    for dirpath, dirnames, filenames in os.walk(root, topdown=True, onerror=on_error, followlinks=False):
        dir_path = Path(dirpath)
        rel_dir = _relative(dir_path, root)
        prefix = "" if rel_dir == "." else rel_dir + "/"
        dirnames[:] = sorted(
            name for name in dirnames
            if not (dir_path / name).is_symlink() and not is_excluded(f"{prefix}{name}/", patterns)
        )
        for filename in sorted(filenames):
            file_path = dir_path / filename
            if file_path.is_symlink():
                continue
            if file_path.suffix.lower() not in extensions:
                continue
            rel = f"{prefix}{filename}"
            if is_excluded(rel, patterns):
                continue
            found.append((file_path, rel))
    # os.walk yields a directory's files before its subdirectories
    return sorted(found, key=lambda pair: pair[1])


def read_source(path: Path, rel_path: str, max_file_size_kb: int = 0) -> SourceFile | Diagnostic:
    """Read one file as UTF-8 text, or describe why it was skipped."""
    try:
        if max_file_size_kb > 0 and path.stat().st_size > max_file_size_kb * 1024:
            return Diagnostic(kind="skipped_file", path=rel_path, reason=f"larger than {max_file_size_kb} KB")
        data = path.read_bytes()
    except OSError as e:
        return Diagnostic(kind="skipped_file", path=rel_path, reason=f"unreadable: {e.strerror or e}")

    if b"\x00" in data[:_BINARY_SNIFF_BYTES]:
        return Diagnostic(kind="skipped_file", path=rel_path, reason="binary content")
    try:
        text = data.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        return Diagnostic(kind="skipped_file", path=rel_path, reason=f"not UTF-8 text ({e.reason} at byte {e.start})")

    return SourceFile.from_text(path, rel_path, text.replace("\r\n", "\n"))


def _relative(path: Path, root: Path) -> str:
    try:
        rel = path.relative_to(root).as_posix()
    except ValueError:
        return path.as_posix()
    return rel or "."
