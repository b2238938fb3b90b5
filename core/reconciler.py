"""Reconciler: one surviving version per file path, plus the turn's package list."""

import logging
import posixpath

from config.defaults import DEFAULTS
from config.rules import (
    FRAMEWORK_PACKAGES,
    PROTECTED_FILENAMES,
    ROOT_LEVEL_FILES,
    ROOT_LEVEL_PREFIXES,
)
from core.extractor import extract_packages
from core.state import ReconciledFile

logger = logging.getLogger("sitesmith.reconciler")


class UnsafePath(ValueError):
    """A generated path points outside the project."""


def normalize_path(path, source_root=None, keep_at_root=PROTECTED_FILENAMES):
    """Slash-separated project path, rooted under the source tree.

    "/App.jsx" and "App.jsx" become "src/App.jsx"; "public/" paths, index.html
    and root config files (``keep_at_root``, by basename) stay where they are.
    """
    source_root = source_root or DEFAULTS["source_root"]
    cleaned = path.strip().replace("\\", "/")
    while cleaned.startswith("./"):
        cleaned = cleaned[2:]
    cleaned = cleaned.lstrip("/")
    if not cleaned:
        raise UnsafePath(f"Empty file path: {path!r}")
    normalized = posixpath.normpath(cleaned)
    if normalized == ".." or normalized.startswith("../"):
        raise UnsafePath(f"Path escapes project directory: {path}")
    prefixes = tuple({f"{source_root}/", *ROOT_LEVEL_PREFIXES})
    basename = posixpath.basename(normalized)
    if (
        normalized.startswith(prefixes)
        or normalized in ROOT_LEVEL_FILES
        or basename in keep_at_root
    ):
        return normalized
    return f"{source_root}/{normalized}"


def _should_replace(existing, candidate):
    if existing.complete and not candidate.complete:
        return False
    if not existing.complete and candidate.complete:
        return True
    # Same completeness: the longer body wins, ties keep the first.
    return len(candidate.content) > len(existing.content)


def reconcile(candidates, known_files=(), source_root=None, keep_at_root=PROTECTED_FILENAMES):
    """Resolve many candidate versions to one ReconciledFile per normalized path.

    Evaluated in arrival order. A complete version always beats an incomplete
    one, a longer complete version beats a shorter complete one, and of two
    incomplete versions the longer wins. A version with an ellipsis
    placeholder only survives when it is the first one seen for its path.
    """
    chosen = {}
    for candidate in candidates:
        try:
            path = normalize_path(candidate.path, source_root, keep_at_root)
        except UnsafePath as exc:
            logger.warning("Skipping candidate: %s", exc)
            continue

        existing = chosen.get(path)
        if existing is None:
            if candidate.suspect:
                logger.warning("%s contains an ellipsis, may be truncated", path)
            chosen[path] = candidate
            continue
        if not _should_replace(existing, candidate):
            continue
        if candidate.suspect:
            logger.warning("Keeping earlier %s; newer version looks truncated", path)
            continue
        logger.debug(
            "Replacing %s (%s, %d chars) with %s version (%d chars)",
            path, "complete" if existing.complete else "incomplete", len(existing.content),
            "complete" if candidate.complete else "incomplete", len(candidate.content),
        )
        chosen[path] = candidate

    known = set(known_files)
    reconciled = {}
    for path, candidate in chosen.items():
        if not candidate.complete:
            logger.warning("%s appears to be truncated (no closing tag)", path)
        reconciled[path] = ReconciledFile(
            path=path,
            content=candidate.content,
            is_update=path in known,
            complete=candidate.complete,
        )
    return reconciled


def aggregate_packages(files, explicit=(), preinstalled=()):
    """Ordered, de-duplicated packages: explicit tags first, then file imports.

    ``files`` is the reconciled map (or any iterable of ReconciledFile).
    """
    skip = set(preinstalled) | FRAMEWORK_PACKAGES
    values = files.values() if isinstance(files, dict) else files
    packages = []
    for name in list(explicit) + [n for f in values for n in extract_packages(f.content)]:
        name = name.strip() if isinstance(name, str) else ""
        if name and name not in skip and name not in packages:
            packages.append(name)
    return packages
