"""Tag extractor: pulls files, packages and commands out of streamed model text.

The extractor is stateless. Every call re-scans the whole buffer, so it can be
invoked again and again while the stream grows. Matchers run in a fixed order;
a fallback matcher only claims text that no earlier matcher captured.
"""

import logging
import re

from config.rules import (
    FALLBACK_COMPONENT_DIR,
    FRAMEWORK_PACKAGES,
    GENERATED_LIST_EXTENSIONS,
    PLATFORM_BUILTINS,
)
from core.state import Extraction, FileCandidate

logger = logging.getLogger("sitesmith.extractor")

_IMPORT_RES = [
    re.compile(r"""\bimport\s+(?:[\w*{}\s,$]+?\s+from\s+)?['"]([^'"\n]+)['"]"""),
    re.compile(r"""\bexport\s+(?:\*|\{[^}]*\})\s*(?:as\s+\w+\s+)?from\s+['"]([^'"\n]+)['"]"""),
    re.compile(r"""\bimport\s*\(\s*['"]([^'"\n]+)['"]\s*\)"""),
    re.compile(r"""\brequire\s*\(\s*['"]([^'"\n]+)['"]\s*\)"""),
]

# "..." that is not spread/rest syntax ("...props", "...[a]", "...{b}")
_ELLIPSIS_RE = re.compile(r"\.\.\.(?![\w$\[{(])")

_COMMAND_RE = re.compile(r"<command>(.*?)</command>", re.DOTALL)
_PACKAGE_RE = re.compile(r"<package>(.*?)</package>", re.DOTALL)
_PACKAGES_RE = re.compile(r"<packages>(.*?)</packages>", re.DOTALL)
_STRUCTURE_RE = re.compile(r"<structure>(.*?)</structure>", re.DOTALL)
_EXPLANATION_RE = re.compile(r"<explanation>(.*?)</explanation>", re.DOTALL)
_TEMPLATE_RE = re.compile(r"<template>(.*?)</template>", re.DOTALL)


def package_name(specifier):
    """Map an import specifier to an installable package name, or None.

    Relative, absolute and "@/" alias imports are local. Scoped packages keep
    two path segments, plain packages keep one.
    """
    source = specifier.strip()
    if not source or source.startswith((".", "/", "@/")) or source.startswith("node:"):
        return None
    parts = source.split("/")
    if source.startswith("@"):
        if len(parts) < 2 or not parts[1]:
            return None
        name = "/".join(parts[:2])
    else:
        name = parts[0]
    if name in PLATFORM_BUILTINS or name in FRAMEWORK_PACKAGES:
        return None
    return name


def extract_packages(content):
    """Return external package names referenced by import/require statements, in order."""
    found = []
    hits = []
    for regex in _IMPORT_RES:
        hits.extend((m.start(), m.group(1)) for m in regex.finditer(content))
    for _, specifier in sorted(hits):
        name = package_name(specifier)
        if name and name not in found:
            found.append(name)
    return found


def looks_truncated(content):
    """True when the body holds a literal ellipsis placeholder."""
    return bool(_ELLIPSIS_RE.search(content))


def _fallback_path(name):
    name = name.strip().strip("`'\"")
    return name if "/" in name else f"{FALLBACK_COMPONENT_DIR}/{name}"


def _candidate(path, content, complete, source, start, end):
    return FileCandidate(
        path=path.strip(),
        content=content,
        complete=complete,
        source=source,
        suspect=looks_truncated(content),
        start=start,
        end=end,
    )


class FileTagMatcher:
    """<file path="...">...</file>, including a region still being streamed."""

    name = "file-tag"
    _RE = re.compile(
        r'<file\s+path="([^"]+)"\s*>(.*?)(</file>|(?=<file\s+path=")|\Z)',
        re.DOTALL,
    )

    def find(self, text):
        return [
            _candidate(m.group(1), m.group(2).strip(), m.group(3) == "</file>",
                       self.name, m.start(), m.end())
            for m in self._RE.finditer(text)
        ]


class PathFenceMatcher:
    """```path="src/App.jsx" fences (optionally ```file path="...")."""

    name = "path-fence"
    _RE = re.compile(r'```(?:file\s+)?path="([^"]+)"[^\n]*\n(.*?)```', re.DOTALL)

    def find(self, text):
        return [
            _candidate(m.group(1), m.group(2).strip(), True, self.name, m.start(), m.end())
            for m in self._RE.finditer(text)
        ]


class LabeledFenceMatcher:
    """Fences whose info string names the file.

        ```src/App.jsx           (path as the tag)
        ```jsx src/App.jsx       (language then path)
        ```Header.jsx            (bare file name)
    """

    name = "labeled-fence"
    _RE = re.compile(r"```([^\s`]+)(?:[ \t]+([^\s`]+))?[ \t]*\n(.*?)```", re.DOTALL)

    def find(self, text):
        found = []
        for m in self._RE.finditer(text):
            tag, second = m.group(1), m.group(2)
            if "=" in tag:
                continue
            if "/" in tag and "." in tag:
                path = tag
            elif second and "." in second:
                path = second
            elif "." in tag:
                path = tag
            else:
                continue
            found.append(_candidate(path, m.group(3).strip(), True, self.name, m.start(), m.end()))
        return found


class GeneratedListMatcher:
    """Plain-text "Generated Files: a.jsx, b.css" listings with best-effort bodies.

    A body starts at the first line beginning with ``import`` after the file
    name and runs to the next listed name, the next listing, or the end.
    """

    name = "generated-list"
    _LIST_RE = re.compile(r"Generated Files?:\s*([^\n]+)", re.IGNORECASE)
    _IMPORT_LINE_RE = re.compile(r"^import\b", re.MULTILINE)
    _STOP_RE = re.compile(r"Generated Files?:|Applying code", re.IGNORECASE)

    def find(self, text):
        found = []
        for listing in self._LIST_RE.finditer(text):
            names = [n.strip() for n in listing.group(1).split(",")]
            names = [n for n in names if n.endswith(GENERATED_LIST_EXTENSIONS)]
            for name in names:
                header = self._heading(text, name, listing.end())
                at = header.end() if header else text.find(name, listing.end())
                if at < 0:
                    continue
                code = self._IMPORT_LINE_RE.search(text, at)
                if not code:
                    continue
                stop = len(text)
                marker = self._STOP_RE.search(text, code.start())
                if marker:
                    stop = marker.start()
                for other in names:
                    if other == name:
                        continue
                    nxt = self._heading(text, other, code.start())
                    if nxt and nxt.start() < stop:
                        stop = nxt.start()
                body = text[code.start():stop].strip()
                if body:
                    found.append(_candidate(_fallback_path(name), body, True, self.name,
                                            code.start(), stop))
        return found

    @staticmethod
    def _heading(text, name, pos):
        pattern = re.compile(r"^[#*\s]*" + re.escape(name) + r"[*:\s]*$", re.MULTILINE)
        return pattern.search(text, pos)


class CommentFenceMatcher:
    """Bare fences whose first line is a file comment (``// File: Header.jsx``)."""

    name = "comment-fence"
    _RE = re.compile(r"```[\w+-]*[ \t]*\n(.*?)```", re.DOTALL)
    _COMMENT_RE = re.compile(
        r"^\s*(?:#|//|/\*|<!--)\s*(?:File:|Component:)?\s*([\w./@-]+\.\w+)\s*(?:\*/|-->)?[ \t]*\n",
    )

    def find(self, text):
        found = []
        for m in self._RE.finditer(text):
            body = m.group(1)
            cm = self._COMMENT_RE.match(body)
            if not cm:
                continue
            content = body[cm.end():].strip()
            found.append(_candidate(_fallback_path(cm.group(1)), content, True, self.name,
                                    m.start(), m.end()))
        return found


DEFAULT_MATCHERS = [
    FileTagMatcher(),
    PathFenceMatcher(),
    LabeledFenceMatcher(),
    GeneratedListMatcher(),
    CommentFenceMatcher(),
]


def _overlaps(candidate, spans):
    return any(candidate.start < end and start < candidate.end for start, end in spans)


def find_candidates(text, matchers=None):
    """Run matchers in order; later matchers only keep regions nobody claimed."""
    candidates = []
    spans = []
    for matcher in matchers or DEFAULT_MATCHERS:
        kept = [c for c in matcher.find(text) if not _overlaps(c, spans)]
        if kept:
            logger.debug("%s matched %d candidate(s)", matcher.name, len(kept))
        candidates.extend(kept)
        spans.extend((c.start, c.end) for c in kept)
    candidates.sort(key=lambda c: c.start)
    return candidates


def _first(regex, text):
    m = regex.search(text)
    return m.group(1).strip() if m else None


def extract(text, matchers=None):
    """Scan the full buffer and return an Extraction.

    Safe to call repeatedly on a growing buffer: the result depends only on
    the text passed in.
    """
    result = Extraction()
    if not text:
        return result

    result.files = find_candidates(text, matchers)

    for m in _PACKAGE_RE.finditer(text):
        name = m.group(1).strip()
        if name and name not in result.tag_packages:
            result.tag_packages.append(name)
    for m in _PACKAGES_RE.finditer(text):
        for name in re.split(r"[\n,]+", m.group(1)):
            name = name.strip().lstrip("-* ").strip()
            if name and name not in result.tag_packages:
                result.tag_packages.append(name)

    result.packages = list(result.tag_packages)
    for candidate in result.files:
        for name in extract_packages(candidate.content):
            if name not in result.packages:
                result.packages.append(name)

    result.commands = [c.strip() for c in _COMMAND_RE.findall(text) if c.strip()]
    result.structure = _first(_STRUCTURE_RE, text)
    result.explanation = _first(_EXPLANATION_RE, text) or ""
    result.template = _first(_TEMPLATE_RE, text) or ""
    return result


class StreamBuffer:
    """Text accumulated for one generation turn. Append-only."""

    def __init__(self):
        self._parts = []
        self._text = ""

    def append(self, chunk):
        if chunk:
            self._parts.append(chunk)
            self._text = ""

    @property
    def text(self):
        if not self._text and self._parts:
            self._text = "".join(self._parts)
            self._parts = [self._text]
        return self._text

    def extract(self, matchers=None):
        return extract(self.text, matchers)

    def __len__(self):
        return len(self.text)
