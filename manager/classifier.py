"""Edit intent classifier: ordered pattern table, one file-resolution strategy per intent."""

import posixpath
import re
from dataclasses import dataclass

from config.defaults import DEFAULTS
from config.rules import (
    COMPONENT_EXTENSIONS,
    DEPENDENCY_FILE_SUFFIXES,
    INSTRUCTION_STOPWORDS,
    UI_SECTIONS,
)
from core.state import EditIntent, EditType

_QUOTED_RE = re.compile(r"""["']([^"']+)["']""")
_ACTION_RE = re.compile(
    r"(?:remove|delete|hide)\s+(?:the\s+)?(.+?)(?:\s+button|\s+link|\s+text|\s+element|\s+section|$)",
    re.IGNORECASE,
)
_LOCATION_RE = re.compile(r"\b(?:in|to|on|inside)\s+(?:the\s+)?(\w+)", re.IGNORECASE)
_WORD_RE = re.compile(r"\b\w+\b")
_ROUTER_MARKERS = ("Route", "createBrowserRouter")


@dataclass
class IntentRule:
    type: EditType
    patterns: list      # [(compiled regex, exact)]
    resolver: object    # callable(instruction, manifest, single_target) -> [path]


def _p(pattern, exact=True):
    return re.compile(pattern, re.IGNORECASE), exact


# ---------------------------------------------------------------------------
# File-resolution strategies
# ---------------------------------------------------------------------------

def instruction_tokens(instruction):
    """Candidate component words: stopwords removed, short words dropped."""
    cleaned = INSTRUCTION_STOPWORDS.sub("", instruction).lower()
    return [w for w in _WORD_RE.findall(cleaned) if len(w) > 2]


def _basename(path):
    return posixpath.basename(path).lower()


def find_by_name(instruction, manifest, single_target=True):
    """Match instruction words against file basenames and component names."""
    found = []
    for token in instruction_tokens(instruction):
        for path, info in manifest.files.items():
            component = info.component_info.name.lower() if info.component_info else ""
            if token in _basename(path) or (component and token in component):
                if path not in found:
                    found.append(path)
    if found:
        return found[:1] if single_target else found

    lowered = instruction.lower()
    for element in UI_SECTIONS:
        if element not in lowered:
            continue
        for path in manifest.files:
            name = _basename(path)
            if name == element or name.startswith(element + "."):
                return [path]
        for path in manifest.files:
            if element in _basename(path):
                return [path]
    return []


def find_by_content(instruction, manifest, single_target=True):
    """Search quoted text or the object of remove/delete/hide inside component files."""
    terms = [m.group(1) for m in _QUOTED_RE.finditer(instruction)]
    action = _ACTION_RE.search(instruction)
    if action and action.group(1).strip():
        terms.append(action.group(1).strip())

    found = []
    if terms:
        lowered_terms = [t.lower() for t in terms]
        for path, info in manifest.files.items():
            if not path.endswith(COMPONENT_EXTENSIONS):
                continue
            content = info.content.lower()
            if any(term in content for term in lowered_terms):
                found.append(path)
    if not found:
        return find_by_name(instruction, manifest, single_target)
    return found[:1] if single_target else found


def find_insertion_points(instruction, manifest, single_target=True):
    lowered = instruction.lower()
    files = []
    if "page" in lowered:
        for path, info in manifest.files.items():
            if any(marker in info.content for marker in _ROUTER_MARKERS) or \
                    "router" in path or "routes" in path:
                files.append(path)
        if manifest.entry_point:
            files.append(manifest.entry_point)

    if any(word in lowered for word in ("component", "section", "add", "create")):
        location = _LOCATION_RE.search(instruction)
        parents = find_by_name(location.group(1), manifest, single_target) if location else []
        files.extend(parents or ([manifest.entry_point] if manifest.entry_point else []))
    return files


def recent_files(manifest, limit=None):
    limit = limit or DEFAULTS["recent_files_limit"]
    ordered = sorted(manifest.files.items(), key=lambda item: item[1].last_modified, reverse=True)
    return [path for path, _ in ordered[:limit]]


def find_problem_files(instruction, manifest, single_target=True):
    return recent_files(manifest) + find_by_name(instruction, manifest, single_target)


def find_style_files(instruction, manifest, single_target=True):
    files = list(manifest.style_files)
    tailwind = next((p for p in manifest.files if "tailwind.config" in p), None)
    if tailwind:
        files.append(tailwind)
    return files + find_by_name(instruction, manifest, single_target)


def find_dependency_files(instruction, manifest, single_target=True):
    return [p for p in manifest.files if p.endswith(DEPENDENCY_FILE_SUFFIXES)]


def find_entry_point(instruction, manifest, single_target=True):
    return [manifest.entry_point]


# ---------------------------------------------------------------------------
# Pattern table. First matching rule wins.
# ---------------------------------------------------------------------------

RULES = [
    IntentRule(EditType.FULL_REBUILD, [
        _p(r"start\s+over"),
        _p(r"recreate\s+everything"),
        _p(r"rebuild\s+(?:the\s+)?app"),
        _p(r"\bnew\s+app\b"),
        _p(r"from\s+scratch"),
    ], find_entry_point),
    IntentRule(EditType.ADD_DEPENDENCY, [
        _p(r"\badd\s+(?:the\s+)?[\w@/.-]+\s+(?:package|library|dependency)"),
        _p(r"\buse\s+(?:the\s+)?[\w@/.-]+\s+(?:library|framework)"),
        _p(r"\binstall\s+(?:the\s+)?[\w@/.-]+\s+(?:package|library|dependency)"),
        _p(r"\b(?:npm|yarn|pnpm)\s+(?:install|add|i)\s+[\w@/.-]+", exact=False),
    ], find_dependency_files),
    IntentRule(EditType.UPDATE_STYLE, [
        _p(r"\b(?:change|update)\s+(?:the\s+)?(?:color|colour|theme|style|styling|css)\b"),
        _p(r"\b(?:change|update|make)\s+(?:the\s+)?\w+\s+(?:color|colour|background|font|theme)\b"),
        _p(r"\bmake\s+it\s+(?:dark|light|blue|red|green|purple|black|white)\b"),
        _p(r"\bstyle\s+(?:the\s+)?\w+", exact=False),
    ], find_style_files),
    IntentRule(EditType.UPDATE_COMPONENT, [
        _p(r"\bupdate\s+(?:the\s+)?\w+\s+(?:component|section|page)"),
        _p(r"\bfix\s+(?:the\s+)?\w+\s+(?:styling|style|css|layout)"),
        _p(r"\b(?:remove|delete|hide)\s+.*\s+(?:button|link|text|element|section)"),
        _p(r"\bchange\s+(?:the\s+)?\w+", exact=False),
        _p(r"\bmodify\s+(?:the\s+)?\w+", exact=False),
        _p(r"\bedit\s+(?:the\s+)?\w+", exact=False),
    ], find_by_content),
    IntentRule(EditType.ADD_FEATURE, [
        _p(r"\badd\s+(?:a\s+)?new\s+\w+\s+(?:page|section|feature|component)"),
        _p(r"\bcreate\s+(?:a\s+)?\w+\s+(?:page|section|feature|component)"),
        _p(r"\bimplement\s+(?:a\s+)?\w+\s+(?:page|section|feature)"),
        _p(r"\bbuild\s+(?:a\s+)?\w+\s+(?:page|section|feature)"),
        _p(r"\badd\s+(?:a\s+)?\w+\s+(?:component|section)"),
        _p(r"\badd\s+\w+\s+to\s+(?:the\s+)?\w+", exact=False),
        _p(r"\binclude\s+(?:a\s+)?\w+", exact=False),
    ], find_insertion_points),
    IntentRule(EditType.FIX_ISSUE, [
        _p(r"\bresolve\s+(?:the\s+)?error"),
        _p(r"\bfix\s+(?:the\s+)?\w+(?!\s+(?:styling|style))", exact=False),
        _p(r"\bdebug\s+(?:the\s+)?\w+", exact=False),
        _p(r"\brepair\s+(?:the\s+)?\w+", exact=False),
    ], find_problem_files),
    IntentRule(EditType.REFACTOR, [
        _p(r"\brefactor\s+(?:the\s+)?\w+"),
        _p(r"\bclean\s+up\s+(?:the\s+)?code"),
        _p(r"\breorganize\s+(?:the\s+)?\w+", exact=False),
        _p(r"\boptimize\s+(?:the\s+)?\w+", exact=False),
    ], find_problem_files),
]

_DESCRIPTIONS = {
    EditType.UPDATE_COMPONENT: "Updating component(s): {files}",
    EditType.ADD_FEATURE: "Adding new feature to: {files}",
    EditType.FIX_ISSUE: "Fixing issue in: {files}",
    EditType.UPDATE_STYLE: "Updating styles in: {files}",
    EditType.REFACTOR: "Refactoring: {files}",
    EditType.FULL_REBUILD: "Rebuilding entire application",
    EditType.ADD_DEPENDENCY: "Adding new dependency",
}


def _dedupe(paths):
    seen = []
    for path in paths:
        if path not in seen:
            seen.append(path)
    return seen


def describe(edit_type, targets):
    names = ", ".join(posixpath.basename(p) for p in targets if p)
    return _DESCRIPTIONS[edit_type].format(files=names)


def confidence_for(instruction, resolved, exact):
    score = 0.5
    if resolved:
        score += 0.2
    if len(instruction.split()) > 5:
        score += 0.1
    if exact:
        score += 0.2
    return min(round(score, 2), 1.0)


def classify_edit(instruction, manifest, single_target=None, rules=None):
    """Classify a follow-up instruction against the current manifest.

    The first rule with a matching pattern decides the edit type and how
    target files are resolved. Everything not targeted becomes context.
    """
    if single_target is None:
        single_target = DEFAULTS["edit_single_target"]

    for rule in rules or RULES:
        if not any(regex.search(instruction) for regex, _ in rule.patterns):
            continue
        exact = any(is_exact and regex.search(instruction) for regex, is_exact in rule.patterns)
        targets = _dedupe(rule.resolver(instruction, manifest, single_target))
        resolved = bool(targets) and targets[0] != ""
        if not targets:
            targets = [manifest.entry_point] if manifest.entry_point else []
        return EditIntent(
            type=rule.type,
            target_files=targets,
            confidence=confidence_for(instruction, resolved, exact),
            description=describe(rule.type, targets),
            suggested_context=[p for p in manifest.files if p not in targets],
        )

    return EditIntent(
        type=EditType.UPDATE_COMPONENT,
        target_files=[manifest.entry_point],
        confidence=0.3,
        description="General update to application",
        suggested_context=[p for p in manifest.files if p != manifest.entry_point],
    )
