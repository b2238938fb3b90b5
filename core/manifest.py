"""File manifest builder: shallow static analysis over a project snapshot.

Pattern matching only, no parsing. A file that trips the analysis degrades to
an entry without imports/exports instead of failing the whole build.
"""

import logging
import posixpath
import re
import time

from config.rules import (
    CONFIG_FILENAMES,
    ENTRY_POINT_NAMES,
    ROUTING_HOOKS,
    SCRIPT_EXTENSIONS,
    STYLE_EXTENSIONS,
)
from core.state import (
    ComponentInfo,
    ComponentNode,
    FileInfo,
    FileManifest,
    ImportInfo,
    RouteInfo,
)

logger = logging.getLogger("sitesmith.manifest")

_IMPORT_RE = re.compile(r"""import\s+(?:(.+?)\s+from\s+)?['"](.+?)['"]""")
_DEFAULT_IMPORT_RE = re.compile(r"^(\w+)\s*(?:,|$)")
_NAMED_IMPORTS_RE = re.compile(r"\{([^}]+)\}")
_AS_RE = re.compile(r"\s+as\s+")

_DEFAULT_EXPORT_RE = re.compile(r"export\s+default\s+", re.MULTILINE)
_DEFAULT_EXPORT_NAME_RE = re.compile(r"export\s+default\s+(?:async\s+)?(?:function\s+|class\s+)?(\w+)")
_NAMED_EXPORT_RE = re.compile(r"export\s+(?:async\s+)?(?:const|let|var|function|class)\s+(\w+)")
_EXPORT_BLOCK_RE = re.compile(r"export\s+\{([^}]+)\}")

_JSX_RE = re.compile(r"<[A-Z]\w*|<[a-z]+(?:\s+[^>]*)?/?>")
_FUNCTION_COMPONENT_RE = re.compile(r"(?:export\s+)?(?:default\s+)?function\s+([A-Z]\w*)\s*\(")
_ARROW_COMPONENT_RE = re.compile(r"(?:export\s+)?(?:const|let)\s+([A-Z]\w*)\s*=\s*(?:\([^)]*\)|\w+)\s*=>")
_PROPS_RE = re.compile(r"(?:function\s+[A-Z]\w*|const\s+[A-Z]\w*\s*=)\s*\(\s*\{([^}]*)\}")
_HOOK_RE = re.compile(r"\buse[A-Z]\w*")
_CHILD_COMPONENT_RE = re.compile(r"<([A-Z]\w*)[^>]*/?>")
_CHILDREN_PROP_RE = re.compile(r"\{\s*children\s*\}|props\.children|\bchildren\s*[,}]")

_ROUTE_PATH_RE = re.compile(
    r"""path\s*=\s*["']([^"']+)["'](?:[^>]*?(?:element|component)\s*=\s*\{\s*<?\s*([A-Z]\w*))?"""
)
_PAGES_PREFIX_RE = re.compile(r"^(?:src/)?pages/")
_SCRIPT_EXT_RE = re.compile(r"\.(?:jsx?|tsx?)$")


def _split_names(block):
    names = []
    for part in block.split(","):
        name = _AS_RE.split(part.strip())[0].strip()
        if name:
            names.append(name)
    return names


def extract_imports(content):
    imports = []
    for m in _IMPORT_RE.finditer(content):
        clause, source = m.group(1), m.group(2)
        info = ImportInfo(
            source=source,
            is_local=source.startswith(("./", "../", "@/")),
        )
        if clause:
            clause = clause.strip()
            default = _DEFAULT_IMPORT_RE.match(clause)
            if default and default.group(1) != "type":
                info.default_import = default.group(1)
            named = _NAMED_IMPORTS_RE.search(clause)
            if named:
                info.imports = _split_names(named.group(1))
        imports.append(info)
    return imports


def extract_exports(content):
    exports = []
    if _DEFAULT_EXPORT_RE.search(content):
        named_default = _DEFAULT_EXPORT_NAME_RE.search(content)
        exports.append(f"default:{named_default.group(1)}" if named_default else "default")
    exports.extend(m.group(1) for m in _NAMED_EXPORT_RE.finditer(content))
    for m in _EXPORT_BLOCK_RE.finditer(content):
        exports.extend(_split_names(m.group(1)))
    return exports


def has_jsx(content):
    return bool(_JSX_RE.search(content))


def extract_component_info(content, path):
    """Best-effort React component facts, or None for non-components."""
    if not has_jsx(content) and "React" not in content:
        return None

    name = ""
    func = _FUNCTION_COMPONENT_RE.search(content)
    if func:
        name = func.group(1)
    else:
        arrow = _ARROW_COMPONENT_RE.search(content)
        if arrow:
            name = arrow.group(1)
    if not name:
        stem = _SCRIPT_EXT_RE.sub("", posixpath.basename(path))
        if stem[:1].isupper():
            name = stem
    if not name:
        return None

    hooks = []
    for m in _HOOK_RE.finditer(content):
        if m.group(0) not in hooks:
            hooks.append(m.group(0))

    props = []
    props_match = _PROPS_RE.search(content)
    if props_match:
        for part in props_match.group(1).split(","):
            prop = part.split("=")[0].split(":")[0].strip().lstrip(".")
            if prop and prop not in props:
                props.append(prop)

    children = []
    for m in _CHILD_COMPONENT_RE.finditer(content):
        child = m.group(1)
        if child != name and child not in children:
            children.append(child)

    return ComponentInfo(
        name=name,
        props=props,
        hooks=hooks,
        has_state="useState" in hooks or "useReducer" in hooks,
        child_components=children,
    )


def classify_file(path, content):
    """Heuristic file type. Wrong answers are expected now and then."""
    lowered = path.lower()
    basename = posixpath.basename(lowered)
    segments = "/" + lowered

    if basename.endswith(STYLE_EXTENSIONS):
        return "style"
    if basename in CONFIG_FILENAMES or "config" in basename or basename.endswith(".json"):
        return "config"
    if "/hooks/" in segments or re.match(r"use[A-Z]", posixpath.basename(path)):
        return "hook"
    if "/context/" in segments or "/contexts/" in segments or "context" in basename:
        return "context"
    if "layout" in basename or "/layouts/" in segments or (
        has_jsx(content) and _CHILDREN_PROP_RE.search(content)
    ):
        return "layout"
    if "/pages/" in segments or ROUTING_HOOKS.search(content):
        return "page"
    if "/utils/" in segments or "/lib/" in segments:
        return "utility"
    if basename.endswith(SCRIPT_EXTENSIONS) and has_jsx(content):
        return "component"
    return "utility"


def analyze_file(path, content, last_modified):
    """FileInfo for one file. Never raises."""
    info = FileInfo(path=path, content=content, last_modified=last_modified)
    try:
        info.type = classify_file(path, content)
        if path.endswith(SCRIPT_EXTENSIONS):
            info.imports = extract_imports(content)
            info.exports = extract_exports(content)
            info.component_info = extract_component_info(content, path)
    except Exception as e:
        logger.warning("Could not analyze %s: %s", path, e)
        info.imports = []
        info.exports = []
        info.component_info = None
    return info


def build_component_tree(files):
    """Link components through their default-imported local identifiers."""
    tree = {}
    for path, info in files.items():
        if info.component_info:
            node_type = info.type if info.type in ("page", "layout") else "component"
            tree[info.component_info.name] = ComponentNode(file=path, type=node_type)

    for info in files.values():
        if not info.component_info:
            continue
        parent = tree[info.component_info.name]
        for imp in info.imports:
            child = imp.default_import
            if imp.is_local and child and child in tree and child not in parent.imports:
                parent.imports.append(child)
                tree[child].imported_by.append(info.component_info.name)
    return tree


def extract_routes(files):
    routes = []
    for path, info in files.items():
        content = info.content
        if "<Route" in content or "createBrowserRouter" in content:
            for m in _ROUTE_PATH_RE.finditer(content):
                routes.append(RouteInfo(path=m.group(1), component=path, element=m.group(2)))

        if _PAGES_PREFIX_RE.match(path) and _SCRIPT_EXT_RE.search(path):
            route = _PAGES_PREFIX_RE.sub("", path)
            route = _SCRIPT_EXT_RE.sub("", route)
            route = re.sub(r"(?:^|/)index$", "", route)
            routes.append(RouteInfo(path="/" + route.strip("/"), component=path))
    return routes


def find_entry_point(paths):
    present = set(paths)
    for name in ENTRY_POINT_NAMES:
        if name in present:
            return name
    return ""


def build_manifest(files, last_modified=None, now=None):
    """Build a FileManifest from {path: content}.

    ``last_modified`` optionally maps paths to modification timestamps; files
    without one are stamped with the build time. The manifest is always
    rebuilt from scratch.
    """
    now = time.time() if now is None else now
    last_modified = last_modified or {}
    manifest = FileManifest(timestamp=now)

    for path in sorted(files):
        info = analyze_file(path, files[path], last_modified.get(path, now))
        manifest.files[path] = info
        if info.type == "style":
            manifest.style_files.append(path)

    try:
        manifest.component_tree = build_component_tree(manifest.files)
    except Exception as e:
        logger.warning("Component tree build failed: %s", e)
    manifest.routes = extract_routes(manifest.files)
    manifest.entry_point = find_entry_point(manifest.files)
    return manifest


def _join(base_dir, relative):
    parts = base_dir.split("/") if base_dir else []
    for part in relative.split("/"):
        if part == "..":
            if parts:
                parts.pop()
        elif part and part != ".":
            parts.append(part)
    return "/".join(parts)


def resolve_import(from_file, specifier, manifest, source_root="src"):
    """Map a local import to a manifest path, probing extensions and index files."""
    if specifier.startswith("@/"):
        resolved = _join(source_root, specifier[2:])
    elif specifier.startswith(("./", "../")):
        resolved = _join(posixpath.dirname(from_file), specifier)
    else:
        return None

    for ext in ("", ".jsx", ".js", ".tsx", ".ts"):
        if resolved + ext in manifest.files:
            return resolved + ext
    for ext in (".jsx", ".js", ".tsx", ".ts"):
        index = f"{resolved}/index{ext}"
        if index in manifest.files:
            return index
    return None


def search_files(plan, files, context_lines=3):
    """Run a search plan over {path: content} and return line-level hits.

    ``plan`` keys: ``search_terms``, ``regex_patterns``, ``file_types`` and an
    optional ``fallback`` dict with its own ``terms``/``patterns`` that is
    tried when the primary search finds nothing.
    """
    file_types = tuple(plan.get("file_types") or (".jsx", ".tsx", ".js", ".ts"))

    def run(terms, patterns):
        compiled = []
        for pattern in patterns or []:
            try:
                compiled.append((pattern, re.compile(pattern, re.IGNORECASE)))
            except re.error:
                logger.warning("Invalid search pattern: %s", pattern)
        hits = []
        searched = 0
        for path, content in files.items():
            if not path.endswith(file_types):
                continue
            searched += 1
            lines = content.split("\n")
            for i, line in enumerate(lines):
                term = next((t for t in terms if t.lower() in line.lower()), None)
                pattern = None
                if term is None:
                    pattern = next((p for p, rx in compiled if rx.search(line)), None)
                    if pattern is None:
                        continue
                if term and term in line:
                    confidence = "high"
                elif any(k in line for k in ("function", "export", "return")):
                    confidence = "high"
                else:
                    confidence = "medium"
                hits.append({
                    "file": path,
                    "line": i + 1,
                    "content": line,
                    "term": term,
                    "pattern": pattern,
                    "before": lines[max(0, i - context_lines):i],
                    "after": lines[i + 1:i + 1 + context_lines],
                    "confidence": confidence,
                })
        return hits, searched

    hits, searched = run(plan.get("search_terms") or [], plan.get("regex_patterns"))
    used_fallback = False
    fallback = plan.get("fallback")
    if not hits and fallback:
        used_fallback = True
        hits, extra = run(fallback.get("terms") or [], fallback.get("patterns"))
        searched += extra
    return {
        "success": bool(hits),
        "results": hits,
        "files_searched": searched,
        "used_fallback": used_fallback,
    }
