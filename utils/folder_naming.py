"""Project directory naming for local environments."""

import os
import re

BASE_DIR = os.path.dirname(os.path.dirname(__file__))
PROJECTS_DIR = "projects"

MAX_DEDUP = 1000

_FILLER = {
    "build", "me", "a", "an", "the", "create", "make", "generate", "clone",
    "write", "for", "to", "with", "using", "that", "and", "app", "website",
    "site", "page", "web", "application", "please", "can", "you", "i",
    "want", "need", "some", "new", "like", "of",
}


def slugify(text):
    """Lowercase, dash-separated, filesystem-safe."""
    text = re.sub(r"[^\w\s-]", "", text.lower().strip())
    return re.sub(r"[\s_-]+", "-", text).strip("-")


def extract_project_name(prompt):
    """First three meaningful words of the prompt, or "project"."""
    words = re.sub(r"[^\w\s]", " ", prompt.lower()).split()
    meaningful = [w for w in words if w not in _FILLER]
    return slugify("-".join(meaningful[:3])) or "project"


def get_project_dir(prompt, base_dir=None):
    """Deduplicated directory for a new project: <base>/projects/<name>[-N]."""
    root = os.path.realpath(os.path.join(base_dir or BASE_DIR, PROJECTS_DIR))
    base = os.path.realpath(os.path.join(root, extract_project_name(prompt)))
    if not base.startswith(root + os.sep):
        raise ValueError(f"Project path escapes projects directory: {base}")
    if not os.path.exists(base):
        return base
    for counter in range(2, MAX_DEDUP + 2):
        candidate = f"{base}-{counter}"
        if not os.path.exists(candidate):
            return candidate
    raise RuntimeError(f"Too many projects named {os.path.basename(base)}")
