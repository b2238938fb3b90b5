"""Static rule tables for stream parsing, manifest analysis and edit classification."""

import re

# Generated output must never overwrite these (compared by basename).
PROTECTED_FILENAMES = {
    "package.json",
    "package-lock.json",
    "yarn.lock",
    "pnpm-lock.yaml",
    "vite.config.js",
    "vite.config.ts",
    "tailwind.config.js",
    "tailwind.config.ts",
    "postcss.config.js",
    "tsconfig.json",
}

# Node built-ins never become install candidates.
PLATFORM_BUILTINS = {
    "assert", "buffer", "child_process", "crypto", "events", "fs", "http",
    "https", "net", "os", "path", "process", "querystring", "stream",
    "string_decoder", "timers", "tls", "url", "util", "zlib",
}

# The UI framework's own runtime, always present in the scaffold.
FRAMEWORK_PACKAGES = {"react", "react-dom"}

# Paths that stay at the project root instead of moving under the source root.
ROOT_LEVEL_PREFIXES = ("src/", "public/")
ROOT_LEVEL_FILES = {"index.html"}

# Fallback folder for bare file names recovered from plain text or comments.
FALLBACK_COMPONENT_DIR = "src/components"

SCRIPT_EXTENSIONS = (".jsx", ".js", ".tsx", ".ts")
STYLE_EXTENSIONS = (".css", ".scss", ".sass", ".less")
COMPONENT_EXTENSIONS = (".jsx", ".tsx")
GENERATED_LIST_EXTENSIONS = (".jsx", ".js", ".tsx", ".ts", ".css", ".json", ".html")

CONFIG_FILENAMES = {
    "vite.config.js", "vite.config.ts", "tailwind.config.js",
    "tailwind.config.ts", "postcss.config.js", "tsconfig.json",
    "package.json", "eslint.config.js", ".eslintrc.js",
}

DEPENDENCY_FILE_SUFFIXES = ("package.json", "vite.config.js", "vite.config.ts", "tsconfig.json")

# App root first: edits land in the component tree, not the bootstrap file.
ENTRY_POINT_NAMES = [
    "src/App.jsx", "src/App.tsx", "src/App.js", "App.jsx",
    "src/main.jsx", "src/main.tsx", "src/index.jsx", "src/index.js",
]

ROUTING_HOOKS = re.compile(r"\b(?:useRouter|useParams|useSearchParams)\s*\(")

INSTRUCTION_STOPWORDS = re.compile(
    r"\b(?:the|a|an|in|on|to|from|update|change|modify|edit|fix|make)\b",
    re.IGNORECASE,
)

UI_SECTIONS = [
    "header", "footer", "nav", "sidebar", "button", "card", "modal", "hero",
    "banner", "about", "services", "features", "testimonials", "gallery",
    "contact", "team", "pricing",
]
