"""Default pipeline settings."""

import os

DEFAULTS = {
    "model": os.environ.get("SITESMITH_MODEL", "claude-sonnet-4-5-20250929"),
    "max_tokens": 16384,
    "temperature": 0.7,
    "thinking_budget": 0,           # >0 enables extended thinking
    "stack": "vite-react",
    "source_root": "src",
    "project_dir": "/home/user/app",
    "sandbox_timeout": 30,
    "command_timeout": 60,
    "install_timeout": 120,
    "dev_stop_timeout": 5,
    "dev_log_lines": 200,
    "settle_delay": 2.0,            # let the dev server's file watcher catch up
    "package_settle_delay": 5.0,
    "utility_css_only": True,       # Tailwind projects: no per-component stylesheets
    "edit_single_target": True,
    "recent_files_limit": 5,
    "max_file_size": 1024 * 1024,
    "list_extensions": [".jsx", ".js", ".tsx", ".ts", ".css", ".json", ".html"],
    "exclude_dirs": ["node_modules", ".git", ".next", "dist", "build"],
    "allowed_commands": ["npm", "npx", "node", "ls", "cat", "echo", "mkdir", "touch"],
    "keep_recent": {"messages": 5, "edits": 3, "major_changes": 2},
}
