"""Generator agent: builds the system prompt and user message for a turn."""

import os

from core.state import EditType

_PROMPTS_DIR = os.path.join(os.path.dirname(__file__), "prompts")

# Context files longer than this are cut, target files never are.
MAX_CONTEXT_CHARS = 4000
MAX_HISTORY_EDITS = 3


def _load_prompt(name):
    with open(os.path.join(_PROMPTS_DIR, name)) as f:
        return f.read()


def _fence(path, content):
    return f'<file path="{path}">\n{content}\n</file>'


class GeneratorAgent:
    """Prompts for new builds and for intent-scoped edits."""

    name = "generator"

    def system_prompt(self, intent=None):
        if intent is None or intent.type == EditType.FULL_REBUILD:
            return _load_prompt("generator.txt")
        return _load_prompt("edit.txt")

    def build_message(self, instruction, session=None, intent=None):
        if intent is None or session is None or session.manifest is None:
            return f"Build this app:\n{instruction}"

        manifest = session.manifest
        if intent.type == EditType.FULL_REBUILD:
            return f"Discard the current app and rebuild it from scratch:\n{instruction}"

        parts = [
            f"Edit request: {instruction}",
            f"Edit type: {intent.type.value} ({intent.description})",
        ]

        history = session.conversation.edits[-MAX_HISTORY_EDITS:]
        if history:
            parts.append("\n--- RECENT EDITS ---")
            for edit in history:
                files = ", ".join(edit.files_touched) or "none"
                parts.append(f"- {edit.user_request} -> {edit.outcome} ({files})")

        targets = [p for p in intent.target_files if p in manifest.files]
        if targets:
            parts.append("\n--- FILES TO EDIT (return these complete) ---")
            for path in targets:
                parts.append(_fence(path, manifest.files[path].content))

        context = [p for p in intent.suggested_context if p in manifest.files]
        if context:
            parts.append("\n--- OTHER PROJECT FILES (context only, do not output unless needed) ---")
            for path in context:
                content = manifest.files[path].content
                if len(content) > MAX_CONTEXT_CHARS:
                    content = content[:MAX_CONTEXT_CHARS] + "\n/* truncated for context */"
                parts.append(_fence(path, content))

        if manifest.routes:
            routes = ", ".join(f"{r.path} -> {r.element or r.component}" for r in manifest.routes)
            parts.append(f"\nRoutes: {routes}")
        return "\n".join(parts)
