"""Manager Agent: runs one turn from instruction to applied files."""

import logging
import re

from agents.generator import GeneratorAgent
from config.defaults import DEFAULTS
from config.rules import SCRIPT_EXTENSIONS
from config.stacks import STACKS
from core.extractor import StreamBuffer, extract, extract_packages
from core.orchestrator import Orchestrator
from core.reconciler import aggregate_packages, reconcile
from core.session import SessionManager
from manager.classifier import classify_edit
from utils.llm import stream_events

logger = logging.getLogger("sitesmith.agent")

_TAG_RE = re.compile(r"<(file|package|packages|command|structure|explanation|template)\b.*?(?:</\1>|\Z)",
                     re.DOTALL)


def _prose(text):
    return _TAG_RE.sub("", text).strip()


class ManagerAgent:
    """Wires classifier, generator, extractor, reconciler and orchestrator together.

    ``stream`` is the generation event source (``utils.llm.stream_events`` by
    default); tests swap in a canned stream.
    """

    def __init__(self, sessions=None, orchestrator=None, generator=None, stream=None):
        self.sessions = sessions or SessionManager()
        self.orchestrator = orchestrator or Orchestrator()
        self.generator = generator or GeneratorAgent()
        self.stream = stream or stream_events

    def is_follow_up(self, session):
        """True once a turn has been applied; scaffold files alone do not count."""
        return any(m.role == "assistant" for m in session.conversation.messages)

    def plan(self, session, instruction):
        """EditIntent for follow-ups, None for a first build."""
        if session.environment is None or not session.known_files:
            return None
        manifest = self.sessions.refresh_manifest(session)
        if not manifest.files:
            return None
        intent = classify_edit(instruction, manifest)
        logger.info("Edit intent %s (%.2f) -> %s", intent.type.value, intent.confidence,
                    ", ".join(intent.target_files) or "-")
        return intent

    def generate(self, session, instruction, intent=None):
        """Yield generation events; the buffer is re-scanned on every chunk."""
        system = self.generator.system_prompt(intent)
        message = self.generator.build_message(instruction, session, intent)

        buffer = StreamBuffer()
        announced = []
        for event in self.stream(system, message):
            kind = event.get("type")
            if kind == "stream":
                buffer.append(event.get("text", ""))
                yield event
                for name in buffer.extract().packages:
                    if name not in announced:
                        announced.append(name)
                        yield {"type": "package", "name": name,
                               "message": f"Package detected: {name}"}
            elif kind == "complete":
                text = event.get("generatedCode") or buffer.text
                extraction = extract(text)
                if not extraction.files and text.strip():
                    yield {"type": "conversation", "text": _prose(text)}
                # Import-derived packages are settled against reconciled files in apply().
                packages = list(event.get("packagesToInstall") or [])
                for name in extraction.tag_packages:
                    if name not in packages:
                        packages.append(name)
                yield {
                    "type": "complete",
                    "generatedCode": text,
                    "explanation": extraction.explanation,
                    "structure": extraction.structure,
                    "files": len(extraction.files),
                    "packagesToInstall": packages,
                    "packagesDetected": list(announced),
                    "truncated": bool(event.get("truncated")),
                }
            else:
                yield event

    def apply(self, session, text, packages=(), instruction="", intent=None):
        """Extract, reconcile and apply a full response text; yields orchestrator events."""
        extraction = extract(text)
        files = reconcile(extraction.files, known_files=session.known_files)
        explicit = list(extraction.tag_packages) + [p for p in packages if p]
        preinstalled = STACKS[DEFAULTS["stack"]]["preinstalled"]
        wanted = aggregate_packages(files, explicit=explicit, preinstalled=preinstalled)

        def commit(result):
            if instruction:
                self.sessions.add_message(session, "user", instruction)
            self.sessions.add_message(
                session, "assistant", extraction.explanation or "Code applied",
                editedFiles=list(result.files_created) + list(result.files_updated),
            )
            self.sessions.record_turn(session, result, instruction, intent, extraction.explanation)

        yield from self.orchestrator.apply(
            session, files, wanted, extraction.commands,
            explanation=extraction.explanation, structure=extraction.structure,
            on_commit=commit,
        )

    def run_turn(self, session, instruction, is_edit=None):
        """Plan, generate and apply. Yields (phase, event) pairs.

        ``is_edit`` forces a first build (False) or an edit (True); by default
        a turn is an edit once an earlier turn has been applied.
        """
        if is_edit is None:
            is_edit = self.is_follow_up(session)
        intent = self.plan(session, instruction) if is_edit else None
        final = None
        for event in self.generate(session, instruction, intent):
            yield "generate", event
            if event.get("type") == "error":
                return
            if event.get("type") == "complete":
                final = event
        if final is None:
            return
        for event in self.apply(session, final["generatedCode"], final["packagesToInstall"],
                                instruction, intent):
            yield "apply", event

    def detect_packages(self, session, files):
        """Imports in {path: content} split into already-declared and missing packages."""
        found = []
        for path, content in files.items():
            if isinstance(content, str) and path.endswith(SCRIPT_EXTENSIONS):
                for name in extract_packages(content):
                    if name not in found:
                        found.append(name)
        declared = session.environment.declared_dependencies() if found else set()
        preinstalled = set(STACKS[DEFAULTS["stack"]]["preinstalled"])
        installed = [p for p in found if p in declared or p in preinstalled]
        missing = [p for p in found if p not in installed]
        return {"packages": found, "installed": installed, "missing": missing}
