"""Session manager: owns every SessionState and its lifecycle.

Sessions are passed explicitly to the pipeline; nothing lives in module
globals. Each session carries its own lock so operations against one
environment are serialized while different sessions proceed in parallel.
"""

import logging
import threading
import time
import uuid

from config.defaults import DEFAULTS
from core.manifest import build_manifest
from core.quality import turn_outcome
from core.sandbox import EnvironmentUnavailable, scaffold
from core.state import (
    CachedFile,
    ConversationContext,
    ConversationMessage,
    EditRecord,
    MajorChange,
    SessionState,
)

logger = logging.getLogger("sitesmith.session")


class SessionNotFound(KeyError):
    """No session with the given id."""


def _message_id(role):
    return f"{role}-{uuid.uuid4().hex[:12]}"


def conversation_to_dict(context: ConversationContext):
    return {
        "messages": [
            {"id": m.id, "role": m.role, "content": m.content,
             "timestamp": m.timestamp, "metadata": dict(m.metadata)}
            for m in context.messages
        ],
        "edits": [
            {"timestamp": e.timestamp, "userRequest": e.user_request, "editType": e.edit_type,
             "targetFiles": list(e.target_files), "confidence": e.confidence,
             "outcome": e.outcome, "filesTouched": list(e.files_touched),
             "errorMessage": e.error_message}
            for e in context.edits
        ],
        "projectEvolution": {
            "majorChanges": [
                {"timestamp": c.timestamp, "description": c.description,
                 "filesAffected": list(c.files_affected)}
                for c in context.major_changes
            ],
        },
        "currentTopic": context.current_topic,
        "userPreferences": dict(context.user_preferences),
    }


def session_to_dict(session: SessionState):
    return {
        "sessionId": session.session_id,
        "environmentId": getattr(session.environment, "environment_id", None),
        "knownFiles": sorted(session.known_files),
        "entryPoint": session.manifest.entry_point if session.manifest else "",
        "startedAt": session.started_at,
        "lastUpdated": session.last_updated,
        "conversation": conversation_to_dict(session.conversation),
    }


class SessionManager:
    """In-memory registry of sessions, keyed by id."""

    def __init__(self):
        self._sessions = {}
        self._lock = threading.Lock()

    def create(self, environment=None, project_name=None, scaffold_project=False):
        session = SessionState(session_id=uuid.uuid4().hex[:12], environment=environment)
        if environment is not None and scaffold_project:
            written = scaffold(environment, project_name or session.session_id)
            now = time.time()
            session.known_files.update(written)
            session.conversation.major_changes.append(
                MajorChange(timestamp=now, description="Project scaffolded", files_affected=written)
            )
        with self._lock:
            self._sessions[session.session_id] = session
        logger.info("Created session %s", session.session_id)
        return session

    def get(self, session_id):
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def sessions(self):
        with self._lock:
            return list(self._sessions.values())

    def destroy(self, session_id):
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            raise SessionNotFound(session_id)
        with session.lock:
            if session.environment is not None:
                try:
                    session.environment.close()
                except Exception as e:
                    logger.warning("Error closing environment for %s: %s", session_id, e)
            session.environment = None
        logger.info("Destroyed session %s", session_id)
        return session

    # ------------------------------------------------------------------
    # Conversation context
    # ------------------------------------------------------------------

    def reset(self, session_id):
        """Start a fresh conversation; the environment and file bookkeeping stay."""
        session = self.get(session_id)
        with session.lock:
            session.conversation = ConversationContext()
            session.started_at = session.last_updated = time.time()
        logger.info("Reset conversation for session %s", session_id)
        return session

    def clear_old(self, session_id, keep=None):
        keep = keep or DEFAULTS["keep_recent"]
        session = self.get(session_id)
        with session.lock:
            context = session.conversation
            context.messages = context.messages[-keep["messages"]:]
            context.edits = context.edits[-keep["edits"]:]
            context.major_changes = context.major_changes[-keep["major_changes"]:]
            session.last_updated = time.time()
        return session

    def update(self, session_id, current_topic=None, user_preferences=None):
        session = self.get(session_id)
        with session.lock:
            if current_topic:
                session.conversation.current_topic = current_topic
            if user_preferences:
                session.conversation.user_preferences.update(user_preferences)
            session.last_updated = time.time()
        return session

    def add_message(self, session, role, content, **metadata):
        message = ConversationMessage(
            id=_message_id(role), role=role, content=content,
            timestamp=time.time(), metadata=metadata,
        )
        with session.lock:
            session.conversation.messages.append(message)
            session.last_updated = message.timestamp
        return message

    def record_turn(self, session, result, instruction="", intent=None, explanation=""):
        """Fold a finished turn's ApplicationResult into the conversation history."""
        now = time.time()
        outcome = turn_outcome(result)
        touched = list(result.files_created) + list(result.files_updated)
        with session.lock:
            context = session.conversation
            if intent is not None:
                context.edits.append(EditRecord(
                    timestamp=now,
                    user_request=instruction,
                    edit_type=intent.type.value,
                    target_files=list(intent.target_files),
                    confidence=intent.confidence,
                    outcome=outcome,
                    files_touched=touched,
                    error_message="; ".join(result.errors) or None,
                ))
            for message in reversed(context.messages):
                if message.role == "user":
                    message.metadata["editedFiles"] = touched
                    message.metadata["addedPackages"] = list(result.packages_installed)
                    if intent is not None:
                        message.metadata["editType"] = intent.type.value
                    break
            if result.files_created:
                context.major_changes.append(MajorChange(
                    timestamp=now,
                    description=explanation or "Code applied",
                    files_affected=list(result.files_created),
                ))
            session.last_updated = now
        return outcome

    # ------------------------------------------------------------------
    # Manifest
    # ------------------------------------------------------------------

    def refresh_manifest(self, session):
        """Re-read the environment and rebuild the manifest from scratch.

        The environment may be ahead of the session's bookkeeping (writes issued
        by an interrupted turn), so the snapshot also resets the known-file set.
        """
        environment = session.environment
        if environment is None or not environment.is_available():
            raise EnvironmentUnavailable(f"Session {session.session_id} has no active environment")
        with session.lock:
            files = environment.list_files(DEFAULTS["list_extensions"], DEFAULTS["exclude_dirs"])
            now = time.time()
            cache = {}
            for path, content in files.items():
                cached = session.file_cache.get(path)
                if cached is not None and cached.content == content:
                    cache[path] = cached
                else:
                    cache[path] = CachedFile(content=content, last_modified=now)
            session.file_cache = cache
            session.known_files = set(files)
            session.manifest = build_manifest(
                files, {p: c.last_modified for p, c in cache.items()}, now=now,
            )
            session.last_updated = now
        logger.debug("Manifest refreshed for %s: %d files", session.session_id, len(files))
        return session.manifest
