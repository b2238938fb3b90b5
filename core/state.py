"""Pipeline state models shared across all stages."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from enum import Enum


@dataclass
class FileCandidate:
    path: str
    content: str
    complete: bool              # closing delimiter was seen
    source: str = "file-tag"    # which matcher produced it
    suspect: bool = False       # ellipsis placeholder found in the body
    start: int = 0              # span in the stream buffer
    end: int = 0


@dataclass
class Extraction:
    files: list[FileCandidate] = field(default_factory=list)
    packages: list[str] = field(default_factory=list)       # tags + imports, deduped
    tag_packages: list[str] = field(default_factory=list)   # explicit <package>/<packages> only
    commands: list[str] = field(default_factory=list)
    explanation: str = ""
    structure: str | None = None
    template: str = ""


@dataclass
class ReconciledFile:
    path: str                   # normalized, e.g. "src/components/Header.jsx"
    content: str
    is_update: bool = False
    complete: bool = True


@dataclass
class ImportInfo:
    source: str                 # "./Header", "react", "@/components/Button"
    imports: list[str] = field(default_factory=list)
    default_import: str | None = None
    is_local: bool = False


@dataclass
class ComponentInfo:
    name: str
    props: list[str] = field(default_factory=list)
    hooks: list[str] = field(default_factory=list)
    has_state: bool = False
    child_components: list[str] = field(default_factory=list)


@dataclass
class FileInfo:
    path: str
    content: str
    type: str = "utility"       # component|page|style|config|utility|layout|hook|context
    imports: list[ImportInfo] = field(default_factory=list)
    exports: list[str] = field(default_factory=list)
    component_info: ComponentInfo | None = None
    last_modified: float = 0.0


@dataclass
class RouteInfo:
    path: str                   # "/about"
    component: str              # file that declares or implements the route
    element: str | None = None  # rendered component name, when declared explicitly


@dataclass
class ComponentNode:
    file: str
    type: str                   # page|layout|component
    imports: list[str] = field(default_factory=list)
    imported_by: list[str] = field(default_factory=list)


@dataclass
class FileManifest:
    files: dict[str, FileInfo] = field(default_factory=dict)
    routes: list[RouteInfo] = field(default_factory=list)
    component_tree: dict[str, ComponentNode] = field(default_factory=dict)
    entry_point: str = ""
    style_files: list[str] = field(default_factory=list)
    timestamp: float = field(default_factory=time.time)


class EditType(str, Enum):
    UPDATE_COMPONENT = "UPDATE_COMPONENT"
    ADD_FEATURE = "ADD_FEATURE"
    FIX_ISSUE = "FIX_ISSUE"
    REFACTOR = "REFACTOR"
    FULL_REBUILD = "FULL_REBUILD"
    UPDATE_STYLE = "UPDATE_STYLE"
    ADD_DEPENDENCY = "ADD_DEPENDENCY"


@dataclass
class EditIntent:
    type: EditType
    target_files: list[str]
    confidence: float
    description: str = ""
    suggested_context: list[str] = field(default_factory=list)


@dataclass
class ApplicationResult:
    files_created: list[str] = field(default_factory=list)
    files_updated: list[str] = field(default_factory=list)
    packages_installed: list[str] = field(default_factory=list)
    packages_already_installed: list[str] = field(default_factory=list)
    packages_failed: list[str] = field(default_factory=list)
    commands_executed: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_dict(self):
        return {
            "filesCreated": list(self.files_created),
            "filesUpdated": list(self.files_updated),
            "packagesInstalled": list(self.packages_installed),
            "packagesAlreadyInstalled": list(self.packages_already_installed),
            "packagesFailed": list(self.packages_failed),
            "commandsExecuted": list(self.commands_executed),
            "errors": list(self.errors),
        }


@dataclass
class CachedFile:
    content: str
    last_modified: float


@dataclass
class ConversationMessage:
    id: str
    role: str                   # "user" | "assistant"
    content: str
    timestamp: float
    metadata: dict = field(default_factory=dict)


@dataclass
class EditRecord:
    timestamp: float
    user_request: str
    edit_type: str
    target_files: list[str]
    confidence: float
    outcome: str                # success|partial|failed
    files_touched: list[str] = field(default_factory=list)
    error_message: str | None = None


@dataclass
class MajorChange:
    timestamp: float
    description: str
    files_affected: list[str]


@dataclass
class ConversationContext:
    messages: list[ConversationMessage] = field(default_factory=list)
    edits: list[EditRecord] = field(default_factory=list)
    major_changes: list[MajorChange] = field(default_factory=list)
    current_topic: str | None = None
    user_preferences: dict = field(default_factory=dict)


@dataclass
class SessionState:
    session_id: str
    environment: object | None = None
    known_files: set[str] = field(default_factory=set)
    file_cache: dict[str, CachedFile] = field(default_factory=dict)
    manifest: FileManifest | None = None
    conversation: ConversationContext = field(default_factory=ConversationContext)
    started_at: float = field(default_factory=time.time)
    last_updated: float = field(default_factory=time.time)
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    @property
    def edit_history(self):
        return self.conversation.edits
