"""Tests for core.orchestrator: staged application against an in-memory environment."""

from unittest.mock import MagicMock

from conftest import FakeEnvironment, run_events
from core.orchestrator import Orchestrator, is_protected, sanitize_content
from core.sandbox import CommandRejected, CommandResult, EnvironmentUnavailable
from core.session import SessionManager
from core.state import ReconciledFile


def _f(path, content="export default function X() {}"):
    return ReconciledFile(path=path, content=content)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def test_is_protected():
    assert is_protected("package.json")
    assert is_protected("vite.config.js")
    assert not is_protected("src/App.jsx")


def test_sanitize_strips_local_css_imports_from_scripts():
    content = "import './App.css';\nimport \"./theme.css\"\nexport default 1;"
    assert sanitize_content("src/App.jsx", content) == "export default 1;"


def test_sanitize_leaves_packages_and_styles_alone():
    content = "import 'swiper/css';\nexport default 1;"
    assert sanitize_content("src/App.jsx", content) == content
    assert sanitize_content("src/index.css", "@import './x.css';") == "@import './x.css';"
    assert sanitize_content("src/App.jsx", "import './a.css';", utility_css_only=False) == "import './a.css';"


# ---------------------------------------------------------------------------
# Stage ordering and events
# ---------------------------------------------------------------------------

def test_event_order(session, orchestrator):
    events, complete = run_events(orchestrator.apply(
        session, [_f("src/App.jsx")], packages=["axios"], commands=["npm run build"],
    ))
    types = [e["type"] for e in events]
    assert types == [
        "start",
        "step", "package-progress", "package-progress",
        "step", "file-progress", "file-complete",
        "step", "command-progress", "command-output", "command-complete",
        "complete",
    ]
    assert [e["step"] for e in events if e["type"] == "step"] == [1, 2, 3]
    assert events[0]["totalSteps"] == 3
    assert complete["results"]["packagesInstalled"] == ["axios"]
    assert complete["message"] == "Applied 1 files"


def test_stages_run_in_order_against_environment(session, fake_env, orchestrator):
    run_events(orchestrator.apply(session, [_f("src/App.jsx")], packages=["axios"],
                                  commands=["npm run build"]))
    assert [c[0] for c in fake_env.calls] == ["install", "write", "run"]


def test_no_packages_or_commands_still_emit_steps(session, orchestrator):
    events, complete = run_events(orchestrator.apply(session, [_f("src/App.jsx")]))
    steps = [e for e in events if e["type"] == "step"]
    assert steps[0]["message"].startswith("No additional packages")
    assert steps[2]["message"] == "No commands to run"
    assert complete["results"]["commandsExecuted"] == []


def test_explanation_and_structure_pass_through(session, orchestrator):
    _, complete = run_events(orchestrator.apply(
        session, [], explanation="Built it", structure="src/App.jsx",
    ))
    assert complete["explanation"] == "Built it"
    assert complete["structure"] == "src/App.jsx"


# ---------------------------------------------------------------------------
# Packages
# ---------------------------------------------------------------------------

def test_already_declared_packages_skipped(session, fake_env, orchestrator):
    events, complete = run_events(orchestrator.apply(session, [], packages=["react", "axios@1.6"]))
    assert complete["results"]["packagesAlreadyInstalled"] == ["react"]
    assert complete["results"]["packagesInstalled"] == ["axios@1.6"]
    assert ("install", ["axios@1.6"]) in fake_env.calls
    statuses = {(e["package"], e["status"]) for e in events if e["type"] == "package-progress"}
    assert ("react", "already-installed") in statuses


def test_duplicate_packages_requested_once(session, fake_env, orchestrator):
    run_events(orchestrator.apply(session, [], packages=["axios", "axios", " ", ""]))
    assert fake_env.calls == [("install", ["axios"])]


def test_install_failure_still_writes_files(session, orchestrator):
    session.environment = env = FakeEnvironment(install_fails=True)
    events, complete = run_events(orchestrator.apply(session, [_f("src/App.jsx")], packages=["axios"]))
    results = complete["results"]
    assert results["packagesFailed"] == ["axios"]
    assert results["filesCreated"] == ["src/App.jsx"]
    assert "src/App.jsx" in env.files
    assert any("axios" in e for e in results["errors"])
    assert {"type": "package-progress", "package": "axios", "status": "failed"} in events


def test_install_exception_marks_all_failed(session, orchestrator):
    session.environment = FakeEnvironment(install_error=RuntimeError("registry down"))
    _, complete = run_events(orchestrator.apply(session, [_f("src/App.jsx")],
                                                packages=["axios", "zustand"]))
    assert complete["results"]["packagesFailed"] == ["axios", "zustand"]
    assert complete["results"]["filesCreated"] == ["src/App.jsx"]
    assert any("registry down" in e for e in complete["results"]["errors"])


def test_install_only(session, fake_env, orchestrator):
    events, complete = run_events(orchestrator.install(session, ["axios"]))
    assert [e["type"] for e in events][-1] == "complete"
    assert complete["results"]["packagesInstalled"] == ["axios"]
    assert [c[0] for c in fake_env.calls] == ["install"]


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------

def test_protected_files_never_written(session, fake_env, orchestrator):
    files = [_f("package.json", "{}"), _f("src/App.jsx")]
    _, complete = run_events(orchestrator.apply(session, files))
    assert ("write", "package.json") not in fake_env.calls
    assert complete["results"]["filesCreated"] == ["src/App.jsx"]


def test_files_accepted_as_mapping(session, fake_env, orchestrator):
    files = {"src/App.jsx": _f("src/App.jsx")}
    _, complete = run_events(orchestrator.apply(session, files))
    assert complete["results"]["filesCreated"] == ["src/App.jsx"]


def test_css_import_stripped_before_write(session, fake_env, orchestrator):
    run_events(orchestrator.apply(session, [_f("src/App.jsx", "import './App.css';\nexport default 1;")]))
    assert fake_env.files["src/App.jsx"] == "export default 1;"
    assert session.file_cache["src/App.jsx"].content == "export default 1;"


def test_rewrite_counts_as_update(session, orchestrator):
    _, first = run_events(orchestrator.apply(session, [_f("src/App.jsx")]))
    _, second = run_events(orchestrator.apply(session, [_f("src/App.jsx", "v2")]))
    assert first["results"]["filesCreated"] == ["src/App.jsx"]
    assert second["results"]["filesUpdated"] == ["src/App.jsx"]
    assert second["results"]["filesCreated"] == []


def test_write_failure_isolated(session, fake_env, orchestrator):
    fake_env.fail_writes = {"src/Bad.jsx"}
    events, complete = run_events(orchestrator.apply(session, [_f("src/Bad.jsx"), _f("src/Good.jsx")]))
    assert complete["results"]["filesCreated"] == ["src/Good.jsx"]
    assert any(e["type"] == "file-error" and e["fileName"] == "src/Bad.jsx" for e in events)
    assert "src/Bad.jsx" not in session.known_files
    assert any("src/Bad.jsx" in e for e in complete["results"]["errors"])


def test_unsafe_path_reported_as_file_error(session, fake_env, orchestrator):
    events, complete = run_events(orchestrator.apply(session, [_f("../escape.js")]))
    assert any(e["type"] == "file-error" for e in events)
    assert not any(c[0] == "write" for c in fake_env.calls)
    assert complete["results"]["filesCreated"] == []


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def test_command_failure_does_not_block_later_commands(session, orchestrator):
    session.environment = env = FakeEnvironment(command_results={
        "npm run build": CommandResult("", "boom", 1),
    })
    events, complete = run_events(orchestrator.apply(session, [], commands=["npm run build", "npm test"]))
    assert [c for c in env.calls if c[0] == "run"] == [("run", "npm run build"), ("run", "npm test")]
    done = [e for e in events if e["type"] == "command-complete"]
    assert done[0]["success"] is False
    assert done[0]["exitCode"] == 1
    assert done[0]["error"] == "boom"
    assert done[1]["success"] is True
    assert complete["results"]["commandsExecuted"] == ["npm run build", "npm test"]
    assert len(complete["results"]["errors"]) == 1


def test_command_that_cannot_start(session, orchestrator):
    session.environment = FakeEnvironment(command_results={
        "rm -rf x": CommandRejected("Command 'rm' not in allowlist"),
    })
    events, complete = run_events(orchestrator.apply(session, [], commands=["rm -rf x", 'echo "unclosed']))
    done = [e for e in events if e["type"] == "command-complete"]
    assert [e["exitCode"] for e in done] == [None, None]
    assert complete["results"]["commandsExecuted"] == []
    assert len(complete["results"]["errors"]) == 2


def test_command_output_streams(session, orchestrator):
    session.environment = FakeEnvironment(command_results={
        "npm test": CommandResult("passed\n", "warn\n", 0),
    })
    events, _ = run_events(orchestrator.apply(session, [], commands=["npm test"]))
    outputs = [(e["stream"], e["output"]) for e in events if e["type"] == "command-output"]
    assert outputs == [("stdout", "passed\n"), ("stderr", "warn\n")]


# ---------------------------------------------------------------------------
# Environment availability
# ---------------------------------------------------------------------------

def test_unavailable_environment(session, fake_env, orchestrator):
    fake_env.available = False
    events, complete = run_events(orchestrator.apply(session, [_f("src/App.jsx")], packages=["axios"]))
    assert [e["type"] for e in events] == ["error", "complete"]
    results = complete["results"]
    assert results["filesCreated"] == []
    assert results["packagesInstalled"] == []
    assert len(results["errors"]) == 1
    assert fake_env.calls == []


def test_missing_environment(sessions, orchestrator):
    bare = sessions.create()
    events, _ = run_events(orchestrator.apply(bare, [_f("src/App.jsx")]))
    assert [e["type"] for e in events] == ["error", "complete"]


def test_environment_lost_mid_turn(session, orchestrator):
    session.environment = FakeEnvironment(install_error=EnvironmentUnavailable("sandbox gone"))
    events, complete = run_events(orchestrator.apply(session, [_f("src/App.jsx")], packages=["axios"]))
    assert "error" in [e["type"] for e in events]
    assert events[-1]["type"] == "complete"
    assert complete["results"]["filesCreated"] == []
    assert not any(e["type"] == "step" and e["step"] == 2 for e in events)


# ---------------------------------------------------------------------------
# Session bookkeeping
# ---------------------------------------------------------------------------

def test_session_updated_on_completion(session, orchestrator):
    before = session.last_updated
    run_events(orchestrator.apply(session, [_f("src/App.jsx")]))
    assert session.known_files == {"src/App.jsx"}
    assert "src/App.jsx" in session.file_cache
    assert session.last_updated >= before


def test_on_commit_called_once_with_result(session, orchestrator):
    seen = []

    def commit(result):
        seen.append((list(result.files_created), set(session.known_files)))

    run_events(orchestrator.apply(session, [_f("src/App.jsx")], on_commit=commit))
    assert seen == [(["src/App.jsx"], {"src/App.jsx"})]


def test_closing_early_leaves_session_untouched(session, orchestrator):
    on_commit = MagicMock()
    events = orchestrator.apply(session, [_f("src/App.jsx"), _f("src/Nav.jsx")], on_commit=on_commit)
    for event in events:
        if event["type"] == "file-complete":
            break
    events.close()
    assert session.known_files == set()
    assert session.file_cache == {}
    on_commit.assert_not_called()


# ---------------------------------------------------------------------------
# Settling
# ---------------------------------------------------------------------------

def test_settle_delay_after_writes():
    sleep = MagicMock()
    orchestrator = Orchestrator(settle_delay=2.0, package_settle_delay=5.0, sleep=sleep)
    env = FakeEnvironment()
    session = SessionManager().create(env)

    run_events(orchestrator.apply(session, [_f("src/App.jsx")]))
    sleep.assert_called_once_with(2.0)

    sleep.reset_mock()
    run_events(orchestrator.apply(session, [_f("src/App.jsx")], packages=["axios"]))
    sleep.assert_called_once_with(5.0)

    sleep.reset_mock()
    run_events(orchestrator.apply(session, [], commands=["npm test"]))
    sleep.assert_not_called()
