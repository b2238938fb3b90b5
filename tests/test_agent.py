"""End-to-end turns through manager.agent with a canned model stream."""

from conftest import FakeEnvironment
from core.orchestrator import Orchestrator
from core.state import EditType
from manager.agent import ManagerAgent

FIRST_BUILD = (
    "Here is your app.\n"
    "<explanation>Landing page with routing.</explanation>\n"
    '<file path="src/App.jsx">import { BrowserRouter } from "react-router-dom";\n'
    "import Header from './components/Header';\n"
    "export default function App() { return <BrowserRouter><Header /></BrowserRouter>; }</file>\n"
    '<file path="components/Header.jsx">export default function Header() { return <header /> }</file>\n'
    '<file path="package.json">{"name": "hijack"}</file>\n'
)


def _stream(*texts, error=None):
    """Canned generation source; each call plays the next text."""
    queue = list(texts)
    calls = []

    def stream(system_prompt, user_message, history=None, client=None):
        calls.append((system_prompt, user_message))
        yield {"type": "status", "message": "Generating code..."}
        if error:
            yield {"type": "error", "error": error}
            return
        text = queue.pop(0)
        for i in range(0, len(text), 25):
            yield {"type": "stream", "text": text[i:i + 25], "raw": True}
        yield {"type": "complete", "generatedCode": text, "packagesToInstall": [],
               "stopReason": "end_turn", "truncated": False}

    stream.calls = calls
    return stream


def _agent(sessions, stream):
    return ManagerAgent(sessions=sessions, orchestrator=Orchestrator(settle_delay=0, package_settle_delay=0),
                        stream=stream)


# ---------------------------------------------------------------------------
# Full turns
# ---------------------------------------------------------------------------

def test_first_build_end_to_end(sessions, session, fake_env):
    agent = _agent(sessions, _stream(FIRST_BUILD))
    pairs = list(agent.run_turn(session, "build a landing page"))

    phases = [phase for phase, _ in pairs]
    assert phases.index("apply") > max(i for i, p in enumerate(phases) if p == "generate")

    complete = pairs[-1][1]
    assert complete["type"] == "complete"
    results = complete["results"]
    assert results["filesCreated"] == ["src/App.jsx", "src/components/Header.jsx"]
    assert results["packagesInstalled"] == ["react-router-dom"]
    assert ("write", "package.json") not in fake_env.calls
    assert fake_env.calls[0] == ("install", ["react-router-dom"])
    assert session.known_files == {"src/App.jsx", "src/components/Header.jsx"}
    assert [m.role for m in session.conversation.messages] == ["user", "assistant"]
    assert session.conversation.messages[0].metadata["addedPackages"] == ["react-router-dom"]
    assert session.edit_history == []
    assert session.conversation.major_changes[-1].description == "Landing page with routing."


def test_package_events_announced_once(sessions, session):
    agent = _agent(sessions, _stream(FIRST_BUILD))
    events = list(agent.generate(session, "build it"))
    packages = [e["name"] for e in events if e["type"] == "package"]
    assert packages == ["react-router-dom"]
    complete = events[-1]
    assert complete["files"] == 3
    assert complete["packagesToInstall"] == []
    assert complete["packagesDetected"] == ["react-router-dom"]
    assert complete["explanation"] == "Landing page with routing."


def test_follow_up_edit_uses_intent(sessions, session, fake_env):
    stream = _stream(
        FIRST_BUILD,
        '<file path="src/components/Header.jsx">export default function Header() '
        '{ return <header className="bg-blue-500" /> }</file>',
    )
    agent = _agent(sessions, stream)
    list(agent.run_turn(session, "build a landing page"))
    pairs = list(agent.run_turn(session, "update the header section"))

    complete = pairs[-1][1]
    assert complete["results"]["filesUpdated"] == ["src/components/Header.jsx"]
    assert complete["results"]["filesCreated"] == []
    edit = session.edit_history[-1]
    assert edit.edit_type == EditType.UPDATE_COMPONENT.value
    assert edit.target_files == ["src/components/Header.jsx"]
    assert edit.outcome == "success"

    system_prompt, message = stream.calls[-1]
    assert "FILES TO EDIT" in message
    assert "src/components/Header.jsx" in message
    assert "bg-blue-500" in fake_env.files["src/components/Header.jsx"]


def test_discarded_version_imports_not_installed(sessions, session, fake_env):
    text = (
        '<file path="src/App.jsx">import _ from "lodash";\n'
        "export default function App() { return _.noop(); }</file>\n"
        '<file path="src/App.jsx">import { useState } from "react";\n'
        "export default function App() {\n"
        "  const [count, setCount] = useState(0);\n"
        "  return <button onClick={() => setCount(count + 1)}>{count}</button>;\n"
        "}</file>"
    )
    pairs = list(_agent(sessions, _stream(text)).run_turn(session, "build a counter"))

    generated = [e for phase, e in pairs if phase == "generate" and e["type"] == "complete"][0]
    assert generated["packagesToInstall"] == []
    results = pairs[-1][1]["results"]
    assert "lodash" not in fake_env.files["src/App.jsx"]
    assert results["packagesInstalled"] == []
    assert not any(call[0] == "install" for call in fake_env.calls)


def test_tag_and_tool_packages_survive_to_apply(sessions, session, fake_env):
    text = "<package>zustand</package>\n" + FIRST_BUILD
    pairs = list(_agent(sessions, _stream(text)).run_turn(session, "build it"))
    generated = [e for phase, e in pairs if phase == "generate" and e["type"] == "complete"][0]
    assert generated["packagesToInstall"] == ["zustand"]
    assert fake_env.calls[0] == ("install", ["zustand", "react-router-dom"])


def test_scaffolded_first_build_uses_build_prompt(sessions):
    session = sessions.create(FakeEnvironment(), scaffold_project=True)
    assert "vite.config.js" in session.known_files
    stream = _stream(
        FIRST_BUILD,
        '<file path="src/components/Header.jsx">export default function Header() '
        '{ return <header className="bg-amber-700" /> }</file>',
    )
    agent = _agent(sessions, stream)

    list(agent.run_turn(session, "a landing page for a coffee shop"))
    system_prompt, message = stream.calls[0]
    assert message == "Build this app:\na landing page for a coffee shop"
    assert session.edit_history == []

    list(agent.run_turn(session, "update the header section"))
    _, message = stream.calls[1]
    assert message.startswith("Edit request: update the header section")
    assert session.edit_history[-1].target_files == ["src/components/Header.jsx"]


def test_forced_first_build_skips_intent(sessions, session):
    stream = _stream(FIRST_BUILD, FIRST_BUILD)
    agent = _agent(sessions, stream)
    list(agent.run_turn(session, "build a landing page"))
    list(agent.run_turn(session, "build a landing page again", is_edit=False))
    assert stream.calls[1][1].startswith("Build this app:")
    assert session.edit_history == []


def test_generation_error_skips_apply(sessions, session, fake_env):
    agent = _agent(sessions, _stream(error="overloaded"))
    pairs = list(agent.run_turn(session, "build a landing page"))
    assert pairs[-1] == ("generate", {"type": "error", "error": "overloaded"})
    assert all(phase == "generate" for phase, _ in pairs)
    assert fake_env.calls == []
    assert session.conversation.messages == []


def test_prose_only_reply_is_conversation(sessions, session, fake_env):
    agent = _agent(sessions, _stream("Sure! <explanation>nothing</explanation>Which colors do you like?"))
    events = list(agent.generate(session, "what can you do?"))
    conversation = [e for e in events if e["type"] == "conversation"]
    assert conversation == [{"type": "conversation", "text": "Sure! Which colors do you like?"}]
    assert events[-1]["files"] == 0


def test_apply_without_instruction_records_assistant_only(sessions, session):
    agent = _agent(sessions, _stream())
    list(agent.apply(session, FIRST_BUILD))
    assert [m.role for m in session.conversation.messages] == ["assistant"]


def test_no_environment_turn(sessions):
    bare = sessions.create()
    agent = _agent(sessions, _stream(FIRST_BUILD))
    pairs = list(agent.run_turn(bare, "build a page"))
    apply_events = [e for phase, e in pairs if phase == "apply"]
    assert [e["type"] for e in apply_events] == ["error", "complete"]
    assert bare.known_files == set()


# ---------------------------------------------------------------------------
# plan / detect_packages
# ---------------------------------------------------------------------------

def test_is_follow_up_after_applied_turn(sessions, session):
    agent = _agent(sessions, _stream(FIRST_BUILD))
    assert agent.is_follow_up(session) is False
    list(agent.run_turn(session, "build a landing page"))
    assert agent.is_follow_up(session) is True


def test_plan_none_for_first_build(sessions, session):
    assert _agent(sessions, _stream()).plan(session, "update the header section") is None


def test_plan_refreshes_manifest(sessions):
    env = FakeEnvironment(files={"src/App.jsx": "export default function App() { return <main /> }"})
    session = sessions.create(env)
    session.known_files.add("src/App.jsx")
    intent = _agent(sessions, _stream()).plan(session, "start over")
    assert intent.type == EditType.FULL_REBUILD
    assert intent.target_files == ["src/App.jsx"]
    assert session.manifest.entry_point == "src/App.jsx"


def test_detect_packages(sessions, session):
    detected = _agent(sessions, _stream()).detect_packages(session, {
        "src/App.jsx": "import axios from 'axios';\nimport { createRoot } from 'react-dom/client';",
        "src/b.js": "const v = require('vite');",
        "README.md": "import nope from 'nope';",
    })
    assert detected == {"packages": ["axios", "vite"], "installed": ["vite"], "missing": ["axios"]}
