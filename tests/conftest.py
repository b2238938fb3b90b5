"""Shared fixtures: an in-memory environment and session helpers."""

import json

import pytest

from core.orchestrator import Orchestrator
from core.sandbox import CommandResult, Environment, EnvironmentUnavailable, InstallResult
from core.session import SessionManager


class FakeEnvironment(Environment):
    """Dict-backed environment that records every call."""

    def __init__(self, files=None, dependencies=None, install_fails=False,
                 install_error=None, command_results=None):
        self.environment_id = "fake"
        self.files = dict(files or {})
        self.dependencies = dict(dependencies or {"react": "^18.2.0", "react-dom": "^18.2.0"})
        self._sync_package_json()
        self.install_fails = install_fails
        self.install_error = install_error
        self.command_results = dict(command_results or {})
        self.calls = []
        self.available = True
        self.fail_writes = set()
        self.dev_restarts = 0
        self.dev_logs = []

    def _sync_package_json(self):
        self.files["package.json"] = json.dumps({"name": "app", "dependencies": self.dependencies})

    def is_available(self):
        return self.available

    def close(self):
        self.available = False

    def restart_dev_server(self):
        self.dev_restarts += 1

    def dev_server_logs(self):
        return list(self.dev_logs)

    def dev_server_running(self):
        return self.dev_restarts > 0

    def write_file(self, path, content):
        if not self.available:
            raise EnvironmentUnavailable("closed")
        self.calls.append(("write", path))
        if path in self.fail_writes:
            raise OSError(f"disk full: {path}")
        self.files[path] = content
        return path

    def list_files(self, extensions=None, exclude_dirs=None):
        if not self.available:
            raise EnvironmentUnavailable("closed")
        if not extensions:
            return dict(self.files)
        return {p: c for p, c in self.files.items() if p.endswith(tuple(extensions))}

    def install_packages(self, packages):
        self.calls.append(("install", list(packages)))
        if self.install_error:
            raise self.install_error
        if self.install_fails:
            return InstallResult(failed=list(packages))
        for name in packages:
            self.dependencies[name] = "latest"
        self._sync_package_json()
        return InstallResult(installed=list(packages))

    def run_command(self, argv, cwd=None, timeout=None):
        command = " ".join(argv)
        self.calls.append(("run", command))
        outcome = self.command_results.get(command, CommandResult("ok\n", "", 0))
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def fake_env():
    return FakeEnvironment()


@pytest.fixture
def sessions():
    return SessionManager()


@pytest.fixture
def session(sessions, fake_env):
    return sessions.create(fake_env)


@pytest.fixture
def orchestrator():
    return Orchestrator(settle_delay=0, package_settle_delay=0)


def run_events(events):
    """Exhaust an event generator; return (events, terminal complete event)."""
    collected = list(events)
    complete = [e for e in collected if e["type"] == "complete"]
    return collected, complete[-1] if complete else None
