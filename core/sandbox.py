"""Execution environment: the capability interface the pipeline mutates, plus a local binding.

Remote sandboxes implement :class:`Environment`. :class:`LocalEnvironment`
backs it with a directory on disk and an allowlisted subprocess runner.
"""

import io
import json
import logging
import os
import re
import subprocess
import threading
import zipfile
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field

from config.defaults import DEFAULTS
from config.stacks import STACKS
from core.extractor import package_name
from utils.template_engine import render_stack

logger = logging.getLogger("sitesmith.sandbox")


class EnvironmentUnavailable(RuntimeError):
    """The environment handle is missing, closed or unreachable."""


class CommandRejected(ValueError):
    """The command is not allowed to run."""


@dataclass
class CommandResult:
    stdout: str
    stderr: str
    exit_code: int


@dataclass
class InstallResult:
    installed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    output: str = ""


def strip_version(package):
    """Drop a version suffix: ``axios@1.6`` -> ``axios``, ``@scope/pkg@2`` -> ``@scope/pkg``."""
    if package.startswith("@"):
        return "@" + package[1:].partition("@")[0]
    return package.split("@")[0]


def check_command(command):
    """Raise CommandRejected unless command is a non-empty argv with an allowlisted executable."""
    if not command or not isinstance(command, list):
        raise CommandRejected("Command must be a non-empty list of strings")
    allowed = DEFAULTS["allowed_commands"]
    if command[0] not in allowed:
        raise CommandRejected(
            f"Command '{command[0]}' not in allowlist: {allowed}"
        )


def run_in_sandbox(command, cwd, timeout=None):
    """Run a command in a sandboxed subprocess.

    Args:
        command: Command as a list of strings, e.g. ["npm", "run", "build"]
        cwd: Working directory (must exist)
        timeout: Seconds before killing the process (default from config)

    Returns:
        (stdout, stderr, returncode) tuple

    Raises:
        CommandRejected: If command is not in the allowlist.
        ValueError: If cwd is invalid.
    """
    if timeout is None:
        timeout = DEFAULTS["sandbox_timeout"]

    check_command(command)
    executable = command[0]

    cwd = os.path.realpath(cwd)
    if not os.path.isdir(cwd):
        raise ValueError(f"Working directory does not exist: {cwd}")

    try:
        result = subprocess.run(
            command,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
        return result.stdout, result.stderr, result.returncode
    except subprocess.TimeoutExpired:
        return "", f"Command timed out after {timeout}s", -1
    except FileNotFoundError:
        return "", f"Command not found: {executable}", -1


_UNRESOLVED_IMPORT_RE = re.compile(r"""Failed to resolve import ["']([^"']+)["']""")
_ERROR_LINE_RE = re.compile(r"error|failed to resolve", re.IGNORECASE)


def log_errors(lines):
    """Error lines from dev server output, plus packages it could not resolve."""
    errors = [line for line in lines if _ERROR_LINE_RE.search(line)]
    missing = []
    for line in errors:
        for specifier in _UNRESOLVED_IMPORT_RE.findall(line):
            name = package_name(specifier)
            if name and name not in missing:
                missing.append(name)
    return {"errors": errors, "missingPackages": missing}


class DevServer:
    """A long-running dev server process with a bounded tail of its output."""

    def __init__(self, command, cwd, max_lines=None):
        self.command = list(command)
        self.cwd = cwd
        self.process = None
        self._lines = deque(maxlen=max_lines or DEFAULTS["dev_log_lines"])
        self._reader = None

    def running(self):
        return self.process is not None and self.process.poll() is None

    def start(self):
        check_command(self.command)
        if self.running():
            return
        self._lines.clear()
        self.process = subprocess.Popen(
            self.command,
            cwd=self.cwd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
        )
        self._reader = threading.Thread(target=self._read, args=(self.process.stdout,), daemon=True)
        self._reader.start()
        logger.info("Dev server started (pid %s): %s", self.process.pid, " ".join(self.command))

    def _read(self, stream):
        for line in stream:
            self._lines.append(line.rstrip("\n"))
        stream.close()

    def stop(self):
        if not self.running():
            return
        self.process.terminate()
        try:
            self.process.wait(timeout=DEFAULTS["dev_stop_timeout"])
        except subprocess.TimeoutExpired:
            logger.warning("Dev server did not stop; killing pid %s", self.process.pid)
            self.process.kill()
            self.process.wait()

    def restart(self):
        self.stop()
        self.start()

    def wait(self, timeout=None):
        """Block until the process exits and its output has been read."""
        if self.process is None:
            return None
        code = self.process.wait(timeout=timeout)
        if self._reader is not None:
            self._reader.join(timeout)
        return code

    def logs(self):
        return list(self._lines)


class Environment(ABC):
    """What the orchestrator needs from a sandbox."""

    environment_id = ""

    @abstractmethod
    def write_file(self, path, content):
        """Write ``content`` to the project-relative ``path``, creating parents."""

    @abstractmethod
    def list_files(self, extensions=None, exclude_dirs=None):
        """Return {project-relative path: content} for matching files."""

    @abstractmethod
    def install_packages(self, packages):
        """Install packages and return an InstallResult."""

    @abstractmethod
    def run_command(self, argv, cwd=None, timeout=None):
        """Run argv inside the project and return a CommandResult."""

    def is_available(self):
        return True

    def close(self):
        pass

    def restart_dev_server(self):
        """(Re)start the project's dev server."""
        raise EnvironmentUnavailable(f"{type(self).__name__} does not run a dev server")

    def dev_server_logs(self):
        """Recent dev server output lines, oldest first."""
        return []

    def dev_server_running(self):
        return False

    def declared_dependencies(self):
        """Names in package.json dependencies + devDependencies."""
        files = self.list_files(extensions=[".json"])
        raw = files.get("package.json")
        if not raw:
            return set()
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("package.json is not valid JSON; treating as no dependencies")
            return set()
        return set(data.get("dependencies", {})) | set(data.get("devDependencies", {}))


class LocalEnvironment(Environment):
    """A project directory on the local filesystem."""

    def __init__(self, root, environment_id=None):
        self.root = os.path.realpath(root)
        self.environment_id = environment_id or os.path.basename(self.root)
        self.closed = False
        self.dev_server = None

    def _check(self):
        if self.closed or not os.path.isdir(self.root):
            raise EnvironmentUnavailable(f"Project directory not available: {self.root}")

    def _resolve(self, relative_path):
        resolved = os.path.realpath(os.path.join(self.root, relative_path))
        if not resolved.startswith(self.root + os.sep):
            raise ValueError(f"Path escapes project directory: {relative_path}")
        return resolved

    def is_available(self):
        return not self.closed and os.path.isdir(self.root)

    def close(self):
        if self.dev_server is not None:
            self.dev_server.stop()
        self.closed = True

    def restart_dev_server(self):
        self._check()
        if self.dev_server is None:
            self.dev_server = DevServer(STACKS[DEFAULTS["stack"]]["dev_command"], cwd=self.root)
        self.dev_server.restart()
        return self.dev_server

    def dev_server_logs(self):
        return self.dev_server.logs() if self.dev_server is not None else []

    def dev_server_running(self):
        return self.dev_server is not None and self.dev_server.running()

    def write_file(self, path, content):
        self._check()
        resolved = self._resolve(path)
        os.makedirs(os.path.dirname(resolved), exist_ok=True)
        with open(resolved, "w") as f:
            f.write(content)
        return path

    def list_files(self, extensions=None, exclude_dirs=None):
        self._check()
        extensions = tuple(extensions or DEFAULTS["list_extensions"])
        exclude = set(exclude_dirs or DEFAULTS["exclude_dirs"])
        max_size = DEFAULTS["max_file_size"]
        files = {}
        for current, dirs, names in os.walk(self.root):
            dirs[:] = sorted(d for d in dirs if d not in exclude)
            for name in sorted(names):
                if not name.endswith(extensions):
                    continue
                full = os.path.join(current, name)
                if os.path.getsize(full) > max_size:
                    continue
                rel = os.path.relpath(full, self.root).replace(os.sep, "/")
                try:
                    with open(full, "r", encoding="utf-8") as f:
                        files[rel] = f.read()
                except (OSError, UnicodeDecodeError) as e:
                    logger.warning("Skipping unreadable file %s: %s", rel, e)
        return files

    def install_packages(self, packages):
        self._check()
        command = list(STACKS[DEFAULTS["stack"]]["install_command"]) + list(packages)
        stdout, stderr, rc = run_in_sandbox(command, cwd=self.root,
                                            timeout=DEFAULTS["install_timeout"])
        declared = self.declared_dependencies()
        result = InstallResult(output=stdout + stderr)
        for package in packages:
            if strip_version(package) in declared:
                result.installed.append(package)
            else:
                result.failed.append(package)
        if rc != 0:
            logger.warning("Install exited with %s: %s", rc, stderr.strip()[:500])
        return result

    def run_command(self, argv, cwd=None, timeout=None):
        self._check()
        workdir = self._resolve(cwd) if cwd and cwd != "." else self.root
        stdout, stderr, rc = run_in_sandbox(list(argv), cwd=workdir,
                                            timeout=timeout or DEFAULTS["command_timeout"])
        return CommandResult(stdout=stdout, stderr=stderr, exit_code=rc)


def scaffold(environment, project_name, stack=None, title=None):
    """Write the stack's starter project into a fresh environment.

    Returns the list of paths written.
    """
    definition = STACKS[stack or DEFAULTS["stack"]]
    variables = {
        "project_name": project_name,
        "title": title or project_name,
        "dev_port": definition["dev_port"],
    }
    written = []
    for path, content in render_stack(definition, variables).items():
        environment.write_file(path, content)
        written.append(path)
    logger.info("Scaffolded %d files for %s", len(written), project_name)
    return written


def export_archive(environment):
    """Zip the project's source files; returns the archive bytes."""
    files = environment.list_files(DEFAULTS["list_extensions"], DEFAULTS["exclude_dirs"])
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
        for path in sorted(files):
            archive.writestr(path, files[path])
    logger.info("Exported %d files from %s", len(files), environment.environment_id)
    return buffer.getvalue()
