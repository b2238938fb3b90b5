"""Application orchestrator: install packages, write files, run commands.

``Orchestrator.apply`` is a generator of progress events. Stages run strictly in
order and each one isolates its own failures; only an unusable environment
ends the turn early. The terminal ``complete`` event always fires.
"""

import logging
import posixpath
import re
import shlex
import time

from config.defaults import DEFAULTS
from config.rules import PROTECTED_FILENAMES, SCRIPT_EXTENSIONS
from core.reconciler import normalize_path
from core.sandbox import EnvironmentUnavailable, strip_version
from core.state import ApplicationResult, CachedFile

logger = logging.getLogger("sitesmith.orchestrator")

TOTAL_STEPS = 3

_CSS_IMPORT_RE = re.compile(r"""import\s+['"]\./[^'"]+\.css['"];?\s*\n?""")


def is_protected(path):
    return posixpath.basename(path) in PROTECTED_FILENAMES


def sanitize_content(path, content, utility_css_only=None):
    """Drop local stylesheet imports from script files when styling is utility-class only."""
    if utility_css_only is None:
        utility_css_only = DEFAULTS["utility_css_only"]
    if utility_css_only and path.endswith(SCRIPT_EXTENSIONS):
        return _CSS_IMPORT_RE.sub("", content)
    return content


def _files_list(files):
    if isinstance(files, dict):
        return list(files.values())
    return list(files)


class Orchestrator:
    """Applies one turn's reconciled output to a session's environment.

    The session is borrowed for the whole turn: its lock is held, bookkeeping
    happens on turn-local copies, and the copies replace the session's only
    when the terminal event is produced. A consumer that stops iterating early
    leaves the session untouched (writes already issued are not rolled back).
    """

    def __init__(self, settle_delay=None, package_settle_delay=None, sleep=time.sleep):
        self.settle_delay = DEFAULTS["settle_delay"] if settle_delay is None else settle_delay
        self.package_settle_delay = (
            DEFAULTS["package_settle_delay"] if package_settle_delay is None
            else package_settle_delay
        )
        self.sleep = sleep

    def apply(self, session, files, packages=(), commands=(), explanation="",
              structure=None, on_commit=None):
        """Yield progress events while applying files/packages/commands.

        Args:
            session: SessionState holding the environment handle.
            files: {path: ReconciledFile} or an iterable of ReconciledFile.
            packages: Requested package names (already aggregated).
            commands: Shell command strings.
            explanation, structure: Passed through on the terminal event.
            on_commit: Optional callable(result) run under the session lock
                right before the terminal event, after the session is updated.
        """
        result = ApplicationResult()
        environment = session.environment
        if environment is None or not environment.is_available():
            message = "No active environment; nothing was applied"
            logger.error("Session %s: %s", session.session_id, message)
            result.errors.append(message)
            yield {"type": "error", "error": message}
            yield self._complete_event(result, explanation, structure)
            return

        with session.lock:
            known = set(session.known_files)
            cache = dict(session.file_cache)

            yield {"type": "start", "message": "Starting code application...",
                   "totalSteps": TOTAL_STEPS}

            try:
                yield from self._install_stage(environment, packages, result)
                wrote = yield from self._write_stage(environment, _files_list(files),
                                                     known, cache, result)
                if wrote:
                    delay = self.package_settle_delay if result.packages_installed else self.settle_delay
                    if delay:
                        self.sleep(delay)
                yield from self._command_stage(environment, commands, result)
            except EnvironmentUnavailable as e:
                logger.error("Environment became unavailable mid-turn: %s", e)
                result.errors.append(f"Environment unavailable: {e}")
                yield {"type": "error", "error": str(e)}

            session.known_files = known
            session.file_cache = cache
            session.last_updated = time.time()
            if on_commit is not None:
                on_commit(result)

            yield self._complete_event(result, explanation, structure)

    def install(self, session, packages):
        """Run only the package stage, for manual install requests."""
        result = ApplicationResult()
        environment = session.environment
        if environment is None or not environment.is_available():
            message = "No active environment; nothing was installed"
            result.errors.append(message)
            yield {"type": "error", "error": message}
            yield self._complete_event(result, "", None)
            return

        with session.lock:
            try:
                yield from self._install_stage(environment, packages, result)
            except EnvironmentUnavailable as e:
                logger.error("Environment became unavailable during install: %s", e)
                result.errors.append(f"Environment unavailable: {e}")
                yield {"type": "error", "error": str(e)}
            session.last_updated = time.time()
            yield self._complete_event(result, "", None)

    # ------------------------------------------------------------------
    # Stage 1: packages
    # ------------------------------------------------------------------

    def _install_stage(self, environment, packages, result):
        requested = []
        for name in packages:
            name = name.strip() if isinstance(name, str) else ""
            if name and name not in requested:
                requested.append(name)

        declared = set()
        if requested:
            try:
                declared = environment.declared_dependencies()
            except EnvironmentUnavailable:
                raise
            except Exception as e:
                logger.warning("Could not read declared dependencies: %s", e)
        pending = []
        for name in requested:
            if strip_version(name) in declared:
                result.packages_already_installed.append(name)
            else:
                pending.append(name)

        if not pending:
            yield {"type": "step", "step": 1, "total": 0,
                   "message": "No additional packages to install, skipping..."}
            for name in result.packages_already_installed:
                yield {"type": "package-progress", "package": name, "status": "already-installed"}
            return

        logger.info("Installing %d package(s): %s", len(pending), ", ".join(pending))
        yield {"type": "step", "step": 1, "total": len(pending),
               "message": f"Installing {len(pending)} packages...", "packages": pending}
        for name in result.packages_already_installed:
            yield {"type": "package-progress", "package": name, "status": "already-installed"}
        for name in pending:
            yield {"type": "package-progress", "package": name, "status": "installing"}

        try:
            outcome = environment.install_packages(pending)
        except EnvironmentUnavailable:
            raise
        except Exception as e:
            logger.warning("Package installation failed: %s", e)
            result.packages_failed.extend(pending)
            result.errors.append(f"Package installation failed: {e}")
            for name in pending:
                yield {"type": "package-progress", "package": name, "status": "failed",
                       "error": str(e)}
            return

        installed = set(outcome.installed)
        for name in pending:
            if name in installed:
                result.packages_installed.append(name)
                yield {"type": "package-progress", "package": name, "status": "installed"}
            else:
                result.packages_failed.append(name)
                yield {"type": "package-progress", "package": name, "status": "failed"}
        if result.packages_failed:
            logger.warning("Packages failed to install: %s", ", ".join(result.packages_failed))
            result.errors.append(
                f"Failed to install packages: {', '.join(result.packages_failed)}"
            )

    # ------------------------------------------------------------------
    # Stage 2: files
    # ------------------------------------------------------------------

    def _write_stage(self, environment, files, known, cache, result):
        writable = []
        for f in files:
            if is_protected(f.path):
                logger.info("Skipping protected file %s", f.path)
                continue
            writable.append(f)

        total = len(writable)
        yield {"type": "step", "step": 2, "total": total,
               "message": f"Creating {total} files..."}

        wrote = 0
        for index, f in enumerate(writable, start=1):
            yield {"type": "file-progress", "current": index, "total": total,
                   "fileName": f.path, "action": "creating"}
            try:
                path = normalize_path(f.path)
                content = sanitize_content(path, f.content)
                environment.write_file(path, content)
            except EnvironmentUnavailable:
                raise
            except Exception as e:
                logger.warning("Failed to write %s: %s", f.path, e)
                result.errors.append(f"Failed to create {f.path}: {e}")
                yield {"type": "file-error", "fileName": f.path, "error": str(e)}
                continue

            wrote += 1
            cache[path] = CachedFile(content=content, last_modified=time.time())
            if path in known:
                result.files_updated.append(path)
                action = "updated"
            else:
                known.add(path)
                result.files_created.append(path)
                action = "created"
            yield {"type": "file-complete", "fileName": path, "action": action}
        return wrote

    # ------------------------------------------------------------------
    # Stage 3: commands
    # ------------------------------------------------------------------

    def _command_stage(self, environment, commands, result):
        commands = [c.strip() for c in commands if c and c.strip()]
        total = len(commands)
        message = f"Executing {total} commands..." if total else "No commands to run"
        yield {"type": "step", "step": 3, "total": total, "message": message}

        for index, command in enumerate(commands, start=1):
            yield {"type": "command-progress", "current": index, "total": total,
                   "command": command, "action": "executing"}
            try:
                argv = shlex.split(command)
                outcome = environment.run_command(argv, cwd=".", timeout=DEFAULTS["command_timeout"])
            except EnvironmentUnavailable:
                raise
            except Exception as e:
                logger.warning("Command failed to start: %s (%s)", command, e)
                result.errors.append(f"Failed to execute {command}: {e}")
                yield {"type": "command-complete", "command": command, "exitCode": None,
                       "success": False, "error": str(e)}
                continue

            if outcome.stdout:
                yield {"type": "command-output", "command": command,
                       "output": outcome.stdout, "stream": "stdout"}
            if outcome.stderr:
                yield {"type": "command-output", "command": command,
                       "output": outcome.stderr, "stream": "stderr"}

            result.commands_executed.append(command)
            success = outcome.exit_code == 0
            event = {"type": "command-complete", "command": command,
                     "exitCode": outcome.exit_code, "success": success}
            if not success:
                detail = outcome.stderr.strip() or f"exit code {outcome.exit_code}"
                logger.warning("Command exited with %s: %s", outcome.exit_code, command)
                result.errors.append(f"Command '{command}' failed: {detail}")
                event["error"] = detail
            yield event

    @staticmethod
    def _complete_event(result, explanation, structure):
        return {
            "type": "complete",
            "results": result.to_dict(),
            "explanation": explanation,
            "structure": structure,
            "message": f"Applied {len(result.files_created) + len(result.files_updated)} files",
        }
