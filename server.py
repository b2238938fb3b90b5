#!/usr/bin/env python3
"""Sitesmith HTTP server: sessions, streamed generation and application."""

import io
import json
import logging
import os
import shlex

from flask import Flask, Response, jsonify, request, send_file

from core.sandbox import (
    CommandRejected,
    EnvironmentUnavailable,
    LocalEnvironment,
    export_archive,
    log_errors,
)
from core.session import SessionManager, SessionNotFound, conversation_to_dict, session_to_dict
from manager.agent import ManagerAgent
from utils.folder_naming import extract_project_name, get_project_dir

logger = logging.getLogger("sitesmith.server")

app = Flask(__name__)
sessions = SessionManager()
manager = ManagerAgent(sessions=sessions)


def _sse(events):
    """Server-Sent Events response for an iterable of event dicts."""
    def generate():
        for event in events:
            yield f"data: {json.dumps(event)}\n\n"
    return Response(generate(), mimetype="text/event-stream",
                    headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"})


def _body():
    return request.get_json(silent=True) or {}


def _active_session(data):
    session_id = data.get("sessionId")
    if not session_id:
        return None, (jsonify({"success": False, "error": "Missing sessionId"}), 400)
    session = sessions.get(session_id)
    if session.environment is None or not session.environment.is_available():
        return None, (jsonify({"success": False, "error": "No active sandbox"}), 409)
    return session, None


def _environment(session):
    environment = session.environment
    if environment is None or not environment.is_available():
        raise EnvironmentUnavailable(f"Session {session.session_id} has no active environment")
    return environment


@app.errorhandler(SessionNotFound)
def _session_not_found(e):
    return jsonify({"success": False, "error": f"Session not found: {e.args[0]}"}), 404


@app.errorhandler(EnvironmentUnavailable)
def _environment_unavailable(e):
    return jsonify({"success": False, "error": str(e)}), 409


# ---------------------------------------------------------------------------
# Sandbox lifecycle
# ---------------------------------------------------------------------------

@app.route("/api/sandbox", methods=["POST"])
def api_create_sandbox():
    data = _body()
    prompt = (data.get("prompt") or "").strip()
    project_dir = data.get("projectDir") or get_project_dir(prompt or "project")
    os.makedirs(project_dir, exist_ok=True)

    environment = LocalEnvironment(project_dir)
    session = sessions.create(
        environment,
        project_name=extract_project_name(prompt) if prompt else environment.environment_id,
        scaffold_project=data.get("scaffold", True),
    )
    result = session_to_dict(session)
    result.update({"success": True, "projectDir": environment.root})
    return jsonify(result)


@app.route("/api/sandbox/<session_id>", methods=["DELETE"])
def api_kill_sandbox(session_id):
    sessions.destroy(session_id)
    return jsonify({"success": True, "message": "Sandbox closed"})


@app.route("/api/sandbox/<session_id>/files")
def api_sandbox_files(session_id):
    session = sessions.get(session_id)
    manifest = sessions.refresh_manifest(session)
    return jsonify({
        "success": True,
        "files": {path: info.content for path, info in manifest.files.items()},
        "structure": sorted(manifest.files),
        "fileCount": len(manifest.files),
        "manifest": {
            "entryPoint": manifest.entry_point,
            "styleFiles": manifest.style_files,
            "routes": [{"path": r.path, "component": r.component, "element": r.element}
                       for r in manifest.routes],
            "types": {path: info.type for path, info in manifest.files.items()},
            "timestamp": manifest.timestamp,
        },
    })


@app.route("/api/sandbox/<session_id>/zip")
def api_create_zip(session_id):
    session = sessions.get(session_id)
    data = export_archive(_environment(session))
    name = f"{session.environment.environment_id or session.session_id}.zip"
    return send_file(io.BytesIO(data), mimetype="application/zip",
                     as_attachment=True, download_name=name)


@app.route("/api/sandbox/<session_id>/dev-server/restart", methods=["POST"])
def api_restart_dev_server(session_id):
    session = sessions.get(session_id)
    environment = _environment(session)
    try:
        with session.lock:
            environment.restart_dev_server()
    except CommandRejected as e:
        return jsonify({"success": False, "error": str(e)}), 400
    except OSError as e:
        logger.error("Dev server failed to start for %s: %s", session_id, e)
        return jsonify({"success": False, "error": f"Dev server failed to start: {e}"}), 500
    return jsonify({"success": True, "message": "Dev server restarted",
                    "running": environment.dev_server_running()})


@app.route("/api/sandbox/<session_id>/logs")
def api_dev_server_logs(session_id):
    environment = _environment(sessions.get(session_id))
    lines = environment.dev_server_logs()
    return jsonify({"success": True, "running": environment.dev_server_running(),
                    "logs": lines, **log_errors(lines)})


# ---------------------------------------------------------------------------
# Generation and application (streamed)
# ---------------------------------------------------------------------------

@app.route("/api/generate", methods=["POST"])
def api_generate():
    data = _body()
    prompt = (data.get("prompt") or "").strip()
    if not prompt:
        return jsonify({"success": False, "error": "Missing prompt"}), 400

    session, error = _active_session(data)
    if error:
        return error

    is_edit = data.get("isEdit")
    if is_edit is None:
        is_edit = manager.is_follow_up(session)
    intent = manager.plan(session, prompt) if is_edit else None

    def events():
        if intent is not None:
            yield {"type": "status", "message": intent.description,
                   "editType": intent.type.value, "targetFiles": intent.target_files,
                   "confidence": intent.confidence}
        yield from manager.generate(session, prompt, intent)

    return _sse(events())


@app.route("/api/apply", methods=["POST"])
def api_apply():
    data = _body()
    response_text = data.get("response") or ""
    if not response_text.strip():
        return jsonify({"success": False, "error": "Missing response"}), 400

    session, error = _active_session(data)
    if error:
        return error

    instruction = (data.get("instruction") or "").strip()
    intent = manager.plan(session, instruction) if instruction else None
    packages = [p for p in data.get("packages") or [] if isinstance(p, str)]
    return _sse(manager.apply(session, response_text, packages, instruction, intent))


@app.route("/api/install-packages", methods=["POST"])
def api_install_packages():
    data = _body()
    packages = [p for p in data.get("packages") or [] if isinstance(p, str) and p.strip()]
    if not packages:
        return jsonify({"success": False, "error": "Packages array is required"}), 400

    session, error = _active_session(data)
    if error:
        return error
    return _sse(manager.orchestrator.install(session, packages))


@app.route("/api/detect-packages", methods=["POST"])
def api_detect_packages():
    data = _body()
    files = data.get("files")
    if not isinstance(files, dict):
        return jsonify({"success": False, "error": "Files object is required"}), 400

    session, error = _active_session(data)
    if error:
        return error

    detected = manager.detect_packages(session, files)
    result = {"success": True, "packagesToInstall": detected["missing"], **detected}
    if data.get("install") and detected["missing"]:
        final = None
        for event in manager.orchestrator.install(session, detected["missing"]):
            if event["type"] == "complete":
                final = event["results"]
        result["packagesInstalled"] = final["packagesInstalled"]
        result["packagesFailed"] = final["packagesFailed"]
    return jsonify(result)


@app.route("/api/run-command", methods=["POST"])
def api_run_command():
    data = _body()
    command = (data.get("command") or "").strip()
    if not command:
        return jsonify({"success": False, "error": "Command is required"}), 400

    session, error = _active_session(data)
    if error:
        return error

    try:
        with session.lock:
            outcome = session.environment.run_command(shlex.split(command), cwd=".")
    except (CommandRejected, ValueError) as e:
        return jsonify({"success": False, "error": str(e)}), 400
    return jsonify({
        "success": outcome.exit_code == 0,
        "command": command,
        "stdout": outcome.stdout,
        "stderr": outcome.stderr,
        "exitCode": outcome.exit_code,
    })


# ---------------------------------------------------------------------------
# Conversation state
# ---------------------------------------------------------------------------

@app.route("/api/conversation/<session_id>", methods=["GET"])
def api_get_conversation(session_id):
    session = sessions.get(session_id)
    return jsonify({"success": True, "state": conversation_to_dict(session.conversation)})


@app.route("/api/conversation/<session_id>", methods=["POST"])
def api_update_conversation(session_id):
    data = _body()
    action = data.get("action")
    if action == "reset":
        session = sessions.reset(session_id)
        message = "Conversation state reset"
    elif action == "clear-old":
        session = sessions.clear_old(session_id)
        message = "Old conversation data cleared"
    elif action == "update":
        payload = data.get("data") or {}
        session = sessions.update(session_id,
                                  current_topic=payload.get("currentTopic"),
                                  user_preferences=payload.get("userPreferences"))
        message = "Conversation state updated"
    else:
        return jsonify({"success": False,
                        "error": 'Invalid action. Use "reset", "clear-old" or "update"'}), 400
    return jsonify({"success": True, "message": message,
                    "state": conversation_to_dict(session.conversation)})


@app.route("/api/conversation/<session_id>", methods=["DELETE"])
def api_clear_conversation(session_id):
    sessions.reset(session_id)
    return jsonify({"success": True, "message": "Conversation state cleared"})


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    port = int(os.environ.get("PORT", 5001))
    print(f"Sitesmith running at http://localhost:{port}")
    app.run(debug=False, port=port, threaded=True)
