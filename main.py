#!/usr/bin/env python3
"""Sitesmith - streamed React app generation into a local project directory.

Usage:
    python main.py new --prompt "a landing page for a coffee shop"
    python main.py edit --project projects/coffee-shop --prompt "change the header color to blue"
    python main.py edit --project DIR --prompt "..." --dry-run     # classify only
    python main.py apply --project DIR response.txt               # apply a saved model response
    python main.py manifest --project DIR
"""

import argparse
import logging
import os
import sys

from core.sandbox import LocalEnvironment
from core.session import SessionManager
from manager.agent import ManagerAgent
from utils.folder_naming import extract_project_name, get_project_dir


def _print_event(event, verbose=False):
    """One line per progress event; stream text is echoed only with --verbose."""
    kind = event.get("type")
    if kind == "stream":
        if verbose:
            sys.stdout.write(event.get("text", ""))
            sys.stdout.flush()
    elif kind == "status":
        print(f"[status] {event.get('message', '')}")
    elif kind == "package":
        print(f"[package] {event['name']}")
    elif kind == "conversation":
        print(event.get("text", ""))
    elif kind == "step":
        print(f"[{event['step']}/3] {event.get('message', '')}")
    elif kind == "package-progress" and event.get("status") != "installing":
        print(f"  {event['package']}: {event['status']}")
    elif kind == "file-complete":
        print(f"  {event['action']:8s} {event['fileName']}")
    elif kind == "file-error":
        print(f"  FAILED   {event['fileName']}: {event['error']}")
    elif kind == "command-output" and verbose:
        print(event["output"], end="")
    elif kind == "command-complete":
        marker = "ok" if event["success"] else f"exit {event['exitCode']}"
        print(f"  $ {event['command']} ({marker})")
    elif kind == "error":
        print(f"ERROR: {event['error']}", file=sys.stderr)


def _print_summary(results):
    print(f"\nCreated: {len(results['filesCreated'])}  Updated: {len(results['filesUpdated'])}  "
          f"Packages: {len(results['packagesInstalled'])}")
    for error in results["errors"]:
        print(f"  [ERROR] {error}")


def _open_session(sessions, project_dir):
    if not os.path.isdir(project_dir):
        print(f"Project directory not found: {project_dir}", file=sys.stderr)
        sys.exit(1)
    session = sessions.create(LocalEnvironment(project_dir))
    sessions.refresh_manifest(session)
    return session


def _run(manager, session, prompt, verbose, is_edit):
    failed = False
    for phase, event in manager.run_turn(session, prompt, is_edit=is_edit):
        _print_event(event, verbose)
        if event.get("type") == "error":
            failed = True
        if phase == "apply" and event.get("type") == "complete":
            _print_summary(event["results"])
            failed = failed or bool(event["results"]["errors"])
    return 1 if failed else 0


def cmd_new(args, manager):
    project_dir = args.output or get_project_dir(args.prompt)
    os.makedirs(project_dir, exist_ok=True)
    session = manager.sessions.create(
        LocalEnvironment(project_dir),
        project_name=extract_project_name(args.prompt),
        scaffold_project=True,
    )
    print(f"Project: {project_dir}")
    return _run(manager, session, args.prompt, args.verbose, is_edit=False)


def cmd_edit(args, manager):
    session = _open_session(manager.sessions, args.project)
    if args.dry_run:
        intent = manager.plan(session, args.prompt)
        if intent is None:
            print("Project has no files yet; this would be a new build.")
            return 0
        print(f"Edit type:  {intent.type.value}")
        print(f"Confidence: {intent.confidence:.2f}")
        print(f"Targets:    {', '.join(intent.target_files) or '-'}")
        print(f"Context:    {len(intent.suggested_context)} file(s)")
        return 0
    return _run(manager, session, args.prompt, args.verbose, is_edit=True)


def cmd_apply(args, manager):
    session = _open_session(manager.sessions, args.project)
    with open(args.response, encoding="utf-8") as f:
        text = f.read()
    code = 0
    for event in manager.apply(session, text):
        _print_event(event, args.verbose)
        if event["type"] == "complete":
            _print_summary(event["results"])
            code = 1 if event["results"]["errors"] else 0
    return code


def cmd_manifest(args, manager):
    session = _open_session(manager.sessions, args.project)
    manifest = session.manifest
    print(f"Entry point: {manifest.entry_point or '-'}")
    print(f"\n{len(manifest.files)} file(s):")
    for path, info in manifest.files.items():
        component = f" <{info.component_info.name}>" if info.component_info else ""
        print(f"  {info.type:10s} {path}{component}")
    if manifest.routes:
        print("\nRoutes:")
        for route in manifest.routes:
            print(f"  {route.path:20s} {route.element or route.component}")
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="sitesmith",
        description="Generate and edit React apps from natural language",
    )
    parser.add_argument("--verbose", action="store_true",
                        help="Debug logging, echo model output and command output")
    subparsers = parser.add_subparsers(dest="command")

    new_parser = subparsers.add_parser("new", help="Scaffold a project and generate the app")
    new_parser.add_argument("--prompt", required=True, help="What to build")
    new_parser.add_argument("--output", help="Project directory (default: projects/<name>)")

    edit_parser = subparsers.add_parser("edit", help="Apply a follow-up instruction")
    edit_parser.add_argument("--project", required=True, help="Existing project directory")
    edit_parser.add_argument("--prompt", required=True, help="What to change")
    edit_parser.add_argument("--dry-run", action="store_true",
                             help="Classify the edit and show target files only")

    apply_parser = subparsers.add_parser("apply", help="Apply a saved model response")
    apply_parser.add_argument("--project", required=True, help="Project directory")
    apply_parser.add_argument("response", help="File holding the model's response text")

    manifest_parser = subparsers.add_parser("manifest", help="Show the project manifest")
    manifest_parser.add_argument("--project", required=True, help="Project directory")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(name)s %(levelname)s %(message)s",
    )

    commands = {"new": cmd_new, "edit": cmd_edit, "apply": cmd_apply, "manifest": cmd_manifest}
    if args.command not in commands:
        parser.print_help()
        return 1
    manager = ManagerAgent(sessions=SessionManager())
    return commands[args.command](args, manager)


if __name__ == "__main__":
    sys.exit(main())
