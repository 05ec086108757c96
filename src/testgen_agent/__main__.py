"""CLI entrypoint for testgen-agent."""

from __future__ import annotations

import argparse
import datetime as dt
import json
import logging
import sys
import uuid
from pathlib import Path

from dotenv import load_dotenv

from testgen_agent.artifacts import format_timestamp
from testgen_agent.cleanup import cleanup_stray_perspective_files
from testgen_agent.config import RunMode, load_run_configuration
from testgen_agent.file_io import read_text_lossy
from testgen_agent.output_log import RunOutputLog
from testgen_agent.providers import get_provider_class, list_providers
from testgen_agent.result_extractor import extract
from testgen_agent.schemas import ExtractionFailure

logger = logging.getLogger(__name__)


def _load_dotenv() -> None:
    """Load .env from cwd, its parent, or package root so it's found regardless of cwd."""
    # src/testgen_agent/__main__.py -> repository root
    package_root = Path(__file__).resolve().parent.parent.parent
    for dir_ in (Path.cwd(), Path.cwd().parent, package_root):
        env_file = dir_ / ".env"
        if env_file.is_file():
            load_dotenv(env_file)
            return
    load_dotenv()


def _build_parser() -> argparse.ArgumentParser:
    """Build and return the command-line parser for all subcommands."""
    p = argparse.ArgumentParser(
        prog="testgen-agent",
        description="testgen-agent - drive an AI coding agent to write, run and report tests.",
    )
    p.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging.")
    sub = p.add_subparsers(dest="command")

    # -- run ------------------------------------------------------------------
    run_p = sub.add_parser("run", help="Generate tests for a repository and run them.")
    run_p.add_argument("--repo", required=True, help="Workspace root (a git repository for --worktree).")
    prompt_group = run_p.add_mutually_exclusive_group(required=True)
    prompt_group.add_argument("--prompt", help="Test-generation prompt text.")
    prompt_group.add_argument("--prompt-file", help="Read the test-generation prompt from a file.")
    run_p.add_argument("--provider", default="claude", help="Agent provider key (see 'providers').")
    run_p.add_argument("--agent-command", default="", help="Override the agent CLI binary.")
    run_p.add_argument("--model", default=None, help="Model passed to the agent CLI.")
    run_p.add_argument("--label", default="", help="Human-readable run label.")
    run_p.add_argument("--target", action="append", default=[], help="Target file (repeatable).")
    run_p.add_argument("--settings", default=None, help="YAML settings file (default: <repo>/.testgen-agent.yaml).")
    run_p.add_argument("--test-command", default=None, help="Command that runs the test suite.")
    run_p.add_argument("--runner", choices=["internal", "delegated"], default=None, help="Test execution runner.")
    run_p.add_argument("--perspective-only", action="store_true", help="Stop after the perspective table.")
    run_p.add_argument("--no-perspectives", action="store_true", help="Skip the perspective table.")
    run_p.add_argument("--worktree", action="store_true", help="Generate in a temporary git worktree.")
    run_p.add_argument("--perspective-timeout-ms", type=float, default=None, help="Perspective sub-task timeout.")
    run_p.add_argument("--allow-unsafe-command", action="store_true", default=None, help="Always allow the local fallback.")
    run_p.add_argument("--force-write", action="store_true", default=None, help="Let the delegated test run write files.")
    run_p.add_argument("--reference-file", default=None, help="Extra context (e.g. a diff) for the perspective prompt.")
    run_p.add_argument("--strategy-file", default=None, help="Test strategy rules for the perspective prompt.")
    run_p.add_argument("--output-log", default=None, help="Also append the run output log to this file.")
    run_p.add_argument("--verbose", "-v", action="store_true", default=argparse.SUPPRESS, help="Enable debug logging.")

    # -- extract-result -------------------------------------------------------
    extract_p = sub.add_parser("extract-result", help="Extract a test result from a saved agent log.")
    extract_p.add_argument("file", help="Raw agent log file.")
    extract_p.add_argument("--fallback-exit-code", type=int, default=None, help="Exit code used when none is found.")

    # -- cleanup --------------------------------------------------------------
    cleanup_p = sub.add_parser("cleanup", help="Delete stray perspective files at the workspace root.")
    cleanup_p.add_argument("--repo", required=True, help="Workspace root.")

    # -- providers ------------------------------------------------------------
    sub.add_parser("providers", help="List registered agent providers.")
    return p


def main(argv: list[str] | None = None) -> int:
    """Parse arguments and dispatch to the appropriate subcommand."""
    _load_dotenv()
    parser = _build_parser()
    args = parser.parse_args(argv)
    # -- Logging setup (early, for all modes) --------------------------------
    level = logging.DEBUG if getattr(args, "verbose", False) else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
        datefmt="%H:%M:%S",
    )

    if args.command == "run":
        return _run(args)
    if args.command == "extract-result":
        return _extract_result(args)
    if args.command == "cleanup":
        return _cleanup(args)
    if args.command == "providers":
        return _list_providers()

    parser.print_help()
    return 1


def _read_optional(path: str | None) -> str:
    return read_text_lossy(Path(path)) if path else ""


def _run(args: argparse.Namespace) -> int:
    from testgen_agent.orchestrator import RunOrchestrator, RunRequest, RunStatus

    repo = Path(args.repo).resolve()
    if not repo.is_dir():
        print(f"\nError: repository path does not exist: {repo}", file=sys.stderr)
        return 1

    try:
        provider_cls = get_provider_class(args.provider)
    except KeyError as exc:
        print(f"\nError: {exc.args[0]}", file=sys.stderr)
        return 1

    try:
        prompt = args.prompt if args.prompt is not None else read_text_lossy(Path(args.prompt_file))
        reference_text = _read_optional(args.reference_file)
        strategy_text = _read_optional(args.strategy_file)
    except OSError as exc:
        print(f"\nError: {exc}", file=sys.stderr)
        return 1

    overrides: dict[str, object] = {
        "test_command": args.test_command,
        "test_execution_runner": args.runner,
        "perspective_timeout_ms": args.perspective_timeout_ms,
        "allow_unsafe_command": args.allow_unsafe_command,
        "force_write_for_delegated_execution": args.force_write,
    }
    if args.perspective_only:
        overrides["run_mode"] = RunMode.PERSPECTIVE_ONLY.value
    if args.no_perspectives:
        overrides["include_test_perspective_table"] = False
    if args.worktree:
        overrides["run_location"] = "isolatedWorkspace"
    config = load_run_configuration(repo, settings_path=args.settings, overrides=overrides)

    started = dt.datetime.now()
    run_id = f"testgen-{format_timestamp(started)}-{uuid.uuid4().hex[:6]}"
    request = RunRequest(
        run_id=run_id,
        workspace_root=str(repo),
        prompt=prompt,
        target_label=args.label or run_id,
        target_paths=list(args.target),
        model=args.model,
        agent_command=args.agent_command,
        reference_text=reference_text,
        strategy_text=strategy_text,
        generation_started_at=started,
    )
    orchestrator = RunOrchestrator(provider_cls(), config, output_log=RunOutputLog(args.output_log))
    outcome = orchestrator.run(request)

    print(f"\n  Run {run_id}: {outcome.status.value}")
    if outcome.perspective:
        print(f"  Perspective table: {outcome.perspective}")
    if outcome.execution_report:
        print(f"  Test report:       {outcome.execution_report}")
    if outcome.error:
        print(f"  Error: {outcome.error}", file=sys.stderr)

    if outcome.status is RunStatus.PERSPECTIVE_ONLY:
        return 0
    if outcome.status is not RunStatus.COMPLETED:
        return 1
    if outcome.exit_code == 0:
        return 0
    if outcome.exit_code is None and not config.test_command.strip():
        return 0
    return 1


def _extract_result(args: argparse.Namespace) -> int:
    try:
        raw = read_text_lossy(Path(args.file))
    except OSError as exc:
        print(f"\nError: {exc}", file=sys.stderr)
        return 1
    result = extract(raw, args.fallback_exit_code)
    payload = result.model_dump(mode="json")
    payload["extracted"] = not isinstance(result, ExtractionFailure)
    print(json.dumps(payload, indent=2, ensure_ascii=False))
    return 2 if isinstance(result, ExtractionFailure) else 0


def _cleanup(args: argparse.Namespace) -> int:
    outcomes = cleanup_stray_perspective_files(Path(args.repo))
    if not outcomes:
        print("No stray perspective files found.")
        return 0
    failed = False
    for item in outcomes:
        if item.error_message:
            failed = True
            print(f"error    {item.relative_path}: {item.error_message}")
        elif item.deleted:
            print(f"deleted  {item.relative_path}")
        else:
            print(f"kept     {item.relative_path}")
    return 1 if failed else 0


def _list_providers() -> int:
    for key in list_providers():
        print(f"{key:<14} {get_provider_class(key).display_name}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
