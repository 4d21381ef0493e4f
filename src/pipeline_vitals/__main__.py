"""CLI entrypoint for pipeline-vitals."""

from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path

from dotenv import load_dotenv

from pipeline_vitals import reporter
from pipeline_vitals.config import VitalsPaths, load_settings
from pipeline_vitals.engine import DEFAULT_LOOP_TYPE, VitalsEngine
from pipeline_vitals.schemas import RecordOutcome

_CONFIGURED_THRESHOLD = -1
_SUBCOMMANDS = ("snapshot",)


def _load_dotenv() -> None:
    """Load .env from cwd, its parent, or the project root so it's found regardless of cwd."""
    project_root = Path(__file__).resolve().parent.parent.parent  # src/pipeline_vitals/__main__.py
    for dir_ in (Path.cwd(), Path.cwd().parent, project_root):
        env_file = dir_ / ".env"
        if env_file.is_file():
            load_dotenv(env_file)
            return
    load_dotenv()


def _build_parser() -> argparse.ArgumentParser:
    """Build and return the command-line parser."""
    p = argparse.ArgumentParser(
        prog="pipeline-vitals",
        description="Pipeline vitals - health score, verdict and budget outlook for a running pipeline.",
    )
    p.add_argument("--issue", "-i", type=str, default=None, help="Issue number to check.")
    p.add_argument(
        "--state",
        type=str,
        default=None,
        help="Pipeline state file (default: $PIPELINE_STATE or <repo>/.claude/pipeline-state.md).",
    )
    p.add_argument(
        "--artifacts",
        type=str,
        default=None,
        help="Artifacts directory (default: <repo>/.claude/pipeline-artifacts).",
    )
    p.add_argument("--repo", type=str, default=None, help="Repository directory (default: cwd).")
    p.add_argument(
        "--home",
        type=str,
        default=None,
        help="Shared data directory (default: $VITALS_HOME or ~/.shipwright).",
    )
    p.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging.")

    out = p.add_mutually_exclusive_group()
    out.add_argument("--json", action="store_true", help="Output raw JSON instead of the dashboard.")
    out.add_argument("--score", action="store_true", help="Output only the health score (0-100).")
    out.add_argument("--verdict", action="store_true", help="Output only the verdict.")
    out.add_argument(
        "--budget",
        action="store_true",
        help="Output only the budget trajectory (ok/warn/stop).",
    )
    out.add_argument(
        "--limit",
        metavar="LOOP_TYPE",
        nargs="?",
        const=DEFAULT_LOOP_TYPE,
        default=None,
        help=(
            f"Output the adaptive cycle limit for a loop type (default: {DEFAULT_LOOP_TYPE}). "
            "Write --limit=LOOP_TYPE when other arguments follow."
        ),
    )
    out.add_argument(
        "--gate",
        metavar="THRESHOLD",
        nargs="?",
        type=int,
        const=_CONFIGURED_THRESHOLD,
        default=None,
        help="Exit 1 when health is below THRESHOLD (default: $VITALS_GATE_THRESHOLD or 40).",
    )

    sub = p.add_subparsers(dest="command")
    snap_p = sub.add_parser("snapshot", help="Record a progress snapshot for an issue.")
    snap_p.add_argument("--issue", "-i", type=str, required=True, help="Issue number.")
    snap_p.add_argument("--stage", type=str, default="unknown", help="Current stage name.")
    snap_p.add_argument("--iteration", type=int, default=0, help="Current iteration.")
    snap_p.add_argument("--diff-lines", type=int, default=0, help="Lines in the current diff.")
    snap_p.add_argument("--files-changed", type=int, default=0, help="Files in the current diff.")
    snap_p.add_argument("--error", type=str, default="", help="Last error signature, if any.")
    return p


def _build_engine(args: argparse.Namespace) -> VitalsEngine:
    paths = VitalsPaths.from_env(home=args.home, repo_dir=args.repo)
    return VitalsEngine(paths, load_settings(paths))


def _state_file(args: argparse.Namespace) -> str | None:
    return args.state or os.environ.get("PIPELINE_STATE", "").strip() or None


def _run_snapshot(args: argparse.Namespace) -> int:
    engine = _build_engine(args)
    outcome = engine.record_snapshot(
        args.issue,
        stage=args.stage,
        iteration=args.iteration,
        diff_lines=args.diff_lines,
        files_changed=args.files_changed,
        last_error=args.error,
    )
    print(outcome.value)
    return 0 if outcome in (RecordOutcome.OK, RecordOutcome.SKIPPED) else 1


def _run_vitals(args: argparse.Namespace) -> int:
    engine = _build_engine(args)
    state_file = _state_file(args)

    if args.budget:
        print(engine.budget_trajectory(state_file).value)
        return 0
    if args.gate is not None:
        threshold = None if args.gate == _CONFIGURED_THRESHOLD else args.gate
        passed = engine.check_health_gate(threshold, state_file, args.artifacts, args.issue)
        print("pass" if passed else "fail")
        return 0 if passed else 1

    vitals = engine.compute_vitals(state_file, args.artifacts, args.issue)
    if args.limit is not None:
        print(engine.adaptive_limit(args.limit, vitals))
    elif args.json:
        print(reporter.render_json(vitals))
    elif args.score:
        print(reporter.render_score(vitals))
    elif args.verdict:
        print(reporter.render_verdict(vitals))
    else:
        print(reporter.render_dashboard(vitals, engine.budget_trajectory(state_file)))
    return 0


def main(argv: list[str] | None = None) -> int:
    """Parse arguments and dispatch to the requested output."""
    _load_dotenv()
    parser = _build_parser()
    args = parser.parse_args(argv)
    if args.limit in _SUBCOMMANDS:
        parser.error(
            f"argument --limit: '{args.limit}' is a subcommand, not a loop type; "
            "use --limit=LOOP_TYPE"
        )
    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
        datefmt="%H:%M:%S",
    )
    if args.command == "snapshot":
        return _run_snapshot(args)
    return _run_vitals(args)


if __name__ == "__main__":
    raise SystemExit(main())
