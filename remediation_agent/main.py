#!/usr/bin/env python3
"""
Issue Remediation Agent - Main Entry Point

Fetches static-analysis issues (from a SonarQube-compatible scanner or a local
pattern scan), plans them per file, and fixes selected issues with a
compile-checked, rollback-safe rewrite loop.

Usage:
    python -m remediation_agent.main plan --project-dir . --out plan.json
    python -m remediation_agent.main fix --project-dir . --plan plan.json --issues KEY1,KEY2
"""

import argparse
import asyncio
import json
import logging
import os
import shlex
import signal
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .config import (
    FixSettings,
    LocalScanSettings,
    RemediationConfig,
    RunMode,
    ScannerSettings,
    parse_severities,
    parse_types,
)
from .errors import ConfigError, ScanError
from .models import FixReport, IssueType, Plan, Severity
from .orchestrator import FixOrchestrator
from .pipeline import (
    ClaudeRewriter,
    IssueSelectors,
    IssueSource,
    Rewriter,
    build_plan_from_source,
    create_issue_source,
)
from .tools import BuildValidator, CommandBuildValidator
from .utils import format_fix_report, format_plan_summary, get_logger, setup_logging


@dataclass
class JobResult:
    """What a job hands back to its caller."""
    plan: Plan
    report: Optional[FixReport] = None


async def scan(config: RemediationConfig, source: Optional[IssueSource] = None) -> Plan:
    """
    Fetch issues and build a fresh plan.

    Raises:
        ScanError: Preflight or fetch failed (fatal for the scan phase)
    """
    logger = get_logger()
    source = source or create_issue_source(config)
    kind = "remote scanner" if source.is_remote else "local pattern scan"
    logger.info(f"Scanning {config.project_dir} using {kind}...")

    result = await source.fetch_all(IssueSelectors.from_config(config))
    return build_plan_from_source(result, source)


async def run_job(
    config: RemediationConfig,
    plan: Optional[Plan] = None,
    source: Optional[IssueSource] = None,
    rewriter: Optional[Rewriter] = None,
    validator: Optional[BuildValidator] = None,
    handle_signals: bool = False,
) -> JobResult:
    """
    Run a plan-only or plan-and-fix job.

    Args:
        config: Job configuration
        plan: Previously computed plan; the source is not queried when given
        source: Issue source override
        rewriter: Rewriter override (defaults to ClaudeRewriter)
        validator: Build validator override (defaults to CommandBuildValidator)
        handle_signals: Turn SIGINT into a cancellation at the next file boundary

    Returns:
        JobResult with the plan and, in fix mode, the fix report
    """
    logger = get_logger()

    if plan is None:
        plan = await scan(config, source)
    else:
        logger.info(f"Using previously computed plan ({plan.total_issues} issues)")

    if config.mode == RunMode.PLAN:
        return JobResult(plan=plan)

    orchestrator = FixOrchestrator(
        project_dir=config.project_dir,
        rewriter=rewriter or ClaudeRewriter(model=config.fix.model, max_turns=config.fix.max_turns),
        validator=validator or CommandBuildValidator(
            compile_command=config.fix.compile_command,
            test_command=config.fix.test_command,
            timeout=config.fix.build_timeout,
        ),
        settings=config.fix,
    )

    loop = asyncio.get_running_loop()
    installed = False
    if handle_signals:
        try:
            loop.add_signal_handler(signal.SIGINT, orchestrator.cancel)
            installed = True
        except (NotImplementedError, RuntimeError):
            logger.debug("Signal handlers not supported here; cancellation disabled")

    try:
        report = await orchestrator.run(plan, config.selected_keys)
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)

    return JobResult(plan=plan, report=report)


def save_plan(plan: Plan, path: Path) -> None:
    Path(path).write_text(json.dumps(plan.to_dict(), indent=2), encoding="utf-8")


def load_plan(path: Path) -> Plan:
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot load plan from {path}: {e}") from e
    return Plan.from_dict(data)


def build_config(args, mode: RunMode) -> RemediationConfig:
    """Merge environment defaults with command line arguments."""
    env = RemediationConfig.from_env(Path(args.project_dir))

    scanner = env.scanner
    url = args.sonar_url or (scanner.url if scanner else None)
    project_key = args.project_key or (scanner.project_key if scanner else None)
    if url and project_key:
        scanner = ScannerSettings(
            url=url,
            project_key=project_key,
            token=os.environ.get("SONAR_TOKEN"),
            branch=args.branch or (scanner.branch if scanner else None),
        )
    elif args.sonar_url or args.project_key:
        raise ConfigError("Both --sonar-url and --project-key are required for a remote scan")

    fix = env.fix
    selected_keys = None
    if mode == RunMode.FIX:
        fix = FixSettings(
            max_attempts=args.max_attempts if args.max_attempts is not None else env.fix.max_attempts,
            run_tests=env.fix.run_tests and not args.no_tests,
            compile_command=shlex.split(args.compile_cmd) if args.compile_cmd else None,
            test_command=shlex.split(args.test_cmd) if args.test_cmd else None,
            model=args.model or env.fix.model,
        )
        if args.issues:
            selected_keys = frozenset(k.strip() for k in args.issues.split(",") if k.strip())

    return RemediationConfig(
        project_dir=Path(args.project_dir),
        mode=mode,
        scanner=scanner,
        local=LocalScanSettings(deep_scan=args.deep_scan),
        types=parse_types(args.types) if args.types else frozenset(IssueType),
        severities=parse_severities(args.severities) if args.severities else frozenset(Severity),
        max_issues=args.max_issues if args.max_issues is not None else env.max_issues,
        fix=fix,
        selected_keys=selected_keys,
    )


def cmd_plan(args):
    """Handle 'plan' subcommand."""
    setup_logging(level=logging.DEBUG if args.debug else logging.INFO)
    logger = get_logger()

    try:
        config = build_config(args, RunMode.PLAN)
        result = asyncio.run(run_job(config))
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)
    except ScanError as e:
        logger.error(f"Scan failed ({type(e).__name__}): {e}")
        sys.exit(2)
    except Exception as e:
        logger.exception(f"Planning failed: {e}")
        sys.exit(1)

    print("\n" + format_plan_summary(result.plan))

    if args.out:
        save_plan(result.plan, Path(args.out))
        logger.info(f"Plan written to {args.out}")
    sys.exit(0)


def cmd_fix(args):
    """Handle 'fix' subcommand."""
    setup_logging(level=logging.DEBUG if args.debug else logging.INFO)
    logger = get_logger()

    try:
        config = build_config(args, RunMode.FIX)
        plan = load_plan(Path(args.plan)) if args.plan else None
        result = asyncio.run(run_job(config, plan=plan, handle_signals=True))
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)
    except ScanError as e:
        logger.error(f"Scan failed ({type(e).__name__}): {e}")
        sys.exit(2)
    except Exception as e:
        logger.exception(f"Fix run failed: {e}")
        sys.exit(1)

    report = result.report
    print("\n" + format_fix_report(report))

    if args.report_out:
        Path(args.report_out).write_text(json.dumps(report.to_dict(), indent=2), encoding="utf-8")
        logger.info(f"Report written to {args.report_out}")

    clean = (
        report.files_failed == 0
        and report.build_passed is not False
        and report.tests_passed is not False
    )
    sys.exit(0 if clean else 3)


def _add_scan_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--project-dir",
        type=str,
        default=".",
        help="Project root to scan and fix (default: current directory)"
    )
    parser.add_argument(
        "--sonar-url",
        type=str,
        help="Scanner server URL (default: SONAR_HOST_URL env var; local scan when unset)"
    )
    parser.add_argument(
        "--project-key",
        type=str,
        help="Scanner project key (default: SONAR_PROJECT_KEY env var)"
    )
    parser.add_argument(
        "--branch",
        type=str,
        help="Branch to analyze on the scanner"
    )
    parser.add_argument(
        "--types",
        type=str,
        help="Comma separated issue types: BUG,VULNERABILITY,CODE_SMELL (default: all)"
    )
    parser.add_argument(
        "--severities",
        type=str,
        help="Comma separated severities: BLOCKER,CRITICAL,MAJOR,MINOR,INFO (default: all)"
    )
    parser.add_argument(
        "--max-issues",
        type=int,
        help="Maximum number of issues to fetch (default: 500)"
    )
    parser.add_argument(
        "--deep-scan",
        action="store_true",
        help="Augment the local pattern scan with a generative scan"
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging"
    )


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Static-analysis issue remediation agent"
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # plan command
    plan_parser = subparsers.add_parser("plan", help="Fetch issues and build a remediation plan")
    _add_scan_arguments(plan_parser)
    plan_parser.add_argument(
        "--out",
        type=str,
        help="Write the plan as JSON for a later fix run"
    )

    # fix command
    fix_parser = subparsers.add_parser("fix", help="Fix selected issues with compile-checked rewrites")
    _add_scan_arguments(fix_parser)
    fix_parser.add_argument(
        "--plan",
        type=str,
        help="Reuse a plan written by 'plan --out' instead of scanning again"
    )
    fix_parser.add_argument(
        "--issues",
        type=str,
        help="Comma separated issue keys to fix (default: every locatable issue)"
    )
    fix_parser.add_argument(
        "--max-attempts",
        type=int,
        help="Rewrite attempts per file (default: 3)"
    )
    fix_parser.add_argument(
        "--no-tests",
        action="store_true",
        help="Skip the final test run"
    )
    fix_parser.add_argument(
        "--compile-cmd",
        type=str,
        help="Compile-only command (default: detected from the project)"
    )
    fix_parser.add_argument(
        "--test-cmd",
        type=str,
        help="Test command (default: detected from the project)"
    )
    fix_parser.add_argument(
        "--model",
        type=str,
        help="Model used by the rewriter"
    )
    fix_parser.add_argument(
        "--report-out",
        type=str,
        help="Write the fix report as JSON"
    )

    args = parser.parse_args()

    # Route to subcommand
    if args.command == "plan":
        cmd_plan(args)
    elif args.command == "fix":
        cmd_fix(args)
    else:
        # No subcommand - show help
        parser.print_help()
        sys.exit(0)


if __name__ == "__main__":
    main()
