"""
CLI interface for DriftFix.

Usage:
    driftfix classify --plan plan.json [--policy policy.json]
    driftfix remediate --plan plan.json --dry-run
    driftfix remediate --plan plan.json \\
        --apply-command "terraform apply -auto-approve -target={address}" \\
        --format markdown --output drift-report.md

Exit codes:
    0: success (drift requiring review is not an error)
    1: invalid input or configuration, or at least one failed apply
"""

import argparse
import json
import sys
from contextlib import ExitStack
from pathlib import Path
from typing import Any

from driftfix import __version__
from driftfix.appliers import Applier, CommandApplier, DryRunApplier, RateLimitedApplier
from driftfix.audit import AuditLog, FanOutAuditLog, JsonLinesAuditLog, RedisAuditLog
from driftfix.config import ClassifierConfig, Settings, get_settings
from driftfix.engine import classify_plan, run_remediation
from driftfix.errors import ConfigurationError, DriftFixError
from driftfix.logging_config import get_logger, log_with_context, setup_logging
from driftfix.report import classified_plan_to_dict, render_markdown, report_to_dict

logger = get_logger(__name__)


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {value}")
    return number


def _positive_float(value: str) -> float:
    number = float(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be positive, got {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="driftfix",
        description="DriftFix - classify infrastructure drift and auto-remediate the safe part",
    )
    _ = parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    def add_common(sub: argparse.ArgumentParser) -> None:
        _ = sub.add_argument(
            "--plan",
            type=str,
            required=True,
            help="Path to the plan JSON document",
        )
        _ = sub.add_argument(
            "--policy",
            type=str,
            default=None,
            help="JSON policy file with allowed_attributes and protected_resource_types "
            "(default: ALLOWED_ATTRIBUTES / PROTECTED_RESOURCE_TYPES)",
        )
        _ = sub.add_argument(
            "--output",
            type=str,
            default=None,
            help="Write the report to this file instead of stdout",
        )

    classify_parser = subparsers.add_parser(
        "classify",
        help="Normalize and classify a plan without applying anything",
    )
    add_common(classify_parser)

    remediate_parser = subparsers.add_parser(
        "remediate",
        help="Classify a plan and apply the safe changes",
    )
    add_common(remediate_parser)
    mode = remediate_parser.add_mutually_exclusive_group()
    _ = mode.add_argument(
        "--dry-run",
        action="store_true",
        help="Log safe changes instead of applying them",
    )
    _ = mode.add_argument(
        "--apply-command",
        type=str,
        default=None,
        help="Command template run per safe change, must contain {address}",
    )
    _ = remediate_parser.add_argument(
        "--audit-log",
        type=str,
        default=None,
        help="Audit log file (default: AUDIT_LOG_PATH)",
    )
    _ = remediate_parser.add_argument(
        "--max-concurrency",
        type=_positive_int,
        default=None,
        help="Concurrent apply limit (default: MAX_CONCURRENT_APPLIES)",
    )
    _ = remediate_parser.add_argument(
        "--timeout",
        type=_positive_float,
        default=None,
        help="Deadline in seconds for the remediation pass",
    )
    _ = remediate_parser.add_argument(
        "--format",
        choices=("json", "markdown"),
        default="json",
        help="Report format (default: json)",
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    """
    CLI main entry point.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    command: str | None = str(args.command) if args.command else None
    if not command:
        parser.print_help()
        return 1

    try:
        settings = get_settings()
    except DriftFixError as e:
        print(f"Failed to load configuration: {e}", file=sys.stderr)
        return 1

    setup_logging(settings.log_level)

    try:
        if command == "classify":
            return cmd_classify(args, settings)
        if command == "remediate":
            return cmd_remediate(args, settings)
        print(f"Unknown command: {command}", file=sys.stderr)
        return 1

    except DriftFixError as e:
        log_with_context(
            logger,
            "error",
            "Command failed",
            command=command,
            error=str(e),
            error_type=type(e).__name__,
            **e.context,
        )
        print(f"Error: {e}", file=sys.stderr)
        return 1


def _load_plan(path_arg: str) -> Any:
    plan_path = Path(path_arg)
    if not plan_path.exists():
        raise FileNotFoundError(f"Plan file not found: {plan_path}")
    with open(plan_path, "r", encoding="utf-8") as f:
        return json.load(f)


def _load_classifier_config(args: argparse.Namespace, settings: Settings) -> ClassifierConfig:
    if args.policy:
        return ClassifierConfig.from_policy_file(args.policy)
    return settings.classifier_config()


def _emit(text: str, output: str | None) -> None:
    if output:
        _ = Path(output).write_text(text, encoding="utf-8")
    else:
        sys.stdout.write(text)


def _build_applier(args: argparse.Namespace, settings: Settings) -> Applier | None:
    applier: Applier
    if args.dry_run:
        applier = DryRunApplier()
    else:
        template = args.apply_command or settings.apply_command
        if not template:
            return None
        if "{address}" not in template:
            raise ConfigurationError(
                "Apply command must contain an {address} placeholder",
                config_key="APPLY_COMMAND",
                reason="Template would apply the same target for every change",
            )
        applier = CommandApplier(template)

    if settings.apply_requests_per_minute:
        applier = RateLimitedApplier(applier, requests_per_minute=settings.apply_requests_per_minute)
    return applier


def _build_audit_log(
    args: argparse.Namespace,
    settings: Settings,
    stack: ExitStack,
) -> AuditLog:
    file_log = stack.enter_context(JsonLinesAuditLog(args.audit_log or settings.audit_log_path))
    if settings.redis_url:
        redis_log = stack.enter_context(RedisAuditLog(settings.redis_url))
        return FanOutAuditLog(file_log, redis_log)
    return file_log


def cmd_classify(args: argparse.Namespace, settings: Settings) -> int:
    """
    Classify a plan and print the partition as JSON.

    Returns:
        Exit code
    """
    config = _load_classifier_config(args, settings)
    try:
        raw_plan = _load_plan(args.plan)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        print(f"Cannot read plan: {e}", file=sys.stderr)
        return 1

    plan = classify_plan(raw_plan, config, classifier_workers=settings.classifier_workers)
    _emit(json.dumps(classified_plan_to_dict(plan), indent=2) + "\n", args.output)
    return 0


def cmd_remediate(args: argparse.Namespace, settings: Settings) -> int:
    """
    Run a full remediation pass and print the report.

    Returns:
        Exit code (1 if any safe change failed to apply)
    """
    config = _load_classifier_config(args, settings)
    try:
        raw_plan = _load_plan(args.plan)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        print(f"Cannot read plan: {e}", file=sys.stderr)
        return 1

    applier = _build_applier(args, settings)
    if applier is None:
        print(
            "No applier configured: pass --dry-run or --apply-command, or set APPLY_COMMAND",
            file=sys.stderr,
        )
        return 1

    with ExitStack() as stack:
        report = run_remediation(
            raw_plan=raw_plan,
            config=config,
            applier=applier,
            audit_log=_build_audit_log(args, settings, stack),
            max_concurrency=args.max_concurrency or settings.max_concurrent_applies,
            timeout_seconds=args.timeout or settings.remediation_timeout_seconds,
            classifier_workers=settings.classifier_workers,
        )

    if args.format == "markdown":
        _emit(render_markdown(report), args.output)
    else:
        _emit(json.dumps(report_to_dict(report), indent=2) + "\n", args.output)

    if report.has_failures():
        print("One or more safe changes failed to apply", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
