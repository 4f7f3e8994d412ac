"""Command-line interface router for nexus-compliance."""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from nexus_compliance.config import (
    DEFAULT_CONFIG_FILE,
    ConfigLoadError,
    ConfigValidationResult,
    default_config,
    load_overrides,
    merge_config,
    recommend,
    validate_config,
)
from nexus_compliance.control_plane import (
    ComplianceManager,
    HealthReport,
    UpdateResult,
    build_in_memory_components,
)
from nexus_compliance.observability import setup_logging, shutdown_logging
from nexus_compliance.ui.render import CLIRenderer, create_renderer


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 1

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router."""

    parser = argparse.ArgumentParser(
        prog="nexus-compliance",
        description=(
            "nexus-compliance — validate, enforce and report on runtime configuration.\n\n"
            "Common workflows:\n"
            "  nexus-compliance validate --config compliance.toml\n"
            "  nexus-compliance recommend\n"
            "  nexus-compliance report --json\n"
            "  nexus-compliance defaults\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help=f"Path to a TOML config (default: ./{DEFAULT_CONFIG_FILE} if present).",
    )
    common.add_argument(
        "--json",
        action="store_true",
        default=False,
        help="Emit machine-readable JSON.",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Show detailed output.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    validate_parser = subparsers.add_parser(
        "validate",
        parents=[common],
        help="Validate the effective configuration",
    )
    validate_parser.set_defaults(handler=_cmd_validate)

    recommend_parser = subparsers.add_parser(
        "recommend",
        parents=[common],
        help="Suggest improvements for a valid configuration",
    )
    recommend_parser.set_defaults(handler=_cmd_recommend)

    report_parser = subparsers.add_parser(
        "report",
        parents=[common],
        help="Apply the configuration to in-memory components and print a health report",
    )
    report_parser.add_argument(
        "--log-dir",
        default=None,
        help="Also write JSON-lines logs to this directory.",
    )
    report_parser.set_defaults(handler=_cmd_report)

    defaults_parser = subparsers.add_parser(
        "defaults",
        parents=[common],
        help="Print the built-in default configuration",
    )
    defaults_parser.set_defaults(handler=_cmd_defaults)

    return parser


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_validate(args: argparse.Namespace) -> int:
    verdict = validate_config(_effective_candidate(args))

    if _flag(args, "json"):
        _emit_json({"command": "validate", **verdict.to_dict()})
        return 0 if verdict.is_valid else 1

    renderer = _get_renderer(args)
    _render_verdict(renderer, verdict)
    return 0 if verdict.is_valid else 1


def _cmd_recommend(args: argparse.Namespace) -> int:
    verdict = validate_config(_effective_candidate(args))
    if not verdict.is_valid or verdict.config is None:
        if _flag(args, "json"):
            _emit_json({"command": "recommend", **verdict.to_dict()})
        else:
            _render_verdict(_get_renderer(args), verdict)
        return 1

    recommendations = recommend(verdict.config)
    if _flag(args, "json"):
        _emit_json(
            {
                "command": "recommend",
                "recommendations": [item.to_dict() for item in recommendations],
            }
        )
        return 0

    renderer = _get_renderer(args)
    if not recommendations:
        renderer.text("No recommendations: configuration looks well tuned.")
        return 0
    renderer.table(
        ["category", "priority", "recommendation"],
        [(item.category, item.priority, item.recommendation) for item in recommendations],
        title="Recommendations:",
    )
    if renderer.verbose:
        renderer.section("Impact:")
        renderer.items([f"{item.recommendation} -> {item.impact}" for item in recommendations])
    return 0


def _cmd_report(args: argparse.Namespace) -> int:
    overrides = _load_overrides(args)
    candidate = merge_config(dict(default_config()), overrides)
    environment = candidate.get("environment")
    setup_logging(
        environment if isinstance(environment, Mapping) else None,
        log_dir=getattr(args, "log_dir", None),
    )
    try:
        result, report = asyncio.run(_run_report(overrides))
    finally:
        shutdown_logging()

    healthy = result.success and report.overall != "critical"
    if _flag(args, "json"):
        _emit_json(
            {
                "command": "report",
                "update": {
                    "success": result.success,
                    "correlation_id": result.correlation_id,
                    "failure_reason": result.failure_reason,
                },
                "validation": None if result.validation is None else result.validation.to_dict(),
                "health": report.to_dict(),
                "component_state": {
                    name.value: state.value
                    for name, state in report.status.component_state.items()
                },
            }
        )
        return 0 if healthy else 1

    renderer = _get_renderer(args)
    if result.validation is not None and not result.validation.is_valid:
        _render_verdict(renderer, result.validation)
    renderer.kv("Overall", report.overall)
    renderer.kv("Summary", report.summary)
    for key, value in report.details.items():
        renderer.kv(f"  {key}", value)
    renderer.table(
        ["component", "state"],
        [(name.value, state.value) for name, state in report.status.component_state.items()],
        title="Components:",
    )
    if renderer.verbose and report.status.issues:
        renderer.section("Issues:")
        for issue in report.status.issues:
            renderer.finding(issue.severity, issue.component, issue.message)
    if report.recommendations:
        renderer.section("Recommendations:")
        renderer.items(list(report.recommendations))
    return 0 if healthy else 1


def _cmd_defaults(args: argparse.Namespace) -> int:
    payload = default_config()
    if _flag(args, "json"):
        _emit_json(dict(payload))
        return 0
    _get_renderer(args).text(json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False))
    return 0


async def _run_report(overrides: Mapping[str, Any]) -> tuple[UpdateResult, HealthReport]:
    manager = ComplianceManager(build_in_memory_components())
    try:
        result = await manager.initialize(overrides)
        report = await manager.health_report()
    finally:
        await manager.shutdown()
    return result, report


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _render_verdict(renderer: CLIRenderer, verdict: ConfigValidationResult) -> None:
    if verdict.is_valid:
        renderer.ok("configuration is valid")
    else:
        renderer.fail(f"configuration is invalid ({len(verdict.errors)} error(s))")
    for error in verdict.errors:
        renderer.finding(error.severity, error.path, error.message)
    for warning in verdict.warnings:
        renderer.finding("warning", warning.path, warning.message)
        if renderer.verbose and warning.recommendation:
            renderer.text(f"         -> {warning.recommendation}")


def _effective_candidate(args: argparse.Namespace) -> dict[str, Any]:
    return merge_config(dict(default_config()), _load_overrides(args))


def _load_overrides(args: argparse.Namespace) -> dict[str, Any]:
    config_path = _resolve_config_path(getattr(args, "config_path", None))
    try:
        return load_overrides(config_path, environ=os.environ)
    except ConfigLoadError as exc:
        raise CLIError(str(exc), exit_code=2) from exc


def _resolve_config_path(raw: object) -> Path | None:
    if isinstance(raw, str) and raw.strip():
        return Path(raw.strip())
    fallback = Path.cwd() / DEFAULT_CONFIG_FILE
    return fallback if fallback.is_file() else None


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(verbose=_flag(args, "verbose"))


def _flag(args: argparse.Namespace, name: str) -> bool:
    return bool(getattr(args, name, False))


__all__ = ["CLIError", "build_parser", "run_cli"]
