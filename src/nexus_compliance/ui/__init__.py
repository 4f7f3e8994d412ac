"""UI package exports for the CLI and its renderer."""

from nexus_compliance.ui.cli import CLIError, build_parser, run_cli
from nexus_compliance.ui.render import CLIRenderer, create_renderer

__all__ = [
    "CLIError",
    "CLIRenderer",
    "build_parser",
    "create_renderer",
    "run_cli",
]
