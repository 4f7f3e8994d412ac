"""Process entrypoint: runs the CLI and maps every outcome onto ``ExitCode``."""

from __future__ import annotations

import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING

from nexus_compliance.config.loader import ConfigLoadError
from nexus_compliance.config.schema import ConfigValidationError

if TYPE_CHECKING:
    from collections.abc import Sequence


class ExitCode(IntEnum):
    """Exit codes of the ``nexus-compliance`` command."""

    SUCCESS = 0
    NON_COMPLIANT = 1
    CONFIG_ERROR = 2
    INTERNAL_ERROR = 4

    @classmethod
    def for_exception(cls, exc: BaseException) -> ExitCode:
        """Exit code for an error escaping a command, judged by it and its causes."""
        current: BaseException | None = exc
        while current is not None:
            if isinstance(current, ConfigValidationError):
                return cls.NON_COMPLIANT
            if isinstance(current, (ConfigLoadError, OSError)):
                return cls.CONFIG_ERROR
            current = current.__cause__
        return cls.INTERNAL_ERROR


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    """Run ``nexus-compliance`` and return its exit code; never raises."""

    from nexus_compliance.ui.cli import run_cli

    try:
        return _exit_code(run_cli(argv))
    except SystemExit as exc:
        # argparse exits 2 on usage errors and 0 after --help.
        return _exit_code(exc.code)
    except Exception as exc:  # noqa: BLE001 - last line before the process boundary.
        code = ExitCode.for_exception(exc)
        if code is ExitCode.INTERNAL_ERROR:
            traceback.print_exception(exc, file=sys.stderr)
        else:
            print(f"error: {exc}", file=sys.stderr)
        return int(code)


def _exit_code(raw: object) -> int:
    if raw is None:
        return int(ExitCode.SUCCESS)
    try:
        return int(ExitCode(raw))
    except ValueError:
        if isinstance(raw, str) and raw.strip():
            print(raw.strip(), file=sys.stderr)
        return int(ExitCode.INTERNAL_ERROR)


__all__ = ["ExitCode", "cli_entrypoint"]
