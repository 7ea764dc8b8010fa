"""
Thin wrapper around the `cdk` CLI.

Builds argument lists for diff/deploy/destroy/synth and runs them in the
directory holding cdk.json. Output streams straight to the terminal; the
caller gets cdk's exit code back unchanged.
"""

import shutil
import subprocess
import time
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from .logging import get_logger

logger = get_logger(__name__)

CDK_NOT_FOUND_EXIT_CODE = 127
CDK_INSTALL_HINT = "Install with: npm install -g aws-cdk"


class CdkNotFoundError(Exception):
    """Raised when the cdk executable cannot be located."""

    def __init__(self, executable: str):
        self.executable = executable
        super().__init__(f"'{executable}' executable not found on PATH")


def parse_context_pairs(pairs: Iterable[str]) -> dict[str, str]:
    """
    Parse repeated ``key=value`` options into a mapping.

    Raises:
        ValueError: If an entry has no ``=`` or an empty key.
    """
    context: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"Expected key=value, got {pair!r}")
        context[key.strip()] = value
    return context


@dataclass(frozen=True)
class CdkRunner:
    """Runs cdk commands against one CDK app directory."""

    app_dir: Path
    profile: str | None = None
    context: dict[str, str] = field(default_factory=dict)
    executable: str = "cdk"
    timeout: float | None = None

    def _global_args(self) -> list[str]:
        args: list[str] = []
        if self.profile:
            args += ["--profile", self.profile]
        for key, value in self.context.items():
            args += ["--context", f"{key}={value}"]
        return args

    def _command(self, action: str, args: Sequence[str]) -> list[str]:
        return [self.executable, action, *args, *self._global_args()]

    def diff_command(self, stacks: Sequence[str] = ()) -> list[str]:
        return self._command("diff", list(stacks))

    def deploy_command(self, stacks: Sequence[str] = (), approve: bool = True) -> list[str]:
        args = list(stacks) or ["--all"]
        if approve:
            args += ["--require-approval", "never"]
        return self._command("deploy", args)

    def destroy_command(self, stacks: Sequence[str] = (), force: bool = False) -> list[str]:
        args = list(stacks) or ["--all"]
        if force:
            args.append("--force")
        return self._command("destroy", args)

    def synth_command(self, stacks: Sequence[str] = ()) -> list[str]:
        return self._command("synth", [*stacks, "--quiet"])

    def run(self, command: list[str]) -> int:
        """
        Execute a command built by one of the ``*_command`` methods.

        Returns:
            The cdk process exit code.

        Raises:
            CdkNotFoundError: If the cdk executable is missing.
            subprocess.TimeoutExpired: If ``timeout`` is set and exceeded.
        """
        resolved = shutil.which(self.executable)
        if resolved is None:
            raise CdkNotFoundError(self.executable)

        action = command[1] if len(command) > 1 else ""
        logger.info(
            "cdk_command_started",
            action=action,
            command=" ".join(command),
            app_dir=str(self.app_dir),
        )

        started = time.monotonic()
        try:
            result = subprocess.run(
                [resolved, *command[1:]],
                cwd=self.app_dir,
                check=False,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise CdkNotFoundError(self.executable) from e

        logger.info(
            "cdk_command_finished",
            action=action,
            exit_code=result.returncode,
            duration_ms=(time.monotonic() - started) * 1000,
        )
        return result.returncode
