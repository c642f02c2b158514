"""Workspace adapter backed by the ``hn`` workbox CLI.

``hn info NAME --format=json`` resolves a workbox; ``hn exec NAME -- sh -c CMD``
runs a command inside it. Only resolution and execution are used: creating
and removing workboxes stays with ``hn`` itself.
"""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
from typing import Any, Callable

from hupasiya.exceptions import ConfigurationError, ExecutorError
from hupasiya.models.session import VcsKind
from hupasiya.protocols import ExecResult, WorkspaceInfo

logger = logging.getLogger(__name__)

Runner = Callable[..., "subprocess.CompletedProcess[str]"]


class HnWorkspace:
    """Implements the Workspace protocol by shelling out to ``hn``."""

    def __init__(
        self,
        command: str = "hn",
        *,
        runner: Runner = subprocess.run,
        info_timeout: float = 30.0,
    ) -> None:
        self._command = command
        self._runner = runner
        self._info_timeout = info_timeout

    @staticmethod
    def check_installed(command: str = "hn") -> None:
        """Raise ConfigurationError if the workbox CLI is not on PATH."""
        if shutil.which(command) is None:
            raise ConfigurationError(
                f"'{command}' not found on PATH; install it or set workspace_command"
            )

    def _run(
        self,
        args: list[str],
        *,
        timeout: float | None,
        stdin: str | None = None,
    ) -> subprocess.CompletedProcess[str]:
        logger.debug("$ %s", " ".join(args))
        try:
            return self._runner(
                args,
                capture_output=True,
                text=True,
                timeout=timeout,
                input=stdin,
            )
        except subprocess.TimeoutExpired as exc:
            raise ExecutorError(" ".join(args), -1, f"timed out after {timeout}s") from exc
        except FileNotFoundError as exc:
            raise ConfigurationError(f"'{self._command}' could not be executed: {exc}") from exc

    def resolve(self, ref: str) -> WorkspaceInfo | None:
        """Look up a workbox by name. Returns None if ``hn`` does not know it.

        Raises:
            ConfigurationError: If the reported VCS kind is unknown.
        """
        proc = self._run(
            [self._command, "info", ref, "--format=json"], timeout=self._info_timeout
        )
        if proc.returncode != 0:
            logger.debug("hn info %s failed: %s", ref, proc.stderr.strip())
            return None
        try:
            data = json.loads(proc.stdout)
        except json.JSONDecodeError as exc:
            raise ExecutorError(f"{self._command} info {ref}", 0, proc.stdout) from exc
        return WorkspaceInfo(
            ref=data.get("name", ref),
            path=str(data.get("path", "")),
            vcs_kind=VcsKind.parse(data.get("vcs_type", "git")),
            branch=data["branch"],
            base_branch=data.get("base_branch", "main"),
            commit=data.get("commit") or None,
        )

    def execute(self, ref: str, command: str, timeout: float | None = None) -> ExecResult:
        proc = self._run(
            [self._command, "exec", ref, "--", "sh", "-c", command], timeout=timeout
        )
        output = "\n".join(part for part in (proc.stdout, proc.stderr) if part)
        return ExecResult(exit_code=proc.returncode, output=output)

    def apply_change(self, ref: str, payload: Any) -> ExecResult:
        """Apply a unified diff (a string, or a dict with a ``diff`` key).

        The diff is fed to ``git apply`` on stdin inside the workbox.
        """
        diff = payload.get("diff") if isinstance(payload, dict) else payload
        if not isinstance(diff, str) or not diff.strip():
            return ExecResult(exit_code=1, output="change payload has no diff to apply")
        proc = self._run(
            [self._command, "exec", ref, "--", "git", "apply", "--whitespace=nowarn", "-"],
            timeout=self._info_timeout,
            stdin=diff,
        )
        output = "\n".join(part for part in (proc.stdout, proc.stderr) if part)
        return ExecResult(exit_code=proc.returncode, output=output)
