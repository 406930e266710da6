"""
safeapply.integrations.process - External Command Execution
=============================================================

Every external tool SafeApply drives (git, formatters, dependency managers,
syntax checkers) is invoked through the CommandRunner. It is the single
place that knows how to spawn, time out, and kill a subprocess.

    GitAdapter ──┐
                 ├──→ CommandRunner.run(argv, cwd, timeout) ──→ CommandResult
    Toolchain ───┘                │
                                  ├── timeout  → kill, CommandTimeoutError
                                  └── exit ≠ 0 → VcsError (when check=True)

No shell is involved: argv is passed straight to the OS, so paths and commit
messages never need quoting.
"""

from __future__ import annotations

import asyncio
import os
import time
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Sequence, Union

import structlog

from safeapply.core.exceptions import CommandTimeoutError, VcsError


logger = structlog.get_logger()


@dataclass(frozen=True)
class CommandResult:
    """Captured outcome of one finished command."""

    argv: tuple[str, ...]
    cwd: str
    returncode: int
    stdout_bytes: bytes
    stderr_bytes: bytes
    duration_ms: int = 0

    @property
    def stdout(self) -> str:
        return self.stdout_bytes.decode("utf-8", errors="replace")

    @property
    def stderr(self) -> str:
        return self.stderr_bytes.decode("utf-8", errors="replace")

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner:
    """Runs argv-style commands with a timeout.

    Attributes:
        env: Extra environment variables layered over ``os.environ`` for
            every command this runner starts.
    """

    def __init__(self, env: Optional[Mapping[str, str]] = None) -> None:
        self.env = dict(env or {})
        self._logger = logger.bind(component="command_runner")

    def _build_env(self, env: Optional[Mapping[str, str]]) -> dict[str, str]:
        merged = os.environ.copy()
        merged.update(self.env)
        if env:
            merged.update(env)
        return merged

    async def run(
        self,
        argv: Sequence[str],
        cwd: Union[str, Path],
        timeout: Optional[float],
        input: Optional[Union[str, bytes]] = None,
        env: Optional[Mapping[str, str]] = None,
        check: bool = True,
    ) -> CommandResult:
        """Run ``argv`` in ``cwd`` and capture its output.

        Args:
            argv: Program and arguments.
            cwd: Working directory.
            timeout: Seconds before the process is killed; None waits forever.
            input: Data written to the process's stdin.
            env: Per-call environment overrides.
            check: Raise VcsError when the exit status is non-zero.

        Returns:
            The CommandResult.

        Raises:
            CommandTimeoutError: If the timeout expired. The process is killed
                first.
            VcsError: If the program cannot be started, or it exited non-zero
                and ``check`` is set.
        """
        argv = tuple(str(arg) for arg in argv)
        stdin_bytes = input.encode("utf-8") if isinstance(input, str) else input
        started = time.monotonic()

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(cwd),
                env=self._build_env(env),
                stdin=(
                    asyncio.subprocess.PIPE
                    if stdin_bytes is not None
                    else asyncio.subprocess.DEVNULL
                ),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise VcsError(
                message=f"Failed to start {argv[0]}: {exc}",
                error_code="COMMAND_NOT_STARTED",
                command=argv,
            ) from exc

        try:
            if timeout is None:
                stdout, stderr = await process.communicate(stdin_bytes)
            else:
                stdout, stderr = await asyncio.wait_for(
                    process.communicate(stdin_bytes), timeout=timeout
                )
        except asyncio.TimeoutError as exc:
            with suppress(ProcessLookupError):
                process.kill()
            await process.communicate()
            self._logger.warning(
                "command_timed_out",
                argv=list(argv),
                timeout_seconds=timeout,
            )
            raise CommandTimeoutError(
                message=f"Command timed out after {timeout}s: {' '.join(argv)}",
                command=argv,
                timeout_seconds=timeout,
            ) from exc
        except asyncio.CancelledError:
            with suppress(ProcessLookupError):
                process.kill()
            await process.communicate()
            raise

        result = CommandResult(
            argv=argv,
            cwd=str(cwd),
            returncode=process.returncode if process.returncode is not None else -1,
            stdout_bytes=stdout or b"",
            stderr_bytes=stderr or b"",
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        self._logger.debug(
            "command_finished",
            argv=list(argv),
            returncode=result.returncode,
            duration_ms=result.duration_ms,
        )

        if check and not result.ok:
            raise VcsError(
                message=f"Command failed ({result.returncode}): {' '.join(argv)}",
                command=argv,
                returncode=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr.strip(),
            )
        return result
