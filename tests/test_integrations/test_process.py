"""
Tests for safeapply.integrations.process
==========================================

The commands are run with the current Python interpreter so the tests do
not depend on any other tool being installed.
"""

import sys

import pytest

from safeapply.core.exceptions import CommandTimeoutError, VcsError
from safeapply.integrations.process import CommandRunner


def _py(code: str) -> list[str]:
    return [sys.executable, "-c", code]


@pytest.fixture
def runner():
    return CommandRunner()


class TestCommandRunner:
    async def test_captures_output(self, runner, tmp_path) -> None:
        result = await runner.run(_py("print('hello')"), cwd=tmp_path, timeout=30)
        assert result.ok
        assert result.stdout.strip() == "hello"
        assert result.cwd == str(tmp_path)

    async def test_runs_in_cwd(self, runner, tmp_path) -> None:
        result = await runner.run(_py("import os; print(os.getcwd())"), cwd=tmp_path, timeout=30)
        assert result.stdout.strip() == str(tmp_path.resolve())

    async def test_passes_stdin(self, runner, tmp_path) -> None:
        result = await runner.run(
            _py("import sys; print(sys.stdin.read().upper())"),
            cwd=tmp_path,
            timeout=30,
            input="patch",
        )
        assert result.stdout.strip() == "PATCH"

    async def test_env_layers(self, tmp_path) -> None:
        runner = CommandRunner(env={"SAFEAPPLY_A": "runner"})
        result = await runner.run(
            _py("import os; print(os.environ['SAFEAPPLY_A'], os.environ['SAFEAPPLY_B'])"),
            cwd=tmp_path,
            timeout=30,
            env={"SAFEAPPLY_B": "call"},
        )
        assert result.stdout.split() == ["runner", "call"]

    async def test_non_zero_exit_raises(self, runner, tmp_path) -> None:
        with pytest.raises(VcsError) as exc_info:
            await runner.run(
                _py("import sys; sys.stderr.write('bad'); sys.exit(3)"),
                cwd=tmp_path,
                timeout=30,
            )
        assert exc_info.value.returncode == 3
        assert exc_info.value.stderr == "bad"

    async def test_non_zero_exit_without_check(self, runner, tmp_path) -> None:
        result = await runner.run(_py("raise SystemExit(2)"), cwd=tmp_path, timeout=30, check=False)
        assert result.returncode == 2
        assert not result.ok

    async def test_timeout_kills_process(self, runner, tmp_path) -> None:
        with pytest.raises(CommandTimeoutError) as exc_info:
            await runner.run(_py("import time; time.sleep(30)"), cwd=tmp_path, timeout=0.5)
        assert exc_info.value.timeout_seconds == 0.5

    async def test_missing_program(self, runner, tmp_path) -> None:
        with pytest.raises(VcsError) as exc_info:
            await runner.run(["safeapply-no-such-program"], cwd=tmp_path, timeout=5)
        assert exc_info.value.error_code == "COMMAND_NOT_STARTED"
