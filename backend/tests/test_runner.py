import sys

import pytest

from hostpanel.core.exceptions import DIAGNOSTIC_LIMIT, ExternalToolError
from hostpanel.system import runner


def test_captures_output():
    result = runner.run_command([sys.executable, "-c", "print('hello')"])
    assert result.ok
    assert result.stdout.strip() == "hello"


def test_arguments_are_not_shell_interpreted():
    result = runner.run_command([sys.executable, "-c", "import sys; print(sys.argv[1])", "$(whoami); ls"])
    assert result.stdout.strip() == "$(whoami); ls"


def test_nonzero_without_check_returns_result():
    result = runner.run_command([sys.executable, "-c", "import sys; sys.stderr.write('bad'); sys.exit(3)"])
    assert result.returncode == 3
    assert result.output == "bad"


def test_check_raises_with_raw_stderr():
    with pytest.raises(ExternalToolError) as exc:
        runner.run_command(
            [sys.executable, "-c", "import sys; sys.stderr.write('x' * 2000); sys.exit(2)"],
            check=True,
            tool="demo",
        )
    assert exc.value.tool == "demo"
    assert exc.value.returncode == 2
    assert exc.value.diagnostic.startswith("x" * DIAGNOSTIC_LIMIT)
    assert len(exc.value.diagnostic) <= DIAGNOSTIC_LIMIT + 3


def test_missing_binary():
    with pytest.raises(ExternalToolError) as exc:
        runner.run_command(["hostpanel-no-such-binary"])
    assert exc.value.returncode == 127


def test_timeout():
    with pytest.raises(ExternalToolError) as exc:
        runner.run_command([sys.executable, "-c", "import time; time.sleep(5)"], timeout=0.5)
    assert "timed out" in exc.value.diagnostic


def test_try_command_never_raises():
    result = runner.try_command(["hostpanel-no-such-binary"])
    assert not result.ok
    assert "command not found" in result.output


def test_env_is_merged():
    result = runner.run_command(
        [sys.executable, "-c", "import os; print(os.environ['HOSTPANEL_TEST'], 'PATH' in os.environ)"],
        env={"HOSTPANEL_TEST": "yes"},
    )
    assert result.stdout.split() == ["yes", "True"]


def test_streaming_command_yields_lines_and_exit_code():
    command = runner.StreamingCommand(
        [sys.executable, "-c", "import sys; print('one'); print('two', file=sys.stderr); sys.exit(4)"],
        timeout=10,
    )
    lines = list(command)
    assert "one\n" in lines
    assert "two\n" in lines
    assert command.returncode == 4


def test_streaming_missing_binary():
    command = runner.StreamingCommand(["hostpanel-no-such-binary"])
    lines = list(command)
    assert command.returncode == 127
    assert "command not found" in lines[0]
