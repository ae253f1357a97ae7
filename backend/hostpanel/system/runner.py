import logging
import os
import subprocess
import threading
from dataclasses import dataclass
from typing import Optional

from hostpanel.core.exceptions import ExternalToolError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60


@dataclass
class CommandResult:
    args: list
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """stderr first, that is where most tools put the reason."""
        return (self.stderr or self.stdout or "").strip()


def _merged_env(env: Optional[dict]):
    if not env:
        return None
    merged = os.environ.copy()
    merged.update(env)
    return merged


def run_command(
        args: list,
        timeout: Optional[int] = None,
        input: Optional[str] = None,
        cwd: Optional[str] = None,
        env: Optional[dict] = None,
        check: bool = False,
        tool: Optional[str] = None,
) -> CommandResult:
    """
    Run one external program from an argument list (never through a shell).

    Output is captured as text. A missing binary or a timeout is reported as
    ExternalToolError. With check=True a non-zero exit is raised as well,
    carrying the tool's raw stderr. Without a timeout DEFAULT_TIMEOUT applies
    (COMMAND_TIMEOUT once the app is configured).
    """
    tool = tool or args[0]
    timeout = timeout or DEFAULT_TIMEOUT
    logger.debug("exec: %s", " ".join(str(a) for a in args))

    try:
        completed = subprocess.run(
            [str(a) for a in args],
            input=input,
            capture_output=True,
            text=True,
            cwd=cwd,
            env=_merged_env(env),
            timeout=timeout,
        )
    except FileNotFoundError:
        logger.error("%s: command not found", args[0])
        raise ExternalToolError(tool, f"{args[0]}: command not found", 127)
    except subprocess.TimeoutExpired:
        logger.error("%s timed out after %ss", tool, timeout)
        raise ExternalToolError(tool, f"timed out after {timeout}s")

    result = CommandResult(list(args), completed.returncode, completed.stdout or "", completed.stderr or "")
    if not result.ok:
        logger.warning("%s exited with %s: %s", tool, result.returncode, result.output[:200])
        if check:
            raise ExternalToolError(tool, result.output, result.returncode)
    return result


def try_command(args: list, **kwargs) -> CommandResult:
    """Best-effort variant: failures of any kind come back as a non-zero result."""
    try:
        return run_command(args, **kwargs)
    except ExternalToolError as e:
        return CommandResult(list(args), e.returncode or 1, "", e.diagnostic)


class StreamingCommand:
    """
    Iterate over the merged stdout/stderr of a long-running command, line by line.
    `returncode` is set once iteration finishes. When the deadline passes the
    process is killed; a client that stops reading does not stop the process.
    """

    def __init__(self, args: list, timeout: Optional[int] = None, cwd: Optional[str] = None,
                 env: Optional[dict] = None):
        self.args = [str(a) for a in args]
        self.timeout = timeout
        self.cwd = cwd
        self.env = env
        self.returncode = None
        self.timed_out = False

    def _kill(self, proc):
        self.timed_out = True
        proc.kill()

    @staticmethod
    def _cleanup(proc, timer):
        if timer:
            timer.cancel()
        proc.stdout.close()

    def _drain(self, proc, timer):
        for _ in proc.stdout:
            pass
        proc.wait()
        self.returncode = proc.returncode
        self._cleanup(proc, timer)
        logger.info("%s finished after reader left (exit %s)", self.args[0], proc.returncode)

    def __iter__(self):
        logger.debug("stream: %s", " ".join(self.args))
        try:
            proc = subprocess.Popen(
                self.args,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                cwd=self.cwd,
                env=_merged_env(self.env),
            )
        except FileNotFoundError:
            self.returncode = 127
            yield f"Error: {self.args[0]}: command not found\n"
            return

        timer = None
        if self.timeout:
            timer = threading.Timer(self.timeout, self._kill, args=(proc,))
            timer.start()
        finished = False
        try:
            for line in proc.stdout:
                yield line
            proc.wait()
            finished = True
        finally:
            if finished:
                self._cleanup(proc, timer)
            else:
                # reader went away: keep draining so the process runs to completion
                threading.Thread(target=self._drain, args=(proc, timer), daemon=True).start()

        self.returncode = proc.returncode
        if self.timed_out:
            yield f"\nError: timed out after {self.timeout}s\n"
