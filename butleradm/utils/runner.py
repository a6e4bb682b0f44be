"""External command execution (kind, docker, kubectl)."""
import logging
import subprocess
from pathlib import Path
from typing import List, Optional, Union

from .context import RunContext

logger = logging.getLogger("butleradm.runner")

# How often a running command checks its context for cancellation
CANCEL_CHECK_INTERVAL = 0.5


class CommandRunner:
    """Runs external commands, aborting them when the run context is done.

    The bootstrap logic only talks to this class, so tests substitute a fake
    that records commands instead of spawning processes.
    """

    def run(
        self,
        cmd: List[str],
        *,
        ctx: Optional[RunContext] = None,
        check: bool = True,
        capture_output: bool = True,
        cwd: Union[str, Path, None] = None,
        input: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> subprocess.CompletedProcess:
        cmd_str = ' '.join(cmd)
        logger.debug(f"💻 Running: {cmd_str}")

        proc = subprocess.Popen(
            cmd,
            text=True,
            cwd=cwd,
            stdin=subprocess.PIPE if input is not None else None,
            stdout=subprocess.PIPE if capture_output else None,
            stderr=subprocess.PIPE if capture_output else None,
        )
        stdout, stderr = self._communicate(proc, ctx, input, timeout, cmd_str)
        result = subprocess.CompletedProcess(cmd, proc.returncode, stdout, stderr)

        if capture_output:
            logger.debug(f"🟢 Output:\n{stdout}")
        if check and result.returncode != 0:
            msg = f"❌ Command failed: {cmd_str} (exit code: {result.returncode})"
            if capture_output:
                msg += f"\nStdout:\n{stdout}\nStderr:\n{stderr}"
            logger.debug(msg)
            raise subprocess.CalledProcessError(result.returncode, cmd, stdout, stderr)
        return result

    def _communicate(self, proc, ctx, input, timeout, cmd_str):
        if ctx is None:
            try:
                return proc.communicate(input=input, timeout=timeout)
            except subprocess.TimeoutExpired:
                self._stop(proc)
                raise

        pending_input = input
        waited = 0.0
        while True:
            step = CANCEL_CHECK_INTERVAL
            remaining = ctx.remaining()
            if remaining is not None:
                step = min(step, max(remaining, 0.01))
            try:
                return proc.communicate(input=pending_input, timeout=step)
            except subprocess.TimeoutExpired:
                pending_input = None
                waited += step
            if ctx.err() is not None:
                logger.warning(f"⚠️ Stopping command: {cmd_str}")
                self._stop(proc)
                ctx.raise_if_done()
            if timeout is not None and waited >= timeout:
                self._stop(proc)
                raise subprocess.TimeoutExpired(proc.args, timeout)

    @staticmethod
    def _stop(proc: subprocess.Popen) -> None:
        proc.terminate()
        try:
            proc.communicate(timeout=5)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.communicate()
