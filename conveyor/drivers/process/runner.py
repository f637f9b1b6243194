"""Async subprocess driver for command-line collaborators (git, mvn, docker).

Output is captured (stderr folded into stdout) and appended to the stage log
through the invocation context, which redacts live credentials. The
cooperative cancel signal terminates the child process.
"""

from __future__ import annotations

import asyncio
import os
import shlex
from collections.abc import Mapping, Sequence
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from conveyor.kernel.exceptions import StageAbortedError, ToolUnavailableError
from conveyor.kernel.logging import get_logger

if TYPE_CHECKING:
    from conveyor.kernel.ports.adapter import InvocationContext

logger = get_logger(__name__)

TERMINATE_GRACE_SECONDS = 5.0


@dataclass(frozen=True, slots=True)
class ProcessResult:
    """Exit status and combined output of a finished process."""

    args: tuple[str, ...]
    returncode: int
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def tail(self, lines: int = 20) -> str:
        """Last ``lines`` lines of output, for failure messages."""
        return "\n".join(self.output.rstrip().splitlines()[-lines:])


class ProcessRunner:
    """Run external commands without blocking the event loop.

    Parameters
    ----------
    env : Mapping[str, str] | None
        Extra environment variables added to the current environment
    """

    def __init__(self, env: Mapping[str, str] | None = None) -> None:
        self.env = dict(env or {})

    async def run(
        self,
        args: Sequence[str],
        *,
        cwd: str | Path | None = None,
        env: Mapping[str, str] | None = None,
        stdin: str | None = None,
        context: InvocationContext | None = None,
    ) -> ProcessResult:
        """Run ``args`` to completion.

        Raises
        ------
        ToolUnavailableError
            If the executable cannot be found
        StageAbortedError
            If the context's cancel signal fires while the process runs
        """
        argv = tuple(str(a) for a in args)
        redact = context.redact if context is not None else (lambda text: text)
        command_line = redact(shlex.join(argv))
        logger.debug(f"Running: {command_line}")
        if context is not None:
            context.write_log(f"$ {command_line}")

        full_env = {**os.environ, **self.env, **(env or {})}
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(cwd) if cwd is not None else None,
                env=full_env,
                stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except FileNotFoundError as e:
            raise ToolUnavailableError(f"'{argv[0]}' is not installed or not on PATH") from e
        except PermissionError as e:
            raise ToolUnavailableError(f"'{argv[0]}' is not executable: {e}") from e

        payload = stdin.encode() if stdin is not None else None
        communicate = asyncio.ensure_future(proc.communicate(payload))
        try:
            if context is not None:
                waiter = asyncio.ensure_future(context.cancel_event.wait())
                try:
                    done, _ = await asyncio.wait(
                        {communicate, waiter}, return_when=asyncio.FIRST_COMPLETED
                    )
                finally:
                    waiter.cancel()
                if communicate not in done:
                    await self._terminate(proc)
                    communicate.cancel()
                    raise StageAbortedError(f"'{argv[0]}' terminated: run aborted")
            stdout, _ = await communicate
        except asyncio.CancelledError:
            await self._terminate(proc)
            communicate.cancel()
            raise

        output = stdout.decode(errors="replace") if stdout else ""
        if context is not None and output:
            context.write_log(output)
        returncode = proc.returncode if proc.returncode is not None else -1
        logger.debug(f"'{argv[0]}' exited with {returncode}")
        return ProcessResult(args=argv, returncode=returncode, output=output)

    @staticmethod
    async def _terminate(proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is not None:
            return
        with suppress(ProcessLookupError):
            proc.terminate()
        try:
            await asyncio.wait_for(proc.wait(), TERMINATE_GRACE_SECONDS)
        except TimeoutError:
            with suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
