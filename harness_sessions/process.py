"""Async subprocess execution with hard timeouts."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Sequence

logger = logging.getLogger(__name__)


class HarnessError(Exception):
    """Base class for errors raised by harness_sessions."""


class CommandError(HarnessError):
    """A subprocess exited unsuccessfully."""

    def __init__(self, argv: Sequence[str], returncode: Optional[int] = None, stderr: str = ""):
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr
        detail = f"exit status {returncode}" if returncode is not None else "failed"
        message = f"{self.argv[0]} {detail}"
        if stderr.strip():
            message += f": {stderr.strip().splitlines()[0]}"
        super().__init__(message)


class CommandTimeout(CommandError):
    def __init__(self, argv: Sequence[str], timeout: float):
        self.timeout = timeout
        super().__init__(argv)
        self.args = (f"{self.argv[0]} timed out after {timeout:g}s",)


class CommandNotFound(CommandError):
    def __init__(self, argv: Sequence[str]):
        super().__init__(argv)
        self.args = (f"{self.argv[0]} not found on PATH",)


@dataclass
class CommandResult:
    argv: list[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


async def run_command(argv: Sequence[str], timeout: float, check: bool = False) -> CommandResult:
    """Run ``argv`` and collect its output.

    The process is killed when ``timeout`` elapses or the awaiting task is
    cancelled. With ``check=True`` a non-zero exit raises CommandError.
    """
    argv = [str(a) for a in argv]
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise CommandNotFound(argv) from e

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        await _kill(proc)
        logger.debug(f"Command timed out after {timeout}s: {' '.join(argv)}")
        raise CommandTimeout(argv, timeout) from None
    except asyncio.CancelledError:
        await _kill(proc)
        raise

    result = CommandResult(
        argv=argv,
        returncode=proc.returncode,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )
    if check and not result.ok:
        raise CommandError(argv, result.returncode, result.stderr)
    return result


async def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is not None:
        return
    try:
        proc.kill()
    except ProcessLookupError:
        return
    await proc.wait()
