"""Bounded execution of external command line tools."""

from __future__ import annotations

import asyncio
from contextlib import suppress
from dataclasses import dataclass


@dataclass(slots=True)
class ProcessResult:
    returncode: int
    stdout: str
    stderr: str


async def run_process(
    argv: list[str],
    *,
    stdin_data: bytes | None = None,
    timeout: float | None = None,
) -> ProcessResult:
    """Run ``argv`` to completion and capture its output.

    The child is killed if ``timeout`` elapses or the caller is cancelled.

    Raises:
        FileNotFoundError / PermissionError: the executable cannot be started.
        TimeoutError: the process did not exit within ``timeout`` seconds.
    """
    proc = await asyncio.create_subprocess_exec(
        *argv,
        stdin=asyncio.subprocess.PIPE if stdin_data is not None else asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(stdin_data), timeout=timeout)
    finally:
        if proc.returncode is None:
            with suppress(ProcessLookupError):
                proc.kill()
            with suppress(Exception):
                await proc.wait()
    return ProcessResult(
        returncode=proc.returncode if proc.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )


__all__ = ["ProcessResult", "run_process"]
