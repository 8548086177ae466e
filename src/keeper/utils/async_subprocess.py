"""Async subprocess utilities for non-blocking command execution.

This module provides an async alternative to subprocess.run() so that cluster
calls can be awaited and cancelled like any other coroutine.
"""

import asyncio
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class AsyncCompletedProcess:
    """Async version of subprocess.CompletedProcess.

    Mirrors the interface of subprocess.CompletedProcess for compatibility
    with code that expects returncode, stdout, stderr attributes.
    """

    args: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""


async def run_async(
    cmd: list[str],
    input: str | None = None,
    timeout: float | None = None,
) -> AsyncCompletedProcess:
    """Run a command asynchronously without blocking the event loop.

    Args:
        cmd: Command and arguments as a list
        input: Optional text written to the process stdin
        timeout: Optional timeout in seconds

    Returns:
        AsyncCompletedProcess with returncode, stdout, stderr

    Raises:
        TimeoutError: If command times out
        FileNotFoundError: If the executable does not exist

    Example:
        result = await run_async(["kubectl", "get", "ns", "-o", "json"], timeout=30)
        if result.returncode == 0:
            print(result.stdout)
    """
    logger.debug(f"Running async command: {' '.join(cmd)}")

    process = await asyncio.create_subprocess_exec(
        *cmd,
        stdin=asyncio.subprocess.PIPE if input is not None else None,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )

    stdin_bytes = input.encode("utf-8") if input is not None else None
    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(
            process.communicate(stdin_bytes), timeout=timeout
        )
    except (TimeoutError, asyncio.CancelledError):
        # Kill the process on timeout or cancellation
        process.kill()
        await process.wait()
        logger.error(f"Command interrupted: {' '.join(cmd)}")
        raise

    stdout = stdout_bytes.decode("utf-8") if stdout_bytes else ""
    stderr = stderr_bytes.decode("utf-8") if stderr_bytes else ""

    result = AsyncCompletedProcess(
        args=cmd, returncode=process.returncode or 0, stdout=stdout, stderr=stderr
    )

    logger.debug(
        f"Command completed: returncode={result.returncode}, "
        f"stdout_len={len(stdout)}, stderr_len={len(stderr)}"
    )

    return result
