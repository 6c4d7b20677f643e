"""Bounded external process execution for the render engines."""

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

logger = logging.getLogger(__name__)

# CLI progress output is line based, but some tools redraw with \r
_LINE_SPLIT_RE = re.compile(rb"[\r\n]")


@dataclass
class ProcessResult:
    """Outcome of an external command."""

    returncode: Optional[int]
    output_tail: str
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return not self.timed_out and self.returncode == 0


async def run_process(
    cmd: Sequence[str],
    *,
    timeout: float,
    max_output_bytes: int,
    on_line: Callable[[str], None] | None = None,
    cwd: str | None = None,
) -> ProcessResult:
    """
    Run a command with a wall-clock timeout and a capped output buffer.

    stdout and stderr are merged and drained continuously, so a chatty process
    never blocks on a full pipe. Only the last `max_output_bytes` are kept.

    Args:
        cmd: Command and arguments (no shell)
        timeout: Seconds before the process is killed
        max_output_bytes: Size of the retained output tail
        on_line: Called with every decoded output line
        cwd: Working directory

    Returns:
        ProcessResult with the exit code and output tail

    Raises:
        FileNotFoundError: If the executable does not exist
    """
    process = await asyncio.create_subprocess_exec(
        *cmd,
        cwd=cwd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
    )

    tail = bytearray()
    pending = b""

    def emit(raw: bytes) -> None:
        if on_line and raw.strip():
            on_line(raw.decode("utf-8", errors="replace").strip())

    async def drain() -> None:
        nonlocal pending
        assert process.stdout is not None
        while True:
            chunk = await process.stdout.read(8192)
            if not chunk:
                break
            tail.extend(chunk)
            if len(tail) > max_output_bytes:
                del tail[: len(tail) - max_output_bytes]
            parts = _LINE_SPLIT_RE.split(pending + chunk)
            pending = parts.pop()
            if len(pending) > max_output_bytes:
                pending = pending[-max_output_bytes:]
            for part in parts:
                emit(part)
        emit(pending)

    try:
        await asyncio.wait_for(asyncio.gather(drain(), process.wait()), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"[PROCESS] Timed out after {timeout}s, killing: {cmd[0]}")
        if process.returncode is None:
            process.kill()
        await process.wait()
        return ProcessResult(
            returncode=process.returncode,
            output_tail=tail.decode("utf-8", errors="replace"),
            timed_out=True,
        )

    return ProcessResult(
        returncode=process.returncode,
        output_tail=tail.decode("utf-8", errors="replace"),
    )
