"""Host adapter that launches the external process with piped output."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class ProcessHandle(Protocol):
    """What the correlator needs from a running process."""

    stdout: asyncio.StreamReader
    stderr: asyncio.StreamReader

    async def wait(self) -> int: ...


@dataclass
class AsyncioProcessHandle:
    """``ProcessHandle`` backed by ``asyncio.subprocess.Process``."""

    process: asyncio.subprocess.Process

    @property
    def stdout(self) -> asyncio.StreamReader:
        return self.process.stdout

    @property
    def stderr(self) -> asyncio.StreamReader:
        return self.process.stderr

    @property
    def pid(self) -> int:
        return self.process.pid

    async def wait(self) -> int:
        return await self.process.wait()


async def spawn_external_process(
    command: str,
    args: list[str],
    **options: Any,
) -> AsyncioProcessHandle:
    """Spawn ``command args...`` with stdout/stderr piped.

    Args:
        command: Executable to run.
        args: Command-line arguments.
        **options: Passed through to ``asyncio.create_subprocess_exec``
            (e.g. ``cwd``, ``env``).

    Raises:
        OSError: If the executable cannot be started.
    """
    process = await asyncio.create_subprocess_exec(
        command,
        *args,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        **options,
    )
    logger.info("Spawned %s (pid=%d)", command, process.pid)
    return AsyncioProcessHandle(process)
