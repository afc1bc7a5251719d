"""Async subprocess runner for the vendor flashing tools."""

import asyncio
import logging
import shutil
import sys
from pathlib import Path
from typing import Optional, Sequence, Callable

from adapters.interfaces.services import ToolRunner, ToolResult


logger = logging.getLogger(__name__)


# esptool prints these while it keeps retrying the connection
CONNECT_PATTERNS = ("._", "__", "_.")
CONNECT_STALL_SECONDS = 5.0
BOOT_BUTTON_PROMPT = "*** Hold down the BOOT/FLASH button in ESP32 board ***"

READ_CHUNK_SIZE = 256


def find_executable(name: str, tools_path: Optional[Path] = None) -> str:
    """Resolve a tool executable: tools_path first, then PATH."""
    if tools_path is not None:
        candidate = Path(tools_path) / name
        if candidate.exists():
            return str(candidate)
    return shutil.which(name) or name


def python_module_command(module: str) -> tuple:
    """Executable and leading arguments to run ``python -m module``."""
    return sys.executable, ["-m", module]


class AsyncToolRunner(ToolRunner):
    """Runs tools with asyncio subprocesses, stdout and stderr combined."""

    def __init__(
        self,
        timeout: float = 300.0,
        stall_seconds: float = CONNECT_STALL_SECONDS,
        on_connect_stall: Optional[Callable[[], None]] = None,
    ):
        self.timeout = timeout
        self.stall_seconds = stall_seconds
        self.on_connect_stall = on_connect_stall or _prompt_boot_button

    async def run(
        self,
        executable: str,
        args: Sequence[str],
        cwd: Optional[Path] = None,
        watch_connect: bool = False,
    ) -> ToolResult:
        """Run a tool and wait for it to exit.

        Raises:
            OSError: If the executable can't be started.
            TimeoutError: If the tool doesn't finish within the timeout.
        """
        logger.debug(f"Ejecutando: {executable} {' '.join(str(a) for a in args)}")

        process = await asyncio.create_subprocess_exec(
            executable,
            *[str(a) for a in args],
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            cwd=str(cwd) if cwd else None,
        )

        try:
            output = await asyncio.wait_for(self._collect(process, watch_connect), self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise TimeoutError(f"{Path(executable).name} timed out after {self.timeout:.0f}s")

        logger.debug(f"Salida de {Path(executable).name} (código {process.returncode}):\n{output}")
        return ToolResult(return_code=process.returncode, output=output)

    async def _collect(self, process: asyncio.subprocess.Process, watch_connect: bool) -> str:
        loop = asyncio.get_running_loop()
        started = loop.time()
        prompted = False
        chunks = []
        tail = ""

        while True:
            data = await process.stdout.read(READ_CHUNK_SIZE)
            if not data:
                break

            text = data.decode(errors="replace")
            chunks.append(text)

            if watch_connect and not prompted:
                window = tail + text
                stalled = loop.time() - started > self.stall_seconds
                if stalled and any(pattern in window for pattern in CONNECT_PATTERNS):
                    self.on_connect_stall()
                    prompted = True
            tail = text[-1:]

        await process.wait()
        return "".join(chunks)


def _prompt_boot_button() -> None:
    logger.warning(BOOT_BUTTON_PROMPT)
