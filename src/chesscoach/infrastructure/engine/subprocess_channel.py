from __future__ import annotations

import asyncio
import contextlib
import shutil
from typing import Sequence

from src.chesscoach.interface.telemetry.logging import get_logger


class EngineLaunchError(OSError):
    """Raised when the engine executable cannot be started."""


class SubprocessChannel:
    """Line channel backed by a child process speaking over stdin/stdout."""

    def __init__(self, process: asyncio.subprocess.Process) -> None:
        self._process = process
        self._closed = False
        self._log = get_logger("chesscoach.engine.channel")

    @classmethod
    async def open(cls, command: str | Sequence[str]) -> "SubprocessChannel":
        argv = [command] if isinstance(command, str) else list(command)
        executable = shutil.which(argv[0]) or argv[0]
        try:
            process = await asyncio.create_subprocess_exec(
                executable,
                *argv[1:],
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except (FileNotFoundError, PermissionError) as exc:
            raise EngineLaunchError(f"Cannot start engine {executable!r}: {exc}") from exc
        channel = cls(process)
        channel._log.info("engine_process_started", pid=process.pid, executable=executable)
        return channel

    @property
    def pid(self) -> int:
        return self._process.pid

    def send_line(self, line: str) -> None:
        stdin = self._process.stdin
        if self._closed or stdin is None or stdin.is_closing():
            raise BrokenPipeError("Engine process input is closed.")
        self._log.debug("engine_line_sent", line=line)
        stdin.write(f"{line}\n".encode())

    async def read_line(self) -> str | None:
        stdout = self._process.stdout
        if self._closed or stdout is None:
            return None
        raw = await stdout.readline()
        if not raw:
            return None
        line = raw.decode(errors="replace").rstrip("\r\n")
        self._log.debug("engine_line_received", line=line)
        return line

    async def close(self, timeout: float = 2.0) -> None:
        if self._closed:
            return
        self._closed = True
        stdin = self._process.stdin
        if stdin is not None and not stdin.is_closing():
            with contextlib.suppress(OSError):
                await stdin.drain()
            stdin.close()
        try:
            await asyncio.wait_for(self._process.wait(), timeout)
        except asyncio.TimeoutError:
            self._log.warning("engine_process_killed", pid=self._process.pid)
            with contextlib.suppress(ProcessLookupError):
                self._process.kill()
            await self._process.wait()
        self._log.info("engine_process_exited", returncode=self._process.returncode)


__all__ = ["EngineLaunchError", "SubprocessChannel"]
