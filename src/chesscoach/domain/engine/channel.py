from __future__ import annotations

from typing import Protocol


class LineChannel(Protocol):
    """Duplex line transport to a search engine.

    Implementations may wrap a child process, a socket or an in-process
    worker. ``send_line`` buffers without waiting; ``read_line`` returns
    ``None`` once the far side is gone.
    """

    def send_line(self, line: str) -> None:
        """Queue one command line for the engine."""

    async def read_line(self) -> str | None:
        """Wait for the next engine line, without its terminator."""

    async def close(self) -> None:
        """Release the transport; further reads return ``None``."""


__all__ = ["LineChannel"]
