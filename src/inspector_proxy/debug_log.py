"""Append-only transport debug log for inspector-proxy.

Each logger writes newline-delimited JSON to ``{base}.{role}.{pid}`` so
concurrent proxy processes, and the two roles within one process, never
interleave writes in the same file. Logging is strictly best-effort: any
I/O failure is reported once on the diagnostic stream and the logger
turns itself into a no-op.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from datetime import UTC, datetime
from pathlib import Path

import anyio
import anyio.to_thread
from anyio import AsyncFile
from mcp.types import JSONRPCMessage

from inspector_proxy.correlation import to_dict
from inspector_proxy.models import DebugLogEntry, LogDirection

logger = logging.getLogger(__name__)


def log_file_path(base_path: str | os.PathLike[str], role: str, pid: int | None = None) -> Path:
    """Path of the log file for ``role`` in process ``pid`` (default: this one)."""
    return Path(f"{os.fspath(base_path)}.{role}.{os.getpid() if pid is None else pid}")


class DebugLogger:
    """Writes one record per transport event.

    Args:
        base_path: Configured base path; role and pid are appended.
        role: Role label recorded in every entry and in the file name.

    Example:
        >>> debug = DebugLogger("/tmp/mcp-debug", role="server")
        >>> await debug.log_message(LogDirection.SEND, message)
        >>> await debug.log_close()
    """

    def __init__(self, base_path: str | os.PathLike[str], role: str = "proxy") -> None:
        self.role = role
        self.path = log_file_path(base_path, role)
        self._file: AsyncFile[str] | None = None
        self._initialized = False
        self._lock = asyncio.Lock()

    @property
    def active(self) -> bool:
        """True while the log file is open for writing."""
        return self._file is not None

    async def initialize(self) -> None:
        """Create parent directories and open the log file for appending.

        Runs at most once. On failure the error is reported and the logger
        stays inactive for the rest of its life.
        """
        async with self._lock:
            if self._initialized:
                return
            self._initialized = True
            try:
                await anyio.Path(self.path.parent).mkdir(parents=True, exist_ok=True)
                self._file = await anyio.open_file(self.path, "a", encoding="utf-8")
            except Exception as exc:
                logger.error("Failed to open debug log %s: %s", self.path, exc)
                self._file = None

    async def log_message(self, direction: LogDirection, message: JSONRPCMessage) -> None:
        """Record a sent or received message and sync it to disk."""
        await self._write(self._entry(direction, message=to_dict(message)), sync=True)

    async def log_error(self, error: BaseException) -> None:
        """Record an error reported by the transport."""
        await self._write(self._entry(LogDirection.ERROR, error=str(error) or repr(error)))

    async def log_close(self) -> None:
        """Record the close and release the file. Later calls are no-ops."""
        await self._write(self._entry(LogDirection.CLOSE), release=True)

    def _entry(self, direction: LogDirection, **fields: object) -> DebugLogEntry:
        return DebugLogEntry(
            hrtime=str(time.monotonic_ns()),
            time=datetime.now(tz=UTC).isoformat(),
            pid=os.getpid(),
            role=self.role,
            direction=direction,
            **fields,  # type: ignore[arg-type]
        )

    async def _write(self, entry: DebugLogEntry, sync: bool = False, release: bool = False) -> None:
        """Append ``entry`` as one line; serialized so lines never interleave.

        Args:
            entry: The record to write.
            sync: fsync after writing.
            release: Close the file afterwards.
        """
        async with self._lock:
            file = self._file
            if file is None:
                return
            try:
                await file.write(entry.model_dump_json(exclude_none=True) + "\n")
                await file.flush()
                if sync:
                    await anyio.to_thread.run_sync(os.fsync, file.wrapped.fileno())
            except Exception as exc:
                logger.error("Debug log %s disabled after write failure: %s", self.path, exc)
                self._file = None
                release = True
            if release:
                self._file = None
                try:
                    await file.aclose()
                except Exception as exc:
                    logger.debug("Failed to close debug log %s: %s", self.path, exc)
