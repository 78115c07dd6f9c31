# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DBU Adapter Base - Contract for database adapters and process streams.

Adapters drive the vendor CLI tools (pg_dump, mysqldump, mongodump, ...)
as subprocesses. A dump is read from the tool's stdout; a restore is
written to the tool's stdin. stderr is drained in the background so the
tool never blocks on a full pipe, and its tail is attached to errors.
"""

import asyncio
import contextlib
import os
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Sequence

import structlog

from dbu.config import BackupConfig, BackupType, DatabaseConfig, RestoreConfig
from dbu.exceptions import AdapterError
from dbu.manifest import Manifest
from dbu.transforms.base import CHUNK_SIZE

logger = structlog.get_logger()

# Bytes of stderr kept for error reports
STDERR_TAIL_BYTES = 4096


@dataclass(frozen=True)
class Capabilities:
    """Optional features an adapter supports."""

    incremental: bool = False
    differential: bool = False
    table_restore: bool = False
    collection_restore: bool = False

    def supports(self, backup_type: BackupType) -> bool:
        if backup_type == BackupType.INCREMENTAL:
            return self.incremental
        if backup_type == BackupType.DIFFERENTIAL:
            return self.differential
        return True


def require_binary(name: str) -> str:
    """Return the full path of name on PATH or raise AdapterError."""
    path = shutil.which(name)
    if path is None:
        raise AdapterError(
            f"Required tool {name!r} not found on PATH",
            details={"tool": name},
        )
    return path


def has_binary(name: str) -> bool:
    return shutil.which(name) is not None


def merge_env(extra: Dict[str, str]) -> Dict[str, str]:
    """Current environment with extra on top."""
    env = os.environ.copy()
    env.update(extra)
    return env


async def _drain(stream: asyncio.StreamReader | None) -> bytes:
    """Read stream to EOF, keeping only the tail."""
    tail = b""
    if stream is None:
        return tail
    while True:
        chunk = await stream.read(CHUNK_SIZE)
        if not chunk:
            return tail
        tail = (tail + chunk)[-STDERR_TAIL_BYTES:]


class _ProcessStream:
    """Shared lifecycle of a dump or restore subprocess."""

    def __init__(self, process: asyncio.subprocess.Process, tool: str) -> None:
        self.process = process
        self.tool = tool
        self._stderr_task = asyncio.ensure_future(_drain(process.stderr))

    async def wait(self) -> None:
        """Wait for exit; a non-zero status raises AdapterError."""
        returncode = await self.process.wait()
        stderr = await self._stderr_task
        if returncode != 0:
            raise AdapterError(
                f"{self.tool} exited with status {returncode}",
                details={
                    "tool": self.tool,
                    "returncode": returncode,
                    "stderr": stderr.decode("utf-8", "replace").strip(),
                },
            )
        logger.debug("tool_finished", tool=self.tool)

    async def aclose(self) -> None:
        """Terminate the process if it is still running."""
        if self.process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                self.process.kill()
            await self.process.wait()
        if not self._stderr_task.done():
            self._stderr_task.cancel()
        with contextlib.suppress(asyncio.CancelledError, Exception):
            await self._stderr_task


class ProcessDumpStream(_ProcessStream):
    """Reads a dump from a tool's stdout."""

    async def read(self, size: int = -1) -> bytes:
        assert self.process.stdout is not None
        return await self.process.stdout.read(size if size > 0 else CHUNK_SIZE)


class ProcessRestoreStream(_ProcessStream):
    """Writes a dump into a tool's stdin."""

    async def write(self, data: bytes) -> None:
        assert self.process.stdin is not None
        try:
            self.process.stdin.write(data)
            await self.process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise AdapterError(
                f"{self.tool} stopped reading input",
                details={"tool": self.tool},
            ) from e

    async def close(self) -> None:
        """Signal end of input to the tool."""
        assert self.process.stdin is not None
        if self.process.stdin.is_closing():
            return
        self.process.stdin.close()
        with contextlib.suppress(BrokenPipeError, ConnectionResetError):
            await self.process.stdin.wait_closed()


async def spawn_dump(argv: Sequence[str], env: Dict[str, str]) -> ProcessDumpStream:
    """Start a dump tool with stdout piped."""
    process = await _spawn(argv, env, stdin=asyncio.subprocess.DEVNULL, stdout=asyncio.subprocess.PIPE)
    return ProcessDumpStream(process, argv[0])


async def spawn_restore(argv: Sequence[str], env: Dict[str, str]) -> ProcessRestoreStream:
    """Start a restore tool with stdin piped."""
    process = await _spawn(argv, env, stdin=asyncio.subprocess.PIPE, stdout=asyncio.subprocess.DEVNULL)
    return ProcessRestoreStream(process, argv[0])


async def _spawn(argv: Sequence[str], env: Dict[str, str], stdin: int, stdout: int) -> asyncio.subprocess.Process:
    logger.info("tool_starting", tool=argv[0], args=_redact(argv[1:]))
    try:
        return await asyncio.create_subprocess_exec(
            *argv,
            stdin=stdin,
            stdout=stdout,
            stderr=asyncio.subprocess.PIPE,
            env=merge_env(env),
        )
    except OSError as e:
        raise AdapterError(f"Failed to start {argv[0]}: {e}", details={"tool": argv[0]}) from e


async def run_check(argv: Sequence[str], env: Dict[str, str], timeout: float = 30) -> None:
    """
    Run a connectivity probe such as pg_isready.

    Raises:
        AdapterError: If the probe cannot start, times out, or exits non-zero
    """
    stream = ProcessDumpStream(
        await _spawn(argv, env, stdin=asyncio.subprocess.DEVNULL, stdout=asyncio.subprocess.DEVNULL),
        argv[0],
    )
    try:
        async with asyncio.timeout(timeout):
            await stream.wait()
    except TimeoutError as e:
        raise AdapterError(f"{argv[0]} timed out after {timeout}s", details={"tool": argv[0]}) from e
    finally:
        await stream.aclose()


def _redact(args: Sequence[str]) -> List[str]:
    redacted: List[str] = []
    hide_next = False
    for arg in args:
        if hide_next:
            redacted.append("***")
            hide_next = False
        elif arg in ("--password", "-p"):
            redacted.append(arg)
            hide_next = True
        else:
            redacted.append(arg)
    return redacted


class Adapter(ABC):
    """A database the tool can dump and restore."""

    name: str = ""

    def __init__(self, allow_missing_tools: bool = False) -> None:
        self.allow_missing_tools = allow_missing_tools

    @abstractmethod
    def capabilities(self) -> Capabilities:
        """Features this adapter supports."""

    @abstractmethod
    async def validate(self, db: DatabaseConfig) -> None:
        """Check tools and connectivity; raise AdapterError on failure."""

    @abstractmethod
    async def dump(self, db: DatabaseConfig, backup: BackupConfig):
        """Start a dump and return a stream with read()/wait()/aclose()."""

    @abstractmethod
    async def restore(self, db: DatabaseConfig, restore: RestoreConfig, manifest: Manifest):
        """Start a restore and return a stream with write()/close()/wait()/aclose()."""

    def _require(self, *tools: str) -> None:
        if self.allow_missing_tools:
            return
        for tool in tools:
            require_binary(tool)

    def _require_full(self, backup: BackupConfig) -> None:
        if backup.type != BackupType.FULL:
            raise AdapterError(
                f"{self.name} does not support {backup.type.value} backups",
                details={"adapter": self.name, "backup_type": backup.type.value},
            )
