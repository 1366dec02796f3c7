# Copyright (c) Nex-AGI. All rights reserved.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Base types for remote sandbox sessions.

This module defines the data model shared by the session manager components
(sessions, command records, log lines), the typed handle interface that
provider adapters implement, and the sandbox error hierarchy.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

logger = logging.getLogger(__name__)

LogStreamName = Literal["stdout", "stderr"]


class SandboxStatus(Enum):
    """Status of a sandbox as reported by the status probe."""

    RUNNING = "running"
    STOPPED = "stopped"


# =============================================================================
# Errors
# =============================================================================


class SandboxError(Exception):
    """Base exception for sandbox-related errors."""

    def __init__(self, message: str, sandbox_id: str | None = None):
        self.message = message
        self.sandbox_id = sandbox_id
        super().__init__(message)

    def __str__(self) -> str:
        if self.sandbox_id:
            return f"[Sandbox {self.sandbox_id}] {self.message}"
        return self.message


class SandboxProviderUnavailableError(SandboxError):
    """Raised when the provider cannot be used at all (e.g. missing API key)."""

    pass


class SandboxUnavailableError(SandboxError):
    """Raised when the remote sandbox is paused or terminated.

    Callers should create a new sandbox instead of retrying.
    """

    pass


class SandboxConnectionError(SandboxError):
    """Raised on transient connection failures; the operation may be retried."""

    pass


class SandboxTimeoutError(SandboxError):
    """Exception raised when a sandbox operation times out."""

    pass


class SandboxExecutionError(SandboxError):
    """Exception raised when a command fails for reasons other than a non-zero exit."""

    def __init__(self, message: str, sandbox_id: str | None = None, command_id: str | None = None):
        super().__init__(message, sandbox_id)
        self.command_id = command_id


class CommandStartError(SandboxError):
    """Exception raised when a command could not be started."""

    pass


class CommandNotFoundError(SandboxError):
    """Exception raised when no command record exists for a command id."""

    def __init__(self, command_id: str):
        super().__init__(f"Command {command_id} not found")
        self.command_id = command_id


class SandboxFileError(SandboxError):
    """Exception raised for file operation errors."""

    def __init__(self, message: str, path: str, sandbox_id: str | None = None):
        super().__init__(message, sandbox_id)
        self.path = path


class SandboxFileWriteError(SandboxFileError):
    """Exception raised when writing a file into the sandbox fails."""

    pass


class SandboxFileReadError(SandboxFileError):
    """Exception raised when reading a file from the sandbox fails."""

    pass


class SandboxFileNotFoundError(SandboxFileReadError):
    """Exception raised when the requested file does not exist or cannot be read."""

    pass


# =============================================================================
# Command data
# =============================================================================


@dataclass
class ExecOutcome:
    """Provider-neutral outcome of a finished command."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""
    error: str | None = None


class CommandOutput:
    """Captured output of one stream of a command.

    The buffer grows while the command runs and is closed once it finishes.
    Readers can either take the accumulated ``text`` or follow new chunks as
    they arrive with ``iter_chunks()``.
    """

    def __init__(self) -> None:
        self._chunks: list[str] = []
        self._closed = False
        self._error: BaseException | None = None
        self._changed = asyncio.Event()

    @classmethod
    def finished(cls, text: str) -> CommandOutput:
        output = cls()
        output.close(text)
        return output

    @property
    def text(self) -> str:
        return "".join(self._chunks)

    @property
    def closed(self) -> bool:
        return self._closed

    def append(self, chunk: str) -> None:
        if self._closed:
            logger.debug("Dropping output chunk received after close")
            return
        if chunk:
            self._chunks.append(chunk)
            self._changed.set()

    def close(self, final_text: str | None = None, error: BaseException | None = None) -> None:
        """Close the buffer.

        ``final_text`` is the complete output reported by the provider; any part
        of it that was not already streamed in is appended before closing.
        """
        if self._closed:
            return
        if final_text:
            current = self.text
            if final_text.startswith(current) and len(final_text) > len(current):
                self._chunks.append(final_text[len(current) :])
        self._error = error
        self._closed = True
        self._changed.set()

    async def iter_chunks(self) -> AsyncIterator[str]:
        index = 0
        while True:
            while index < len(self._chunks):
                yield self._chunks[index]
                index += 1
            if self._closed:
                if self._error is not None:
                    raise self._error
                return
            self._changed.clear()
            await self._changed.wait()


@dataclass
class CommandRecord:
    """
    Stored record of a dispatched command, retrievable later by command id.

    Attributes:
        command_id: Provider process id or a synthesized ``cmd_<ms>_<rand>`` id
        sandbox_id: Sandbox the command runs in
        command: Argument vector as dispatched
        stdout: Captured standard output (live while running)
        stderr: Captured standard error (live while running)
        exit_code: Exit code once the command has completed
        error_text: Provider diagnostic, if any
        started_at: Dispatch time (epoch seconds)
        finished_at: Completion time (epoch seconds), None while running
    """

    command_id: str
    sandbox_id: str
    command: list[str]
    stdout: CommandOutput = field(default_factory=CommandOutput)
    stderr: CommandOutput = field(default_factory=CommandOutput)
    exit_code: int | None = None
    error_text: str | None = None
    started_at: float = field(default_factory=time.time)
    finished_at: float | None = None

    @property
    def running(self) -> bool:
        return self.finished_at is None

    def complete(self, outcome: ExecOutcome) -> None:
        """Record exit information. Allowed exactly once."""
        self._ensure_running()
        self.exit_code = outcome.exit_code
        self.error_text = outcome.error
        self.finished_at = time.time()
        self.stdout.close(outcome.stdout)
        self.stderr.close(outcome.stderr)

    def fail(self, error: BaseException) -> None:
        """Record that the command stopped without reporting an exit code."""
        self._ensure_running()
        self.error_text = str(error)
        self.finished_at = time.time()
        self.stdout.close(error=error)
        self.stderr.close(error=error)

    def _ensure_running(self) -> None:
        if self.finished_at is not None:
            raise SandboxError(f"Command {self.command_id} already has exit information", self.sandbox_id)


@dataclass
class CommandResult:
    """
    Result returned to the caller of ``run_command``.

    Only ``command_id`` is set for commands started without waiting.
    """

    command_id: str
    exit_code: int | None = None
    stdout: str | None = None
    stderr: str | None = None
    error_text: str | None = None


@dataclass
class LogLine:
    """One line of captured command output."""

    data: str
    stream: LogStreamName
    timestamp: int = field(default_factory=lambda: int(time.time() * 1000))

    def to_dict(self) -> dict[str, Any]:
        return {"data": self.data, "stream": self.stream, "timestamp": self.timestamp}


@dataclass
class FileWriteRequest:
    """A file to write into the sandbox."""

    path: str
    content: bytes

    def __post_init__(self):
        if isinstance(self.content, str):
            self.content = self.content.encode("utf-8")


# =============================================================================
# Handles
# =============================================================================


class SandboxProcess(ABC):
    """A command started in the background."""

    pid: int | None = None

    @abstractmethod
    async def wait(self) -> ExecOutcome:
        """Wait for the process to finish and return its outcome."""
        pass


class SandboxHandle(ABC):
    """
    Live connection to one remote sandbox.

    The capability set of a handle is fixed when it is opened: providers return
    a ``NativeFilesystemHandle`` when the sandbox exposes a filesystem API and a
    ``CommandOnlyHandle`` otherwise. A handle is invalidated when its registry
    entry is replaced or closed; calls made through it afterwards raise
    ``SandboxUnavailableError``.
    """

    def __init__(self, sandbox_id: str):
        self.sandbox_id = sandbox_id
        self._invalidated_reason: str | None = None

    @property
    def usable(self) -> bool:
        return self._invalidated_reason is None and self.has_commands()

    def invalidate(self, reason: str) -> None:
        if self._invalidated_reason is None:
            self._invalidated_reason = reason

    def _ensure_usable(self) -> None:
        if self._invalidated_reason is not None:
            raise SandboxUnavailableError(f"Session handle is no longer valid: {self._invalidated_reason}", self.sandbox_id)

    async def exec(self, argv: Sequence[str]) -> ExecOutcome | None:
        """Run an argument vector to completion."""
        self._ensure_usable()
        return await self._exec(list(argv))

    async def exec_shell(self, line: str) -> ExecOutcome | None:
        """Run a pre-built shell line to completion."""
        self._ensure_usable()
        return await self._exec_shell(line)

    async def spawn(
        self,
        argv: Sequence[str],
        on_stdout: Callable[[str], None],
        on_stderr: Callable[[str], None],
    ) -> SandboxProcess | None:
        """Start an argument vector in the background."""
        self._ensure_usable()
        return await self._spawn(list(argv), on_stdout, on_stderr)

    def hostname(self, port: int) -> str:
        self._ensure_usable()
        return self._hostname(port)

    async def kill(self) -> None:
        await self._kill()

    @abstractmethod
    def has_commands(self) -> bool:
        pass

    @abstractmethod
    async def _exec(self, argv: list[str]) -> ExecOutcome | None:
        pass

    @abstractmethod
    async def _exec_shell(self, line: str) -> ExecOutcome | None:
        pass

    @abstractmethod
    async def _spawn(
        self,
        argv: list[str],
        on_stdout: Callable[[str], None],
        on_stderr: Callable[[str], None],
    ) -> SandboxProcess | None:
        pass

    @abstractmethod
    def _hostname(self, port: int) -> str:
        pass

    @abstractmethod
    async def _kill(self) -> None:
        pass

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} id={self.sandbox_id} usable={self.usable}>"


class NativeFilesystemHandle(SandboxHandle):
    """Handle to a sandbox whose filesystem API is available."""

    async def write_file(self, path: str, content: bytes | str) -> None:
        self._ensure_usable()
        await self._write_file(path, content)

    async def read_file(self, path: str) -> AsyncIterator[bytes]:
        self._ensure_usable()
        return await self._read_file(path)

    @abstractmethod
    async def _write_file(self, path: str, content: bytes | str) -> None:
        pass

    @abstractmethod
    async def _read_file(self, path: str) -> AsyncIterator[bytes]:
        pass


class CommandOnlyHandle(SandboxHandle):
    """Handle to a sandbox that only exposes command execution.

    File transfer goes through shell commands for these sandboxes.
    """

    pass


# =============================================================================
# Sessions and providers
# =============================================================================


@dataclass
class SandboxSession:
    """
    A live session registered for one sandbox id.

    Attributes:
        sandbox_id: Identifier assigned by the provider
        handle: Typed live handle, owned by this session
        exposed_ports: Ports the caller asked to be reachable (informational)
        ttl_ms: Lifetime before the scheduled auto-close
        created_at: Creation time (epoch seconds)
    """

    sandbox_id: str
    handle: SandboxHandle = field(repr=False)
    exposed_ports: list[int] = field(default_factory=list)
    ttl_ms: int = 600_000
    created_at: float = field(default_factory=time.time)


@dataclass
class SessionInfo:
    """Public description of a created session."""

    sandbox_id: str
    exposed_ports: list[int]
    timeout_ms: int


class SandboxProvider[RawT](ABC):
    """
    Adapter around a sandbox vendor SDK.

    ``RawT`` is the vendor's sandbox object. The connector only handles raw
    objects long enough to decide which typed handle to open.
    """

    domain: str = ""

    @abstractmethod
    def has_credentials(self) -> bool:
        pass

    @abstractmethod
    async def create(self, *, timeout_ms: int) -> RawT:
        """Allocate a new sandbox that the vendor tears down after ``timeout_ms``."""
        pass

    @abstractmethod
    async def connect(self, sandbox_id: str) -> RawT:
        """Connect to an existing sandbox (resuming it if the vendor supports that)."""
        pass

    @abstractmethod
    def sandbox_id_of(self, raw: RawT) -> str:
        pass

    @abstractmethod
    def has_commands(self, raw: RawT) -> bool:
        pass

    @abstractmethod
    def has_filesystem(self, raw: RawT) -> bool:
        pass

    @abstractmethod
    def open_handle(self, raw: RawT, *, native_filesystem: bool) -> SandboxHandle:
        pass
