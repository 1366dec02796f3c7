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
E2B provider adapter.

Wraps ``e2b.AsyncSandbox`` (https://e2b.dev) objects into the typed handles used
by the session manager. Whether a sandbox gets a native-filesystem handle or a
command-only handle is decided once, when the handle is opened.
"""

# pyright: reportUnknownMemberType=false
# pyright: reportUnknownVariableType=false
# pyright: reportUnknownArgumentType=false

from __future__ import annotations

import logging
import shlex
from collections.abc import AsyncIterator, Callable
from typing import Any, override

from e2b import AsyncSandbox
from e2b.exceptions import NotFoundException

from .base_sandbox import (
    CommandOnlyHandle,
    ExecOutcome,
    NativeFilesystemHandle,
    SandboxFileNotFoundError,
    SandboxFileReadError,
    SandboxHandle,
    SandboxProcess,
    SandboxProvider,
)
from .config import SessionManagerConfig

logger = logging.getLogger(__name__)


def _to_outcome(result: Any) -> ExecOutcome | None:
    if result is None:
        return None
    return ExecOutcome(
        exit_code=getattr(result, "exit_code", 0) or 0,
        stdout=getattr(result, "stdout", "") or "",
        stderr=getattr(result, "stderr", "") or "",
        error=getattr(result, "error", None),
    )


class E2BProcess(SandboxProcess):
    """Background command backed by an e2b ``AsyncCommandHandle``."""

    def __init__(self, handle: Any):
        self._handle = handle
        self.pid = getattr(handle, "pid", None)

    @override
    async def wait(self) -> ExecOutcome:
        result = await self._handle.wait()
        outcome = _to_outcome(result)
        if outcome is None:
            return ExecOutcome(exit_code=0)
        return outcome


class _E2BHandleMixin(SandboxHandle):
    """Command, hostname and lifecycle operations shared by both E2B handle variants."""

    def __init__(self, raw: AsyncSandbox, *, command_timeout: float, background_command_timeout: float):
        super().__init__(raw.sandbox_id)
        self._raw = raw
        self._command_timeout = command_timeout
        self._background_command_timeout = background_command_timeout

    @property
    def raw(self) -> AsyncSandbox:
        return self._raw

    @override
    def has_commands(self) -> bool:
        return getattr(self._raw, "commands", None) is not None

    @override
    async def _exec(self, argv: list[str]) -> ExecOutcome | None:
        return await self._exec_shell(shlex.join(argv))

    @override
    async def _exec_shell(self, line: str) -> ExecOutcome | None:
        logger.debug(f"[{self.sandbox_id}] run: {line[:200]}")
        result = await self._raw.commands.run(line, timeout=self._command_timeout)
        return _to_outcome(result)

    @override
    async def _spawn(
        self,
        argv: list[str],
        on_stdout: Callable[[str], None],
        on_stderr: Callable[[str], None],
    ) -> SandboxProcess | None:
        line = shlex.join(argv)
        logger.debug(f"[{self.sandbox_id}] start: {line[:200]}")
        handle = await self._raw.commands.run(
            line,
            background=True,
            timeout=self._background_command_timeout,
            on_stdout=lambda chunk: on_stdout(str(chunk)),
            on_stderr=lambda chunk: on_stderr(str(chunk)),
        )
        if handle is None:
            return None
        return E2BProcess(handle)

    @override
    def _hostname(self, port: int) -> str:
        return self._raw.get_host(port)

    @override
    async def _kill(self) -> None:
        await self._raw.kill()


class E2BCommandOnlyHandle(_E2BHandleMixin, CommandOnlyHandle):
    """E2B sandbox reached without a usable filesystem API."""

    pass


class E2BNativeFilesystemHandle(_E2BHandleMixin, NativeFilesystemHandle):
    """E2B sandbox with the ``files`` API available."""

    @override
    async def _write_file(self, path: str, content: bytes | str) -> None:
        await self._raw.files.write(path, content)

    @override
    async def _read_file(self, path: str) -> AsyncIterator[bytes]:
        try:
            return await self._raw.files.read(path, format="stream")
        except NotFoundException as e:
            raise SandboxFileNotFoundError(f"File not found: {path}", path, self.sandbox_id) from e
        except Exception as e:
            raise SandboxFileReadError(f"Failed to read file {path}: {e}", path, self.sandbox_id) from e


class E2BSandboxProvider(SandboxProvider[AsyncSandbox]):
    """
    Provider backed by the E2B async SDK.

    Credentials, template and timeouts come from ``SessionManagerConfig``.
    """

    def __init__(self, config: SessionManagerConfig):
        self._config = config
        self.domain = config.domain

    def _api_params(self) -> dict[str, Any]:
        params: dict[str, Any] = {"api_key": self._config.api_key}
        if self._config.api_url:
            params["api_url"] = self._config.api_url
        return params

    @override
    def has_credentials(self) -> bool:
        return bool(self._config.api_key)

    @override
    async def create(self, *, timeout_ms: int) -> AsyncSandbox:
        logger.info(f"Creating E2B sandbox with template: {self._config.template}")
        return await AsyncSandbox.create(
            template=self._config.template,
            timeout=max(1, timeout_ms // 1000),
            **self._api_params(),
        )

    @override
    async def connect(self, sandbox_id: str) -> AsyncSandbox:
        logger.info(f"Connecting to E2B sandbox: {sandbox_id}")
        return await AsyncSandbox.connect(sandbox_id, **self._api_params())

    @override
    def sandbox_id_of(self, raw: AsyncSandbox) -> str:
        return raw.sandbox_id

    @override
    def has_commands(self, raw: AsyncSandbox) -> bool:
        return getattr(raw, "commands", None) is not None

    @override
    def has_filesystem(self, raw: AsyncSandbox) -> bool:
        return getattr(raw, "files", None) is not None

    @override
    def open_handle(self, raw: AsyncSandbox, *, native_filesystem: bool) -> SandboxHandle:
        handle_cls = E2BNativeFilesystemHandle if native_filesystem else E2BCommandOnlyHandle
        return handle_cls(
            raw,
            command_timeout=self._config.command_timeout,
            background_command_timeout=self._config.background_command_timeout,
        )
