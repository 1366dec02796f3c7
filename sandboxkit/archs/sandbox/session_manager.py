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
Sandbox session manager.

Single entry point for agent tools and the CLI. Composes the registry,
connector, command executor, file transfer and log streamer around one
provider.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Iterable, Sequence
from typing import Any

from .base_sandbox import (
    CommandNotFoundError,
    CommandRecord,
    CommandResult,
    FileWriteRequest,
    LogLine,
    SandboxProvider,
    SandboxSession,
    SandboxStatus,
    SessionInfo,
)
from .command_executor import CommandExecutor, CommandStore
from .config import SessionManagerConfig
from .connector import CallLater, Connector
from .file_transfer import FileTransfer
from .log_streamer import LogStreamer
from .registry import SessionRegistry

logger = logging.getLogger(__name__)


def validate_port(port: Any) -> int:
    if isinstance(port, bool) or not isinstance(port, int):
        raise ValueError(f"port must be an integer, got {port!r}")
    if not 1 <= port <= 65535:
        raise ValueError(f"port must be between 1 and 65535, got {port}")
    return port


class SandboxSessionManager:
    """
    Facade over the sandbox session components.

    Usage:
        manager = SandboxSessionManager(SessionManagerConfig.from_env())
        info = await manager.create_session(exposed_ports=[3000])
        result = await manager.run_command(info.sandbox_id, "ls", ["-la"], wait=True)
        url = await manager.resolve_url(info.sandbox_id, 3000)
    """

    def __init__(
        self,
        config: SessionManagerConfig | None = None,
        provider: SandboxProvider[Any] | None = None,
        registry: SessionRegistry | None = None,
        command_store: CommandStore | None = None,
        call_later: CallLater | None = None,
    ):
        self.config = config or SessionManagerConfig()
        if provider is None:
            from .e2b_sandbox import E2BSandboxProvider

            provider = E2BSandboxProvider(self.config)
        self.provider = provider
        self.registry = registry if registry is not None else SessionRegistry()
        self.command_store = command_store if command_store is not None else CommandStore()

        self._connector = Connector(provider, self.registry, self.config, call_later=call_later)
        self._executor = CommandExecutor(self.command_store)
        self._files = FileTransfer(self.config)
        self._logs = LogStreamer(self.command_store)

    def _validate_create(self, timeout_ms: int | None, exposed_ports: Sequence[int] | None) -> tuple[int, list[int]]:
        timeout = self.config.default_timeout_ms if timeout_ms is None else timeout_ms
        if isinstance(timeout, bool) or not isinstance(timeout, int):
            raise ValueError(f"timeout_ms must be an integer, got {timeout!r}")
        if not self.config.min_timeout_ms <= timeout <= self.config.max_timeout_ms:
            raise ValueError(
                f"timeout_ms must be between {self.config.min_timeout_ms} and {self.config.max_timeout_ms}, got {timeout}"
            )
        ports = list(exposed_ports or [])
        if len(ports) > self.config.max_exposed_ports:
            raise ValueError(f"At most {self.config.max_exposed_ports} ports can be exposed, got {len(ports)}")
        return timeout, [validate_port(port) for port in ports]

    async def create_session(
        self, timeout_ms: int | None = None, exposed_ports: Sequence[int] | None = None
    ) -> SessionInfo:
        """Create a new sandbox.

        Args:
            timeout_ms: Sandbox lifetime, between 10 and 45 minutes (default 10)
            exposed_ports: Up to two ports to expose

        Raises:
            ValueError: If the arguments are out of range
            SandboxProviderUnavailableError: If no API key is configured
        """
        timeout, ports = self._validate_create(timeout_ms, exposed_ports)
        session = await self._connector.create(ttl_ms=timeout, exposed_ports=ports)
        return SessionInfo(sandbox_id=session.sandbox_id, exposed_ports=session.exposed_ports, timeout_ms=session.ttl_ms)

    async def ensure_connected(self, sandbox_id: str) -> SandboxSession:
        if not sandbox_id:
            raise ValueError("sandbox_id is required")
        return await self._connector.ensure_connected(sandbox_id)

    async def run_command(
        self,
        sandbox_id: str,
        command: str,
        args: Sequence[str] = (),
        *,
        sudo: bool = False,
        wait: bool = False,
    ) -> CommandResult:
        if not command:
            raise ValueError("command is required")
        session = await self.ensure_connected(sandbox_id)
        return await self._executor.run(session, command, args, sudo=sudo, wait=wait)

    async def write_files(self, sandbox_id: str, files: Iterable[FileWriteRequest]) -> None:
        session = await self.ensure_connected(sandbox_id)
        await self._files.write(session, files)

    async def read_file(self, sandbox_id: str, path: str) -> AsyncIterator[bytes]:
        if not path:
            raise ValueError("path is required")
        session = await self.ensure_connected(sandbox_id)
        return await self._files.read(session, path)

    def stream_command_logs(self, command_id: str) -> AsyncIterator[LogLine]:
        return self._logs.stream_logs(command_id)

    def get_command(self, command_id: str) -> CommandRecord:
        record = self.command_store.get(command_id)
        if record is None:
            raise CommandNotFoundError(command_id)
        return record

    async def resolve_url(self, sandbox_id: str, port: int) -> str:
        """Public HTTPS URL of a service listening on ``port`` in the sandbox."""
        if not sandbox_id:
            raise ValueError("sandbox_id is required")
        validate_port(port)
        session = await self.ensure_connected(sandbox_id)
        try:
            return f"https://{session.handle.hostname(port)}"
        except Exception as e:
            logger.debug(f"[{sandbox_id}] hostname lookup failed ({e}), using default domain")
            return f"https://{sandbox_id}-{port}.{self.config.domain}"

    async def get_status(self, sandbox_id: str) -> SandboxStatus:
        try:
            await self.ensure_connected(sandbox_id)
        except Exception as e:
            logger.debug(f"Sandbox {sandbox_id} reported as stopped: {e}")
            return SandboxStatus.STOPPED
        return SandboxStatus.RUNNING

    async def close_session(self, sandbox_id: str, kill: bool = False) -> None:
        await self._connector.close(sandbox_id, kill=kill)
