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
Connection lifecycle for sandbox sessions.

The connector is the only component that mutates the session registry. It
creates sandboxes, reconnects to existing ones by id (retrying once when the
provider reports the sandbox as paused or not yet available), and schedules the
one-shot auto-close of every session it registers.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from typing import Any

from .base_sandbox import (
    SandboxConnectionError,
    SandboxError,
    SandboxProvider,
    SandboxProviderUnavailableError,
    SandboxSession,
    SandboxTimeoutError,
    SandboxUnavailableError,
)
from .config import SessionManagerConfig
from .registry import SessionRegistry
from .utils import poll_until

logger = logging.getLogger(__name__)

CallLater = Callable[[float, Callable[[], None]], Any]

_UNAVAILABLE_MARKERS = ("paused", "not found", "not ready")


def is_unavailable_error(error: BaseException) -> bool:
    """Whether ``error`` says the sandbox is paused, gone or still starting."""
    if isinstance(error, SandboxUnavailableError):
        return True
    message = str(error).lower()
    return any(marker in message for marker in _UNAVAILABLE_MARKERS)


def _default_call_later(delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
    return asyncio.get_running_loop().call_later(delay, callback)


class Connector:
    """
    Creates and (re)connects sandbox sessions.

    Concurrent ``ensure_connected`` calls for the same id share one connect
    attempt; calls for different ids never wait on each other.
    """

    def __init__(
        self,
        provider: SandboxProvider[Any],
        registry: SessionRegistry,
        config: SessionManagerConfig,
        call_later: CallLater | None = None,
    ):
        self._provider = provider
        self._registry = registry
        self._config = config
        self._call_later = call_later or _default_call_later
        self._pending: dict[str, asyncio.Task[SandboxSession]] = {}
        self._timers: dict[str, Any] = {}

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    def _require_credentials(self) -> None:
        if not self._provider.has_credentials():
            raise SandboxProviderUnavailableError("E2B_API_KEY environment variable is not set")

    async def create(self, ttl_ms: int | None = None, exposed_ports: Sequence[int] | None = None) -> SandboxSession:
        """
        Allocate a new sandbox and register it.

        Args:
            ttl_ms: Lifetime in milliseconds, defaults to ``config.default_timeout_ms``
            exposed_ports: Ports the caller wants reachable (informational)

        Raises:
            SandboxProviderUnavailableError: If no API key is configured
            SandboxConnectionError: If the provider fails to allocate the sandbox
        """
        self._require_credentials()
        ttl = ttl_ms if ttl_ms is not None else self._config.default_timeout_ms

        try:
            raw = await self._provider.create(timeout_ms=ttl)
        except SandboxError:
            raise
        except Exception as e:
            raise SandboxConnectionError(f"Failed to create sandbox: {e}") from e

        sandbox_id = self._provider.sandbox_id_of(raw)
        handle = self._provider.open_handle(raw, native_filesystem=self._provider.has_filesystem(raw))
        session = SandboxSession(
            sandbox_id=sandbox_id,
            handle=handle,
            exposed_ports=list(exposed_ports or []),
            ttl_ms=ttl,
        )
        self._register(session)
        logger.info(f"Created sandbox {sandbox_id} (ttl={ttl}ms, ports={session.exposed_ports})")
        return session

    async def ensure_connected(self, sandbox_id: str) -> SandboxSession:
        """
        Return a usable session for ``sandbox_id``, connecting if necessary.

        Raises:
            SandboxProviderUnavailableError: If no API key is configured
            SandboxUnavailableError: If the sandbox is paused or terminated
            SandboxConnectionError: On any other connection failure
        """
        session = self._registry.get(sandbox_id)
        if session is not None:
            if session.handle.usable:
                return session
            logger.warning(f"Evicting unusable cached handle for sandbox {sandbox_id}")
            self._evict(sandbox_id, session, "evicted as unusable")

        pending = self._pending.get(sandbox_id)
        if pending is None:
            pending = asyncio.create_task(self._connect(sandbox_id))
            self._pending[sandbox_id] = pending
            pending.add_done_callback(lambda _: self._pending.pop(sandbox_id, None))
        # One caller being cancelled must not cancel the connect shared with others.
        return await asyncio.shield(pending)

    async def _connect(self, sandbox_id: str) -> SandboxSession:
        self._require_credentials()
        raw = await self._connect_with_retry(sandbox_id)

        if not self._provider.has_commands(raw):
            raise SandboxConnectionError(
                "Failed to connect - commands API not available. The sandbox may have been closed.",
                sandbox_id,
            )

        native_filesystem = await self._wait_for_filesystem(raw, sandbox_id)
        session = SandboxSession(
            sandbox_id=sandbox_id,
            handle=self._provider.open_handle(raw, native_filesystem=native_filesystem),
            ttl_ms=self._config.default_timeout_ms,
        )
        self._register(session)
        logger.info(f"Connected to sandbox {sandbox_id} (native filesystem: {native_filesystem})")
        return session

    async def _connect_with_retry(self, sandbox_id: str) -> Any:
        try:
            return await self._provider.connect(sandbox_id)
        except Exception as e:
            if not is_unavailable_error(e):
                raise SandboxConnectionError(f"Failed to connect: {e}", sandbox_id) from e
            logger.warning(
                f"Sandbox {sandbox_id} is not available ({e}), retrying in {self._config.reconnect_backoff}s"
            )

        await asyncio.sleep(self._config.reconnect_backoff)

        try:
            return await self._provider.connect(sandbox_id)
        except Exception as e:
            if is_unavailable_error(e):
                raise SandboxUnavailableError(
                    "Sandbox is paused or has been terminated. Please create a new sandbox.",
                    sandbox_id,
                ) from e
            raise SandboxConnectionError(f"Failed to connect: {e}", sandbox_id) from e

    async def _wait_for_filesystem(self, raw: Any, sandbox_id: str) -> bool:
        async def probe() -> bool | None:
            return True if self._provider.has_filesystem(raw) else None

        try:
            return await poll_until(
                probe,
                interval=self._config.fs_ready_interval,
                max_attempts=self._config.fs_ready_attempts,
                description=f"filesystem API of sandbox {sandbox_id}",
            )
        except SandboxTimeoutError:
            logger.warning(f"Filesystem API of sandbox {sandbox_id} not available, using command fallback")
            return False

    def _register(self, session: SandboxSession) -> None:
        self._cancel_timer(session.sandbox_id)
        self._registry.put(session)
        self._timers[session.sandbox_id] = self._call_later(session.ttl_ms / 1000, lambda: self._expire(session))

    def _expire(self, session: SandboxSession) -> None:
        if self._registry.get(session.sandbox_id) is not session:
            return
        self._timers.pop(session.sandbox_id, None)
        self._registry.remove(session.sandbox_id)
        logger.info(f"Session for sandbox {session.sandbox_id} expired after {session.ttl_ms}ms")

    def _cancel_timer(self, sandbox_id: str) -> None:
        timer = self._timers.pop(sandbox_id, None)
        if timer is not None and hasattr(timer, "cancel"):
            timer.cancel()

    def _evict(self, sandbox_id: str, session: SandboxSession, reason: str) -> None:
        self._cancel_timer(sandbox_id)
        if self._registry.get(sandbox_id) is session:
            self._registry.remove(sandbox_id)
        session.handle.invalidate(reason)

    async def close(self, sandbox_id: str, kill: bool = False) -> None:
        """
        Forget the session for ``sandbox_id``.

        With ``kill=True`` the remote sandbox is also terminated; failures to do
        so are logged, not raised.
        """
        session = self._registry.get(sandbox_id)
        if session is None:
            self._cancel_timer(sandbox_id)
            logger.debug(f"No session registered for sandbox {sandbox_id}")
            return

        self._evict(sandbox_id, session, "session closed")
        logger.info(f"Closed session for sandbox {sandbox_id}")

        if kill:
            try:
                await session.handle.kill()
                logger.info(f"Killed sandbox {sandbox_id}")
            except Exception as e:
                logger.error(f"Failed to kill sandbox {sandbox_id}: {e}")
