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
Sandbox operations exposed as submitted tasks.

``register_sandbox_tasks`` installs the worker side: each task wraps one
session manager operation and reports failures as error-shaped outputs
instead of raising. ``TaskSandboxClient`` is the caller side: it submits the
tasks, polls for their output and turns error-shaped outputs back into
exceptions.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import Any

from ..sandbox.base_sandbox import (
    CommandResult,
    CommandStartError,
    FileWriteRequest,
    SandboxError,
    SandboxExecutionError,
    SandboxStatus,
    SessionInfo,
)
from ..sandbox.config import SessionManagerConfig
from ..sandbox.session_manager import SandboxSessionManager
from .task_client import InProcessTaskClient, TaskClient, wait_for_task

logger = logging.getLogger(__name__)

CREATE_SANDBOX = "create-sandbox"
RUN_COMMAND = "run-command"
WRITE_FILES = "write-files"
GET_SANDBOX_URL = "get-sandbox-url"
GET_SANDBOX_STATUS = "get-sandbox-status"


def register_sandbox_tasks(client: InProcessTaskClient, manager: SandboxSessionManager) -> None:
    """Register the sandbox task functions on ``client``, all backed by ``manager``."""

    async def create_sandbox(payload: dict[str, Any]) -> dict[str, Any]:
        info = await manager.create_session(timeout_ms=payload.get("timeout"), exposed_ports=payload.get("ports"))
        return {"sandboxId": info.sandbox_id, "ports": info.exposed_ports, "timeout": info.timeout_ms}

    async def run_command(payload: dict[str, Any]) -> dict[str, Any]:
        sandbox_id = payload.get("sandboxId")
        command = payload.get("command")
        if not sandbox_id or not command:
            return {
                "cmdId": None,
                "error": "sandboxId and command are required. "
                "Example: { sandboxId: 'sbx_xxx', command: 'npm', args: ['install'] }",
            }
        try:
            result = await manager.run_command(
                sandbox_id,
                command,
                payload.get("args") or [],
                sudo=bool(payload.get("sudo")),
                wait=bool(payload.get("wait")),
            )
        except Exception as e:
            return {"cmdId": None, "error": str(e) or "Unknown error"}

        output: dict[str, Any] = {"cmdId": result.command_id}
        if result.exit_code is not None:
            output.update(exitCode=result.exit_code, stdout=result.stdout or "", stderr=result.stderr or "")
        return output

    async def write_files(payload: dict[str, Any]) -> dict[str, Any]:
        sandbox_id = payload.get("sandboxId")
        files = payload.get("files")
        if not sandbox_id:
            return {"success": False, "error": "sandboxId is required"}
        if not files or not isinstance(files, list):
            return {"success": False, "error": "files array is required and must not be empty"}
        try:
            await manager.write_files(sandbox_id, [FileWriteRequest(f["path"], f["content"]) for f in files])
        except Exception as e:
            return {"success": False, "error": str(e) or "Unknown error"}
        return {"success": True}

    async def get_sandbox_url(payload: dict[str, Any]) -> dict[str, Any]:
        sandbox_id = payload.get("sandboxId")
        port = payload.get("port")
        if not sandbox_id or not port:
            return {
                "url": None,
                "error": "sandboxId and port are required. "
                "Common ports: 3000 (Next.js), 8000 (Python), 5000 (Flask)",
            }
        try:
            return {"url": await manager.resolve_url(sandbox_id, port)}
        except Exception as e:
            return {"url": None, "error": str(e) or "Unknown error"}

    async def get_sandbox_status(payload: dict[str, Any]) -> dict[str, Any]:
        sandbox_id = payload.get("sandboxId")
        if not sandbox_id:
            return {"status": "unknown", "error": "sandboxId is required"}
        status = await manager.get_status(sandbox_id)
        return {"status": status.value}

    client.register(CREATE_SANDBOX, create_sandbox)
    client.register(RUN_COMMAND, run_command)
    client.register(WRITE_FILES, write_files)
    client.register(GET_SANDBOX_URL, get_sandbox_url)
    client.register(GET_SANDBOX_STATUS, get_sandbox_status)


class TaskSandboxClient:
    """
    Session manager operations performed through a task client.

    Mirrors the ``SandboxSessionManager`` signatures so agent tools can use
    either one.
    """

    def __init__(self, client: TaskClient, config: SessionManagerConfig | None = None):
        self._client = client
        self._config = config or SessionManagerConfig()

    async def _submit(self, task_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        run_id = await self._client.trigger(task_id, payload)
        logger.debug(f"Submitted {task_id} as {run_id}")
        return await wait_for_task(
            self._client,
            run_id,
            interval=self._config.task_poll_interval,
            max_attempts=self._config.task_poll_attempts,
        )

    async def create_session(
        self, timeout_ms: int | None = None, exposed_ports: Sequence[int] | None = None
    ) -> SessionInfo:
        output = await self._submit(
            CREATE_SANDBOX,
            {"timeout": timeout_ms or self._config.default_timeout_ms, "ports": list(exposed_ports or [])},
        )
        return SessionInfo(sandbox_id=output["sandboxId"], exposed_ports=output["ports"], timeout_ms=output["timeout"])

    async def run_command(
        self,
        sandbox_id: str,
        command: str,
        args: Sequence[str] = (),
        *,
        sudo: bool = False,
        wait: bool = False,
    ) -> CommandResult:
        output = await self._submit(
            RUN_COMMAND,
            {"sandboxId": sandbox_id, "command": command, "args": list(args), "sudo": sudo, "wait": wait},
        )
        error = output.get("error")
        command_id = output.get("cmdId")
        if error and not command_id and "exit status" not in error:
            raise SandboxExecutionError(error, sandbox_id)
        if not command_id:
            raise CommandStartError("Failed to start command - no command ID returned", sandbox_id)
        return CommandResult(
            command_id=str(command_id),
            exit_code=output.get("exitCode"),
            stdout=output.get("stdout"),
            stderr=output.get("stderr"),
        )

    async def write_files(self, sandbox_id: str, files: Iterable[FileWriteRequest]) -> None:
        payload = {
            "sandboxId": sandbox_id,
            "files": [{"path": f.path, "content": f.content.decode("utf-8")} for f in files],
        }
        output = await self._submit(WRITE_FILES, payload)
        if not output.get("success"):
            raise SandboxError(output.get("error") or "Failed to write files", sandbox_id)

    async def resolve_url(self, sandbox_id: str, port: int) -> str:
        output = await self._submit(GET_SANDBOX_URL, {"sandboxId": sandbox_id, "port": port})
        if output.get("error"):
            raise SandboxError(output["error"], sandbox_id)
        if not output.get("url"):
            raise SandboxError("Failed to get sandbox URL", sandbox_id)
        return output["url"]

    async def get_status(self, sandbox_id: str) -> SandboxStatus:
        output = await self._submit(GET_SANDBOX_STATUS, {"sandboxId": sandbox_id})
        if output.get("error"):
            raise SandboxError(output["error"], sandbox_id)
        return SandboxStatus(output["status"])
