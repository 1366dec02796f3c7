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
Task submission client.

In deployments where sandbox operations run on workers, callers submit a
named task with a JSON-like payload, receive a run id, and poll the run until
it reaches a terminal status. ``InProcessTaskClient`` runs the registered task
functions as asyncio tasks in the current process.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field
from ulid import ULID

from ..sandbox.base_sandbox import SandboxError
from ..sandbox.utils import poll_until

logger = logging.getLogger(__name__)

TaskFunction = Callable[[dict[str, Any]], Awaitable[Any]]


class TaskStatus(Enum):
    QUEUED = "QUEUED"
    EXECUTING = "EXECUTING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CRASHED = "CRASHED"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CRASHED)


class TaskRun(BaseModel):
    """Snapshot of one task run."""

    id: str
    task_id: str
    status: TaskStatus = TaskStatus.QUEUED
    output: Any = None
    error: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)


class TaskFailedError(SandboxError):
    """Raised when a task run ends in FAILED, or completes without output."""

    def __init__(self, message: str, run_id: str | None = None):
        super().__init__(message)
        self.run_id = run_id


class TaskCrashedError(TaskFailedError):
    """Raised when a task run ends in CRASHED."""

    pass


def generate_run_id() -> str:
    """Generate a run ID with 'run_' prefix.

    Returns:
        Run ID in format: run_{ULID}
        Example: run_01HQZX3Y4K5M6N7P8Q9R0S1T2V
    """
    return f"run_{ULID()}"


class TaskClient(ABC):
    """Submits named tasks and reports on their runs."""

    @abstractmethod
    async def trigger(self, task_id: str, payload: dict[str, Any] | None = None) -> str:
        """Submit a run of ``task_id`` and return its run id."""
        pass

    @abstractmethod
    async def retrieve(self, run_id: str) -> TaskRun:
        """Return the current state of a run."""
        pass


class InProcessTaskClient(TaskClient):
    """
    Task client that executes registered coroutine functions locally.

    Usage:
        client = InProcessTaskClient()

        @client.task("echo")
        async def echo(payload):
            return payload

        run_id = await client.trigger("echo", {"x": 1})
        output = await wait_for_task(client, run_id)
    """

    def __init__(self) -> None:
        self._functions: dict[str, TaskFunction] = {}
        self._runs: dict[str, TaskRun] = {}
        self._running: dict[str, asyncio.Task[None]] = {}

    def register(self, task_id: str, fn: TaskFunction) -> None:
        if task_id in self._functions:
            logger.warning(f"Replacing registered task: {task_id}")
        self._functions[task_id] = fn

    def task(self, task_id: str) -> Callable[[TaskFunction], TaskFunction]:
        def decorator(fn: TaskFunction) -> TaskFunction:
            self.register(task_id, fn)
            return fn

        return decorator

    @property
    def task_ids(self) -> list[str]:
        return list(self._functions)

    async def trigger(self, task_id: str, payload: dict[str, Any] | None = None) -> str:
        fn = self._functions.get(task_id)
        if fn is None:
            raise ValueError(f"Unknown task: {task_id}")

        run = TaskRun(id=generate_run_id(), task_id=task_id, payload=dict(payload or {}))
        self._runs[run.id] = run
        running = asyncio.create_task(self._execute(run, fn))
        self._running[run.id] = running
        running.add_done_callback(lambda _: self._running.pop(run.id, None))
        logger.debug(f"Triggered task {task_id} as {run.id}")
        return run.id

    async def _execute(self, run: TaskRun, fn: TaskFunction) -> None:
        run.status = TaskStatus.EXECUTING
        try:
            output = await fn(dict(run.payload))
        except asyncio.CancelledError:
            run.status = TaskStatus.CRASHED
            run.error = "Run was cancelled"
            raise
        except Exception as e:
            logger.error(f"Task {run.task_id} ({run.id}) failed: {e}")
            run.status = TaskStatus.FAILED
            run.error = str(e) or type(e).__name__
            return
        run.output = output
        run.status = TaskStatus.COMPLETED

    async def retrieve(self, run_id: str) -> TaskRun:
        run = self._runs.get(run_id)
        if run is None:
            raise ValueError(f"Unknown run: {run_id}")
        return run.model_copy(deep=True)

    async def cancel(self, run_id: str) -> None:
        running = self._running.get(run_id)
        if running is None:
            return
        running.cancel()
        try:
            await running
        except asyncio.CancelledError:
            pass
        # A run cancelled before it started never reached _execute
        run = self._runs[run_id]
        if not run.status.is_terminal:
            run.status = TaskStatus.CRASHED
            run.error = "Run was cancelled"


async def wait_for_task(
    client: TaskClient,
    run_id: str,
    *,
    interval: float = 0.5,
    max_attempts: int = 1200,
) -> Any:
    """
    Poll a run until it reaches a terminal status.

    Returns:
        The run's output

    Raises:
        TaskFailedError: If the run failed or completed without output
        TaskCrashedError: If the run crashed
        SandboxTimeoutError: If the run is still going after ``max_attempts`` polls
    """

    async def probe() -> TaskRun | None:
        run = await client.retrieve(run_id)
        return run if run.status.is_terminal else None

    run = await poll_until(probe, interval=interval, max_attempts=max_attempts, description=f"task run {run_id}")

    if run.status is TaskStatus.COMPLETED:
        if not run.output:
            raise TaskFailedError("Task completed but no output returned", run_id)
        return run.output
    if run.status is TaskStatus.CRASHED:
        raise TaskCrashedError(run.error or "Task crashed", run_id)
    raise TaskFailedError(run.error or "Task failed", run_id)
