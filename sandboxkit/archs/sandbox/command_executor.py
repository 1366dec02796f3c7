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
Command execution inside sandbox sessions.

Commands run either to completion (``wait=True``) or in the background. Every
dispatched command is recorded in a ``CommandStore`` so its output can be
retrieved later by command id, possibly from an unrelated request.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Sequence
from typing import Any

from .base_sandbox import (
    CommandOutput,
    CommandRecord,
    CommandResult,
    CommandStartError,
    ExecOutcome,
    SandboxError,
    SandboxExecutionError,
    SandboxHandle,
    SandboxProcess,
    SandboxSession,
)
from .utils import generate_command_id

logger = logging.getLogger(__name__)

_EXIT_STATUS_PATTERN = re.compile(r"exit(?:ed)?\s+(?:with\s+)?(?:status|code)\s+(-?\d+)", re.IGNORECASE)


class CommandStore:
    """Command records keyed by command id, kept for the lifetime of the process."""

    def __init__(self) -> None:
        self._records: dict[str, CommandRecord] = {}

    def add(self, record: CommandRecord) -> None:
        if record.command_id in self._records:
            raise SandboxError(f"Command id {record.command_id} is already recorded", record.sandbox_id)
        self._records[record.command_id] = record

    def get(self, command_id: str) -> CommandRecord | None:
        return self._records.get(command_id)

    def __contains__(self, command_id: object) -> bool:
        return command_id in self._records

    def __len__(self) -> int:
        return len(self._records)


def exit_code_from_error(error: BaseException) -> int | None:
    """Extract the exit status from a provider error, if it reports one."""
    exit_code = getattr(error, "exit_code", None)
    if isinstance(exit_code, int) and not isinstance(exit_code, bool):
        return exit_code
    match = _EXIT_STATUS_PATTERN.search(str(error))
    if match:
        return int(match.group(1))
    return None


def outcome_from_exit_error(error: BaseException, exit_code: int) -> ExecOutcome:
    message = str(error)
    return ExecOutcome(
        exit_code=exit_code,
        stdout=getattr(error, "stdout", None) or "",
        stderr=getattr(error, "stderr", None) or message,
        error=message,
    )


async def run_shell(handle: SandboxHandle, line: str) -> ExecOutcome:
    """Run a shell line to completion, treating a non-zero exit as a normal outcome.

    Used for internal plumbing commands, which are not recorded in the store.

    Raises:
        SandboxExecutionError: If the provider fails for another reason.
    """
    try:
        outcome = await handle.exec_shell(line)
    except SandboxError:
        raise
    except Exception as e:
        exit_code = exit_code_from_error(e)
        if exit_code is None:
            raise SandboxExecutionError(f"Command execution error: {e}", handle.sandbox_id) from e
        return outcome_from_exit_error(e, exit_code)
    if outcome is None:
        raise CommandStartError(f"Provider returned no result for: {line[:200]}", handle.sandbox_id)
    return outcome


class CommandExecutor:
    """
    Runs commands in sessions and records them.

    Usage:
        store = CommandStore()
        executor = CommandExecutor(store)
        result = await executor.run(session, "npm", ["install"], wait=True)
        record = store.get(result.command_id)
    """

    def __init__(self, store: CommandStore):
        self._store = store
        # Strong references so followers are not garbage collected mid-flight
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def store(self) -> CommandStore:
        return self._store

    async def run(
        self,
        session: SandboxSession,
        command: str,
        args: Sequence[str] = (),
        *,
        sudo: bool = False,
        wait: bool = False,
    ) -> CommandResult:
        """
        Run a command in a session.

        Args:
            session: Connected session
            command: Executable to run
            args: Arguments, passed through as a discrete sequence
            sudo: Prefix the invocation with ``sudo``
            wait: Wait for completion and return exit code and output

        Returns:
            CommandResult; only ``command_id`` is set when ``wait`` is False

        Raises:
            CommandStartError: If the command could not be started
            SandboxExecutionError: If the provider failed other than by a non-zero exit
        """
        argv = ["sudo", command, *args] if sudo else [command, *args]
        if wait:
            return await self._run_and_wait(session, argv)
        return await self._start(session, argv)

    def _track(self, task: asyncio.Task[Any]) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_and_wait(self, session: SandboxSession, argv: list[str]) -> CommandResult:
        task: asyncio.Task[CommandRecord] = asyncio.create_task(self._execute(session, argv))
        self._track(task)
        task.add_done_callback(_log_unobserved_failure)
        # A cancelled caller does not stop the remote command; the task still records it.
        record = await asyncio.shield(task)
        return CommandResult(
            command_id=record.command_id,
            exit_code=record.exit_code,
            stdout=record.stdout.text,
            stderr=record.stderr.text,
            error_text=record.error_text,
        )

    async def _execute(self, session: SandboxSession, argv: list[str]) -> CommandRecord:
        try:
            outcome = await session.handle.exec(argv)
        except SandboxError:
            raise
        except Exception as e:
            exit_code = exit_code_from_error(e)
            if exit_code is None:
                raise SandboxExecutionError(f"Command execution error: {e}", session.sandbox_id) from e
            outcome = outcome_from_exit_error(e, exit_code)

        if outcome is None:
            raise CommandStartError(f"Provider returned no result for command: {' '.join(argv)}", session.sandbox_id)

        record = CommandRecord(command_id=generate_command_id(), sandbox_id=session.sandbox_id, command=argv)
        record.complete(outcome)
        self._store.add(record)
        logger.debug(f"[{session.sandbox_id}] command {record.command_id} exited with {outcome.exit_code}")
        return record

    async def _start(self, session: SandboxSession, argv: list[str]) -> CommandResult:
        stdout = CommandOutput()
        stderr = CommandOutput()
        try:
            process = await session.handle.spawn(argv, stdout.append, stderr.append)
        except SandboxError:
            raise
        except Exception as e:
            raise CommandStartError(f"Failed to start command {' '.join(argv)}: {e}", session.sandbox_id) from e

        if process is None:
            raise CommandStartError(f"Provider returned no process for command: {' '.join(argv)}", session.sandbox_id)

        command_id = self._allocate_id(process.pid)
        record = CommandRecord(
            command_id=command_id,
            sandbox_id=session.sandbox_id,
            command=argv,
            stdout=stdout,
            stderr=stderr,
        )
        self._store.add(record)
        logger.info(f"[{session.sandbox_id}] started background command {command_id}: {' '.join(argv)[:200]}")

        follower: asyncio.Task[None] = asyncio.create_task(self._follow(process, record))
        self._track(follower)
        return CommandResult(command_id=command_id)

    def _allocate_id(self, pid: int | None) -> str:
        if pid is not None and str(pid) not in self._store:
            return str(pid)
        return generate_command_id()

    async def _follow(self, process: SandboxProcess, record: CommandRecord) -> None:
        try:
            outcome = await process.wait()
        except asyncio.CancelledError:
            record.fail(SandboxExecutionError("Stopped following command output", record.sandbox_id, record.command_id))
            raise
        except Exception as e:
            exit_code = exit_code_from_error(e)
            if exit_code is None:
                logger.error(f"[{record.sandbox_id}] background command {record.command_id} failed: {e}")
                record.fail(e)
                return
            outcome = outcome_from_exit_error(e, exit_code)
        record.complete(outcome)
        logger.debug(f"[{record.sandbox_id}] background command {record.command_id} exited with {outcome.exit_code}")


def _log_unobserved_failure(task: asyncio.Task[CommandRecord]) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.debug(f"Command task finished with error: {error}")
