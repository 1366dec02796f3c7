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

"""Replay of stored command output as line records."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator

from .base_sandbox import CommandNotFoundError, CommandOutput, LogLine, LogStreamName
from .command_executor import CommandStore

logger = logging.getLogger(__name__)

NDJSON_CONTENT_TYPE = "application/x-ndjson"


class LogStreamer:
    """
    Turns a command's captured output into ``LogLine`` records.

    All stdout lines are emitted before any stderr line. For commands still
    running, lines are emitted as output arrives and the iterator ends when the
    command finishes.
    """

    def __init__(self, store: CommandStore):
        self._store = store

    def stream_logs(self, command_id: str) -> AsyncIterator[LogLine]:
        """
        Return the log lines of a stored command.

        Raises:
            CommandNotFoundError: If no command was recorded under ``command_id``
        """
        record = self._store.get(command_id)
        if record is None:
            raise CommandNotFoundError(command_id)
        return self._iter_lines(command_id, record.stdout, record.stderr)

    async def _iter_lines(
        self, command_id: str, stdout: CommandOutput, stderr: CommandOutput
    ) -> AsyncIterator[LogLine]:
        async for line in self._iter_stream(command_id, stdout, "stdout"):
            yield line
        async for line in self._iter_stream(command_id, stderr, "stderr"):
            yield line

    async def _iter_stream(
        self, command_id: str, output: CommandOutput, stream: LogStreamName
    ) -> AsyncIterator[LogLine]:
        pending = ""
        try:
            async for chunk in output.iter_chunks():
                *complete, pending = (pending + chunk).split("\n")
                for segment in complete:
                    if segment:
                        yield LogLine(data=segment, stream=stream)
        except Exception as e:
            logger.error(f"Error streaming {stream} of command {command_id}: {e}")
        if pending:
            yield LogLine(data=pending, stream=stream)


async def encode_ndjson(lines: AsyncIterator[LogLine]) -> AsyncIterator[bytes]:
    """Encode log lines as newline-delimited JSON."""
    async for line in lines:
        yield (json.dumps(line.to_dict()) + "\n").encode("utf-8")
