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

"""Sandbox session management: connections, commands, files and logs."""

from typing import TYPE_CHECKING

from .base_sandbox import (
    CommandNotFoundError,
    CommandOnlyHandle,
    CommandOutput,
    CommandRecord,
    CommandResult,
    CommandStartError,
    ExecOutcome,
    FileWriteRequest,
    LogLine,
    NativeFilesystemHandle,
    SandboxConnectionError,
    SandboxError,
    SandboxExecutionError,
    SandboxFileError,
    SandboxFileNotFoundError,
    SandboxFileReadError,
    SandboxFileWriteError,
    SandboxHandle,
    SandboxProcess,
    SandboxProvider,
    SandboxProviderUnavailableError,
    SandboxSession,
    SandboxStatus,
    SandboxTimeoutError,
    SandboxUnavailableError,
    SessionInfo,
)
from .command_executor import CommandExecutor, CommandStore
from .config import SessionManagerConfig
from .connector import Connector
from .file_transfer import FileTransfer
from .log_streamer import NDJSON_CONTENT_TYPE, LogStreamer, encode_ndjson
from .registry import SessionRegistry
from .session_manager import SandboxSessionManager
from .utils import poll_until

if TYPE_CHECKING:
    from .e2b_sandbox import E2BSandboxProvider


def __getattr__(name: str) -> object:
    """Lazily import the E2B provider so the SDK is only loaded when used."""
    if name == "E2BSandboxProvider":
        from .e2b_sandbox import E2BSandboxProvider

        return E2BSandboxProvider
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


__all__ = [
    "SandboxSessionManager",
    "SessionManagerConfig",
    "SessionRegistry",
    "Connector",
    "CommandExecutor",
    "CommandStore",
    "FileTransfer",
    "LogStreamer",
    "encode_ndjson",
    "NDJSON_CONTENT_TYPE",
    "poll_until",
    "E2BSandboxProvider",
    "SandboxProvider",
    "SandboxHandle",
    "NativeFilesystemHandle",
    "CommandOnlyHandle",
    "SandboxProcess",
    "SandboxSession",
    "SessionInfo",
    "SandboxStatus",
    "ExecOutcome",
    "CommandOutput",
    "CommandRecord",
    "CommandResult",
    "FileWriteRequest",
    "LogLine",
    "SandboxError",
    "SandboxProviderUnavailableError",
    "SandboxUnavailableError",
    "SandboxConnectionError",
    "SandboxTimeoutError",
    "SandboxExecutionError",
    "CommandStartError",
    "CommandNotFoundError",
    "SandboxFileError",
    "SandboxFileWriteError",
    "SandboxFileReadError",
    "SandboxFileNotFoundError",
]
