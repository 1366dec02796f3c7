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
File transfer into and out of sandbox sessions.

Sessions with a native filesystem handle use the provider's file API. For
command-only sessions, files are moved through the shell: content is base64
encoded locally, appended to a temporary file in chunks with ``printf`` and
decoded in place with ``base64 -d``. Reads use ``base64`` on the remote side so
binary content survives the trip.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import posixpath
import time
from collections.abc import AsyncIterator, Iterable

from .base_sandbox import (
    CommandOnlyHandle,
    FileWriteRequest,
    NativeFilesystemHandle,
    SandboxError,
    SandboxFileNotFoundError,
    SandboxFileReadError,
    SandboxFileWriteError,
    SandboxSession,
)
from .command_executor import run_shell
from .config import SessionManagerConfig
from .utils import double_quote, random_suffix

logger = logging.getLogger(__name__)


def split_chunks(text: str, size: int) -> list[str]:
    """Split ``text`` into ``size`` character chunks; empty text gives one empty chunk."""
    if not text:
        return [""]
    return [text[i : i + size] for i in range(0, len(text), size)]


def _temp_path() -> str:
    return f"/tmp/sandbox_write_{int(time.time() * 1000)}_{random_suffix()}"


async def _iter_decoded(encoded: str, size: int) -> AsyncIterator[bytes]:
    """Decode base64 text lazily, yielding ``size`` byte slices."""
    # Slices of the encoded text stay on 4 character boundaries.
    step = -(-size // 3) * 4
    buffered = b""
    for start in range(0, len(encoded), step):
        buffered += base64.b64decode(encoded[start : start + step], validate=True)
        while len(buffered) >= size:
            yield buffered[:size]
            buffered = buffered[size:]
    if buffered:
        yield buffered


class FileTransfer:
    """Writes and reads files through a session's handle."""

    def __init__(self, config: SessionManagerConfig):
        self._chunk_size = config.fallback_chunk_size
        self._read_chunk_size = config.read_chunk_size

    async def write(self, session: SandboxSession, files: Iterable[FileWriteRequest]) -> None:
        """
        Write files into the session's sandbox, creating parent directories.

        Files are written concurrently. The first failure fails the whole batch.

        Raises:
            SandboxFileWriteError: Naming the path that could not be written
        """
        handle = session.handle
        requests = list(files)
        if not requests:
            return

        if isinstance(handle, NativeFilesystemHandle):
            await asyncio.gather(*(self._write_native(handle, request) for request in requests))
        elif isinstance(handle, CommandOnlyHandle):
            await asyncio.gather(*(self._write_fallback(handle, request) for request in requests))
        else:
            raise SandboxError(f"Unsupported handle type: {type(handle).__name__}", session.sandbox_id)

        logger.info(f"[{session.sandbox_id}] wrote {len(requests)} file(s)")

    async def _write_native(self, handle: NativeFilesystemHandle, request: FileWriteRequest) -> None:
        try:
            await handle.write_file(request.path, request.content)
            return
        except SandboxError as e:
            raise SandboxFileWriteError(
                f"Failed to write file {request.path}: {e.message}", request.path, handle.sandbox_id
            ) from e
        except Exception as e:
            logger.warning(f"[{handle.sandbox_id}] binary write of {request.path} failed ({e}), retrying as text")

        try:
            text = request.content.decode("utf-8")
        except UnicodeDecodeError as e:
            raise SandboxFileWriteError(
                f"Failed to write file {request.path}: content is not valid UTF-8", request.path, handle.sandbox_id
            ) from e

        try:
            await handle.write_file(request.path, text)
        except SandboxError as e:
            raise SandboxFileWriteError(
                f"Failed to write file {request.path}: {e.message}", request.path, handle.sandbox_id
            ) from e
        except Exception as e:
            raise SandboxFileWriteError(
                f"Failed to write file {request.path}: {e}", request.path, handle.sandbox_id
            ) from e

    async def _write_fallback(self, handle: CommandOnlyHandle, request: FileWriteRequest) -> None:
        path = request.path
        directory = posixpath.dirname(path)
        if directory:
            await self._make_parent(handle, directory)

        encoded = base64.b64encode(request.content).decode("ascii")
        chunks = split_chunks(encoded, self._chunk_size)
        temp_path = _temp_path()
        quoted_temp = double_quote(temp_path)

        try:
            for index, chunk in enumerate(chunks, start=1):
                redirect = ">" if index == 1 else ">>"
                result = await run_shell(handle, f"printf '%s' {double_quote(chunk)} {redirect} {quoted_temp}")
                if result.exit_code != 0:
                    raise SandboxFileWriteError(
                        f"Failed to write chunk {index}/{len(chunks)} of {path}: "
                        f"{result.stderr or result.error or 'Unknown error'}",
                        path,
                        handle.sandbox_id,
                    )

            decode = await run_shell(handle, f"base64 -d {quoted_temp} > {double_quote(path)}")
            if decode.exit_code != 0:
                raise SandboxFileWriteError(
                    f"Failed to write file {path} via command: {decode.stderr or decode.error or 'Unknown error'}",
                    path,
                    handle.sandbox_id,
                )
        except SandboxFileWriteError:
            raise
        except SandboxError as e:
            raise SandboxFileWriteError(f"Failed to write file {path}: {e.message}", path, handle.sandbox_id) from e
        finally:
            await self._remove_temp(handle, quoted_temp)

        logger.debug(f"[{handle.sandbox_id}] wrote {path} via command fallback ({len(chunks)} chunk(s))")

    async def _make_parent(self, handle: CommandOnlyHandle, directory: str) -> None:
        # Non-fatal: a missing directory surfaces when the file is decoded.
        try:
            mkdir = await run_shell(handle, f"mkdir -p {double_quote(directory)}")
        except SandboxError as e:
            logger.warning(f"[{handle.sandbox_id}] mkdir failed for {directory}: {e.message}")
            return
        if mkdir.exit_code != 0:
            logger.warning(f"[{handle.sandbox_id}] mkdir failed for {directory}: {mkdir.stderr or mkdir.error}")

    async def _remove_temp(self, handle: CommandOnlyHandle, quoted_temp: str) -> None:
        try:
            await run_shell(handle, f"rm -f {quoted_temp}")
        except SandboxError as e:
            logger.warning(f"[{handle.sandbox_id}] failed to remove temporary file {quoted_temp}: {e}")

    async def read(self, session: SandboxSession, path: str) -> AsyncIterator[bytes]:
        """
        Read a file from the session's sandbox.

        Returns:
            Async iterator over the file content

        Raises:
            SandboxFileNotFoundError: If the file does not exist or cannot be read
            SandboxFileReadError: On other read failures
        """
        handle = session.handle
        if isinstance(handle, NativeFilesystemHandle):
            return await handle.read_file(path)
        if isinstance(handle, CommandOnlyHandle):
            return await self._read_fallback(handle, path)
        raise SandboxError(f"Unsupported handle type: {type(handle).__name__}", session.sandbox_id)

    async def _read_fallback(self, handle: CommandOnlyHandle, path: str) -> AsyncIterator[bytes]:
        try:
            result = await run_shell(handle, f"base64 {double_quote(path)}")
        except SandboxError as e:
            raise SandboxFileReadError(f"Failed to read file {path}: {e.message}", path, handle.sandbox_id) from e

        if result.exit_code != 0:
            raise SandboxFileNotFoundError(
                f"File not found or cannot be read: {result.stderr or result.error or 'Unknown error'}",
                path,
                handle.sandbox_id,
            )

        encoded = "".join(result.stdout.split())
        if len(encoded) % 4:
            raise SandboxFileReadError(
                f"Failed to decode content of {path}: truncated base64 output", path, handle.sandbox_id
            )
        return self._iter_fallback_chunks(handle, path, encoded)

    async def _iter_fallback_chunks(
        self, handle: CommandOnlyHandle, path: str, encoded: str
    ) -> AsyncIterator[bytes]:
        try:
            async for chunk in _iter_decoded(encoded, self._read_chunk_size):
                yield chunk
        except (binascii.Error, ValueError) as e:
            raise SandboxFileReadError(
                f"Failed to decode content of {path}: {e}", path, handle.sandbox_id
            ) from e
