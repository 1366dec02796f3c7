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

"""In-memory registry of live sandbox sessions."""

from __future__ import annotations

import logging

from .base_sandbox import SandboxSession

logger = logging.getLogger(__name__)


class SessionRegistry:
    """
    Mapping from sandbox id to the live session known to this process.

    The registry does no I/O and no locking; the connector serializes
    mutations for a given id. Replacing an entry invalidates the handle of the
    session being replaced so callers still holding it fail explicitly.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, SandboxSession] = {}

    def get(self, sandbox_id: str) -> SandboxSession | None:
        return self._sessions.get(sandbox_id)

    def put(self, session: SandboxSession) -> None:
        previous = self._sessions.get(session.sandbox_id)
        if previous is not None and previous is not session:
            logger.debug(f"Replacing registered session for sandbox {session.sandbox_id}")
            previous.handle.invalidate("replaced by a newer session")
        self._sessions[session.sandbox_id] = session

    def remove(self, sandbox_id: str) -> SandboxSession | None:
        return self._sessions.pop(sandbox_id, None)

    def ids(self) -> list[str]:
        return list(self._sessions)

    def __contains__(self, sandbox_id: object) -> bool:
        return sandbox_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
