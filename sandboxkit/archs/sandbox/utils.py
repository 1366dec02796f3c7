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

"""Small helpers shared by the sandbox components."""

from __future__ import annotations

import asyncio
import logging
import random
import re
import string
import time
from collections.abc import Awaitable, Callable

from .base_sandbox import SandboxTimeoutError

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_lowercase
_DOUBLE_QUOTE_SPECIALS = re.compile(r'(["\\$`])')


async def poll_until[T](
    probe: Callable[[], Awaitable[T | None]],
    *,
    interval: float,
    max_attempts: int,
    description: str = "condition",
) -> T:
    """Call ``probe`` until it returns a non-None value.

    The probe is called at most ``max_attempts`` times, sleeping ``interval``
    seconds between calls.

    Returns:
        The first non-None value returned by ``probe``.

    Raises:
        SandboxTimeoutError: If every attempt returned None.
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

    for attempt in range(1, max_attempts + 1):
        result = await probe()
        if result is not None:
            return result
        if attempt < max_attempts:
            logger.debug("Waiting for %s (attempt %d/%d)", description, attempt, max_attempts)
            await asyncio.sleep(interval)

    raise SandboxTimeoutError(f"Timed out waiting for {description} after {max_attempts} attempts")


def random_suffix(length: int = 9) -> str:
    return "".join(random.choices(_BASE36, k=length))


def generate_command_id() -> str:
    """Generate a command ID for commands the provider gave no process id for.

    Returns:
        Command ID in format: cmd_{epoch_ms}_{9 base36 chars}
        Example: cmd_1718000000000_k3j9x0q2a
    """
    return f"cmd_{int(time.time() * 1000)}_{random_suffix()}"


def double_quote(value: str) -> str:
    """Quote ``value`` for interpolation inside a POSIX shell line."""
    return '"' + _DOUBLE_QUOTE_SPECIALS.sub(r"\\\1", value) + '"'
