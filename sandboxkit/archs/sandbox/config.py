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

"""Configuration for the sandbox session manager."""

from __future__ import annotations

import os
from typing import Any

import dotenv
from pydantic import BaseModel, Field, model_validator

# Default lifetime of a new sandbox (10 minutes). Sandboxes may live up to 45 minutes.
DEFAULT_SANDBOX_TIMEOUT_MS = 600_000
MAX_SANDBOX_TIMEOUT_MS = 2_700_000


class SessionManagerConfig(BaseModel):
    """Settings shared by the connector, executor and file transfer.

    Credentials and provider endpoints default to the usual E2B environment
    variables so a bare ``SessionManagerConfig()`` works in deployed code.
    """

    # Provider
    api_key: str | None = Field(default_factory=lambda: os.getenv("E2B_API_KEY"), repr=False)
    api_url: str | None = Field(default_factory=lambda: os.getenv("E2B_API_URL"))
    template: str = Field(default_factory=lambda: os.getenv("E2B_TEMPLATE", "base"))
    domain: str = Field(default_factory=lambda: os.getenv("E2B_DOMAIN", "e2b.dev"))

    # Session lifetime
    default_timeout_ms: int = DEFAULT_SANDBOX_TIMEOUT_MS
    min_timeout_ms: int = DEFAULT_SANDBOX_TIMEOUT_MS
    max_timeout_ms: int = MAX_SANDBOX_TIMEOUT_MS
    max_exposed_ports: int = 2

    # Reconnect behaviour
    reconnect_backoff: float = 2.0  # seconds before the single reconnect attempt
    fs_ready_interval: float = 1.0
    fs_ready_attempts: int = 5

    # Commands
    command_timeout: float = 60.0  # seconds, foreground commands
    background_command_timeout: float = 0  # 0 disables the limit

    # File transfer
    fallback_chunk_size: int = 50_000
    read_chunk_size: int = 64 * 1024

    # Task submission mode
    task_poll_interval: float = 0.5
    task_poll_attempts: int = 1200

    @model_validator(mode="after")
    def _check_bounds(self) -> SessionManagerConfig:
        if self.min_timeout_ms > self.max_timeout_ms:
            raise ValueError(f"min_timeout_ms ({self.min_timeout_ms}) must be <= max_timeout_ms ({self.max_timeout_ms})")
        if not self.min_timeout_ms <= self.default_timeout_ms <= self.max_timeout_ms:
            raise ValueError("default_timeout_ms must lie within [min_timeout_ms, max_timeout_ms]")
        if self.fallback_chunk_size <= 0 or self.read_chunk_size <= 0:
            raise ValueError("chunk sizes must be positive")
        return self

    @classmethod
    def from_env(cls, **overrides: Any) -> SessionManagerConfig:
        """Load ``.env`` into the process environment, then build the config."""
        dotenv.load_dotenv()
        return cls(**overrides)
