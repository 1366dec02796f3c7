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
Pytest configuration and fixtures for sandboxkit tests.

This module provides shared fixtures and configuration for all tests in the
sandboxkit test suite.
"""

import os
from unittest.mock import patch

import pytest


@pytest.fixture
def anyio_backend():
    """Run ``@pytest.mark.anyio`` tests on asyncio only."""
    return "asyncio"


# Environment Variables for Testing
@pytest.fixture(autouse=True)
def mock_env_vars():
    """Mock environment variables for consistent testing."""
    with patch.dict(
        os.environ,
        {
            "TESTING": "true",
            "E2B_API_KEY": "test-e2b-key",
            "E2B_TEMPLATE": "base",
            "E2B_DOMAIN": "e2b.dev",
        },
    ):
        os.environ.pop("E2B_API_URL", None)
        yield
