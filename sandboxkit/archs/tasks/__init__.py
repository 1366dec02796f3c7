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

"""Task submission mode for sandbox operations."""

from .sandbox_tasks import (
    CREATE_SANDBOX,
    GET_SANDBOX_STATUS,
    GET_SANDBOX_URL,
    RUN_COMMAND,
    WRITE_FILES,
    TaskSandboxClient,
    register_sandbox_tasks,
)
from .task_client import (
    InProcessTaskClient,
    TaskClient,
    TaskCrashedError,
    TaskFailedError,
    TaskRun,
    TaskStatus,
    generate_run_id,
    wait_for_task,
)

__all__ = [
    "TaskClient",
    "InProcessTaskClient",
    "TaskRun",
    "TaskStatus",
    "TaskFailedError",
    "TaskCrashedError",
    "generate_run_id",
    "wait_for_task",
    "register_sandbox_tasks",
    "TaskSandboxClient",
    "CREATE_SANDBOX",
    "RUN_COMMAND",
    "WRITE_FILES",
    "GET_SANDBOX_URL",
    "GET_SANDBOX_STATUS",
]
