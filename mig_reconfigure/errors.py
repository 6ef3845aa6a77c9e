"""
Error types raised by the MIG reconfiguration workflow.

Every fatal condition is raised as a MigReconfigureError subclass; only the
command line entry point turns it into a non-zero exit status.

Copyright (c) 2025, NVIDIA CORPORATION. All rights reserved.

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at

    http://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License.
"""

from typing import List, Optional


class MigReconfigureError(Exception):
    """Base class for all fatal workflow errors."""


class ConfigurationError(MigReconfigureError):
    pass


class TemplateError(MigReconfigureError):
    pass


class LockContentionError(MigReconfigureError):
    """Another MIG/CDI operation already holds the global lock."""

    def __init__(self, lock_path: str):
        super().__init__(f"Another MIG/CDI operation is already running (lock: {lock_path})")
        self.lock_path = lock_path


class WorkloadsPresentError(MigReconfigureError):
    """GPU workloads are still scheduled and must be drained by the operator."""

    def __init__(self, workloads: List[str]):
        super().__init__(
            f"{len(workloads)} GPU workload(s) still running: {', '.join(workloads)}. "
            f"Please delete these workloads and re-run."
        )
        self.workloads = workloads


class MigApplyError(MigReconfigureError):
    """The MIG Manager did not converge on the requested configuration."""


class MigFailedError(MigApplyError):
    pass


class MigTimeoutError(MigApplyError):
    pass


class MigUnexpectedStateError(MigApplyError):

    def __init__(self, state: str):
        super().__init__(f"Unexpected MIG state: '{state}'")
        self.state = state


class MigApplyExhaustedError(MigApplyError):
    pass


class RemoteExecutionError(MigReconfigureError):
    """A command on the worker node failed."""

    def __init__(self, message: str, returncode: Optional[int] = None, stderr: str = ''):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class ResourceNotFoundError(MigReconfigureError):
    pass


class BackupError(MigReconfigureError):
    pass


class ClusterOperationError(MigReconfigureError):
    """A Kubernetes API call needed by a phase failed."""
