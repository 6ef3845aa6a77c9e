"""
Command execution on the GPU worker node over SSH.

Assumes passwordless, pre-authenticated access (BatchMode). No call-level
timeout is applied unless one is configured explicitly.

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

import logging
import subprocess
from typing import List, Optional

from .errors import RemoteExecutionError

logger = logging.getLogger(__name__)


class SshExecutor:
    """Runs shell commands and copies files from a single remote host."""

    def __init__(self, node: str, user: Optional[str] = None, timeout: Optional[float] = None):
        """
        Args:
            node: Hostname of the worker node
            user: SSH user, or None to use the ssh client default
            timeout: Per-command timeout in seconds, or None to wait indefinitely
        """
        self.node = node
        self.user = user
        self.timeout = timeout

    @property
    def target(self) -> str:
        return f"{self.user}@{self.node}" if self.user else self.node

    def _ssh_options(self) -> List[str]:
        return ['-o', 'BatchMode=yes']

    def _execute(self, cmd: List[str], description: str, check: bool) -> subprocess.CompletedProcess:
        logger.debug(f"Running on {self.node}: {description}")
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            raise RemoteExecutionError(f"Timed out after {self.timeout}s on {self.node}: {description}")
        except OSError as e:
            raise RemoteExecutionError(f"Unable to run {cmd[0]}: {e}")

        if result.stdout:
            logger.debug(result.stdout.rstrip())
        if result.stderr:
            logger.debug(result.stderr.rstrip())

        if check and result.returncode != 0:
            raise RemoteExecutionError(
                f"Command failed on {self.node} (exit {result.returncode}): {description}",
                returncode=result.returncode,
                stderr=result.stderr,
            )
        return result

    def run(self, command: str, check: bool = True) -> subprocess.CompletedProcess:
        """
        Execute a shell command on the node.

        Args:
            command: Shell command line, interpreted by the remote shell
            check: Raise RemoteExecutionError on a non-zero exit status

        Returns:
            The completed process with captured stdout/stderr
        """
        return self._execute(['ssh', *self._ssh_options(), self.target, command], command, check)

    def copy_from(self, remote_path: str, local_path: str) -> None:
        """Copy a file from the node to local storage."""
        self._execute(
            ['scp', *self._ssh_options(), f"{self.target}:{remote_path}", local_path],
            f"scp {remote_path} -> {local_path}",
            check=True,
        )
