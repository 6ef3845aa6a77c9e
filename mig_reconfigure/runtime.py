"""
NVIDIA container runtime mode control on the worker node.

The runtime mode lives in the `mode = "..."` line of the remote
nvidia-container-runtime config.toml and only takes effect after containerd
restarts. MIG reconfiguration runs with the runtime in `auto` mode; once the
new topology is in place the CDI spec is regenerated and the runtime is
switched to `cdi`.

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

import enum
import logging
import re

from .constants import CDI_SPEC_PATH, RUNTIME_CONFIG_PATH, RUNTIME_DAEMON
from .errors import ConfigurationError, RemoteExecutionError

logger = logging.getLogger(__name__)

MODE_LINE_RE = re.compile(r'^mode\s*=\s*"([^"]*)"', re.MULTILINE)


class RuntimeMode(enum.Enum):
    AUTO = 'auto'
    CDI = 'cdi'
    UNKNOWN = 'unknown'

    @classmethod
    def parse(cls, value: str) -> 'RuntimeMode':
        try:
            return cls(value.strip())
        except ValueError:
            return cls.UNKNOWN


def parse_runtime_mode(config_text: str) -> RuntimeMode:
    """Extract the runtime mode from config.toml content."""
    match = MODE_LINE_RE.search(config_text or '')
    if not match:
        return RuntimeMode.UNKNOWN
    return RuntimeMode.parse(match.group(1))


class RuntimeModeController:
    """Queries and switches the runtime mode of one worker node."""

    def __init__(self, executor, config_path: str = RUNTIME_CONFIG_PATH,
                 daemon: str = RUNTIME_DAEMON, cdi_spec_path: str = CDI_SPEC_PATH):
        """
        Args:
            executor: Remote executor bound to the worker node (see SshExecutor)
            config_path: Path of config.toml on the node
            daemon: systemd unit restarted after a mode change
            cdi_spec_path: Output path for the generated CDI spec
        """
        self.executor = executor
        self.config_path = config_path
        self.daemon = daemon
        self.cdi_spec_path = cdi_spec_path

    @property
    def node(self) -> str:
        return self.executor.node

    def get_current_mode(self) -> RuntimeMode:
        """
        Read the current runtime mode.

        Returns RuntimeMode.UNKNOWN on any remote or parse failure; callers
        decide whether that is fatal.
        """
        try:
            result = self.executor.run(f"grep '^mode' {self.config_path}")
        except RemoteExecutionError as e:
            logger.warning(f"Unable to determine runtime mode on {self.node}: {e}")
            return RuntimeMode.UNKNOWN

        mode = parse_runtime_mode(result.stdout)
        if mode is RuntimeMode.UNKNOWN:
            logger.warning(f"Unrecognized runtime mode line on {self.node}: '{result.stdout.strip()}'")
        return mode

    def is_daemon_active(self) -> bool:
        result = self.executor.run(f"systemctl is-active --quiet {self.daemon}", check=False)
        return result.returncode == 0

    def verify_daemon_active(self) -> None:
        """Raise RemoteExecutionError unless the runtime daemon is running."""
        logger.info(f"Verifying {self.daemon} service status on {self.node}...")
        if not self.is_daemon_active():
            raise RemoteExecutionError(f"{self.daemon} is NOT active on {self.node}")
        logger.info(f"{self.daemon} is active.")

    def set_mode(self, target: RuntimeMode) -> bool:
        """
        Switch the runtime to the target mode.

        A no-op when the node is already in the target mode. Otherwise the
        config line is rewritten, the daemon restarted and the mode read
        back. The transition to CDI also verifies the daemon came back.

        Args:
            target: RuntimeMode.AUTO or RuntimeMode.CDI

        Returns:
            True if a change was made, False if the mode was already set

        Raises:
            RemoteExecutionError: If any remote command fails or the mode
                read back after the restart is not the target
        """
        if target not in (RuntimeMode.AUTO, RuntimeMode.CDI):
            raise ConfigurationError(f"Cannot switch runtime to '{target.value}'")

        current = self.get_current_mode()
        if current is target:
            logger.info(f"Runtime already in {target.value.upper()} mode on {self.node}. No change required.")
            return False

        logger.info(f"Current Runtime Mode : {current.value}")
        logger.info(f"Target  Runtime Mode : {target.value}")
        logger.info(f"Switching runtime mode to {target.value.upper()} on {self.node}...")

        self.executor.run(
            f"sudo sed -i 's/^mode[[:space:]]*=.*/mode = \"{target.value}\"/' {self.config_path}"
        )
        self.executor.run(f"sudo systemctl restart {self.daemon}")

        if target is RuntimeMode.CDI and not self.is_daemon_active():
            raise RemoteExecutionError(f"{self.daemon} failed to restart on {self.node}")

        observed = self.get_current_mode()
        if observed is not target:
            raise RemoteExecutionError(
                f"Runtime mode on {self.node} is '{observed.value}' after the switch, expected '{target.value}'"
            )

        logger.info(f"Runtime mode successfully changed to {target.value.upper()}.")
        return True

    def generate_cdi_spec(self) -> None:
        """
        Regenerate the CDI spec from the node's current GPU/MIG topology.

        Must only run once MIG state has converged, otherwise the spec
        describes stale devices.
        """
        logger.info(f"Generating CDI specification on {self.node}...")
        self.executor.run(f"sudo nvidia-ctk cdi generate --output={self.cdi_spec_path}")
        result = self.executor.run(f"ls -lh {self.cdi_spec_path}")
        logger.info(f"CDI specification written: {result.stdout.strip()}")

    def runtime_config_exists(self) -> bool:
        result = self.executor.run(f"sudo test -f {self.config_path}", check=False)
        return result.returncode == 0
