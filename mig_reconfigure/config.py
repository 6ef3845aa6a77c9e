"""
Runtime settings for the MIG reconfiguration tool.

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

import os
from dataclasses import dataclass
from typing import Optional

from .constants import DEFAULT_LOCK_FILE
from .errors import ConfigurationError


def env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or value.strip() == '':
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"Environment variable {name} must be an integer, got '{value}'")


def env_float(name: str, default: Optional[float]) -> Optional[float]:
    value = os.environ.get(name)
    if value is None or value.strip() == '':
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(f"Environment variable {name} must be a number, got '{value}'")


@dataclass
class Settings:
    """
    Configuration surface of a single reconfiguration run.

    The seven polling/apply tunables keep their ratios meaningful only
    together: one label settle sleep plus min_success_attempt poll
    intervals must exceed the MIG Manager's reaction latency.
    """
    node_name: str = ''
    operator_namespace: str = 'gpu-operator'
    mig_config_file: str = 'custom-mig-config.yaml'
    template_file: str = 'custom-mig-config-template.yaml'
    cdi_enabled: bool = True
    lock_file: str = DEFAULT_LOCK_FILE
    base_log_dir: str = 'logs'
    log_retention_days: int = 30

    max_retries: int = 15
    poll_interval: float = 20
    min_success_attempt: int = 2
    max_failed_allowed: int = 2
    max_apply_attempts: int = 3
    temp_label_sleep: float = 20
    custom_label_sleep: float = 20

    ssh_user: Optional[str] = None
    ssh_timeout: Optional[float] = None
    kubeconfig: Optional[str] = None
    debug: bool = False

    def validate(self) -> None:
        """Raise ConfigurationError if the settings cannot drive a run."""
        if not self.node_name:
            raise ConfigurationError("NODE_NAME environment variable or --node-name must be set")
        if not self.operator_namespace:
            raise ConfigurationError("Operator namespace must not be empty")

        for name in ('max_retries', 'min_success_attempt', 'max_failed_allowed', 'max_apply_attempts'):
            if getattr(self, name) < 1:
                raise ConfigurationError(f"{name} must be at least 1, got {getattr(self, name)}")
        for name in ('poll_interval', 'temp_label_sleep', 'custom_label_sleep'):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must not be negative, got {getattr(self, name)}")

        if self.min_success_attempt > self.max_retries:
            raise ConfigurationError(
                f"min_success_attempt ({self.min_success_attempt}) cannot exceed "
                f"max_retries ({self.max_retries}); success would never be accepted"
            )
        if self.ssh_timeout is not None and self.ssh_timeout <= 0:
            raise ConfigurationError(f"ssh_timeout must be positive, got {self.ssh_timeout}")
