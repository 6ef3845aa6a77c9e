"""
Snapshot of cluster and node state taken before any mutation.

The backups are not restored automatically; they exist so an operator can
roll back by hand if a run aborts part way.

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
import time
from pathlib import Path
from typing import Optional

import yaml
from kubernetes.client.rest import ApiException

from .constants import (
    CLUSTER_POLICY_BACKUP,
    MIG_CONFIG_LABEL,
    MIG_CONFIGMAP_BACKUP,
    NODE_LABELS_BACKUP,
    RUNTIME_CONFIG_BACKUP_PREFIX,
)
from .errors import BackupError

logger = logging.getLogger(__name__)


class BackupCollector:
    """Writes each snapshot to a fixed file name under the run's backup dir."""

    def __init__(self, cluster, backup_dir, namespace: str, runtime=None):
        """
        Args:
            cluster: KubeCluster
            backup_dir: Directory receiving the backup files
            namespace: GPU Operator namespace
            runtime: RuntimeModeController for the worker node, or None
                when the runtime config is not backed up
        """
        self.cluster = cluster
        self.backup_dir = Path(backup_dir)
        self.namespace = namespace
        self.runtime = runtime

    def _write_yaml(self, filename: str, data) -> Path:
        path = self.backup_dir / filename
        with path.open('w') as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
        return path

    def backup_cluster_policy(self) -> Path:
        logger.info("Backing up ClusterPolicy...")
        try:
            policy = self.cluster.get_cluster_policy()
        except ApiException as e:
            raise BackupError(f"Failed to read ClusterPolicy: {e.reason}")
        return self._write_yaml(CLUSTER_POLICY_BACKUP, policy)

    def _mig_configmap_name(self) -> Optional[str]:
        try:
            policy = self.cluster.get_cluster_policy()
        except ApiException as e:
            logger.debug(f"Could not read ClusterPolicy for MIG ConfigMap name: {e.reason}")
            return None
        spec = policy.get('spec') or {}
        return ((spec.get('migManager') or {}).get('config') or {}).get('name')

    def backup_mig_configmap(self) -> Optional[Path]:
        """
        Back up the MIG ConfigMap referenced by the ClusterPolicy.

        A missing ConfigMap is common on first-time setup and only warned about.
        """
        name = self._mig_configmap_name()
        if not name:
            logger.warning("No MIG ConfigMap configured in ClusterPolicy.")
            return None

        logger.info(f"Backing up MIG ConfigMap: {name}")
        try:
            configmap = self.cluster.get_configmap(name, self.namespace)
        except ApiException as e:
            if e.status == 404:
                logger.warning(f"MIG ConfigMap {name} not found in {self.namespace}.")
                return None
            raise BackupError(f"Failed to read ConfigMap {name}: {e.reason}")
        return self._write_yaml(MIG_CONFIGMAP_BACKUP, self.cluster.to_dict(configmap))

    def backup_node_labels(self) -> Path:
        logger.info("Recording current MIG node labels...")
        try:
            nodes = self.cluster.list_nodes_with_label(MIG_CONFIG_LABEL)
        except ApiException as e:
            raise BackupError(f"Failed to list nodes: {e.reason}")

        rows = [('NODE', 'MIG_CONFIG')]
        for node in nodes:
            labels = node.metadata.labels or {}
            rows.append((node.metadata.name, labels.get(MIG_CONFIG_LABEL, '<none>')))

        width = max(len(row[0]) for row in rows) + 3
        path = self.backup_dir / NODE_LABELS_BACKUP
        path.write_text(''.join(f"{n:<{width}}{v}\n" for n, v in rows))
        logger.info(f"Node labels saved to {path}")
        return path

    def backup_runtime_config(self) -> Path:
        """
        Copy the node's runtime config.toml to a timestamped local file.

        Raises:
            BackupError: If the config file does not exist on the node
            RemoteExecutionError: If the copy fails
        """
        if self.runtime is None:
            raise BackupError("No worker node runtime configured for backup")

        node = self.runtime.node
        if not self.runtime.runtime_config_exists():
            raise BackupError(f"Runtime config {self.runtime.config_path} not found on {node}")

        path = self.backup_dir / f"{RUNTIME_CONFIG_BACKUP_PREFIX}{int(time.time())}"
        logger.info(f"Backing up runtime config from {node} to {path}")
        self.runtime.executor.copy_from(self.runtime.config_path, str(path))
        return path

    def backup_all(self, include_runtime: bool = True) -> None:
        self.backup_cluster_policy()
        self.backup_mig_configmap()
        self.backup_node_labels()
        if include_runtime:
            self.backup_runtime_config()
