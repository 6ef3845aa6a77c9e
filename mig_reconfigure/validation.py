"""
Post-apply validation run inside the MIG Manager pod.

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
from typing import List, Optional

from kubernetes.client.rest import ApiException

from .constants import MIG_MANAGER_POD_PATTERN, VALIDATION_COMMAND
from .errors import ClusterOperationError, ResourceNotFoundError

logger = logging.getLogger(__name__)


def find_mig_manager_pod(cluster, namespace: str, node_name: str,
                         pattern: str = MIG_MANAGER_POD_PATTERN) -> str:
    """
    Name of the MIG Manager pod scheduled on node_name.

    Raises:
        ResourceNotFoundError: If no such pod exists
    """
    logger.info("Locating MIG Manager pod...")
    try:
        pods = cluster.list_pods(namespace)
    except ApiException as e:
        raise ClusterOperationError(f"Failed to list pods in {namespace}: {e.reason}")

    for pod in pods:
        if pattern in pod.metadata.name and pod.spec.node_name == node_name:
            return pod.metadata.name

    logger.error("MIG Manager pod not found.")
    raise ResourceNotFoundError(f"No {pattern} pod found on node {node_name} in namespace {namespace}")


def validate_gpu_layout(cluster, namespace: str, node_name: str,
                        command: Optional[List[str]] = None,
                        container: Optional[str] = None) -> str:
    """Run nvidia-smi inside the node's MIG Manager pod and log its output."""
    command = command or VALIDATION_COMMAND
    pod = find_mig_manager_pod(cluster, namespace, node_name)

    logger.info(f"Executing {' '.join(command)} inside pod {pod}...")
    try:
        output = cluster.exec_in_pod(pod, namespace, command, container=container)
    except ApiException as e:
        raise ClusterOperationError(f"Failed to exec in pod {pod}: {e.reason}")

    for line in output.splitlines():
        logger.info(line)
    return output
