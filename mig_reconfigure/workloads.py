"""
Safety gate refusing to reconfigure while GPU workloads are running.

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
from typing import List

from kubernetes.client.rest import ApiException

from .constants import GPU_WORKLOAD_POD_PATTERN
from .errors import ClusterOperationError, WorkloadsPresentError

logger = logging.getLogger(__name__)


def find_gpu_workloads(cluster, pattern: str = GPU_WORKLOAD_POD_PATTERN) -> List[str]:
    """Return `namespace/name` of every pod whose name contains pattern."""
    try:
        pods = cluster.list_pods_all_namespaces()
    except ApiException as e:
        raise ClusterOperationError(f"Failed to list pods: {e.reason}")

    return [
        f"{pod.metadata.namespace}/{pod.metadata.name}"
        for pod in pods
        if pattern in pod.metadata.name
    ]


def check_no_active_workloads(cluster, node_name: str,
                              pattern: str = GPU_WORKLOAD_POD_PATTERN) -> None:
    """
    Abort if GPU workloads (pods named `dgx-*`) are still present.

    The scan covers every namespace on every node, not just node_name: on a
    multi-node cluster, workloads on other GPU nodes also block the run.
    The operator must drain them by hand.

    Raises:
        WorkloadsPresentError: Listing the offending pods
    """
    logger.info(f"Checking for running GPU workloads ({pattern}*) before reconfiguring {node_name}...")
    workloads = find_gpu_workloads(cluster, pattern)
    if workloads:
        logger.error("The following GPU workloads are still running:")
        for workload in workloads:
            logger.error(f"  {workload}")
        logger.error("Please delete these workloads and re-run.")
        raise WorkloadsPresentError(workloads)
    logger.info("No GPU workloads running. Safe to proceed.")
