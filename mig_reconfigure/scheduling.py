"""
Cordon/uncordon of the worker node around MIG reconfiguration.

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

from kubernetes.client.rest import ApiException

from .errors import ClusterOperationError

logger = logging.getLogger(__name__)


class NodeSchedulingGate:

    def __init__(self, cluster, node_name: str):
        self.cluster = cluster
        self.node_name = node_name

    def cordon(self) -> bool:
        """
        Mark the node unschedulable.

        Failures are logged and swallowed.

        Returns:
            True if the node was cordoned, False otherwise
        """
        logger.info(f"Cordoning node {self.node_name}...")
        try:
            self.cluster.set_unschedulable(self.node_name, True)
        except ApiException as e:
            logger.warning(f"Failed to cordon node {self.node_name}: {e.reason}. Continuing.")
            return False
        logger.info(f"node/{self.node_name} cordoned")
        return True

    def uncordon(self) -> None:
        """
        Mark the node schedulable again.

        Raises:
            ClusterOperationError: If the node cannot be uncordoned
        """
        logger.info(f"Uncordoning node {self.node_name}...")
        try:
            self.cluster.set_unschedulable(self.node_name, False)
        except ApiException as e:
            logger.error(f"Failed to uncordon node {self.node_name}: {e.reason}")
            raise ClusterOperationError(
                f"Failed to uncordon node {self.node_name}; it is still cordoned: {e.reason}"
            )
        logger.info(f"node/{self.node_name} uncordoned")
