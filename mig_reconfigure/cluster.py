"""
Kubernetes API access used by the MIG reconfiguration workflow.

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
from typing import Dict, List, Optional

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.stream import stream

from .constants import (
    CLUSTER_POLICY_GROUP,
    CLUSTER_POLICY_NAME,
    CLUSTER_POLICY_PLURAL,
    CLUSTER_POLICY_VERSION,
)

logger = logging.getLogger(__name__)


def load_kube_config(kubeconfig: Optional[str] = None) -> None:
    """Load in-cluster configuration, falling back to a kubeconfig file."""
    if kubeconfig:
        config.load_kube_config(config_file=kubeconfig)
        logger.info(f"Loaded kubeconfig from {kubeconfig}")
        return
    try:
        config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes configuration")
    except config.ConfigException:
        try:
            config.load_kube_config()
            logger.info("Loaded kubeconfig from default location")
        except config.ConfigException as e:
            logger.error(f"Failed to load Kubernetes configuration: {e}")
            raise


class KubeCluster:
    """Thin facade over the CoreV1 and CustomObjects APIs."""

    def __init__(self, core_v1: Optional[client.CoreV1Api] = None,
                 custom_objects: Optional[client.CustomObjectsApi] = None):
        self.v1 = core_v1 or client.CoreV1Api()
        self.custom = custom_objects or client.CustomObjectsApi()

    @classmethod
    def from_config(cls, kubeconfig: Optional[str] = None) -> 'KubeCluster':
        load_kube_config(kubeconfig)
        return cls()

    def to_dict(self, obj) -> dict:
        """Convert an API model into plain data suitable for YAML output."""
        return self.v1.api_client.sanitize_for_serialization(obj)

    # Cluster resources

    def get_cluster_policy(self) -> dict:
        return self.custom.get_cluster_custom_object(
            CLUSTER_POLICY_GROUP, CLUSTER_POLICY_VERSION, CLUSTER_POLICY_PLURAL, CLUSTER_POLICY_NAME
        )

    def get_configmap(self, name: str, namespace: str):
        return self.v1.read_namespaced_config_map(name, namespace)

    def apply_configmap(self, manifest: dict, namespace: str) -> None:
        """
        Create or replace a ConfigMap from a manifest.

        Args:
            manifest: ConfigMap manifest (apiVersion/kind/metadata/data)
            namespace: Namespace used when the manifest does not set one
        """
        metadata = manifest.get('metadata') or {}
        name = metadata['name']
        namespace = metadata.get('namespace') or namespace

        try:
            self.v1.read_namespaced_config_map(name, namespace)
        except ApiException as e:
            if e.status != 404:
                raise
            self.v1.create_namespaced_config_map(namespace, manifest)
            logger.info(f"configmap/{name} created in {namespace}")
            return

        self.v1.replace_namespaced_config_map(name, namespace, manifest)
        logger.info(f"configmap/{name} configured in {namespace}")

    # Nodes

    def list_nodes_with_label(self, label: str) -> List:
        return self.v1.list_node(label_selector=label).items

    def get_node_labels(self, node_name: str) -> Dict[str, str]:
        node = self.v1.read_node(node_name)
        return node.metadata.labels or {}

    def get_node_label(self, node_name: str, label: str) -> str:
        return self.get_node_labels(node_name).get(label, '')

    def set_node_label(self, node_name: str, label: str, value: str) -> None:
        """Set (overwrite) a single label on the node."""
        self.v1.patch_node(node_name, {'metadata': {'labels': {label: value}}})
        logger.info(f"node/{node_name} labeled {label}={value}")

    def set_unschedulable(self, node_name: str, unschedulable: bool) -> None:
        self.v1.patch_node(node_name, {'spec': {'unschedulable': unschedulable}})

    # Pods

    def list_pods_all_namespaces(self) -> List:
        return self.v1.list_pod_for_all_namespaces().items

    def list_pods(self, namespace: str) -> List:
        return self.v1.list_namespaced_pod(namespace=namespace).items

    def exec_in_pod(self, pod_name: str, namespace: str, command: List[str],
                    container: Optional[str] = None) -> str:
        """Run a command inside a pod and return its combined output."""
        kwargs = {}
        if container:
            kwargs['container'] = container
        return stream(
            self.v1.connect_get_namespaced_pod_exec,
            pod_name,
            namespace,
            command=command,
            stderr=True,
            stdin=False,
            stdout=True,
            tty=False,
            **kwargs
        )
