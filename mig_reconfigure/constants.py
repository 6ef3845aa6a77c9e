"""
Well-known names shared by the MIG reconfiguration workflow.

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

# Node labels (wire protocol with the MIG Manager)
MIG_CONFIG_LABEL = 'nvidia.com/mig.config'
MIG_CONFIG_STATE_LABEL = 'nvidia.com/mig.config.state'
MIG_CONFIG_SENTINEL = 'temp'
MIG_CONFIG_NAME = 'custom-mig-config'

MIG_STATE_PENDING = 'pending'
MIG_STATE_SUCCESS = 'success'
MIG_STATE_FAILED = 'failed'

# GPU Operator ClusterPolicy
CLUSTER_POLICY_GROUP = 'nvidia.com'
CLUSTER_POLICY_VERSION = 'v1'
CLUSTER_POLICY_PLURAL = 'clusterpolicies'
CLUSTER_POLICY_NAME = 'cluster-policy'

# Worker node runtime
RUNTIME_CONFIG_PATH = '/etc/nvidia-container-runtime/config.toml'
CDI_SPEC_PATH = '/etc/cdi/nvidia.yaml'
RUNTIME_DAEMON = 'containerd'

# Pod naming conventions
MIG_MANAGER_POD_PATTERN = 'mig-manager'
GPU_WORKLOAD_POD_PATTERN = 'dgx-'
VALIDATION_COMMAND = ['nvidia-smi']

DEFAULT_LOCK_FILE = '/var/lock/nvidia-mig-config.lock'

# Backup file names inside <run>/backup/
CLUSTER_POLICY_BACKUP = 'cluster-policy.yaml'
MIG_CONFIGMAP_BACKUP = 'mig-configmap.yaml'
NODE_LABELS_BACKUP = 'node-mig-labels.txt'
RUNTIME_CONFIG_BACKUP_PREFIX = 'config.toml.bak.'
