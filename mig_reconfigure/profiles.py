"""
MIG partition profiles and ConfigMap generation.

A template file lists the GPU model and the partition profiles an operator
may choose from. The operator's per-GPU selection is turned into the
ConfigMap consumed by the GPU Operator's MIG Manager, with GPUs that share
a profile grouped into a single entry.

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
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Tuple

import yaml

from .constants import MIG_CONFIG_NAME
from .errors import TemplateError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Profile:
    """A named partition layout for one GPU."""
    name: str
    mig_enabled: bool
    devices: Tuple[Tuple[str, int], ...] = ()
    description: str = ''

    def mig_devices(self) -> Dict[str, int]:
        return {slice_type: count for slice_type, count in self.devices}


@dataclass(frozen=True)
class MigTemplate:
    gpu_model: str
    gpu_memory: str
    gpu_count: int
    profiles: Tuple[Profile, ...]


@dataclass(frozen=True)
class DesiredConfiguration:
    """The profile selected for every GPU index 0..gpu_count-1."""
    gpu_count: int
    assignments: Mapping[int, Profile] = field(default_factory=dict)

    def __post_init__(self):
        expected = set(range(self.gpu_count))
        actual = set(self.assignments)
        if actual != expected:
            missing = sorted(expected - actual)
            extra = sorted(actual - expected)
            raise TemplateError(
                f"GPU assignments must cover indices 0..{self.gpu_count - 1} exactly "
                f"(missing: {missing}, unexpected: {extra})"
            )

    @classmethod
    def from_selections(cls, template: MigTemplate,
                        selections: Mapping[int, int]) -> 'DesiredConfiguration':
        """
        Build a configuration from GPU index -> profile index selections.

        GPUs without a selection get the template's first profile.

        Raises:
            TemplateError: If a GPU or profile index is out of range
        """
        assignments = {}
        for gpu in range(template.gpu_count):
            assignments[gpu] = template.profiles[0]

        for gpu, profile_idx in selections.items():
            if not 0 <= gpu < template.gpu_count:
                raise TemplateError(f"GPU index {gpu} out of range (0..{template.gpu_count - 1})")
            if not 0 <= profile_idx < len(template.profiles):
                raise TemplateError(
                    f"Profile index {profile_idx} out of range (0..{len(template.profiles) - 1})"
                )
            assignments[gpu] = template.profiles[profile_idx]

        return cls(gpu_count=template.gpu_count, assignments=assignments)

    def groups(self) -> List[Tuple[Profile, List[int]]]:
        """GPU indices grouped by profile, in order of first appearance."""
        grouped: Dict[Profile, List[int]] = {}
        for gpu in range(self.gpu_count):
            grouped.setdefault(self.assignments[gpu], []).append(gpu)
        return list(grouped.items())


def _parse_bool(value, where: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ('true', 'false'):
        return value.strip().lower() == 'true'
    raise TemplateError(f"{where}: mig-enabled must be true or false, got {value!r}")


def _parse_profile(raw: dict, index: int) -> Profile:
    if not isinstance(raw, dict):
        raise TemplateError(f"Profile {index} is not a mapping")

    name = str(raw.get('name') or '').strip()
    if not name:
        raise TemplateError(f"Template validation failed: profile {index} has an empty name.")

    mig_enabled = _parse_bool(raw.get('mig-enabled', False), f"Profile '{name}'")
    raw_devices = raw.get('mig-devices') or {}
    if not isinstance(raw_devices, dict):
        raise TemplateError(f"Profile '{name}': mig-devices must be a mapping")

    devices = []
    for slice_type, count in raw_devices.items():
        try:
            devices.append((str(slice_type), int(count)))
        except (TypeError, ValueError):
            raise TemplateError(f"Profile '{name}': invalid instance count {count!r} for {slice_type}")

    if mig_enabled and not devices:
        raise TemplateError(f"Profile '{name}' enables MIG but lists no mig-devices")

    return Profile(
        name=name,
        mig_enabled=mig_enabled,
        devices=tuple(devices) if mig_enabled else (),
        description=str(raw.get('description') or '').strip(),
    )


def load_template(path) -> MigTemplate:
    """
    Load and validate a MIG profile template.

    Args:
        path: Path to the template YAML file

    Returns:
        The parsed MigTemplate

    Raises:
        TemplateError: If the file is missing or fails validation
    """
    path = Path(path)
    if not path.is_file():
        raise TemplateError(f"Template file not found: {path}")

    try:
        with path.open() as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise TemplateError(f"Failed to parse template {path}: {e}")

    gpu = data.get('gpu') or {}
    try:
        gpu_count = int(gpu.get('count') or 0)
    except (TypeError, ValueError):
        raise TemplateError(f"Template validation failed: invalid GPU count {gpu.get('count')!r}")
    if gpu_count <= 0:
        raise TemplateError("Template validation failed: GPU count is 0 or missing.")

    raw_profiles = data.get('profiles') or []
    if not raw_profiles:
        raise TemplateError("Template validation failed: no profiles parsed.")

    profiles = tuple(_parse_profile(raw, i) for i, raw in enumerate(raw_profiles))
    template = MigTemplate(
        gpu_model=str(gpu.get('model') or ''),
        gpu_memory=str(gpu.get('memory') or ''),
        gpu_count=gpu_count,
        profiles=profiles,
    )
    logger.info(f"Loaded {len(profiles)} profiles for {template.gpu_model} ({gpu_count} GPUs)")
    return template


def build_mig_config(desired: DesiredConfiguration) -> dict:
    """The MIG Manager config document (the ConfigMap's config.yaml)."""
    entries = []
    for profile, gpus in desired.groups():
        entry = {'devices': gpus, 'mig-enabled': profile.mig_enabled}
        if profile.mig_enabled:
            entry['mig-devices'] = profile.mig_devices()
        entries.append(entry)
    return {'version': 'v1', 'mig-configs': {MIG_CONFIG_NAME: entries}}


def build_mig_configmap(desired: DesiredConfiguration, namespace: str) -> dict:
    config_yaml = yaml.safe_dump(build_mig_config(desired), default_flow_style=None, sort_keys=False)
    return {
        'apiVersion': 'v1',
        'kind': 'ConfigMap',
        'metadata': {'name': MIG_CONFIG_NAME, 'namespace': namespace},
        'data': {'config.yaml': config_yaml},
    }


def render_mig_configmap(desired: DesiredConfiguration, namespace: str) -> str:
    return yaml.safe_dump(build_mig_configmap(desired, namespace), sort_keys=False)


def write_mig_configmap(desired: DesiredConfiguration, namespace: str, path) -> Path:
    """Write the generated ConfigMap manifest to path."""
    path = Path(path)
    logger.info(f"Generating ConfigMap: {path}")
    for profile, gpus in desired.groups():
        logger.info(f"  GPUs {gpus} -> {profile.name}")
    path.write_text(render_mig_configmap(desired, namespace))
    logger.info("ConfigMap generated successfully.")
    return path


def read_configmap_manifest(path) -> dict:
    """Load a ConfigMap manifest file for applying to the cluster."""
    path = Path(path)
    if not path.is_file():
        raise TemplateError(f"MIG config file not found: {path}")
    try:
        with path.open() as f:
            manifest = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise TemplateError(f"Failed to parse MIG config file {path}: {e}")
    if not isinstance(manifest, dict) or manifest.get('kind') != 'ConfigMap':
        raise TemplateError(f"{path} does not contain a ConfigMap manifest")
    if not (manifest.get('metadata') or {}).get('name'):
        raise TemplateError(f"{path}: ConfigMap has no metadata.name")
    return manifest
