"""Tests for template loading and MIG ConfigMap generation."""

from pathlib import Path

import pytest
import yaml

from mig_reconfigure.errors import TemplateError
from mig_reconfigure.profiles import (
    DesiredConfiguration,
    Profile,
    build_mig_config,
    build_mig_configmap,
    load_template,
    read_configmap_manifest,
    write_mig_configmap,
)

pytestmark = [
    pytest.mark.unit,
]

DISABLED = Profile(name='MIG Disabled (Full GPU)', mig_enabled=False)
HALVES = Profile(name='3g.71gb x2', mig_enabled=True, devices=(('3g.71gb', 2),))
SEVENTHS = Profile(name='1g.18gb x7', mig_enabled=True, devices=(('1g.18gb', 7),))
SHIPPED_TEMPLATE = Path(__file__).resolve().parent.parent / 'templates' / 'custom-mig-config-template.yaml'


def entries(desired):
    return build_mig_config(desired)['mig-configs']['custom-mig-config']


class TestLoadTemplate:

    def test_load(self, template_file):
        template = load_template(template_file)

        assert template.gpu_model == 'NVIDIA H200'
        assert template.gpu_memory == '141GB'
        assert template.gpu_count == 4
        assert [p.name for p in template.profiles] == [
            'MIG Disabled (Full GPU)', '3g.71gb x2', '1g.18gb x7'
        ]
        assert template.profiles[0] == Profile(
            name='MIG Disabled (Full GPU)', mig_enabled=False, description='Whole GPU'
        )
        assert template.profiles[1].devices == (('3g.71gb', 2),)

    def test_missing_file(self, tmp_path):
        with pytest.raises(TemplateError, match='not found'):
            load_template(tmp_path / 'nope.yaml')

    @pytest.mark.parametrize('content, message', [
        ('gpu: {count: 0}\nprofiles: [{name: a, mig-enabled: false}]\n', 'GPU count'),
        ('gpu: {count: 2}\nprofiles: []\n', 'no profiles'),
        ('gpu: {count: 2}\nprofiles: [{name: "", mig-enabled: false}]\n', 'empty name'),
        ('gpu: {count: 2}\nprofiles: [{name: a, mig-enabled: true}]\n', 'no mig-devices'),
        ('gpu: {count: 2}\nprofiles: [{name: a, mig-enabled: maybe}]\n', 'true or false'),
    ])
    def test_validation(self, tmp_path, content, message):
        path = tmp_path / 'template.yaml'
        path.write_text(content)

        with pytest.raises(TemplateError, match=message):
            load_template(path)

    def test_shipped_template_loads(self):
        template = load_template(SHIPPED_TEMPLATE)
        assert template.gpu_count == 8
        assert not template.profiles[0].mig_enabled


class TestDesiredConfiguration:

    def test_unselected_gpus_default_to_first_profile(self, template_file):
        template = load_template(template_file)

        desired = DesiredConfiguration.from_selections(template, {2: 1})
        assert desired.assignments[0].name == 'MIG Disabled (Full GPU)'
        assert desired.assignments[2].name == '3g.71gb x2'

    @pytest.mark.parametrize('selections', [{4: 0}, {-1: 0}, {0: 3}])
    def test_out_of_range(self, template_file, selections):
        template = load_template(template_file)

        with pytest.raises(TemplateError, match='out of range'):
            DesiredConfiguration.from_selections(template, selections)

    def test_incomplete_assignment_rejected(self):
        with pytest.raises(TemplateError):
            DesiredConfiguration(gpu_count=3, assignments={0: DISABLED, 2: DISABLED})


class TestConfigMapGeneration:

    def test_all_disabled_is_one_group(self):
        desired = DesiredConfiguration(4, {i: DISABLED for i in range(4)})

        assert entries(desired) == [{'devices': [0, 1, 2, 3], 'mig-enabled': False}]

    def test_two_profiles_two_groups(self):
        desired = DesiredConfiguration(4, {0: HALVES, 1: HALVES, 2: DISABLED, 3: DISABLED})

        assert entries(desired) == [
            {'devices': [0, 1], 'mig-enabled': True, 'mig-devices': {'3g.71gb': 2}},
            {'devices': [2, 3], 'mig-enabled': False},
        ]

    @pytest.mark.parametrize('layout', [
        [DISABLED],
        [HALVES, DISABLED, HALVES, SEVENTHS, DISABLED, SEVENTHS, HALVES, DISABLED],
        [SEVENTHS, SEVENTHS, HALVES],
    ])
    def test_every_gpu_in_exactly_one_group(self, layout):
        desired = DesiredConfiguration(len(layout), dict(enumerate(layout)))

        seen = [gpu for entry in entries(desired) for gpu in entry['devices']]
        assert sorted(seen) == list(range(len(layout)))
        for entry in entries(desired):
            for gpu in entry['devices']:
                assert layout[gpu].mig_enabled == entry['mig-enabled']

    def test_configmap_manifest(self):
        desired = DesiredConfiguration(2, {0: HALVES, 1: DISABLED})

        manifest = build_mig_configmap(desired, 'gpu-operator')
        assert manifest['kind'] == 'ConfigMap'
        assert manifest['metadata'] == {'name': 'custom-mig-config', 'namespace': 'gpu-operator'}
        inner = yaml.safe_load(manifest['data']['config.yaml'])
        assert inner['version'] == 'v1'
        assert inner['mig-configs']['custom-mig-config'][0]['mig-devices'] == {'3g.71gb': 2}

    def test_write_and_read_back(self, tmp_path):
        desired = DesiredConfiguration(2, {0: SEVENTHS, 1: SEVENTHS})
        path = tmp_path / 'custom-mig-config.yaml'

        write_mig_configmap(desired, 'gpu-operator', path)
        manifest = read_configmap_manifest(path)
        assert manifest == build_mig_configmap(desired, 'gpu-operator')

    def test_read_rejects_non_configmap(self, tmp_path):
        path = tmp_path / 'x.yaml'
        path.write_text('kind: Pod\nmetadata: {name: x}\n')

        with pytest.raises(TemplateError):
            read_configmap_manifest(path)
