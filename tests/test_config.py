"""Tests for run settings and environment parsing."""

import pytest

from mig_reconfigure.config import Settings, env_bool, env_float, env_int
from mig_reconfigure.errors import ConfigurationError

pytestmark = [
    pytest.mark.unit,
]


class TestEnvHelpers:

    @pytest.mark.parametrize('value, expected', [
        ('true', True), ('1', True), ('YES', True), ('false', False), ('0', False), ('', False),
    ])
    def test_env_bool(self, monkeypatch, value, expected):
        monkeypatch.setenv('CDI_ENABLED', value)
        assert env_bool('CDI_ENABLED', not expected) is expected

    def test_env_bool_default(self, monkeypatch):
        monkeypatch.delenv('CDI_ENABLED', raising=False)
        assert env_bool('CDI_ENABLED', True) is True

    def test_env_int(self, monkeypatch):
        monkeypatch.setenv('MAX_RETRIES', '7')
        assert env_int('MAX_RETRIES', 15) == 7

    def test_env_int_invalid(self, monkeypatch):
        monkeypatch.setenv('MAX_RETRIES', 'seven')
        with pytest.raises(ConfigurationError, match='MAX_RETRIES'):
            env_int('MAX_RETRIES', 15)

    def test_env_float_blank_uses_default(self, monkeypatch):
        monkeypatch.setenv('SSH_TIMEOUT', ' ')
        assert env_float('SSH_TIMEOUT', None) is None


class TestSettings:

    def test_defaults(self):
        settings = Settings(node_name='gpu-node-1')

        settings.validate()
        assert settings.max_retries == 15
        assert settings.poll_interval == 20
        assert settings.min_success_attempt == 2
        assert settings.max_failed_allowed == 2
        assert settings.max_apply_attempts == 3
        assert settings.cdi_enabled is True
        assert settings.ssh_timeout is None

    def test_node_name_required(self):
        with pytest.raises(ConfigurationError, match='NODE_NAME'):
            Settings().validate()

    @pytest.mark.parametrize('overrides', [
        {'max_retries': 0},
        {'max_apply_attempts': 0},
        {'poll_interval': -1},
        {'min_success_attempt': 16},
        {'ssh_timeout': 0},
        {'operator_namespace': ''},
    ])
    def test_invalid(self, overrides):
        with pytest.raises(ConfigurationError):
            Settings(node_name='gpu-node-1', **overrides).validate()
