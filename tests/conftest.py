"""Shared test doubles: no test touches a real cluster or worker node."""

import subprocess
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from mig_reconfigure.config import Settings
from mig_reconfigure.errors import RemoteExecutionError
from mig_reconfigure.runlog import RunContext


class FakeExecutor:
    """Remote executor recording every command and answering from rules.

    `responses` maps a command substring to (returncode, stdout), or to a
    list of them answered in turn with the last one repeating. The first
    matching rule wins and unmatched commands succeed with empty output.
    """

    def __init__(self, node: str = 'gpu-node-1', responses: Optional[Dict[str, tuple]] = None):
        self.node = node
        self.responses = responses or {}
        self.commands: List[str] = []
        self.copies: List[tuple] = []

    def run(self, command: str, check: bool = True):
        self.commands.append(command)
        returncode, stdout = 0, ''
        for pattern, response in self.responses.items():
            if pattern in command:
                if isinstance(response, list):
                    response = response.pop(0) if len(response) > 1 else response[0]
                returncode, stdout = response
                break
        if check and returncode != 0:
            raise RemoteExecutionError(f"Command failed on {self.node}: {command}", returncode=returncode)
        return subprocess.CompletedProcess(['ssh', self.node, command], returncode, stdout, '')

    def copy_from(self, remote_path: str, local_path: str) -> None:
        self.copies.append((remote_path, local_path))
        Path(local_path).write_text('mode = "cdi"\n')

    def mutations(self) -> List[str]:
        return [c for c in self.commands if 'sed -i' in c or 'systemctl restart' in c]


class ScriptedLabelState:
    """Returns a fixed sequence of observed MIG state values."""

    def __init__(self, states: List[str], node_name: str = 'gpu-node-1'):
        self.states = list(states)
        self.node_name = node_name
        self.reads = 0

    def read_state(self) -> str:
        self.reads += 1
        if not self.states:
            raise AssertionError('read_state called more often than scripted')
        return self.states.pop(0)


class RecordingSleep:

    def __init__(self):
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)

    @property
    def total(self) -> float:
        return sum(self.calls)


@pytest.fixture
def sleeper():
    return RecordingSleep()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        node_name='gpu-node-1',
        operator_namespace='gpu-operator',
        mig_config_file=str(tmp_path / 'custom-mig-config.yaml'),
        template_file=str(tmp_path / 'template.yaml'),
        lock_file=str(tmp_path / 'mig.lock'),
        base_log_dir=str(tmp_path / 'logs'),
        poll_interval=1,
        temp_label_sleep=1,
        custom_label_sleep=1,
    )


@pytest.fixture
def run_ctx(tmp_path):
    ctx = RunContext.create(tmp_path / 'logs', 'test')
    yield ctx
    ctx.close()


TEMPLATE_YAML = """\
gpu:
  model: "NVIDIA H200"
  memory: "141GB"
  count: 4

profiles:
  - name: "MIG Disabled (Full GPU)"
    description: "Whole GPU"
    mig-enabled: false
  - name: "3g.71gb x2"
    description: "Two half-GPU slices"
    mig-enabled: true
    mig-devices:
      "3g.71gb": 2
  - name: "1g.18gb x7"
    mig-enabled: true
    mig-devices:
      "1g.18gb": 7
"""


@pytest.fixture
def template_file(tmp_path):
    path = tmp_path / 'template.yaml'
    path.write_text(TEMPLATE_YAML)
    return path
