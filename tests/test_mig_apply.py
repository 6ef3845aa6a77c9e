"""Tests for the MIG apply/poll state machine."""

from unittest.mock import Mock, call

import pytest
from kubernetes.client.rest import ApiException

from conftest import RecordingSleep, ScriptedLabelState
from mig_reconfigure.constants import MIG_CONFIG_LABEL
from mig_reconfigure.errors import (
    ClusterOperationError,
    MigApplyExhaustedError,
    MigFailedError,
    MigTimeoutError,
    MigUnexpectedStateError,
)
from mig_reconfigure.mig_apply import (
    ApplyPolicy,
    LabelCycler,
    MigApplier,
    NodeLabelState,
    PollOutcome,
    wait_for_mig_state,
)

pytestmark = [
    pytest.mark.unit,
]

MANIFEST = {
    'apiVersion': 'v1',
    'kind': 'ConfigMap',
    'metadata': {'name': 'custom-mig-config', 'namespace': 'gpu-operator'},
    'data': {'config.yaml': 'version: v1\n'},
}


@pytest.fixture
def policy():
    return ApplyPolicy(
        max_retries=15,
        poll_interval=20,
        min_success_attempt=2,
        max_failed_allowed=2,
        max_apply_attempts=3,
        temp_label_sleep=20,
        custom_label_sleep=20,
    )


class TestWaitForMigState:

    def test_success_after_pending_is_accepted(self, policy, sleeper):
        """pending, pending, success -> accepted on the 3rd poll."""
        state = ScriptedLabelState(['pending', 'pending', 'success'])

        assert wait_for_mig_state(state, policy, sleep=sleeper) is PollOutcome.SUCCESS
        assert state.reads == 3
        assert sleeper.calls == [20, 20]

    def test_success_on_first_poll_is_rejected_early(self, policy, sleeper):
        state = ScriptedLabelState(['success', 'success'])

        assert wait_for_mig_state(state, policy, sleep=sleeper) is PollOutcome.REJECTED_EARLY
        # Rejection happens on the first read, not a later one
        assert state.reads == 1
        assert sleeper.calls == []

    def test_success_exactly_at_min_attempt_is_accepted(self, policy, sleeper):
        state = ScriptedLabelState(['pending', 'success'])

        assert wait_for_mig_state(state, policy, sleep=sleeper) is PollOutcome.SUCCESS

    def test_failure_threshold_aborts(self, policy, sleeper):
        state = ScriptedLabelState(['failed', 'failed', 'success'])

        with pytest.raises(MigFailedError):
            wait_for_mig_state(state, policy, sleep=sleeper)
        # No polling after the threshold is reached
        assert state.reads == 2

    def test_single_failure_is_tolerated(self, policy, sleeper):
        state = ScriptedLabelState(['pending', 'failed', 'pending', 'success'])

        assert wait_for_mig_state(state, policy, sleep=sleeper) is PollOutcome.SUCCESS

    def test_failures_need_not_be_consecutive(self, policy, sleeper):
        state = ScriptedLabelState(['failed', 'pending', 'failed', 'success'])

        with pytest.raises(MigFailedError):
            wait_for_mig_state(state, policy, sleep=sleeper)
        assert state.reads == 3

    def test_pending_timeout(self, policy, sleeper):
        state = ScriptedLabelState(['pending'] * policy.max_retries)

        with pytest.raises(MigTimeoutError):
            wait_for_mig_state(state, policy, sleep=sleeper)
        assert state.reads == policy.max_retries
        assert sleeper.total == pytest.approx(policy.max_retries * policy.poll_interval)

    @pytest.mark.parametrize('value', ['', 'rebooting', 'SUCCESS'])
    def test_unexpected_state_aborts(self, policy, sleeper, value):
        state = ScriptedLabelState([value])

        with pytest.raises(MigUnexpectedStateError) as exc_info:
            wait_for_mig_state(state, policy, sleep=sleeper)
        assert exc_info.value.state == value

    def test_counters_are_recorded(self, policy, sleeper, run_ctx):
        state = ScriptedLabelState(['pending', 'failed', 'success'])

        wait_for_mig_state(state, policy, sleep=sleeper, ctx=run_ctx)
        assert run_ctx.poll_attempts == 3
        assert run_ctx.failed_count == 1


class TestNodeLabelState:

    def test_reads_state_label(self):
        cluster = Mock()
        cluster.get_node_label.return_value = 'pending'

        state = NodeLabelState(cluster, 'gpu-node-1')
        assert state.read_state() == 'pending'
        cluster.get_node_label.assert_called_once_with('gpu-node-1', 'nvidia.com/mig.config.state')

    def test_api_error_reads_as_empty(self):
        cluster = Mock()
        cluster.get_node_label.side_effect = ApiException(status=500, reason='boom')

        assert NodeLabelState(cluster, 'gpu-node-1').read_state() == ''


class TestLabelCycler:

    def test_cycle_sets_sentinel_then_target(self, policy, sleeper):
        cluster = Mock()
        cycler = LabelCycler(cluster, 'gpu-node-1', policy, sleep=sleeper)

        cycler.cycle()

        assert cluster.set_node_label.call_args_list == [
            call('gpu-node-1', MIG_CONFIG_LABEL, 'temp'),
            call('gpu-node-1', MIG_CONFIG_LABEL, 'custom-mig-config'),
        ]
        assert sleeper.calls == [policy.temp_label_sleep, policy.custom_label_sleep]

    def test_label_failure_is_fatal(self, policy, sleeper):
        cluster = Mock()
        cluster.set_node_label.side_effect = ApiException(status=403, reason='Forbidden')

        with pytest.raises(ClusterOperationError):
            LabelCycler(cluster, 'gpu-node-1', policy, sleep=sleeper).reset()


class TestMigApplier:

    def make_applier(self, states, policy, sleeper=None):
        cluster = Mock()
        cycler = Mock()
        state = ScriptedLabelState(states)
        applier = MigApplier(cluster, 'gpu-node-1', 'gpu-operator', policy,
                             state=state, cycler=cycler, sleep=sleeper or RecordingSleep())
        return applier, cluster, cycler, state

    def test_success_on_first_attempt(self, policy):
        applier, cluster, cycler, _ = self.make_applier(['pending', 'success'], policy)

        applier.apply_with_retry(MANIFEST)

        cluster.apply_configmap.assert_called_once_with(MANIFEST, 'gpu-operator')
        assert cycler.cycle.call_count == 1

    def test_early_success_recycles_and_retries(self, policy, run_ctx):
        """Stale success on the first poll triggers one re-cycle and a new attempt."""
        applier, cluster, cycler, _ = self.make_applier(
            ['success', 'pending', 'success'], policy
        )

        applier.apply_with_retry(MANIFEST, ctx=run_ctx)

        assert cluster.apply_configmap.call_count == 2
        # initial cycle, re-cycle after rejection, cycle for attempt 2
        assert cycler.cycle.call_count == 3
        assert run_ctx.apply_attempts == 2

    def test_exhaustion_after_max_attempts(self, policy):
        applier, cluster, cycler, _ = self.make_applier(
            ['success'] * policy.max_apply_attempts, policy
        )

        with pytest.raises(MigApplyExhaustedError):
            applier.apply_with_retry(MANIFEST)

        assert cluster.apply_configmap.call_count == policy.max_apply_attempts
        assert cycler.cycle.call_count == 2 * policy.max_apply_attempts

    def test_exhaustion_label_writes(self, policy, sleeper):
        """With the real cycler every cycle is a sentinel write plus a target write."""
        cluster = Mock()
        state = ScriptedLabelState(['success'] * policy.max_apply_attempts)
        applier = MigApplier(cluster, 'gpu-node-1', 'gpu-operator', policy,
                             state=state, sleep=sleeper)

        with pytest.raises(MigApplyExhaustedError):
            applier.apply_with_retry(MANIFEST)

        values = [c.args[2] for c in cluster.set_node_label.call_args_list]
        assert values == ['temp', 'custom-mig-config'] * (2 * policy.max_apply_attempts)

    def test_fatal_poll_result_stops_retrying(self, policy):
        applier, cluster, cycler, state = self.make_applier(['failed', 'failed'], policy)

        with pytest.raises(MigFailedError):
            applier.apply_with_retry(MANIFEST)

        assert cluster.apply_configmap.call_count == 1
        assert cycler.cycle.call_count == 1

    def test_configmap_apply_error_is_fatal(self, policy):
        applier, cluster, cycler, _ = self.make_applier([], policy)
        cluster.apply_configmap.side_effect = ApiException(status=422, reason='Invalid')

        with pytest.raises(ClusterOperationError):
            applier.apply_with_retry(MANIFEST)
        cycler.cycle.assert_not_called()
