"""
MIG apply and state polling.

The GPU Operator's MIG Manager watches the node label nvidia.com/mig.config
and reconciles the named MIG layout whenever its value changes, reporting
progress in nvidia.com/mig.config.state (pending, success or failed).

Applying a configuration therefore means:

1. Upsert the MIG ConfigMap.
2. Cycle the trigger label through a sentinel value ("temp") and back to
   the real config name. The Manager only reacts to value changes, so
   re-writing the same value would be ignored.
3. Poll the state label until it reports success.

The state label may still carry "success" from the previous run when
polling starts, because there is no ordering between our label write and
the Manager noticing it. A success seen before min_success_attempt polls is
rejected as stale; the labels are cycled again and the apply is retried.

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

import enum
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from kubernetes.client.rest import ApiException

from .constants import (
    MIG_CONFIG_LABEL,
    MIG_CONFIG_NAME,
    MIG_CONFIG_SENTINEL,
    MIG_CONFIG_STATE_LABEL,
    MIG_STATE_FAILED,
    MIG_STATE_PENDING,
    MIG_STATE_SUCCESS,
)
from .errors import (
    ClusterOperationError,
    MigApplyExhaustedError,
    MigFailedError,
    MigTimeoutError,
    MigUnexpectedStateError,
)

logger = logging.getLogger(__name__)


class PollOutcome(enum.Enum):
    SUCCESS = 'success'
    REJECTED_EARLY = 'rejected-early'


@dataclass(frozen=True)
class ApplyPolicy:
    """Attempt and timing budgets for apply/poll."""
    max_retries: int = 15
    poll_interval: float = 20
    min_success_attempt: int = 2
    max_failed_allowed: int = 2
    max_apply_attempts: int = 3
    temp_label_sleep: float = 20
    custom_label_sleep: float = 20

    @classmethod
    def from_settings(cls, settings) -> 'ApplyPolicy':
        return cls(
            max_retries=settings.max_retries,
            poll_interval=settings.poll_interval,
            min_success_attempt=settings.min_success_attempt,
            max_failed_allowed=settings.max_failed_allowed,
            max_apply_attempts=settings.max_apply_attempts,
            temp_label_sleep=settings.temp_label_sleep,
            custom_label_sleep=settings.custom_label_sleep,
        )


class NodeLabelState:
    """
    Read-only view of the MIG state label, written by the MIG Manager.

    All reads go through read_state() so tests can substitute a scripted
    sequence of observed values.
    """

    def __init__(self, cluster, node_name: str, label: str = MIG_CONFIG_STATE_LABEL):
        self.cluster = cluster
        self.node_name = node_name
        self.label = label

    def read_state(self) -> str:
        try:
            return self.cluster.get_node_label(self.node_name, self.label)
        except ApiException as e:
            # An unreadable label is reported as empty, which the poller
            # treats as an unexpected state.
            logger.warning(f"Failed to read {self.label} on node {self.node_name}: {e.reason}")
            return ''


class LabelCycler:
    """
    Forces the MIG Manager to re-evaluate by changing the trigger label.

    reset() moves the label to the sentinel value and apply() moves it to
    the real config name, each followed by a settle sleep.
    """

    def __init__(self, cluster, node_name: str, policy: ApplyPolicy,
                 sleep: Callable[[float], None] = time.sleep,
                 label: str = MIG_CONFIG_LABEL,
                 sentinel: str = MIG_CONFIG_SENTINEL,
                 target: str = MIG_CONFIG_NAME):
        self.cluster = cluster
        self.node_name = node_name
        self.policy = policy
        self.sleep = sleep
        self.label = label
        self.sentinel = sentinel
        self.target = target

    def _set(self, value: str) -> None:
        try:
            self.cluster.set_node_label(self.node_name, self.label, value)
        except ApiException as e:
            raise ClusterOperationError(
                f"Failed to label node {self.node_name} {self.label}={value}: {e.reason}"
            )

    def reset(self) -> None:
        self._set(self.sentinel)
        self.sleep(self.policy.temp_label_sleep)

    def apply(self) -> None:
        self._set(self.target)
        self.sleep(self.policy.custom_label_sleep)

    def cycle(self) -> None:
        self.reset()
        self.apply()


def wait_for_mig_state(state: NodeLabelState, policy: ApplyPolicy,
                       sleep: Callable[[float], None] = time.sleep,
                       ctx=None) -> PollOutcome:
    """
    Poll the MIG state label until it settles.

    Attempts are counted from 1 and bounded by policy.max_retries, sleeping
    policy.poll_interval after every non-terminal observation.

    Args:
        state: Source of the observed label value
        policy: Polling budgets
        sleep: Sleep function
        ctx: Optional RunContext whose counters are updated

    Returns:
        PollOutcome.SUCCESS once success is seen at or after
        min_success_attempt, PollOutcome.REJECTED_EARLY if it is seen before

    Raises:
        MigFailedError: failed was observed max_failed_allowed times
        MigTimeoutError: no terminal state within max_retries polls
        MigUnexpectedStateError: the label held any other value
    """
    logger.info(f"Checking MIG state for node {state.node_name}...")
    failed_count = 0

    for attempt in range(1, policy.max_retries + 1):
        current = state.read_state()
        if ctx is not None:
            ctx.poll_attempts += 1
        logger.info(f"Current MIG state: '{current}' (Attempt: {attempt})")

        if current == MIG_STATE_SUCCESS:
            if attempt < policy.min_success_attempt:
                logger.error(f"MIG success detected too early (attempt {attempt})")
                return PollOutcome.REJECTED_EARLY
            logger.info("MIG state SUCCESS detected. Proceeding...")
            return PollOutcome.SUCCESS

        elif current == MIG_STATE_FAILED:
            failed_count += 1
            if ctx is not None:
                ctx.failed_count += 1
            logger.warning(f"MIG state FAILED ({failed_count}/{policy.max_failed_allowed})")
            if failed_count >= policy.max_failed_allowed:
                logger.error("MIG configuration FAILED. Check your MIG config YAML.")
                raise MigFailedError(
                    f"MIG Manager reported failed {failed_count} times on node {state.node_name}"
                )

        elif current != MIG_STATE_PENDING:
            logger.error(f"Unexpected MIG state: '{current}'")
            raise MigUnexpectedStateError(current)

        sleep(policy.poll_interval)

    logger.error("Timeout waiting for MIG success.")
    raise MigTimeoutError(
        f"Node {state.node_name} did not reach MIG state success after "
        f"{policy.max_retries} polls ({policy.max_retries * policy.poll_interval:g}s)"
    )


class MigApplier:
    """Applies a MIG ConfigMap and drives the MIG Manager to convergence."""

    def __init__(self, cluster, node_name: str, namespace: str, policy: ApplyPolicy,
                 state: Optional[NodeLabelState] = None,
                 cycler: Optional[LabelCycler] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.cluster = cluster
        self.node_name = node_name
        self.namespace = namespace
        self.policy = policy
        self.sleep = sleep
        self.state = state or NodeLabelState(cluster, node_name)
        self.cycler = cycler or LabelCycler(cluster, node_name, policy, sleep=sleep)

    def _apply_configmap(self, manifest: dict) -> None:
        try:
            self.cluster.apply_configmap(manifest, self.namespace)
        except ApiException as e:
            raise ClusterOperationError(f"Failed to apply MIG ConfigMap: {e.reason}")

    def apply_with_retry(self, manifest: dict, ctx=None) -> None:
        """
        Apply the configuration, retrying with label cycling on stale success.

        Any fatal poll result (failure threshold, timeout, unexpected state)
        propagates immediately without further attempts.

        Args:
            manifest: MIG ConfigMap manifest
            ctx: Optional RunContext whose counters are updated

        Raises:
            MigApplyExhaustedError: No accepted success within max_apply_attempts
        """
        name = manifest.get('metadata', {}).get('name', MIG_CONFIG_NAME)

        for attempt in range(1, self.policy.max_apply_attempts + 1):
            if ctx is not None:
                ctx.apply_attempts = attempt
            logger.info(f"Applying custom MIG config ({name}) - Attempt {attempt}")

            self._apply_configmap(manifest)
            self.cycler.cycle()

            if wait_for_mig_state(self.state, self.policy, sleep=self.sleep, ctx=ctx) is PollOutcome.SUCCESS:
                logger.info("MIG successfully applied.")
                return

            logger.warning("Retrying - cycling labels to trigger MIG Manager re-evaluation...")
            self.cycler.cycle()

        logger.error(f"MIG configuration failed after {self.policy.max_apply_attempts} attempts.")
        raise MigApplyExhaustedError(
            f"MIG configuration failed after {self.policy.max_apply_attempts} attempts"
        )
