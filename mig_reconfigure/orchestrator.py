"""
Phase orchestration for MIG reconfiguration.

The workflow is a fixed pipeline:

    Lock -> Backup -> WorkloadGate -> RuntimeMode(auto) -> Cordon
         -> ApplyPoll -> Validate -> [CdiGenerate -> RuntimeMode(cdi)]
         -> VerifyRuntimeDaemon -> Uncordon

The bracketed steps, and the runtime backup and AUTO switch, run only when
CDI is enabled. Any fatal error aborts the pipeline where it stands; nothing
already done is rolled back, the backups are there for manual recovery.

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
import time
from datetime import datetime
from typing import Callable, Optional

from .backup import BackupCollector
from .errors import RemoteExecutionError
from .lock import LockHandle
from .mig_apply import ApplyPolicy, MigApplier
from .profiles import DesiredConfiguration, read_configmap_manifest, write_mig_configmap
from .runlog import cleanup_old_logs
from .runtime import RuntimeMode
from .scheduling import NodeSchedulingGate
from .validation import validate_gpu_layout
from .workloads import check_no_active_workloads

logger = logging.getLogger(__name__)

BANNER = '=' * 62


class PhaseOrchestrator:
    """Runs the pre, post and restart phases against one worker node."""

    def __init__(self, settings, cluster, runtime, ctx,
                 backup: Optional[BackupCollector] = None,
                 applier: Optional[MigApplier] = None,
                 scheduling: Optional[NodeSchedulingGate] = None,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Args:
            settings: Settings for this run
            cluster: KubeCluster
            runtime: RuntimeModeController bound to the worker node
            ctx: RunContext of this run
            backup: Backup collector (built from the above if omitted)
            applier: MIG applier (built from the above if omitted)
            scheduling: Node scheduling gate (built from the above if omitted)
            sleep: Sleep function used by the default applier
        """
        self.settings = settings
        self.cluster = cluster
        self.runtime = runtime
        self.ctx = ctx
        self.node_name = settings.node_name
        self.backup = backup or BackupCollector(
            cluster, ctx.backup_dir, settings.operator_namespace, runtime=runtime
        )
        self.applier = applier or MigApplier(
            cluster, settings.node_name, settings.operator_namespace,
            ApplyPolicy.from_settings(settings), sleep=sleep,
        )
        self.scheduling = scheduling or NodeSchedulingGate(cluster, settings.node_name)

    def _banner(self, *lines: str) -> None:
        logger.info(BANNER)
        for line in lines:
            logger.info(line)
        logger.info(BANNER)

    def _locked(self, title: str, body: Callable[[], None]) -> None:
        with LockHandle(self.settings.lock_file):
            cleanup_old_logs(self.settings.base_log_dir, self.settings.log_retention_days,
                             self.ctx.run_dir)
            self._banner(
                f" {title}",
                f" Node        : {self.node_name}",
                f" Started At  : {datetime.now():%Y-%m-%d %H:%M:%S}",
                f" Run Folder  : {self.ctx.run_dir}",
            )
            body()

    # Phases

    def run_pre_phase(self) -> None:
        """Back up state, check workloads, switch runtime to AUTO and cordon."""
        self._banner(" PRE-PHASE: Preparing node for MIG reconfiguration")
        cdi = self.settings.cdi_enabled

        self.backup.backup_all(include_runtime=cdi)

        check_no_active_workloads(self.cluster, self.node_name)

        if cdi:
            logger.info("Checking current NVIDIA runtime mode...")
            self.runtime.set_mode(RuntimeMode.AUTO)
        else:
            logger.info("CDI is disabled. Skipping runtime backup and AUTO switch.")

        self.scheduling.cordon()
        logger.info("Pre-phase completed.")

    def run_post_phase(self, manifest: dict) -> None:
        """Apply MIG, validate, generate CDI, switch runtime to CDI and uncordon."""
        self._banner(" POST-PHASE: Applying MIG configuration")

        self.applier.apply_with_retry(manifest, ctx=self.ctx)
        validate_gpu_layout(self.cluster, self.settings.operator_namespace, self.node_name)

        if self.settings.cdi_enabled:
            self.runtime.generate_cdi_spec()
            logger.info("Checking current NVIDIA runtime mode...")
            self.runtime.set_mode(RuntimeMode.CDI)
        else:
            logger.info("CDI is disabled. Skipping CDI generation and runtime switch.")

        self.runtime.verify_daemon_active()
        self.scheduling.uncordon()
        logger.info("Post-phase completed.")

    # Entry points, each holding the global lock

    def configure(self, desired: Optional[DesiredConfiguration] = None) -> None:
        """
        Full workflow: pre-phase followed by post-phase.

        Args:
            desired: Layout to write to the MIG config file once the lock is
                held, or None to apply the file as it is
        """
        def body():
            if desired is not None:
                write_mig_configmap(desired, self.settings.operator_namespace,
                                    self.settings.mig_config_file)
                logger.info(f"MIG ConfigMap written to {self.settings.mig_config_file}")
            manifest = read_configmap_manifest(self.settings.mig_config_file)
            self.run_pre_phase()
            self.run_post_phase(manifest)
            self._banner(
                " MIG CONFIGURATION COMPLETED SUCCESSFULLY",
                f" ConfigMap   : {self.settings.mig_config_file}",
                f" Backup Dir  : {self.ctx.backup_dir}",
                f" Log File    : {self.ctx.log_file}",
                f" Attempts    : apply={self.ctx.apply_attempts} polls={self.ctx.poll_attempts} "
                f"failed={self.ctx.failed_count}",
            )
        self._locked("NVIDIA MIG Configuration Tool", body)

    def pre(self) -> None:
        def body():
            self.run_pre_phase()
            self._banner(
                " PRE-CONFIGURATION COMPLETED SUCCESSFULLY",
                f" Backup Location : {self.ctx.backup_dir}",
                f" Log File        : {self.ctx.log_file}",
            )
        self._locked("NVIDIA GPU Pre-Configuration", body)

    def post(self) -> None:
        def body():
            manifest = read_configmap_manifest(self.settings.mig_config_file)
            self.run_post_phase(manifest)
            self._banner(
                " POST-CONFIGURATION COMPLETED SUCCESSFULLY",
                f" Log File : {self.ctx.log_file}",
            )
        self._locked("NVIDIA GPU Post-Configuration", body)

    def restart(self) -> None:
        """Switch the runtime to CDI, e.g. after a node reboot."""
        def body():
            if not self.settings.cdi_enabled:
                logger.info("CDI is disabled. Nothing to do.")
                return
            if self.runtime.get_current_mode() is RuntimeMode.UNKNOWN:
                raise RemoteExecutionError(f"Cannot determine runtime mode on {self.node_name}")
            self.runtime.set_mode(RuntimeMode.CDI)
            self._banner(
                " RUNTIME MODE SWITCH COMPLETED SUCCESSFULLY",
                f" Log File : {self.ctx.log_file}",
            )
        self._locked("NVIDIA Runtime Mode Switch (AUTO -> CDI)", body)
