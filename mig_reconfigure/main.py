#!/usr/bin/env python3
"""
NVIDIA MIG Reconfiguration Tool For Kubernetes

Reconfigures MIG partitions on a GPU worker node with minimal disruption:
backs up cluster state, cordons the node, applies the MIG layout through the
GPU Operator's MIG Manager, validates it, regenerates the CDI spec and
returns the node to service.

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

import argparse
import logging
import os
import sys
from typing import Dict, List, Optional

from .cluster import KubeCluster
from .config import Settings, env_bool, env_float, env_int
from .errors import LockContentionError, MigReconfigureError, TemplateError
from .lock import read_lock_owner
from .orchestrator import PhaseOrchestrator
from .profiles import DesiredConfiguration, MigTemplate, load_template
from .remote import SshExecutor
from .runlog import RunContext
from .runtime import RuntimeModeController

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger('mig-reconfigure')

LOG_NAMES = {
    'configure': 'mig-configure',
    'pre': 'pre',
    'post': 'post',
    'restart': 'runtime-switch',
}


def parse_selections(select: List[str], gpu_count: int,
                     all_profile: Optional[int] = None) -> Dict[int, int]:
    """
    Turn `--all N` and `--select GPU=PROFILE` arguments into a mapping.

    `--select` entries override `--all` for the GPUs they name.
    """
    selections = {}
    if all_profile is not None:
        selections = {gpu: all_profile for gpu in range(gpu_count)}
    for item in select or []:
        gpu, sep, profile = item.partition('=')
        if not sep:
            raise TemplateError(f"Invalid selection '{item}', expected GPU=PROFILE")
        try:
            selections[int(gpu)] = int(profile)
        except ValueError:
            raise TemplateError(f"Invalid selection '{item}', GPU and PROFILE must be indices")
    return selections


def print_profiles(template: MigTemplate) -> None:
    print(f"GPU Model : {template.gpu_model}")
    print(f"GPU Memory: {template.gpu_memory}")
    print(f"GPU Count : {template.gpu_count}")
    print()
    for idx, profile in enumerate(template.profiles):
        line = f"  [{idx}] {profile.name}"
        if profile.description:
            line += f"  --  {profile.description}"
        print(line)


def confirm_plan(desired: DesiredConfiguration, cdi_enabled: bool) -> bool:
    """Show the selected layout and ask the operator to proceed."""
    print("  GPU  | MIG Profile")
    print("  =====+=============================================")
    for gpu in range(desired.gpu_count):
        print(f"  {gpu:<5}| {desired.assignments[gpu].name}")
    print("  =====+=============================================")
    print()
    print("  This will:")
    steps = ["Cordon the worker node", "Apply MIG partition configuration"]
    if cdi_enabled:
        steps += ["Generate CDI specification", "Switch runtime to CDI mode"]
    steps.append("Uncordon the worker node")
    for i, step in enumerate(steps, 1):
        print(f"    {i}. {step}")
    print()
    try:
        answer = input("  Proceed with applying this configuration? [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ('y', 'yes')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='NVIDIA MIG Reconfiguration Tool For Kubernetes'
    )
    parser.add_argument(
        '--kubeconfig',
        default=os.environ.get('KUBECONFIG', ''),
        help='Absolute path to the kubeconfig file'
    )
    parser.add_argument(
        '--node-name',
        default=os.environ.get('NODE_NAME', ''),
        help='Kubernetes worker node hosting the GPUs (default: $NODE_NAME)'
    )
    parser.add_argument(
        '--namespace',
        default=os.environ.get('OPERATOR_NAMESPACE', 'gpu-operator'),
        help='Namespace of the NVIDIA GPU Operator'
    )
    parser.add_argument(
        '--mig-config-file',
        default=os.environ.get('MIG_CONFIG_FILE', 'custom-mig-config.yaml'),
        help='MIG ConfigMap manifest to generate and/or apply'
    )
    parser.add_argument(
        '--template',
        default=os.environ.get('MIG_TEMPLATE_FILE', 'custom-mig-config-template.yaml'),
        help='MIG profile template'
    )
    cdi = parser.add_mutually_exclusive_group()
    cdi.add_argument('--cdi', dest='cdi_enabled', action='store_true',
                     default=env_bool('CDI_ENABLED', True),
                     help='Manage the container runtime mode and CDI spec (default)')
    cdi.add_argument('--no-cdi', dest='cdi_enabled', action='store_false',
                     help='Skip runtime backup, AUTO/CDI switches and CDI generation')
    parser.add_argument(
        '--lock-file',
        default=os.environ.get('GLOBAL_LOCK_FILE', Settings.lock_file),
        help='Lock file preventing concurrent MIG/CDI operations'
    )
    parser.add_argument(
        '--log-dir',
        default=os.environ.get('BASE_LOG_DIR', 'logs'),
        help='Base directory for timestamped run logs and backups'
    )
    parser.add_argument(
        '--log-retention-days', type=int,
        default=env_int('LOG_RETENTION_DAYS', Settings.log_retention_days),
        help='Remove run directories older than this many days (0 disables)'
    )
    parser.add_argument('--max-retries', type=int, default=env_int('MAX_RETRIES', Settings.max_retries),
                        help='Maximum MIG state polls per apply attempt')
    parser.add_argument('--poll-interval', type=float,
                        default=env_float('SLEEP_INTERVAL', Settings.poll_interval),
                        help='Seconds between MIG state polls')
    parser.add_argument('--min-success-attempt', type=int,
                        default=env_int('MIN_SUCCESS_ATTEMPT', Settings.min_success_attempt),
                        help='First poll at which a success state is accepted')
    parser.add_argument('--max-failed-allowed', type=int,
                        default=env_int('MAX_FAILED_ALLOWED', Settings.max_failed_allowed),
                        help='Failed states tolerated before aborting')
    parser.add_argument('--max-apply-attempts', type=int,
                        default=env_int('MIG_MAX_APPLY_ATTEMPTS', Settings.max_apply_attempts),
                        help='Apply-and-poll cycles before giving up')
    parser.add_argument('--temp-label-sleep', type=float,
                        default=env_float('TEMP_LABEL_SLEEP', Settings.temp_label_sleep),
                        help='Seconds to wait after setting the temporary label')
    parser.add_argument('--custom-label-sleep', type=float,
                        default=env_float('CUSTOM_LABEL_SLEEP', Settings.custom_label_sleep),
                        help='Seconds to wait after setting the config label')
    parser.add_argument('--ssh-user', default=os.environ.get('SSH_USER') or None,
                        help='SSH user for the worker node')
    parser.add_argument('--ssh-timeout', type=float, default=env_float('SSH_TIMEOUT', None),
                        help='Per-command SSH timeout in seconds (default: none)')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')

    sub = parser.add_subparsers(dest='command', required=True)

    sub.add_parser('profiles', help='List the profiles in the MIG template')

    configure = sub.add_parser('configure', help='Select profiles, then run the full workflow')
    configure.add_argument('--all', dest='all_profile', type=int, metavar='PROFILE',
                           help='Profile index for every GPU')
    configure.add_argument('--select', action='append', default=[], metavar='GPU=PROFILE',
                           help='Profile index for one GPU (repeatable)')
    configure.add_argument('--yes', '-y', action='store_true',
                           help='Apply without asking for confirmation')

    sub.add_parser('pre', help='Pre-phase only: backup, workload check, AUTO runtime, cordon')
    sub.add_parser('post', help='Post-phase only: apply MIG config file, validate, CDI, uncordon')
    sub.add_parser('restart', help='Switch the runtime to CDI mode (e.g. after reboot)')
    return parser


def settings_from_args(args) -> Settings:
    return Settings(
        node_name=args.node_name,
        operator_namespace=args.namespace,
        mig_config_file=args.mig_config_file,
        template_file=args.template,
        cdi_enabled=args.cdi_enabled,
        lock_file=args.lock_file,
        base_log_dir=args.log_dir,
        log_retention_days=args.log_retention_days,
        max_retries=args.max_retries,
        poll_interval=args.poll_interval,
        min_success_attempt=args.min_success_attempt,
        max_failed_allowed=args.max_failed_allowed,
        max_apply_attempts=args.max_apply_attempts,
        temp_label_sleep=args.temp_label_sleep,
        custom_label_sleep=args.custom_label_sleep,
        ssh_user=args.ssh_user,
        ssh_timeout=args.ssh_timeout,
        kubeconfig=args.kubeconfig or None,
        debug=args.debug,
    )


def select_configuration(args, settings: Settings) -> Optional[DesiredConfiguration]:
    """
    Collect the operator's profile selection and confirm it.

    Returns None if the operator declines. Nothing is written here; the
    ConfigMap file is only written once the global lock is held.
    """
    template = load_template(settings.template_file)
    selections = parse_selections(args.select, template.gpu_count, args.all_profile)
    desired = DesiredConfiguration.from_selections(template, selections)

    if not args.yes and not confirm_plan(desired, settings.cdi_enabled):
        return None

    for gpu in range(desired.gpu_count):
        logger.info(f"  GPU-{gpu} -> {desired.assignments[gpu].name}")
    return desired


def run(args) -> int:
    settings = settings_from_args(args)

    if args.command == 'profiles':
        print_profiles(load_template(settings.template_file))
        return 0

    settings.validate()

    desired = None
    if args.command == 'configure':
        desired = select_configuration(args, settings)
        if desired is None:
            logger.info("User cancelled. No changes made.")
            return 0

    with RunContext.create(settings.base_log_dir, LOG_NAMES[args.command]) as ctx:
        cluster = KubeCluster.from_config(settings.kubeconfig)
        executor = SshExecutor(settings.node_name, user=settings.ssh_user, timeout=settings.ssh_timeout)
        runtime = RuntimeModeController(executor)
        orchestrator = PhaseOrchestrator(settings, cluster, runtime, ctx)
        if args.command == 'configure':
            orchestrator.configure(desired)
        else:
            getattr(orchestrator, args.command)()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        return run(args)
    except KeyboardInterrupt:
        logger.error("Interrupted. The node may be left in an intermediate state; check the run log.")
        return 1
    except LockContentionError as e:
        owner = read_lock_owner(e.lock_path)
        logger.error(f"{e}" + (f" (held by PID {owner})" if owner else ''))
        return 1
    except MigReconfigureError as e:
        logger.error(f"Fatal error: {e}")
        return 1
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1


if __name__ == '__main__':
    sys.exit(main())
