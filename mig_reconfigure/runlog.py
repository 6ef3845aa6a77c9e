"""
Per-run log directory, backup directory and log retention.

Each run gets `<base>/<YYYYMMDD-HHMMSS>/` holding the run log and a
`backup/` subdirectory.

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
import re
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

RUN_ID_FORMAT = '%Y%m%d-%H%M%S'
RUN_DIR_RE = re.compile(r'^(\d{8})-\d{6}$')
LOG_FORMAT = '[%(asctime)s] [%(levelname)s] %(name)s: %(message)s'


@dataclass
class RunContext:
    """State of a single workflow invocation; discarded when the run ends."""
    run_id: str
    run_dir: Path
    backup_dir: Path
    log_file: Path
    poll_attempts: int = 0
    failed_count: int = 0
    apply_attempts: int = 0
    _handler: Optional[logging.Handler] = field(default=None, repr=False)

    @classmethod
    def create(cls, base_dir, command: str = 'mig-configure',
               now: Optional[datetime] = None) -> 'RunContext':
        """
        Create the run directories and start writing the run log.

        Args:
            base_dir: Base log directory
            command: Name of the run log file, without extension
            now: Timestamp used for the run id (defaults to the current time)
        """
        run_id = (now or datetime.now()).strftime(RUN_ID_FORMAT)
        run_dir = Path(base_dir) / run_id
        backup_dir = run_dir / 'backup'
        backup_dir.mkdir(parents=True, exist_ok=True)

        ctx = cls(run_id=run_id, run_dir=run_dir, backup_dir=backup_dir,
                  log_file=run_dir / f"{command}.log")
        ctx._attach_log_file()
        return ctx

    def _attach_log_file(self) -> None:
        handler = logging.FileHandler(self.log_file)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
        logging.getLogger().addHandler(handler)
        self._handler = handler

    def close(self) -> None:
        if self._handler is None:
            return
        logging.getLogger().removeHandler(self._handler)
        self._handler.close()
        self._handler = None

    def __enter__(self) -> 'RunContext':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def cleanup_old_logs(base_dir, retention_days: int, current_run=None,
                     today: Optional[datetime] = None) -> int:
    """
    Remove run directories older than retention_days.

    Only directories named YYYYMMDD-HHMMSS are considered and the age is
    taken from the name, not the filesystem mtime. The current run is never
    removed. Failures to delete are logged and skipped.

    Args:
        base_dir: Base log directory
        retention_days: Days to keep; 0 or less disables cleanup
        current_run: Path of the current run directory
        today: Reference date (defaults to now)

    Returns:
        Number of directories removed
    """
    base = Path(base_dir)
    if retention_days <= 0 or not base.is_dir():
        return 0

    cutoff = ((today or datetime.now()) - timedelta(days=retention_days)).strftime('%Y%m%d')
    current = Path(current_run).resolve() if current_run else None

    deleted = 0
    for entry in sorted(base.iterdir()):
        match = RUN_DIR_RE.match(entry.name)
        if not match or not entry.is_dir():
            continue
        if current is not None and entry.resolve() == current:
            continue
        # YYYYMMDD sorts lexicographically in date order
        if match.group(1) < cutoff:
            try:
                shutil.rmtree(entry)
                deleted += 1
            except OSError as e:
                logger.warning(f"Failed to delete old log directory {entry}: {e}")

    if deleted:
        logger.info(f"Log cleanup: removed {deleted} log director{'y' if deleted == 1 else 'ies'} "
                    f"older than {retention_days} days.")
    return deleted
