"""Periodic parity checks on a cron schedule."""

import os
import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from .config_manager import NonRAIDConfig
from .exceptions import AlreadyRunning, NonRAIDError, ProvisioningInProgress
from .provisioner import ProvisioningOrchestrator
from .scan_supervisor import ScanSupervisor

logger = logging.getLogger(__name__)


class ScanScheduler:
    """Runs the parity check on a crontab expression."""

    JOB_ID = 'nonraid_parity_check'

    def __init__(self, config: NonRAIDConfig, scan_supervisor: ScanSupervisor,
                 scheduler: Optional[BackgroundScheduler] = None,
                 provisioner: Optional[ProvisioningOrchestrator] = None):
        self.config = config
        self._scan_supervisor = scan_supervisor
        self._provisioner = provisioner
        self._scheduler = scheduler or BackgroundScheduler(daemon=True)

    @property
    def enabled(self) -> bool:
        return bool(self.config.scan_schedule)

    def start(self) -> bool:
        """
        Register the check job and start the scheduler.

        Returns:
            False if no schedule is configured
        """
        if not self.enabled:
            logger.info("Scheduled parity checks disabled")
            return False

        self._scheduler.add_job(
            self.run_now,
            CronTrigger.from_crontab(self.config.scan_schedule),
            id=self.JOB_ID,
            replace_existing=True
        )
        if not self._scheduler.running:
            self._scheduler.start()
        logger.info(f"Scheduled parity checks: {self.config.scan_schedule}")
        return True

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)

    def next_run_time(self):
        job = self._scheduler.get_job(self.JOB_ID)
        return job.next_run_time if job else None

    def run_now(self) -> bool:
        """
        Start a parity check unless the array is unconfigured or busy.

        Returns:
            True if a check was started
        """
        if not os.path.exists(self.config.descriptor_path):
            logger.info("Skipping scheduled parity check: array not configured")
            return False

        try:
            if self._provisioner is not None:
                with self._provisioner.exclusive_operation('scheduled check'):
                    self._scan_supervisor.start_scan()
            else:
                self._scan_supervisor.start_scan()
        except ProvisioningInProgress:
            logger.info("Skipping scheduled parity check: array configuration in progress")
            return False
        except AlreadyRunning:
            logger.info("Skipping scheduled parity check: check already running")
            return False
        except NonRAIDError as e:
            logger.error(f"Scheduled parity check failed to start: {e}")
            return False
        return True
