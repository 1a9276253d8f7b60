"""Point-in-time NonRAID array status."""

import os
import json
import logging
from typing import Any, Dict, List, Optional

import psutil

from .config_manager import NonRAIDConfig
from .exceptions import NonRAIDError, ParseError, StatusQueryFailed
from .models import ArraySnapshot, ArrayStatus, DiskUsage, ScanState
from .scan_supervisor import ScanSupervisor
from .system_executor import CommandType, SystemCommandExecutor

logger = logging.getLogger(__name__)


class ArrayStatusReader:
    """Composes an ArraySnapshot from nmdctl and per-slot filesystem usage."""

    # States nmdctl may report for a configured array
    ARRAY_STATES = {
        ArrayStatus.RUNNING, ArrayStatus.STOPPED,
        ArrayStatus.DEGRADED, ArrayStatus.REBUILDING
    }

    def __init__(self, config: NonRAIDConfig,
                 system_executor: Optional[SystemCommandExecutor] = None,
                 scan_supervisor: Optional[ScanSupervisor] = None):
        self.config = config
        self._system_executor = system_executor or SystemCommandExecutor()
        self._scan_supervisor = scan_supervisor

    def get_array_status(self) -> ArraySnapshot:
        """
        Build the current array snapshot. Nothing is cached.

        Returns:
            ArraySnapshot; NOT_INSTALLED / NOT_CONFIGURED are normal results

        Raises:
            StatusQueryFailed: If nmdctl's structured status cannot be read
        """
        if not self._system_executor.binary_available(CommandType.NMDCTL):
            return ArraySnapshot(installed=False, status=ArrayStatus.NOT_INSTALLED)

        if not os.path.exists(self.config.descriptor_path):
            return ArraySnapshot(installed=True, configured=False,
                                 status=ArrayStatus.NOT_CONFIGURED)

        status = self.query_status()
        disks = self._collect_usage(status['data_disks'])

        if self._scan_supervisor:
            scan = self._scan_supervisor.get_scan_state()
        else:
            scan = ScanState()

        return ArraySnapshot(
            installed=True,
            configured=True,
            status=status['status'],
            parity_valid=status['parity_valid'],
            parity_disk=status['parity_disk'],
            data_disks=status['data_disks'],
            disks=disks,
            last_check=status['last_check'],
            checking=scan.checking,
            check_progress=scan.progress
        )

    def query_status(self) -> Dict[str, Any]:
        """
        Run ``nmdctl status -o json`` and normalise the result.

        Returns:
            Dict with status, parity_valid, parity_disk, data_disks, last_check

        Raises:
            StatusQueryFailed: On command failure or unexpected output
        """
        try:
            stdout = self._system_executor.execute_checked(
                CommandType.NMDCTL, ['status', '-o', 'json']
            )
            return self._parse_status(stdout)
        except NonRAIDError as e:
            logger.error(f"Array status query failed: {e}")
            raise StatusQueryFailed(f"Failed to get array status: {e}") from e

    def _parse_status(self, stdout: str) -> Dict[str, Any]:
        try:
            raw = json.loads(stdout)
        except json.JSONDecodeError as e:
            raise ParseError(f"nmdctl status is not valid JSON: {e}")
        if not isinstance(raw, dict):
            raise ParseError("nmdctl status is not a JSON object")

        data_disks = raw.get('dataDisks')
        if isinstance(data_disks, bool) or not isinstance(data_disks, int) or data_disks < 0:
            raise ParseError(f"Invalid dataDisks value: {data_disks!r}")

        state = raw.get('state')
        try:
            status = ArrayStatus(str(state).upper())
        except ValueError:
            raise ParseError(f"Unknown array state: {state!r}")
        if status not in self.ARRAY_STATES:
            raise ParseError(f"Unexpected array state: {state!r}")

        return {
            'status': status,
            'parity_valid': raw.get('parityValid'),
            'parity_disk': raw.get('parityDisk'),
            'data_disks': data_disks,
            'last_check': raw.get('lastCheck'),
        }

    def _collect_usage(self, data_disks: int) -> List[DiskUsage]:
        try:
            mounts = {p.mountpoint: p.device for p in psutil.disk_partitions(all=True)}
        except OSError as e:
            logger.warning(f"Could not read mount table: {e}")
            mounts = {}

        return [self._slot_usage(slot, mounts) for slot in range(1, data_disks + 1)]

    def _slot_usage(self, slot: int, mounts: Dict[str, str]) -> DiskUsage:
        mount_point = self.config.slot_mount_point(slot)
        device = mounts.get(mount_point)
        if device is None:
            return DiskUsage.unmounted(slot, mount_point)

        try:
            usage = psutil.disk_usage(mount_point)
        except OSError as e:
            logger.warning(f"Usage query failed for slot {slot} at {mount_point}: {e}")
            return DiskUsage.unmounted(slot, mount_point)

        return DiskUsage(
            slot=slot,
            mount_point=mount_point,
            device=device,
            total=usage.total,
            used=usage.used,
            available=usage.free,
            usage_percent=usage.percent
        )
