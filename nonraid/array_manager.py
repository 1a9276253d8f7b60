"""Day-two operations on a configured NonRAID array."""

import logging
from typing import Optional

from .array_status import ArrayStatusReader
from .config_manager import NonRAIDConfig
from .exceptions import AlreadyRunning, ParseError, ValidationError
from .provisioner import PARTITION_ARGS, partition_path
from .scan_supervisor import ScanHandle, ScanSupervisor
from .system_executor import CommandType, SystemCommandExecutor

logger = logging.getLogger(__name__)


class ArrayManager:
    """Start, stop, grow and repair an existing array.

    Each operation runs synchronously and stops at the first failing command.
    """

    def __init__(self, config: NonRAIDConfig,
                 system_executor: SystemCommandExecutor,
                 status_reader: ArrayStatusReader,
                 scan_supervisor: ScanSupervisor):
        self.config = config
        self._system_executor = system_executor
        self._status_reader = status_reader
        self._scan_supervisor = scan_supervisor

    def start_array(self) -> None:
        """Start the array and mount its data slots."""
        self._system_executor.execute_checked(CommandType.NMDCTL, ['start'])
        self._system_executor.execute_checked(CommandType.NMDCTL, ['mount'])
        logger.info("Array started")

    def stop_array(self) -> None:
        """Unmount the data slots and stop the array."""
        self._system_executor.execute_checked(CommandType.NMDCTL, ['unmount'])
        self._system_executor.execute_checked(CommandType.NMDCTL, ['stop'])
        logger.info("Array stopped")

    def add_disk(self, disk: str, slot: Optional[int] = None) -> int:
        """
        Add a data disk to the array.

        The array tool assigns the new slot; it is read back from the status
        report once the disk has been added.

        Args:
            disk: Device path of the new disk
            slot: Slot requested by the caller, informational only

        Returns:
            Slot the disk was assigned

        Raises:
            ValidationError: If the device path is invalid
            ExternalCommandFailure: If any command fails
            StatusQueryFailed: If the new slot cannot be read back
        """
        self._system_executor.validate_device_path(disk)

        self._system_executor.execute_checked(CommandType.SGDISK, PARTITION_ARGS + [disk])
        self._system_executor.execute_checked(CommandType.NMDCTL, ['add', partition_path(disk)])

        assigned = self._status_reader.query_status()['data_disks']
        if assigned < 1:
            raise ParseError(f"Array reports no data disks after adding {disk}")
        if slot is not None and slot != assigned:
            logger.warning(f"Requested slot {slot} ignored, array assigned slot {assigned}")

        self._system_executor.execute_filesystem_command(
            self.config.slot_device(assigned), self.config.filesystem
        )
        self._system_executor.execute_checked(
            CommandType.MKDIR, ['-p', self.config.slot_mount_point(assigned)]
        )
        self._system_executor.execute_checked(
            CommandType.MOUNT,
            [self.config.slot_device(assigned), self.config.slot_mount_point(assigned)]
        )

        logger.info(f"Added {disk} as data slot {assigned}", extra={"disk": disk, "slot": assigned})
        return assigned

    def replace_disk(self, slot: int, disk: str) -> ScanHandle:
        """
        Replace the disk in a data slot and start the rebuild.

        The check slot is reserved before the disk is touched, so a check
        started elsewhere cannot take it between the replacement and the
        rebuild.

        Args:
            slot: 1-based data slot to replace
            disk: Device path of the replacement disk

        Returns:
            Handle on the rebuild, supervised like a parity check

        Raises:
            AlreadyRunning: If a parity check or rebuild is in progress
        """
        if isinstance(slot, bool) or not isinstance(slot, int) or slot < 1:
            raise ValidationError(f"Invalid slot: {slot}")
        self._system_executor.validate_device_path(disk)

        try:
            reservation = self._scan_supervisor.reserve(step_label="rebuilding")
        except AlreadyRunning:
            raise AlreadyRunning("Cannot replace a disk while a parity check is running")

        try:
            self._system_executor.execute_checked(CommandType.SGDISK, PARTITION_ARGS + [disk])
            self._system_executor.execute_checked(
                CommandType.NMDCTL, ['replace', str(slot), partition_path(disk)]
            )
        except Exception:
            self._scan_supervisor.release(reservation, error="Disk replacement failed")
            raise

        logger.info(f"Replaced slot {slot} with {disk}, starting rebuild",
                    extra={"disk": disk, "slot": slot})
        return self._scan_supervisor.start_scan(step_label="rebuilding", reservation=reservation)
