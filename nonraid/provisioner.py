"""NonRAID array provisioning pipeline."""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, List, Optional, Sequence, Union

from .config_manager import NonRAIDConfig
from .disk_inventory import DiskInventoryReader
from .exceptions import (
    AlreadyRunning, NonRAIDError, ProvisioningCancelled, ProvisioningInProgress,
    ValidationError
)
from .models import ProvisioningState, ProvisioningStep, ShareMode, clamp_progress
from .scan_supervisor import ScanHandle, ScanSupervisor
from .share_config import ShareConfigWriter
from .system_executor import CommandType, SystemCommandExecutor

logger = logging.getLogger(__name__)


# GPT table with a single partition spanning the device, 32K aligned
PARTITION_ARGS = ['-o', '-a', '8', '-n', '1:32K:0']


def partition_path(disk: str) -> str:
    """
    First partition of a disk.

    Devices whose name ends in a digit (nvme0n1, mmcblk0) use a "p" separator.
    """
    return f"{disk}p1" if disk[-1:].isdigit() else f"{disk}1"


def parse_share_mode(value: Optional[Union[str, ShareMode]]) -> ShareMode:
    if value is None or value == "":
        return ShareMode.INDIVIDUAL
    if isinstance(value, ShareMode):
        return value
    try:
        return ShareMode(str(value).lower())
    except ValueError:
        valid = ", ".join(mode.value for mode in ShareMode)
        raise ValidationError(f"Invalid share mode '{value}'. Must be one of: {valid}")


class ProvisioningOrchestrator:
    """Runs the provisioning pipeline in the background and owns its state.

    The pipeline partitions every selected disk, assembles and starts the
    array, formats and mounts the data slots, installs the share
    configuration and finally starts the initial parity check. Only one run
    may be active; the state record is only touched under ``_lock``.

    Failures are not rolled back. The state keeps the failed step, the steps
    that completed and the disks that were involved so an operator can
    inspect or wipe them before retrying.

    Day-two array operations run inside ``exclusive_operation`` so that they
    and a provisioning run can never overlap.
    """

    # Seconds between progress samples while following a check started elsewhere
    FOLLOW_INTERVAL = 1.0

    def __init__(self, config: NonRAIDConfig,
                 system_executor: SystemCommandExecutor,
                 share_writer: ShareConfigWriter,
                 scan_supervisor: ScanSupervisor,
                 inventory: Optional[DiskInventoryReader] = None):
        self.config = config
        self._system_executor = system_executor
        self._share_writer = share_writer
        self._scan_supervisor = scan_supervisor
        self._inventory = inventory
        self._state = ProvisioningState()
        self._lock = threading.Lock()
        self._cancel_event = threading.Event()
        self._worker: Optional[threading.Thread] = None
        self._operation: Optional[str] = None

    def begin_provisioning(self, data_disks: Sequence[str],
                           parity_disk: Union[str, Sequence[str], None],
                           share_mode: Optional[Union[str, ShareMode]] = None) -> threading.Thread:
        """
        Validate a provisioning request and start the pipeline.

        Args:
            data_disks: Device paths of the data disks, in slot order
            parity_disk: Parity device path, or a one-element list
            share_mode: Share layout (defaults to individual)

        Returns:
            The background worker thread

        Raises:
            ValidationError: If the disk selection or share mode is invalid
            ProvisioningInProgress: If a run is already active
        """
        data_disks, parity, mode = self.validate_request(data_disks, parity_disk, share_mode)

        with self._lock:
            if self._state.active:
                raise ProvisioningInProgress("Array configuration already in progress")
            if self._operation:
                raise ProvisioningInProgress(f"Array operation '{self._operation}' in progress")
            self._cancel_event.clear()
            self._state = ProvisioningState(
                active=True,
                step=ProvisioningStep.PARTITION,
                progress=0,
                error=None,
                disks=data_disks + [parity],
                started_at=datetime.now()
            )
            worker = threading.Thread(
                target=self._run,
                args=(data_disks, parity, mode),
                name="nonraid-provisioning",
                daemon=True
            )
            self._worker = worker

        logger.info(
            f"Provisioning started: data={', '.join(data_disks)} parity={parity} "
            f"shares={mode.value}"
        )
        worker.start()
        return worker

    def validate_request(self, data_disks, parity_disk, share_mode):
        """
        Check a provisioning request without side effects on the disks.

        Returns:
            Tuple of (data disk list, parity disk, ShareMode)
        """
        if not data_disks or not isinstance(data_disks, (list, tuple)):
            raise ValidationError("At least one data disk required")

        if not parity_disk:
            raise ValidationError("Parity disk required")

        if isinstance(parity_disk, (list, tuple)):
            if len(parity_disk) > 1:
                raise ValidationError("NonRAID currently only supports 1 parity disk")
            parity_disk = parity_disk[0]

        disks = list(data_disks)
        for disk in disks + [parity_disk]:
            self._system_executor.validate_device_path(disk)

        if len(set(disks)) != len(disks):
            raise ValidationError("Data disks must be distinct")
        if parity_disk in disks:
            raise ValidationError("Parity disk cannot also be a data disk")

        mode = parse_share_mode(share_mode)

        if self._inventory is not None:
            self._check_candidates(disks + [parity_disk])

        return disks, parity_disk, mode

    def get_provisioning_state(self) -> ProvisioningState:
        with self._lock:
            return self._state.copy()

    def is_active(self) -> bool:
        with self._lock:
            return self._state.active

    @contextmanager
    def exclusive_operation(self, name: str):
        """
        Run an array operation that must not overlap provisioning.

        Raises:
            ProvisioningInProgress: If provisioning or another operation is running
        """
        with self._lock:
            if self._state.active:
                raise ProvisioningInProgress("Array configuration in progress")
            if self._operation:
                raise ProvisioningInProgress(f"Array operation '{self._operation}' in progress")
            self._operation = name
        try:
            yield
        finally:
            with self._lock:
                self._operation = None

    def cancel(self) -> bool:
        """
        Request cancellation of the active run.

        In-flight commands are terminated; a parity check started by the run
        is stopped as well.

        Returns:
            True if a run was active
        """
        with self._lock:
            if not self._state.active:
                return False
            self._cancel_event.set()
            step = self._state.step

        logger.warning(f"Cancelling provisioning during step '{step.value if step else ''}'")
        self._system_executor.terminate_running()
        if step == ProvisioningStep.CHECK:
            self._scan_supervisor.cancel()
        return True

    def _check_candidates(self, selected: List[str]) -> None:
        inventory = {disk.path: disk for disk in self._inventory.list_disks()}
        for path in selected:
            disk = inventory.get(path)
            if disk is None:
                raise ValidationError(f"Disk not found: {path}")
            if disk.mounted:
                raise ValidationError(f"Disk {path} is mounted and cannot be added to the array")

    def _run(self, data_disks: List[str], parity_disk: str, share_mode: ShareMode) -> None:
        try:
            self._partition(data_disks, parity_disk)
            self._create_array(data_disks, parity_disk)
            self._start_array()
            self._create_filesystems(len(data_disks))
            self._mount(len(data_disks))
            self._configure_shares(len(data_disks), share_mode)
            self._initial_check()
        except Exception as e:
            self._fail(e)
            return

        with self._lock:
            self._state.completed_steps.append(ProvisioningStep.CHECK)
            self._state.active = False
            self._state.step = ProvisioningStep.COMPLETE
            self._state.progress = 100
            self._state.finished_at = datetime.now()
        logger.info("Provisioning complete")

    def _fail(self, error: Exception) -> None:
        if self._cancel_event.is_set():
            message = "Provisioning cancelled"
        elif isinstance(error, NonRAIDError):
            message = str(error) or "Configuration failed"
        else:
            message = "Configuration failed"

        with self._lock:
            self._state.error = message
            self._state.active = False
            self._state.finished_at = datetime.now()
            step = self._state.step
            completed = [s.value for s in self._state.completed_steps]

        if isinstance(error, NonRAIDError):
            logger.error(f"Provisioning failed at step '{step.value}': {error}",
                         extra={"step": step.value})
        else:
            logger.exception(f"Provisioning failed at step '{step.value}'", exc_info=error,
                             extra={"step": step.value})
        logger.warning(
            f"Disks left partially provisioned after steps [{', '.join(completed)}]; "
            "no rollback is attempted"
        )

    def _enter_step(self, step: ProvisioningStep) -> None:
        self._check_cancelled()
        with self._lock:
            if self._state.step != step:
                self._state.completed_steps.append(self._state.step)
            self._state.step = step
            self._state.progress = 0
        logger.info(f"Provisioning step: {step.value}", extra={"step": step.value})

    def _set_progress(self, progress: float) -> None:
        with self._lock:
            self._state.progress = clamp_progress(progress)

    def _check_cancelled(self) -> None:
        if self._cancel_event.is_set():
            raise ProvisioningCancelled("Provisioning cancelled")

    def _command(self, command_type: CommandType, args: List[str]) -> str:
        self._check_cancelled()
        return self._system_executor.execute_checked(command_type, args)

    def _for_each(self, items: Sequence, action: Callable, scale: float = 100) -> None:
        total = len(items)
        for index, item in enumerate(items, 1):
            action(item)
            self._set_progress(index / total * scale)

    def _partition(self, data_disks: List[str], parity_disk: str) -> None:
        self._enter_step(ProvisioningStep.PARTITION)
        self._for_each(
            data_disks + [parity_disk],
            lambda disk: self._command(CommandType.SGDISK, PARTITION_ARGS + [disk])
        )

    def _create_array(self, data_disks: List[str], parity_disk: str) -> None:
        self._enter_step(ProvisioningStep.ARRAY)
        args = ['create', '-p', partition_path(parity_disk)]
        args.extend(partition_path(disk) for disk in data_disks)
        self._command(CommandType.NMDCTL, args)
        self._set_progress(100)

    def _start_array(self) -> None:
        self._enter_step(ProvisioningStep.START)
        self._command(CommandType.NMDCTL, ['start'])
        self._set_progress(100)

    def _create_filesystems(self, disk_count: int) -> None:
        self._enter_step(ProvisioningStep.FILESYSTEM)

        def format_slot(slot):
            self._check_cancelled()
            self._system_executor.execute_filesystem_command(
                self.config.slot_device(slot), self.config.filesystem
            )

        self._for_each(range(1, disk_count + 1), format_slot)

    def _mount(self, disk_count: int) -> None:
        self._enter_step(ProvisioningStep.MOUNT)
        self._for_each(
            range(1, disk_count + 1),
            lambda slot: self._command(CommandType.MKDIR, ['-p', self.config.slot_mount_point(slot)]),
            scale=50
        )
        self._command(CommandType.NMDCTL, ['mount'])
        self._set_progress(100)

    def _configure_shares(self, disk_count: int, share_mode: ShareMode) -> None:
        self._enter_step(ProvisioningStep.SAMBA)
        self._share_writer.apply_share_config(disk_count, share_mode)
        self._command(CommandType.SYSTEMCTL, ['restart', self.config.samba_service])
        self._set_progress(100)

    def _initial_check(self) -> None:
        self._enter_step(ProvisioningStep.CHECK)
        try:
            handle = self._scan_supervisor.start_scan(progress_listener=self._set_progress)
        except AlreadyRunning:
            handle = self._scan_supervisor.current_handle()
            if handle is None:
                raise
            logger.info("Parity check already running, following it as the initial check")
            self._follow_scan(handle)
        else:
            if self._cancel_event.is_set():
                self._scan_supervisor.cancel()
            handle.wait()
        self._check_cancelled()
        scan = self._scan_supervisor.get_scan_state()
        if scan.error:
            logger.warning(f"Initial parity check reported: {scan.error}")

    def _follow_scan(self, handle: ScanHandle) -> None:
        while not handle.wait(self.FOLLOW_INTERVAL):
            self._set_progress(self._scan_supervisor.get_scan_state().progress)
            if self._cancel_event.is_set():
                self._scan_supervisor.cancel()
