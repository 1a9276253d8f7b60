"""Supervision of the background NonRAID parity check."""

import re
import logging
import threading
from typing import Callable, Optional

from .exceptions import AlreadyRunning, ExternalCommandFailure
from .models import ScanState
from .system_executor import CommandType, SystemCommandExecutor

logger = logging.getLogger(__name__)


# A percentage token such as "42%" or "42.7%", not glued to a word or number
PROGRESS_MARKER = re.compile(r'(?<![\w.])(\d{1,3}(?:\.\d+)?)%(?!\w)')


def parse_progress_marker(line: str) -> Optional[int]:
    """
    Extract a progress percentage from one line of parity check output.

    The last valid marker on the line wins. Markers above 100 are ignored.

    Args:
        line: Output line

    Returns:
        Integer percentage 0-100, or None if the line carries no valid marker
    """
    for raw in reversed(PROGRESS_MARKER.findall(line)):
        value = float(raw)
        if value <= 100:
            return int(value)
        logger.debug(f"Ignoring out-of-range progress marker {raw}%")
    return None


class ScanHandle:
    """Handle on a supervised parity check."""

    def __init__(self, process, monitor: threading.Thread):
        self._process = process
        self._monitor = monitor

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the check has exited and its state is final."""
        self._monitor.join(timeout)
        return not self._monitor.is_alive()


class ScanSupervisor:
    """Starts the parity check and owns its progress record.

    Only one check is supervised at a time. Every read and write of the
    record happens under ``_lock``, so starting is an atomic check-and-set.

    A caller that must run commands before the check (a disk replacement)
    can ``reserve`` the slot first; only the holder of the returned token
    may then start the check.
    """

    CHECK_ARGS = ['check']

    def __init__(self, system_executor: Optional[SystemCommandExecutor] = None):
        self._system_executor = system_executor or SystemCommandExecutor()
        self._state = ScanState()
        self._lock = threading.Lock()
        self._process = None
        self._handle: Optional[ScanHandle] = None
        self._reservation = None
        self._cancelled = False

    def reserve(self, step_label: Optional[str] = None) -> object:
        """
        Claim the check slot without starting a check.

        Returns:
            Token to pass to ``start_scan`` or ``release``

        Raises:
            AlreadyRunning: If a check is running or the slot is reserved
        """
        with self._lock:
            if self._state.checking:
                raise AlreadyRunning("Parity check already in progress")
            self._state = ScanState(checking=True, progress=0, error=None, step=step_label)
            self._reservation = object()
            return self._reservation

    def release(self, reservation: object, error: Optional[str] = None) -> None:
        """Give back a reserved slot that will not be used."""
        with self._lock:
            if reservation is None or reservation is not self._reservation:
                return
            self._reservation = None
            self._state.checking = False
            self._state.error = error

    def start_scan(self, step_label: Optional[str] = None,
                   progress_listener: Optional[Callable[[int], None]] = None,
                   reservation: Optional[object] = None) -> ScanHandle:
        """
        Start a parity check in the background.

        Args:
            step_label: Optional label shown while the check runs (e.g. "rebuilding")
            progress_listener: Called with every accepted progress value
            reservation: Token from ``reserve`` when the slot was claimed earlier

        Returns:
            ScanHandle for the running check

        Raises:
            AlreadyRunning: If a check is already being supervised
            ToolUnavailable: If the array tool cannot be started
            ExternalCommandFailure: If the process cannot be spawned
        """
        with self._lock:
            reserved = reservation is not None and reservation is self._reservation
            if self._state.checking and not reserved:
                raise AlreadyRunning("Parity check already in progress")

            self._reservation = None
            self._state = ScanState(checking=True, progress=0, error=None, step=step_label)
            self._cancelled = False
            try:
                process = self._system_executor.spawn(CommandType.NMDCTL, self.CHECK_ARGS)
            except OSError as e:
                self._state.checking = False
                self._state.error = "Parity check failed to start"
                raise ExternalCommandFailure("nmdctl check", None, str(e))
            except Exception:
                self._state.checking = False
                self._state.error = "Parity check failed to start"
                raise
            self._process = process

            monitor = threading.Thread(
                target=self._monitor,
                args=(process, progress_listener),
                name="nonraid-scan-monitor",
                daemon=True
            )
            # Started under the lock so current_handle() never sees an unstarted monitor
            monitor.start()
            self._handle = ScanHandle(process, monitor)
            handle = self._handle

        logger.info(f"Parity check started{f' ({step_label})' if step_label else ''}")
        return handle

    def current_handle(self) -> Optional[ScanHandle]:
        """Handle on the running check, None if no process is supervised."""
        with self._lock:
            return self._handle

    def get_scan_state(self) -> ScanState:
        with self._lock:
            return self._state.copy()

    def is_running(self) -> bool:
        with self._lock:
            return self._state.checking

    def cancel(self) -> bool:
        """
        Terminate the running parity check.

        Returns:
            True if a running check was signalled
        """
        with self._lock:
            process = self._process
            if not self._state.checking or process is None:
                return False
            self._cancelled = True
        logger.warning("Cancelling parity check")
        process.terminate()
        return True

    def _monitor(self, process, progress_listener) -> None:
        stderr_thread = threading.Thread(
            target=self._drain_stderr, args=(process,),
            name="nonraid-scan-stderr", daemon=True
        )
        stderr_thread.start()

        returncode = None
        try:
            for line in process.stdout:
                progress = parse_progress_marker(line)
                if progress is None:
                    logger.debug(f"Ignoring parity check output: {line.rstrip()}")
                    continue
                with self._lock:
                    self._state.progress = progress
                if progress_listener:
                    progress_listener(progress)
            returncode = process.wait()
        except Exception:
            logger.exception("Parity check monitor failed")
            if process.poll() is None:
                process.kill()
                process.wait()
        finally:
            stderr_thread.join(timeout=5)
            self._finish(returncode)

    def _finish(self, returncode: Optional[int]) -> None:
        with self._lock:
            self._state.checking = False
            self._process = None
            self._handle = None
            if self._cancelled:
                self._state.error = "Parity check cancelled"
            elif returncode == 0:
                self._state.progress = 100
            elif returncode is None:
                self._state.error = "Parity check monitoring failed"
            else:
                self._state.error = f"Parity check failed (exit code {returncode})"
            outcome = self._state.error or "completed"
            progress = self._state.progress
        logger.info(f"Parity check finished: {outcome}", extra={"progress": progress})

    @staticmethod
    def _drain_stderr(process) -> None:
        if process.stderr is None:
            return
        for line in process.stderr:
            if line.strip():
                logger.error(f"Check error: {line.rstrip()}")
