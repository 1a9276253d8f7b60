"""Secure system command execution framework."""

import io
import os
import re
import shlex
import shutil
import logging
import subprocess
import threading
from dataclasses import dataclass
from enum import Enum
from typing import List, Dict, Optional, Set, Tuple

from .exceptions import ExternalCommandFailure, ToolUnavailable, ValidationError


logger = logging.getLogger(__name__)


class CommandType(Enum):
    """Supported command types for validation."""
    LSBLK = "lsblk"
    NMDCTL = "nmdctl"
    SGDISK = "sgdisk"
    MKFS = "mkfs"
    MKDIR = "mkdir"
    MOUNT = "mount"
    MERGERFS = "mergerfs"
    SYSTEMCTL = "systemctl"
    TESTPARM = "testparm"


@dataclass
class CompletedCommand:
    """Outcome of a synchronous command."""
    command: str
    returncode: Optional[int]
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.returncode == 0


class _DryRunProcess:
    """Stand-in for a spawned process when running in dry-run mode."""

    def __init__(self):
        self.stdout = io.StringIO("DRY RUN\n")
        self.stderr = io.StringIO("")
        self.returncode = 0
        self.pid = None

    def poll(self):
        return self.returncode

    def wait(self, timeout=None):
        return self.returncode

    def terminate(self):
        pass

    def kill(self):
        pass


class SystemCommandExecutor:
    """Secure system command executor with privilege escalation and validation."""

    # Allowed commands and their argument vocabularies
    ALLOWED_COMMANDS = {
        CommandType.LSBLK: {
            'binary': 'lsblk',
            'allowed_args': {'-J', '--json', '-o', '-d', '-n', '-b'},
            'requires_sudo': False
        },
        CommandType.NMDCTL: {
            'binary': 'nmdctl',
            'allowed_args': {
                'status', 'create', 'start', 'stop', 'mount', 'unmount',
                'check', 'add', 'replace', '-o', 'json', '-p'
            },
            'requires_sudo': True
        },
        CommandType.SGDISK: {
            'binary': 'sgdisk',
            'allowed_args': {'-o', '-a', '8', '-n', '1:32K:0'},
            'requires_sudo': True
        },
        CommandType.MKFS: {
            'binary': 'mkfs.xfs',
            'allowed_args': {'-f', '-F'},
            'requires_sudo': True
        },
        CommandType.MKDIR: {
            'binary': 'mkdir',
            'allowed_args': {'-p'},
            'requires_sudo': True
        },
        CommandType.MOUNT: {
            'binary': 'mount',
            'allowed_args': {'-t', '-o'},
            'requires_sudo': True
        },
        CommandType.MERGERFS: {
            'binary': 'mergerfs',
            'allowed_args': {'-o'},
            'requires_sudo': True
        },
        CommandType.SYSTEMCTL: {
            'binary': 'systemctl',
            'allowed_args': {'restart', 'reload', 'is-active'},
            'requires_sudo': True
        },
        CommandType.TESTPARM: {
            'binary': 'testparm',
            'allowed_args': {'-s', '--suppress-prompt'},
            'requires_sudo': False
        }
    }

    # Filesystem creators and their "force" flag
    MKFS_FORCE_FLAGS = {'xfs': '-f', 'ext4': '-F', 'btrfs': '-f'}

    # Options whose next argument is a free-form value
    VALUE_OPTIONS = {'-o', '-t'}

    # Device path validation pattern
    DEVICE_PATH_PATTERN = re.compile(r'^/dev/[a-zA-Z0-9]+[0-9]*$')

    # File path validation pattern (mount points, pool paths)
    FILE_PATH_PATTERN = re.compile(r'^/[a-zA-Z0-9/_.-]+$')

    # Colon-joined branch list for union mounts
    BRANCH_LIST_PATTERN = re.compile(r'^/[a-zA-Z0-9/_.-]+(:/[a-zA-Z0-9/_.-]+)+$')

    # Option values such as "defaults,allow_other,category.create=mfs"
    OPTION_VALUE_PATTERN = re.compile(r'^[a-zA-Z0-9_.,=-]+$')

    # systemd unit names
    UNIT_NAME_PATTERN = re.compile(r'^[a-zA-Z0-9@_.-]+$')

    # Extra directories searched for admin binaries
    SBIN_DIRS = ('/usr/local/sbin', '/usr/sbin', '/sbin')

    def __init__(self, dry_run: bool = False, use_sudo: bool = True, timeout: int = 0):
        """
        Initialize the SystemCommandExecutor.

        Args:
            dry_run: If True, commands will be logged but not executed
            use_sudo: Prefix privileged commands with sudo
            timeout: Per-command timeout in seconds, 0 for none
        """
        self.dry_run = dry_run
        self.use_sudo = use_sudo
        self.timeout = timeout
        self._command_history: List[Dict] = []
        self._running: Set[subprocess.Popen] = set()
        self._lock = threading.Lock()

    def binary_available(self, command_type: CommandType) -> bool:
        """Check whether the binary behind a command type is on PATH."""
        binary = self.ALLOWED_COMMANDS[command_type]['binary']
        search_path = os.pathsep.join(
            [os.environ.get('PATH', '')] + list(self.SBIN_DIRS)
        )
        return shutil.which(binary, path=search_path) is not None

    def execute(self, command_type: CommandType, args: List[str]) -> Tuple[bool, str, str]:
        """
        Execute a validated command and wait for it.

        Args:
            command_type: Type of command to execute
            args: Command arguments

        Returns:
            Tuple of (success, stdout, stderr)
        """
        result = self._run(command_type, args)
        return result.success, result.stdout, result.stderr

    def execute_checked(self, command_type: CommandType, args: List[str]) -> str:
        """
        Execute a validated command, raising if it fails.

        Args:
            command_type: Type of command to execute
            args: Command arguments

        Returns:
            Captured stdout

        Raises:
            ExternalCommandFailure: If the command exits non-zero or times out
            ToolUnavailable: If the binary cannot be started
        """
        result = self._run(command_type, args)
        if not result.success:
            raise ExternalCommandFailure(result.command, result.returncode, result.stderr)
        return result.stdout

    def execute_filesystem_command(self, device_path: str, filesystem: str = 'xfs') -> str:
        """
        Create a filesystem on a device, overwriting any existing one.

        Args:
            device_path: Device path to format
            filesystem: Filesystem type (xfs, ext4 or btrfs)

        Returns:
            Captured stdout
        """
        if filesystem not in self.MKFS_FORCE_FLAGS:
            raise ValidationError(f"Unsupported filesystem type: {filesystem}")
        self.validate_device_path(device_path)
        result = self._run(
            CommandType.MKFS,
            [self.MKFS_FORCE_FLAGS[filesystem], device_path],
            binary=f"mkfs.{filesystem}"
        )
        if not result.success:
            raise ExternalCommandFailure(result.command, result.returncode, result.stderr)
        return result.stdout

    def spawn(self, command_type: CommandType, args: List[str]):
        """
        Start a long-running command whose output is streamed to the caller.

        Args:
            command_type: Type of command to execute
            args: Command arguments

        Returns:
            subprocess.Popen with text-mode stdout/stderr pipes

        Raises:
            ToolUnavailable: If the binary cannot be started
        """
        full_command, command_str = self._prepare(command_type, args)
        logger.info(f"Spawning command: {command_str}")
        self._record(command_str, command_type, supervised=True)

        if self.dry_run:
            logger.info("DRY RUN: Command would be spawned")
            return _DryRunProcess()

        try:
            return subprocess.Popen(
                full_command,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                bufsize=1
            )
        except FileNotFoundError:
            raise ToolUnavailable(full_command[0])

    def terminate_running(self) -> int:
        """
        Terminate every synchronous command still in flight.

        Returns:
            Number of processes signalled
        """
        with self._lock:
            processes = list(self._running)
        for process in processes:
            if process.poll() is None:
                logger.warning(f"Terminating command (pid {process.pid})")
                process.terminate()
        return len(processes)

    def validate_device_path(self, path: str) -> None:
        """Raise ValidationError unless ``path`` is a plain /dev block device path."""
        if not isinstance(path, str) or not self._validate_device_path(path):
            raise ValidationError(f"Invalid device path: {path}")

    def get_command_history(self) -> List[Dict]:
        """Get the history of executed commands."""
        with self._lock:
            return list(self._command_history)

    def clear_command_history(self) -> None:
        """Clear the command history."""
        with self._lock:
            self._command_history.clear()

    def _run(self, command_type: CommandType, args: List[str],
             binary: Optional[str] = None) -> CompletedCommand:
        full_command, command_str = self._prepare(command_type, args, binary)
        logger.info(f"Executing command: {command_str}")
        self._record(command_str, command_type)

        if self.dry_run:
            logger.info("DRY RUN: Command would be executed")
            return CompletedCommand(command_str, 0, "DRY RUN", "")

        try:
            process = subprocess.Popen(
                full_command,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True
            )
        except FileNotFoundError:
            logger.error(f"Binary not found for command: {command_str}")
            raise ToolUnavailable(full_command[0])

        with self._lock:
            self._running.add(process)
        try:
            stdout, stderr = process.communicate(timeout=self.timeout or None)
        except subprocess.TimeoutExpired:
            process.kill()
            process.communicate()
            logger.error(f"Command timed out after {self.timeout}s: {command_str}")
            return CompletedCommand(command_str, None, "", "Command timed out")
        finally:
            with self._lock:
                self._running.discard(process)

        if process.returncode == 0:
            logger.info(f"Command executed successfully: {command_str}")
        else:
            logger.error(f"Command failed with return code {process.returncode}: {command_str}")
            logger.error(f"Error output: {stderr}")

        return CompletedCommand(command_str, process.returncode, stdout, stderr)

    def _prepare(self, command_type: CommandType, args: List[str],
                 binary: Optional[str] = None) -> Tuple[List[str], str]:
        command_config = self.ALLOWED_COMMANDS[command_type]
        binary = binary or command_config['binary']

        self._validate_command_args(command_type, args)

        if command_config['requires_sudo'] and self.use_sudo:
            full_command = ['sudo', binary] + list(args)
        else:
            full_command = [binary] + list(args)

        return full_command, ' '.join(shlex.quote(arg) for arg in full_command)

    def _record(self, command_str: str, command_type: CommandType, supervised: bool = False) -> None:
        with self._lock:
            self._command_history.append({
                'command': command_str,
                'type': command_type.value,
                'supervised': supervised,
                'dry_run': self.dry_run
            })

    def _validate_command_args(self, command_type: CommandType, args: List[str]) -> None:
        """
        Validate command arguments against allowed patterns.

        Raises:
            ValidationError: If any argument is not allowed
        """
        allowed_args = self.ALLOWED_COMMANDS[command_type]['allowed_args']

        for index, arg in enumerate(args):
            if (arg in allowed_args or
                    arg.isdigit() or
                    self._validate_device_path(arg) or
                    self._validate_file_path(arg) or
                    self.BRANCH_LIST_PATTERN.match(arg)):
                continue

            if index > 0 and args[index - 1] in self.VALUE_OPTIONS:
                if self.OPTION_VALUE_PATTERN.match(arg):
                    continue

            if command_type == CommandType.SYSTEMCTL and self.UNIT_NAME_PATTERN.match(arg):
                continue

            raise ValidationError(f"Argument not allowed for {command_type.value}: {arg}")

    def _validate_device_path(self, path: str) -> bool:
        """Validate device path format."""
        return bool(self.DEVICE_PATH_PATTERN.match(path))

    def _validate_file_path(self, path: str) -> bool:
        """Validate file path format."""
        return bool(self.FILE_PATH_PATTERN.match(path)) and '..' not in path.split('/')
