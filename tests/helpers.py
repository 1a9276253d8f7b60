"""Test doubles for the NonRAID command layer."""

import io
import threading

from nonraid.config_manager import NonRAIDConfig
from nonraid.system_executor import CompletedCommand, SystemCommandExecutor


STATUS_JSON = (
    '{"state": "RUNNING", "parityValid": true, "parityDisk": "/dev/sdd1", '
    '"dataDisks": 2, "lastCheck": "2024-05-01T03:00:00"}'
)

LSBLK_JSON = """{
   "blockdevices": [
      {"name": "sda", "size": "1.8T", "type": "disk", "mountpoint": null,
       "model": "WDC WD20EFRX  ", "serial": "WD-1", "rota": true,
       "children": [{"name": "sda1", "size": "1.8T", "type": "part", "mountpoint": null}]},
      {"name": "sdb", "size": "1.8T", "type": "disk", "mountpoint": null,
       "model": "WDC WD20EFRX", "serial": "WD-2", "rota": "1"},
      {"name": "sdc", "size": "3.6T", "type": "disk", "mountpoint": null,
       "model": null, "serial": null, "rota": false},
      {"name": "mmcblk0", "size": "29.7G", "type": "disk", "mountpoint": null,
       "model": null, "serial": "0x1234", "rota": "0",
       "children": [{"name": "mmcblk0p2", "size": "29.2G", "type": "part", "mountpoint": "/"}]},
      {"name": "loop0", "size": "50M", "type": "disk", "mountpoint": "/snap/core"},
      {"name": "sr0", "size": "1024M", "type": "rom", "mountpoint": null}
   ]
}"""


def make_config(tmp_path, **overrides):
    """NonRAIDConfig rooted in a temporary directory."""
    values = {
        'descriptor_path': str(tmp_path / 'nonraid.dat'),
        'pool_path': '/mnt/storage',
        'samba_config_path': str(tmp_path / 'samba' / 'smb.conf'),
    }
    values.update(overrides)
    return NonRAIDConfig(**values)


class FakeProcess:
    """Popen stand-in for a streamed parity check.

    With ``release`` set, stdout blocks after the scripted lines until the
    event is set or the process is terminated.
    """

    def __init__(self, lines=(), returncode=0, stderr="", release=None):
        self._lines = list(lines)
        self._final = returncode
        self._release = release
        self.stderr = io.StringIO(stderr)
        self.stdout = self._stream()
        self.returncode = None
        self.pid = 4242
        self.terminated = False

    def _stream(self):
        for line in self._lines:
            yield line
        if self._release is not None:
            self._release.wait(5)

    def poll(self):
        return self.returncode

    def wait(self, timeout=None):
        self.returncode = -15 if self.terminated else self._final
        return self.returncode

    def terminate(self):
        self.terminated = True
        if self._release is not None:
            self._release.set()

    def kill(self):
        self.terminate()


class FakeExecutor(SystemCommandExecutor):
    """Executor that validates and records commands without running them.

    ``outputs`` maps a command prefix to its stdout (a string or a callable
    returning one). A command starting with ``fail_on`` exits 1.
    """

    def __init__(self, outputs=None, fail_on=None, scan_factory=None, installed=True):
        super().__init__(dry_run=False, use_sudo=False)
        self.outputs = dict(outputs or {})
        self.fail_on = fail_on
        self.scan_factory = scan_factory or (lambda: FakeProcess(["50%\n"], 0))
        self.installed = installed
        self.commands = []
        self.before_command = None
        self._commands_lock = threading.Lock()

    def binary_available(self, command_type):
        return self.installed

    def _run(self, command_type, args, binary=None):
        full_command, command_str = self._prepare(command_type, args, binary)
        self._record(command_str, command_type)
        with self._commands_lock:
            self.commands.append(command_str)
        if self.before_command:
            self.before_command(command_str)

        if self.fail_on and command_str.startswith(self.fail_on):
            return CompletedCommand(command_str, 1, "", "simulated failure")
        for prefix, output in self.outputs.items():
            if command_str.startswith(prefix):
                return CompletedCommand(command_str, 0, output() if callable(output) else output, "")
        return CompletedCommand(command_str, 0, "", "")

    def spawn(self, command_type, args):
        full_command, command_str = self._prepare(command_type, args)
        self._record(command_str, command_type, supervised=True)
        with self._commands_lock:
            self.commands.append(command_str)
        return self.scan_factory()
