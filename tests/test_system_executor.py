"""Unit tests for SystemCommandExecutor."""

import subprocess
import unittest
from unittest.mock import MagicMock, patch

from nonraid.exceptions import ExternalCommandFailure, ToolUnavailable, ValidationError
from nonraid.system_executor import CommandType, SystemCommandExecutor


def _process(returncode=0, stdout="", stderr=""):
    process = MagicMock()
    process.returncode = returncode
    process.communicate.return_value = (stdout, stderr)
    process.poll.return_value = returncode
    return process


class TestSystemCommandExecutor(unittest.TestCase):
    """Test cases for SystemCommandExecutor class."""

    def setUp(self):
        self.executor = SystemCommandExecutor(dry_run=True)
        self.executor_live = SystemCommandExecutor(dry_run=False)

    def test_validate_device_path_valid(self):
        for path in ['/dev/sda', '/dev/sdb1', '/dev/nvme0n1', '/dev/mmcblk0p1', '/dev/nmd1p1']:
            with self.subTest(path=path):
                self.assertTrue(self.executor._validate_device_path(path))
                self.executor.validate_device_path(path)

    def test_validate_device_path_invalid(self):
        for path in ['/dev/../etc/passwd', '/dev/sda; rm -rf /', 'sda1', '/home/user/file', '/dev/', '']:
            with self.subTest(path=path):
                self.assertFalse(self.executor._validate_device_path(path))
                with self.assertRaises(ValidationError):
                    self.executor.validate_device_path(path)

    def test_validate_device_path_rejects_non_string(self):
        with self.assertRaises(ValidationError):
            self.executor.validate_device_path(None)

    def test_validate_file_path(self):
        self.assertTrue(self.executor._validate_file_path('/mnt/disk1'))
        self.assertTrue(self.executor._validate_file_path('/etc/samba/smb.conf'))
        self.assertFalse(self.executor._validate_file_path('/mnt/../etc'))
        self.assertFalse(self.executor._validate_file_path('relative/path'))
        self.assertFalse(self.executor._validate_file_path('/mnt/disk1; reboot'))

    def test_disallowed_argument_rejected(self):
        with self.assertRaises(ValidationError):
            self.executor.execute(CommandType.NMDCTL, ['destroy'])
        with self.assertRaises(ValidationError):
            self.executor.execute(CommandType.SGDISK, ['--zap-all', '/dev/sda'])
        self.assertEqual(self.executor.get_command_history(), [])

    def test_option_values_allowed_after_value_options(self):
        self.executor._validate_command_args(
            CommandType.MERGERFS,
            ['/mnt/disk1:/mnt/disk2', '/mnt/storage', '-o', 'defaults,allow_other,category.create=mfs']
        )
        self.executor._validate_command_args(
            CommandType.LSBLK, ['-J', '-o', 'NAME,SIZE,TYPE,MOUNTPOINT,MODEL,SERIAL,ROTA']
        )
        with self.assertRaises(ValidationError):
            self.executor._validate_command_args(CommandType.MERGERFS, ['/mnt/a', 'allow_other;id'])

    def test_unit_names_only_for_systemctl(self):
        self.executor._validate_command_args(CommandType.SYSTEMCTL, ['restart', 'smbd'])
        with self.assertRaises(ValidationError):
            self.executor._validate_command_args(CommandType.NMDCTL, ['smbd'])

    def test_dry_run_records_without_executing(self):
        with patch('subprocess.Popen') as mock_popen:
            success, stdout, stderr = self.executor.execute(CommandType.NMDCTL, ['start'])

        mock_popen.assert_not_called()
        self.assertTrue(success)
        self.assertEqual(stdout, "DRY RUN")
        history = self.executor.get_command_history()
        self.assertEqual(len(history), 1)
        self.assertEqual(history[0]['command'], 'sudo nmdctl start')
        self.assertTrue(history[0]['dry_run'])

    def test_sudo_prefix_respects_configuration(self):
        executor = SystemCommandExecutor(dry_run=True, use_sudo=False)
        executor.execute(CommandType.NMDCTL, ['start'])
        executor.execute(CommandType.LSBLK, ['-J'])
        commands = [entry['command'] for entry in executor.get_command_history()]
        self.assertEqual(commands, ['nmdctl start', 'lsblk -J'])

        self.executor.execute(CommandType.LSBLK, ['-J'])
        self.assertEqual(self.executor.get_command_history()[0]['command'], 'lsblk -J')

    @patch('subprocess.Popen')
    def test_execute_success(self, mock_popen):
        mock_popen.return_value = _process(0, "ok", "")

        success, stdout, stderr = self.executor_live.execute(CommandType.NMDCTL, ['status', '-o', 'json'])

        self.assertTrue(success)
        self.assertEqual(stdout, "ok")
        args, kwargs = mock_popen.call_args
        self.assertEqual(args[0], ['sudo', 'nmdctl', 'status', '-o', 'json'])
        self.assertTrue(kwargs['text'])
        self.assertNotIn('shell', kwargs)

    @patch('subprocess.Popen')
    def test_execute_checked_raises_on_failure(self, mock_popen):
        mock_popen.return_value = _process(2, "", "warning\nno such device\n")

        with self.assertRaises(ExternalCommandFailure) as ctx:
            self.executor_live.execute_checked(CommandType.SGDISK, ['-o', '/dev/sdb'])

        self.assertEqual(ctx.exception.returncode, 2)
        self.assertIn('sgdisk -o /dev/sdb', ctx.exception.command)
        self.assertIn('no such device', str(ctx.exception))

    @patch('subprocess.Popen', side_effect=FileNotFoundError())
    def test_missing_binary_raises_tool_unavailable(self, mock_popen):
        with self.assertRaises(ToolUnavailable):
            self.executor_live.execute(CommandType.LSBLK, ['-J'])

    @patch('subprocess.Popen')
    def test_timeout_kills_process(self, mock_popen):
        process = _process()
        process.communicate.side_effect = [subprocess.TimeoutExpired('nmdctl', 5), ("", "")]
        mock_popen.return_value = process
        executor = SystemCommandExecutor(timeout=5)

        success, stdout, stderr = executor.execute(CommandType.NMDCTL, ['start'])

        self.assertFalse(success)
        self.assertEqual(stderr, "Command timed out")
        process.kill.assert_called_once()
        self.assertEqual(process.communicate.call_args_list[0].kwargs, {'timeout': 5})

    def test_filesystem_command_uses_matching_binary(self):
        self.executor.execute_filesystem_command('/dev/nmd1p1', 'xfs')
        self.executor.execute_filesystem_command('/dev/nmd2p1', 'ext4')
        commands = [entry['command'] for entry in self.executor.get_command_history()]
        self.assertEqual(commands, ['sudo mkfs.xfs -f /dev/nmd1p1', 'sudo mkfs.ext4 -F /dev/nmd2p1'])

    def test_filesystem_command_validation(self):
        with self.assertRaises(ValidationError):
            self.executor.execute_filesystem_command('/dev/nmd1p1', 'ntfs')
        with self.assertRaises(ValidationError):
            self.executor.execute_filesystem_command('/tmp/file', 'xfs')

    @patch('shutil.which')
    def test_binary_available_searches_sbin(self, mock_which):
        mock_which.return_value = '/usr/sbin/nmdctl'
        self.assertTrue(self.executor.binary_available(CommandType.NMDCTL))
        self.assertEqual(mock_which.call_args.args[0], 'nmdctl')
        self.assertIn('/usr/sbin', mock_which.call_args.kwargs['path'])

        mock_which.return_value = None
        self.assertFalse(self.executor.binary_available(CommandType.NMDCTL))

    def test_dry_run_spawn_returns_finished_process(self):
        process = self.executor.spawn(CommandType.NMDCTL, ['check'])
        self.assertEqual(list(process.stdout), ["DRY RUN\n"])
        self.assertEqual(process.wait(), 0)
        self.assertTrue(self.executor.get_command_history()[0]['supervised'])

    @patch('subprocess.Popen', side_effect=FileNotFoundError())
    def test_spawn_missing_binary(self, mock_popen):
        with self.assertRaises(ToolUnavailable):
            self.executor_live.spawn(CommandType.NMDCTL, ['check'])

    def test_terminate_running(self):
        running = MagicMock()
        running.poll.return_value = None
        finished = MagicMock()
        finished.poll.return_value = 0
        self.executor_live._running.update({running, finished})

        self.assertEqual(self.executor_live.terminate_running(), 2)
        running.terminate.assert_called_once()
        finished.terminate.assert_not_called()

    def test_clear_command_history(self):
        self.executor.execute(CommandType.NMDCTL, ['start'])
        self.executor.clear_command_history()
        self.assertEqual(self.executor.get_command_history(), [])


if __name__ == '__main__':
    unittest.main()
