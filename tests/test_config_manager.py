"""Unit tests for the NonRAID ConfigManager."""

import json
import os
import tempfile
import unittest
from unittest.mock import patch

from nonraid.config_manager import DEFAULT_SHARE_CATEGORIES, ConfigManager, NonRAIDConfig


class TestConfigManager(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.addCleanup(self._cleanup)

    def _cleanup(self):
        for name in os.listdir(self.temp_dir):
            os.unlink(os.path.join(self.temp_dir, name))
        os.rmdir(self.temp_dir)

    def _write(self, name, content):
        path = os.path.join(self.temp_dir, name)
        with open(path, 'w') as f:
            f.write(content)
        return path

    @patch.dict(os.environ, {}, clear=True)
    def test_defaults(self):
        config = ConfigManager().load_config()

        self.assertEqual(config.descriptor_path, '/nonraid.dat')
        self.assertEqual(config.mount_prefix, '/mnt/disk')
        self.assertEqual(config.pool_path, '/mnt/storage')
        self.assertEqual(config.samba_config_path, '/etc/samba/smb.conf')
        self.assertEqual(config.filesystem, 'xfs')
        self.assertTrue(config.use_sudo)
        self.assertEqual(config.command_timeout, 0)
        self.assertEqual(config.share_categories, DEFAULT_SHARE_CATEGORIES)

    def test_slot_helpers(self):
        config = NonRAIDConfig(mount_prefix='/srv/slot')
        self.assertEqual(config.slot_mount_point(4), '/srv/slot4')
        self.assertEqual(config.slot_device(4), '/dev/nmd4p1')

    @patch.dict(os.environ, {
        'NONRAID_MOUNT_PREFIX': '/srv/disk',
        'NONRAID_USE_SUDO': 'false',
        'NONRAID_COMMAND_TIMEOUT': '120',
        'SHARE_CATEGORIES': 'Movies, Music ,,Books',
        'NONRAID_FILESYSTEM': 'ext4',
    }, clear=True)
    def test_environment_overrides(self):
        config = ConfigManager().load_config()

        self.assertEqual(config.mount_prefix, '/srv/disk')
        self.assertFalse(config.use_sudo)
        self.assertEqual(config.command_timeout, 120)
        self.assertEqual(config.share_categories, ['Movies', 'Music', 'Books'])
        self.assertEqual(config.filesystem, 'ext4')

    @patch.dict(os.environ, {'NONRAID_POOL_PATH': '/srv/pool'}, clear=True)
    def test_json_file_then_environment(self):
        path = self._write('nonraid.json', json.dumps({
            'pool_path': '/data/pool',
            'samba_server_string': 'Basement NAS',
            'unknown_key': 1,
        }))

        config = ConfigManager(path).load_config()

        self.assertEqual(config.samba_server_string, 'Basement NAS')
        self.assertEqual(config.pool_path, '/srv/pool')

    @patch.dict(os.environ, {}, clear=True)
    def test_env_style_file(self):
        path = self._write('nonraid.env', (
            "# array settings\n"
            "NONRAID_DESCRIPTOR_PATH=/var/lib/nonraid.dat\n"
            "SAMBA_SERVICE='samba'\n"
            "NOT_A_SETTING=1\n"
        ))

        config = ConfigManager(path).load_config()

        self.assertEqual(config.descriptor_path, '/var/lib/nonraid.dat')
        self.assertEqual(config.samba_service, 'samba')

    @patch.dict(os.environ, {}, clear=True)
    def test_invalid_json_falls_back_to_defaults(self):
        path = self._write('broken.json', '{not json')
        config = ConfigManager(path).load_config()
        self.assertEqual(config.pool_path, '/mnt/storage')

    @patch.dict(os.environ, {'NONRAID_COMMAND_TIMEOUT': 'soon'}, clear=True)
    def test_invalid_integer_uses_default(self):
        self.assertEqual(ConfigManager().load_config().command_timeout, 0)

    def test_validation_errors(self):
        cases = {
            'NONRAID_COMMAND_TIMEOUT': '-5',
            'LOG_LEVEL': 'LOUD',
            'NONRAID_FILESYSTEM': 'ntfs',
            'NONRAID_POOL_PATH': 'relative/pool',
            'NONRAID_SCAN_SCHEDULE': 'every sunday',
        }
        for key, value in cases.items():
            with self.subTest(key=key):
                with patch.dict(os.environ, {key: value}, clear=True):
                    with self.assertRaises(ValueError):
                        ConfigManager().load_config()

    @patch.dict(os.environ, {}, clear=True)
    def test_share_categories_must_be_safe_section_names(self):
        cases = [
            ["Media]\n[global]\n   include = /tmp/evil.conf"],
            ["Media", "Back[ups"],
            ["Photos\r"],
            ["global"],
            ["Homes"],
            ["Media", "media"],
            ["Media", ""],
            ["Media", 3],
            "Media,Photos",
        ]
        for categories in cases:
            with self.subTest(categories=categories):
                path = self._write('nonraid.json', json.dumps({'share_categories': categories}))
                with self.assertRaises(ValueError):
                    ConfigManager(path).load_config()

    @patch.dict(os.environ, {'SHARE_CATEGORIES': 'Media,Photos]'}, clear=True)
    def test_share_categories_from_environment_validated(self):
        with self.assertRaises(ValueError):
            ConfigManager().load_config()

    @patch.dict(os.environ, {'SAMBA_SERVER_STRING': 'NAS\n[evil]'}, clear=True)
    def test_server_string_must_be_single_line(self):
        with self.assertRaises(ValueError):
            ConfigManager().load_config()

    @patch.dict(os.environ, {'NONRAID_SCAN_SCHEDULE': '0 3 * * 0'}, clear=True)
    def test_valid_schedule(self):
        self.assertEqual(ConfigManager().load_config().scan_schedule, '0 3 * * 0')

    @patch.dict(os.environ, {}, clear=True)
    def test_config_is_cached_until_reload(self):
        manager = ConfigManager()
        first = manager.load_config()
        self.assertIs(manager.load_config(), first)

        with patch.dict(os.environ, {'SAMBA_SERVICE': 'samba'}):
            self.assertIs(manager.load_config(), first)
            self.assertEqual(manager.reload_config().samba_service, 'samba')


if __name__ == '__main__':
    unittest.main()
