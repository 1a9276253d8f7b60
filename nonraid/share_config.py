"""Samba share configuration for the NonRAID data disks."""

import os
import re
import logging
import tempfile
from dataclasses import dataclass
from typing import Dict, List, Optional

from .config_manager import NonRAIDConfig
from .exceptions import NonRAIDError, ShareConfigError
from .models import ShareMode
from .system_executor import CommandType, SystemCommandExecutor

logger = logging.getLogger(__name__)


MERGERFS_OPTIONS = (
    "defaults,allow_other,use_ino,category.create=mfs,"
    "moveonenospc=true,dropcacheonclose=true"
)

GLOBAL_SECTION = [
    "[global]",
    "   workgroup = WORKGROUP",
    "   server string = {server_string}",
    "   security = user",
    "   map to guest = Bad User",
    "   log file = /var/log/samba/log.%m",
    "   max log size = 1000",
    "   logging = file",
    "   panic action = /usr/share/samba/panic-action %d",
    "   server role = standalone server",
    "   obey pam restrictions = yes",
    "   unix password sync = yes",
    "   pam password change = yes",
    "   passwd program = /usr/bin/passwd %u",
    "   passwd chat = *Enter\\snew\\s*\\spassword:* %n\\n "
    "*Retype\\snew\\s*\\spassword:* %n\\n *password\\supdated\\ssuccessfully* .",
]

SHARE_OPTIONS = [
    "   browseable = yes",
    "   read only = no",
    "   guest ok = no",
    "   valid users = @sambashare",
    "   create mask = 0664",
    "   directory mask = 0775",
    "   force group = sambashare",
]


@dataclass
class ShareDefinition:
    """One exported share."""
    name: str
    path: str


class ShareConfigWriter:
    """Renders smb.conf for a share layout and installs it atomically.

    The writer never restarts the share daemon; whoever calls
    ``apply_share_config`` reloads it afterwards.
    """

    def __init__(self, config: NonRAIDConfig,
                 system_executor: Optional[SystemCommandExecutor] = None):
        self.config = config
        self._system_executor = system_executor or SystemCommandExecutor()

    def build_shares(self, disk_count: int, share_mode: ShareMode) -> List[ShareDefinition]:
        """
        Work out the shares for a layout.

        Args:
            disk_count: Number of data disks (slots 1..disk_count)
            share_mode: Share layout

        Returns:
            Shares in slot order
        """
        if disk_count < 1:
            raise ShareConfigError("At least one data disk is required for shares")

        if share_mode == ShareMode.MERGED:
            return [ShareDefinition(name="Storage", path=self.config.pool_path)]

        shares = []
        categories = self.config.share_categories
        for slot in range(1, disk_count + 1):
            if share_mode == ShareMode.CATEGORIES and slot <= len(categories):
                name = categories[slot - 1]
            else:
                name = f"Disk{slot}"
            shares.append(ShareDefinition(name=name, path=self.config.slot_mount_point(slot)))
        return shares

    def render(self, disk_count: int, share_mode: ShareMode) -> str:
        """Render the full smb.conf text for a layout."""
        lines = [line.format(server_string=self.config.samba_server_string)
                 if '{server_string}' in line else line
                 for line in GLOBAL_SECTION]
        lines.append("")

        for share in self.build_shares(disk_count, share_mode):
            lines.append("")
            lines.append(f"[{share.name}]")
            lines.append(f"   path = {share.path}")
            lines.extend(SHARE_OPTIONS)

        return "\n".join(lines) + "\n"

    def apply_share_config(self, disk_count: int, share_mode: ShareMode) -> None:
        """
        Render and install the share configuration.

        For the merged layout the union mount over all slot mount points is
        created at the pool path before the configuration is installed.

        Raises:
            ShareConfigError: If rendering, the union mount or the install fails
        """
        content = self.render(disk_count, share_mode)

        if share_mode == ShareMode.MERGED:
            self.create_pool(disk_count)

        self.install(content)
        logger.info(f"Installed share configuration ({share_mode.value}, {disk_count} disks)")

    def create_pool(self, disk_count: int) -> None:
        """Union-mount slots 1..disk_count at the pool path."""
        branches = ":".join(self.config.slot_mount_point(slot)
                            for slot in range(1, disk_count + 1))
        pool_path = self.config.pool_path
        try:
            self._system_executor.execute_checked(CommandType.MKDIR, ['-p', pool_path])
            self._system_executor.execute_checked(
                CommandType.MERGERFS, [branches, pool_path, '-o', MERGERFS_OPTIONS]
            )
        except NonRAIDError as e:
            raise ShareConfigError(f"Failed to create storage pool: {e}") from e

    def install(self, content: str) -> None:
        """
        Replace the live configuration via a temporary file and rename.

        Raises:
            ShareConfigError: If the file cannot be written or renamed
        """
        target = self.config.samba_config_path
        target_dir = os.path.dirname(target)
        temp_path = None
        try:
            os.makedirs(target_dir, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(dir=target_dir, prefix='.smb.conf.', suffix='.new')
            with os.fdopen(fd, 'w') as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(temp_path, 0o644)
            os.replace(temp_path, target)
        except OSError as e:
            if temp_path and os.path.exists(temp_path):
                os.unlink(temp_path)
            raise ShareConfigError(f"Failed to install {target}: {e}") from e

    def list_shares(self) -> List[Dict[str, str]]:
        """
        List the shares the share daemon currently serves.

        Returns:
            List of {"name", "path"} dicts, excluding [global]
        """
        stdout = self._system_executor.execute_checked(CommandType.TESTPARM, ['-s'])
        return parse_shares(stdout)


def parse_shares(text: str) -> List[Dict[str, str]]:
    """Parse smb.conf-style text into share name/path pairs."""
    shares = []
    blocks = re.split(r'^\s*\[([^\]]+)\]\s*$', text, flags=re.MULTILINE)
    for index in range(1, len(blocks), 2):
        name = blocks[index].strip()
        if name.lower() == 'global':
            continue
        path_match = re.search(r'^\s*path\s*=\s*(.+)$', blocks[index + 1], flags=re.MULTILINE)
        shares.append({
            'name': name,
            'path': path_match.group(1).strip() if path_match else 'N/A'
        })
    return shares
