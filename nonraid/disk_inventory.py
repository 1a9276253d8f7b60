"""Block device inventory for array role assignment."""

import json
import logging
from typing import Any, Dict, List, Optional

from .exceptions import ParseError
from .models import DiskDescriptor, PartitionDescriptor
from .system_executor import CommandType, SystemCommandExecutor

logger = logging.getLogger(__name__)


class DiskInventoryReader:
    """Reads physical disks and their partitions from lsblk."""

    LSBLK_COLUMNS = "NAME,SIZE,TYPE,MOUNTPOINT,MODEL,SERIAL,ROTA"

    # Virtual devices never offered for array roles
    VIRTUAL_PREFIXES = ('loop', 'ram', 'zram')

    def __init__(self, system_executor: Optional[SystemCommandExecutor] = None):
        self._system_executor = system_executor or SystemCommandExecutor()

    def list_disks(self) -> List[DiskDescriptor]:
        """
        Enumerate physical disks.

        Returns:
            DiskDescriptor for every non-virtual disk, in lsblk order

        Raises:
            ToolUnavailable: If lsblk cannot be invoked
            ExternalCommandFailure: If lsblk exits non-zero
            ParseError: If the lsblk JSON is malformed
        """
        stdout = self._system_executor.execute_checked(
            CommandType.LSBLK, ['-J', '-o', self.LSBLK_COLUMNS]
        )

        try:
            data = json.loads(stdout)
            devices = data['blockdevices']
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            raise ParseError(f"Unexpected lsblk output: {e}")

        if not isinstance(devices, list):
            raise ParseError("Unexpected lsblk output: blockdevices is not a list")

        disks = []
        for device in devices:
            if not isinstance(device, dict):
                raise ParseError("Unexpected lsblk output: device entry is not an object")
            if device.get('type') != 'disk':
                continue
            name = device.get('name')
            if not name:
                raise ParseError("Unexpected lsblk output: device without a name")
            if name.startswith(self.VIRTUAL_PREFIXES):
                continue
            disks.append(self._to_descriptor(device))

        logger.debug(f"Discovered {len(disks)} disks")
        return disks

    def candidate_disks(self) -> List[DiskDescriptor]:
        """Disks that may be assigned a data or parity role (nothing mounted)."""
        return [disk for disk in self.list_disks() if not disk.mounted]

    def get_disk(self, path: str) -> Optional[DiskDescriptor]:
        for disk in self.list_disks():
            if disk.path == path:
                return disk
        return None

    def _to_descriptor(self, device: Dict[str, Any]) -> DiskDescriptor:
        children = device.get('children') or []
        partitions = [
            PartitionDescriptor(
                name=child.get('name'),
                path=f"/dev/{child.get('name')}",
                size=child.get('size'),
                mountpoint=child.get('mountpoint')
            )
            for child in children
        ]
        mounted = device.get('mountpoint') is not None or any(
            p.mountpoint is not None for p in partitions
        )
        return DiskDescriptor(
            name=device['name'],
            path=f"/dev/{device['name']}",
            size=device.get('size'),
            model=(device.get('model') or 'Unknown').strip(),
            serial=device.get('serial') or 'N/A',
            rotational=self._parse_rota(device.get('rota')),
            mounted=mounted,
            partitions=partitions
        )

    @staticmethod
    def _parse_rota(value: Any) -> bool:
        # lsblk reports booleans on newer util-linux and "0"/"1" on older ones
        return value is True or value == '1' or value == 1
