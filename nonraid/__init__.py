"""NonRAID parity array management."""

from .array_manager import ArrayManager
from .array_status import ArrayStatusReader
from .config_manager import ConfigManager, NonRAIDConfig
from .disk_inventory import DiskInventoryReader
from .provisioner import ProvisioningOrchestrator
from .scan_scheduler import ScanScheduler
from .scan_supervisor import ScanSupervisor
from .share_config import ShareConfigWriter
from .system_executor import CommandType, SystemCommandExecutor

__all__ = [
    'ArrayManager',
    'ArrayStatusReader',
    'CommandType',
    'ConfigManager',
    'DiskInventoryReader',
    'NonRAIDConfig',
    'ProvisioningOrchestrator',
    'ScanScheduler',
    'ScanSupervisor',
    'ShareConfigWriter',
    'SystemCommandExecutor',
]
