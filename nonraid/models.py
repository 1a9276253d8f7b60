"""Data models for NonRAID array management."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class ArrayStatus(Enum):
    """Array state as reported to the dashboard."""
    NOT_INSTALLED = "NOT_INSTALLED"
    NOT_CONFIGURED = "NOT_CONFIGURED"
    RUNNING = "RUNNING"
    STOPPED = "STOPPED"
    DEGRADED = "DEGRADED"
    REBUILDING = "REBUILDING"


class ProvisioningStep(Enum):
    """Provisioning pipeline steps, in execution order."""
    PARTITION = "partition"
    ARRAY = "array"
    START = "start"
    FILESYSTEM = "filesystem"
    MOUNT = "mount"
    SAMBA = "samba"
    CHECK = "check"
    COMPLETE = "complete"

    @property
    def order(self) -> int:
        """Position of the step in the pipeline."""
        return list(ProvisioningStep).index(self)


class ShareMode(Enum):
    """Network share layout over the array's data disks."""
    INDIVIDUAL = "individual"
    MERGED = "merged"
    CATEGORIES = "categories"


@dataclass
class PartitionDescriptor:
    """A partition of a block device."""
    name: str
    path: str
    size: str
    mountpoint: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "path": self.path,
            "size": self.size,
            "mountpoint": self.mountpoint,
        }


@dataclass
class DiskDescriptor:
    """Point-in-time view of a physical disk as reported by the OS."""
    name: str
    path: str
    size: str
    model: str
    serial: str
    rotational: bool
    mounted: bool
    partitions: List[PartitionDescriptor] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "path": self.path,
            "size": self.size,
            "model": self.model,
            "serial": self.serial,
            "rotational": self.rotational,
            "mounted": self.mounted,
            "partitions": [p.to_dict() for p in self.partitions],
        }


@dataclass
class DiskUsage:
    """Filesystem usage for one array slot."""
    slot: int
    mount_point: str
    device: Optional[str] = None
    total: Optional[int] = None
    used: Optional[int] = None
    available: Optional[int] = None
    usage_percent: Optional[float] = None
    mounted: bool = True

    @classmethod
    def unmounted(cls, slot: int, mount_point: str) -> "DiskUsage":
        return cls(slot=slot, mount_point=mount_point, mounted=False)

    def to_dict(self) -> Dict[str, Any]:
        if not self.mounted:
            return {"slot": self.slot, "mountPoint": self.mount_point, "status": "unmounted"}
        return {
            "slot": self.slot,
            "mountPoint": self.mount_point,
            "device": self.device,
            "total": self.total,
            "used": self.used,
            "available": self.available,
            "usagePercent": self.usage_percent,
        }


@dataclass
class ArraySnapshot:
    """Array status composed from the array tool and per-slot usage."""
    installed: bool
    status: ArrayStatus
    configured: bool = False
    parity_valid: Optional[bool] = None
    parity_disk: Optional[str] = None
    data_disks: int = 0
    disks: List[DiskUsage] = field(default_factory=list)
    last_check: Optional[str] = None
    checking: bool = False
    check_progress: int = 0

    def to_dict(self) -> Dict[str, Any]:
        if not self.installed:
            return {"installed": False, "status": self.status.value}
        if not self.configured:
            return {"installed": True, "configured": False, "status": self.status.value}
        return {
            "installed": True,
            "configured": True,
            "status": self.status.value,
            "parityValid": self.parity_valid,
            "parityDisk": self.parity_disk,
            "dataDisks": self.data_disks,
            "disks": [d.to_dict() for d in self.disks],
            "lastCheck": self.last_check,
            "checking": self.checking,
            "checkProgress": self.check_progress,
        }


@dataclass
class ProvisioningState:
    """Progress record of the provisioning pipeline.

    ``progress`` is local to ``step`` and restarts at 0 on every step change.
    After a failure ``step`` still names the step that failed, and
    ``completed_steps`` / ``disks`` describe what was left in place.
    """
    active: bool = False
    step: Optional[ProvisioningStep] = None
    progress: int = 0
    error: Optional[str] = None
    completed_steps: List[ProvisioningStep] = field(default_factory=list)
    disks: List[str] = field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def copy(self) -> "ProvisioningState":
        return ProvisioningState(
            active=self.active,
            step=self.step,
            progress=self.progress,
            error=self.error,
            completed_steps=list(self.completed_steps),
            disks=list(self.disks),
            started_at=self.started_at,
            finished_at=self.finished_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "active": self.active,
            "step": self.step.value if self.step else None,
            "progress": self.progress,
            "error": self.error,
            "completedSteps": [s.value for s in self.completed_steps],
            "disks": list(self.disks),
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
        }


@dataclass
class ScanState:
    """Progress record of the background parity check."""
    checking: bool = False
    progress: int = 0
    error: Optional[str] = None
    step: Optional[str] = None

    def copy(self) -> "ScanState":
        return ScanState(
            checking=self.checking,
            progress=self.progress,
            error=self.error,
            step=self.step,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "checking": self.checking,
            "progress": self.progress,
            "error": self.error,
            "step": self.step,
        }


def clamp_progress(value: float) -> int:
    """Round a percentage and keep it within 0-100."""
    return max(0, min(100, int(round(value))))
