"""
Data models for the Compute Engine volume resizer.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from errors import ValidationError


class MachineState(Enum):
    """Lifecycle state of a machine, as tracked and as reported by the provider."""

    NOT_INITIALIZED = "NotInitialized"
    STARTING = "Starting"
    RUNNING = "Running"
    STOPPING = "Stopping"
    STOPPED = "Stopped"
    PENDING = "Pending"
    TERMINATING = "Terminating"
    TERMINATED = "Terminated"
    UNKNOWN = "Unknown"

    def is_stopped(self) -> bool:
        return self in (MachineState.STOPPED, MachineState.TERMINATED)


class VolumeState(Enum):
    CREATING = "creating"
    AVAILABLE = "available"
    IN_USE = "in-use"
    DELETING = "deleting"
    ERROR = "error"


class AttachmentState(Enum):
    ATTACHING = "attaching"
    ATTACHED = "attached"
    DETACHING = "detaching"
    DETACHED = "detached"


class SnapshotState(Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class BlockDevice:
    """A volume attached to an instance slot."""

    volume_id: str
    device_path: str  # device name on Compute Engine
    boot: bool = False


@dataclass
class Instance:
    """Provider view of a compute instance."""

    instance_id: str
    state: MachineState
    zone: str
    block_devices: List[BlockDevice] = field(default_factory=list)  # primary first
    tags: Dict[str, str] = field(default_factory=dict)
    ip_address: Optional[str] = None


@dataclass
class Attachment:
    instance_id: str
    device_path: str
    state: AttachmentState


@dataclass
class Volume:
    """Provider view of a block-storage volume."""

    volume_id: str
    size_gb: int
    zone: str
    state: VolumeState
    attachments: List[Attachment] = field(default_factory=list)
    snapshot_id: Optional[str] = None


@dataclass
class Snapshot:
    snapshot_id: str
    volume_id: str
    state: SnapshotState


@dataclass(frozen=True)
class ResizeRequest:
    """
    Immutable input to one resize run.

    current_state is the state the caller last recorded for the machine. It
    seeds the state tracker when the run starts. Eligibility is always
    decided from the live instance, never from this field.

    Raises:
        ValidationError: If a field is missing or the size is not a positive integer
    """

    machine_id: str
    instance_id: str
    desired_size_gb: int
    current_state: MachineState
    domain_name: str
    username: str
    query_string: Optional[str] = None  # agent URL used for the health probe

    def __post_init__(self):
        for name in ("machine_id", "instance_id", "domain_name", "username"):
            if not getattr(self, name):
                raise ValidationError(f"{name} is required")
        size = self.desired_size_gb
        if isinstance(size, bool) or not isinstance(size, int) or size <= 0:
            raise ValidationError(
                f"desired_size_gb must be a positive integer, got {size!r}"
            )
        if not isinstance(self.current_state, MachineState):
            raise ValidationError(
                f"current_state must be a MachineState, got {self.current_state!r}"
            )


@dataclass
class ResizeArtifact:
    """Descriptor of the resized machine returned to the caller on success."""

    instance_id: str
    ip_address: str
    domain_name: str = ""


@dataclass
class ResizeResult:
    """Result of one resize run, used for reporting."""

    machine_id: str
    instance_id: str
    status: str  # "success", "partial", "failed", "dry_run"
    desired_size_gb: int
    current_size_gb: Optional[int] = None
    start_time: Optional[float] = None
    end_time: Optional[float] = None
    duration_seconds: Optional[float] = None
    old_volume_id: Optional[str] = None
    new_volume_id: Optional[str] = None
    snapshot_id: Optional[str] = None
    artifact: Optional[ResizeArtifact] = None
    error_message: Optional[str] = None
    error_type: Optional[str] = None
    rolled_back: bool = False
    compensation_failures: List[str] = field(default_factory=list)
