"""
Contracts of the external collaborators the resizer consumes.
"""

from typing import List, Optional, Protocol

from models import Instance, ResizeArtifact, Snapshot, Volume


class ResourceProvider(Protocol):
    """
    Instance, volume and snapshot operations of a cloud provider.

    create_snapshot and create_volume either return the new resource or raise
    with nothing left behind. The resizer only registers a delete for ids it
    was handed.
    """

    def get_instance(self, instance_id: str) -> Instance: ...

    def list_volumes(self, volume_ids: List[str]) -> List[Volume]: ...

    def create_snapshot(self, volume_id: str, description: str) -> Snapshot: ...

    def get_snapshots(self, snapshot_ids: List[str]) -> List[Snapshot]: ...

    def create_volume(
        self, zone: str, size_gb: int, snapshot_id: str, volume_type: str
    ) -> Volume: ...

    def delete_volume(self, volume_id: str) -> None: ...

    def delete_snapshot(self, snapshot_id: str) -> None: ...

    def detach_volume(self, volume_id: str) -> None: ...

    def attach_volume(
        self, volume_id: str, instance_id: str, device_path: str
    ) -> None: ...

    def stop_instance(self, instance_id: str) -> None: ...

    def start_instance(self, instance_id: str) -> ResizeArtifact: ...

    def tag_instance(self, instance_id: str, key: str, value: str) -> None: ...


class DomainUpdater(Protocol):
    def update_domain(self, ip_address: str, domain_name: str, username: str) -> None: ...


class HealthHandle(Protocol):
    def ping(self) -> None: ...

    def close(self) -> None: ...

    def __enter__(self) -> "HealthHandle": ...

    def __exit__(self, exc_type, exc, tb) -> Optional[bool]: ...


class HealthChecker(Protocol):
    def connect(self, query_string: str, timeout: float) -> HealthHandle: ...

    def url_for(self, ip_address: str) -> str: ...
