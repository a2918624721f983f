"""
REST API clients for Google Cloud (Compute Engine v1).
"""

import logging
import time
from typing import Dict, List, Optional

import google.auth
from google.auth.transport.requests import AuthorizedSession

from errors import NotFoundError, ProviderCallError, ResizeError
from models import (
    Attachment,
    AttachmentState,
    BlockDevice,
    Instance,
    MachineState,
    ResizeArtifact,
    Snapshot,
    SnapshotState,
    Volume,
    VolumeState,
)
from poller import StatePoller

logger = logging.getLogger(__name__)

COMPUTE_API_BASE = "https://compute.googleapis.com/compute/v1"

INSTANCE_STATES = {
    "PROVISIONING": MachineState.STARTING,
    "STAGING": MachineState.STARTING,
    "RUNNING": MachineState.RUNNING,
    "STOPPING": MachineState.STOPPING,
    "SUSPENDING": MachineState.STOPPING,
    "STOPPED": MachineState.STOPPED,
    "SUSPENDED": MachineState.STOPPED,
    "TERMINATED": MachineState.STOPPED,
    "REPAIRING": MachineState.PENDING,
}

DISK_STATES = {
    "CREATING": VolumeState.CREATING,
    "RESTORING": VolumeState.CREATING,
    "READY": VolumeState.AVAILABLE,
    "DELETING": VolumeState.DELETING,
    "FAILED": VolumeState.ERROR,
}

SNAPSHOT_STATES = {
    "CREATING": SnapshotState.PENDING,
    "UPLOADING": SnapshotState.PENDING,
    "READY": SnapshotState.COMPLETED,
    "FAILED": SnapshotState.ERROR,
    "DELETING": SnapshotState.ERROR,
}

# Compute Engine resource names are at most 63 characters
MAX_NAME_LENGTH = 63


def _short(url: str) -> str:
    """Last path segment of a resource URL."""
    return url.rstrip("/").rsplit("/", 1)[-1]


class GoogleRestClient:
    """Base REST client for Google Cloud APIs with retry on transient errors."""

    API_BASE = ""
    RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

    def __init__(
        self,
        project_id: str,
        timeout_s: int = 60,
        max_retries: int = 5,
        base_delay: float = 5.0,
    ):
        """
        Initialize the REST client.

        Args:
            project_id: GCP project ID
            timeout_s: Request timeout in seconds
            max_retries: Maximum number of retries for transient errors
            base_delay: Base delay for exponential backoff
        """
        self.project_id = project_id
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self.base_delay = base_delay

        creds, _ = google.auth.default(
            scopes=["https://www.googleapis.com/auth/cloud-platform"]
        )
        self.session = AuthorizedSession(creds)

    def _url(self, path: str) -> str:
        """Construct full API URL from path. Absolute URLs are kept as is."""
        if path.startswith("https://"):
            return path
        return f"{self.API_BASE}/{path.lstrip('/')}"

    def _request_with_retry(self, method: str, url: str, **kwargs) -> dict:
        """
        Execute HTTP request with exponential backoff retry for transient errors.

        Args:
            method: HTTP method (GET, POST, DELETE)
            url: Request URL
            **kwargs: Additional request parameters

        Returns:
            Dictionary with 'response' and 'status_code' keys

        Raises:
            ProviderCallError: If max retries exceeded
        """
        last_error = None

        for attempt in range(self.max_retries + 1):
            try:
                resp = self.session.request(
                    method.upper(), url, timeout=self.timeout_s, **kwargs
                )

                if resp.status_code in self.RETRYABLE_STATUS_CODES:
                    delay = self._calculate_delay(attempt, resp)
                    error_info = ""
                    try:
                        error_data = resp.json()
                        error_info = error_data.get("error", {}).get("message", "")
                    except ValueError:
                        pass
                    logger.warning(
                        f"Retryable error {resp.status_code} ({error_info}), attempt {attempt + 1}/{self.max_retries + 1}, waiting {delay:.1f}s..."
                    )
                    last_error = (
                        f"HTTP {resp.status_code}: {error_info or resp.text[:200]}"
                    )
                    time.sleep(delay)
                    continue

                return {"response": resp, "status_code": resp.status_code}

            except Exception as e:
                delay = self._calculate_delay(attempt)
                logger.warning(
                    f"Request error: {e}, attempt {attempt + 1}/{self.max_retries + 1}, waiting {delay:.1f}s..."
                )
                last_error = str(e)
                time.sleep(delay)

        raise ProviderCallError(f"Max retries exceeded. Last error: {last_error}")

    def _calculate_delay(self, attempt: int, resp=None) -> float:
        """
        Calculate delay with exponential backoff and jitter.

        Args:
            attempt: Current attempt number
            resp: Optional response object (to check Retry-After header)

        Returns:
            Delay in seconds
        """
        if resp is not None and "Retry-After" in resp.headers:
            try:
                return float(resp.headers["Retry-After"])
            except ValueError:
                pass

        delay = self.base_delay * (2**attempt)
        jitter = delay * 0.2 * (0.5 - time.time() % 1)
        return min(delay + jitter, 180.0)

    def _call(
        self, method: str, path: str, what: str, expected=(200,), **kwargs
    ) -> Dict:
        """
        Execute a request and decode its JSON body.

        Raises:
            NotFoundError: On HTTP 404
            ProviderCallError: On any other unexpected status or a body that is not JSON
        """
        result = self._request_with_retry(method, self._url(path), **kwargs)
        resp = result["response"]
        if resp.status_code == 404:
            raise NotFoundError(f"{what} failed (404): {resp.text}", 404)
        if resp.status_code not in expected:
            raise ProviderCallError(
                f"{what} failed ({resp.status_code}): {resp.text}", resp.status_code
            )
        try:
            return resp.json()
        except ValueError as e:
            raise ProviderCallError(
                f"{what} returned invalid JSON: {resp.text[:200]}", resp.status_code
            ) from e


class ComputeRestClient(GoogleRestClient):
    """Compute Engine v1 client implementing the resource provider contract."""

    API_BASE = COMPUTE_API_BASE

    def __init__(
        self,
        project_id: str,
        zone: str,
        operation_timeout: int = 900,
        poll_interval: int = 5,
        timeout_s: int = 60,
        max_retries: int = 5,
        base_delay: float = 5.0,
    ):
        """
        Initialize the Compute Engine client.

        Args:
            project_id: GCP project ID
            zone: Zone of the instance and its disks (e.g. 'europe-west2-a')
            operation_timeout: Maximum wait for a zonal/global operation (seconds)
            poll_interval: Interval between operation polls (seconds)
            timeout_s: Request timeout in seconds
            max_retries: Maximum number of retries for transient errors
            base_delay: Base delay for exponential backoff
        """
        super().__init__(
            project_id=project_id,
            timeout_s=timeout_s,
            max_retries=max_retries,
            base_delay=base_delay,
        )
        self.zone = zone
        self.operation_poller = StatePoller(
            timeout=operation_timeout, interval=poll_interval
        )

    # ------------------------------------------------------------------
    # Paths and parsing
    # ------------------------------------------------------------------

    def _zone_path(self, *parts: str, zone: Optional[str] = None) -> str:
        base = f"projects/{self.project_id}/zones/{zone or self.zone}"
        return "/".join((base,) + parts)

    def _global_path(self, *parts: str) -> str:
        return "/".join((f"projects/{self.project_id}/global",) + parts)

    @staticmethod
    def _resource_name(base: str, suffix: str) -> str:
        """Build a valid resource name, truncating the base if needed."""
        tail = f"-{suffix}"
        return f"{base[: MAX_NAME_LENGTH - len(tail)].rstrip('-')}{tail}"

    @staticmethod
    def _external_ip(data: Dict) -> Optional[str]:
        for nic in data.get("networkInterfaces", []):
            for access in nic.get("accessConfigs", []):
                if access.get("natIP"):
                    return access["natIP"]
        return None

    def _parse_instance(self, data: Dict) -> Instance:
        # Boot disk first, then by attachment index
        disks = sorted(
            data.get("disks", []),
            key=lambda d: (not d.get("boot", False), d.get("index", 0)),
        )
        block_devices = [
            BlockDevice(
                volume_id=_short(d["source"]),
                device_path=d.get("deviceName", ""),
                boot=bool(d.get("boot", False)),
            )
            for d in disks
            if d.get("source")
        ]
        items = data.get("metadata", {}).get("items", [])
        status = str(data.get("status", "UNKNOWN")).upper()
        return Instance(
            instance_id=data.get("name", ""),
            state=INSTANCE_STATES.get(status, MachineState.UNKNOWN),
            zone=_short(data.get("zone", self.zone)),
            block_devices=block_devices,
            tags={item["key"]: item.get("value", "") for item in items},
            ip_address=self._external_ip(data),
        )

    def _parse_volume(self, data: Dict) -> Volume:
        status = str(data.get("status", "")).upper()
        users = data.get("users", [])
        state = DISK_STATES.get(status, VolumeState.CREATING)
        if state == VolumeState.AVAILABLE and users:
            state = VolumeState.IN_USE
        source_snapshot = data.get("sourceSnapshot")
        return Volume(
            volume_id=data.get("name", ""),
            size_gb=int(data.get("sizeGb", 0)),
            zone=_short(data.get("zone", self.zone)),
            state=state,
            attachments=[
                Attachment(
                    instance_id=_short(user),
                    device_path="",
                    state=AttachmentState.ATTACHED,
                )
                for user in users
            ],
            snapshot_id=_short(source_snapshot) if source_snapshot else None,
        )

    def _wait_for_operation(self, op: Dict, what: str) -> Dict:
        """
        Wait for a zonal or global operation to finish.

        Args:
            op: Operation resource returned by a mutating call
            what: Description of the call, for logs and errors

        Returns:
            The finished operation

        Raises:
            ProviderCallError: If the operation finished with an error
            PollTimeoutError: If the operation did not finish in time
        """
        link = op.get("selfLink")
        if not link:
            raise ProviderCallError(f"{what} returned unexpected response: {op}")

        done = op
        if op.get("status") != "DONE":
            done = self.operation_poller.wait(
                lambda: self._call("GET", link, what=f"Get operation {op.get('name')}"),
                lambda current: current.get("status") == "DONE",
                description=f"operation {op.get('name')} ({what})",
            )

        if "error" in done:
            errors = done["error"].get("errors", [])
            message = "; ".join(e.get("message", "") for e in errors) or str(
                done["error"]
            )
            raise ProviderCallError(f"{what} failed: {message}")

        logger.debug(f"Operation {done.get('name')} DONE ({what})")
        return done

    def _create(self, what: str, path: str, body: Dict, resource_path: str) -> None:
        """
        Insert a named resource and wait for it, deleting it again on failure.

        A POST retried after a lost response answers 409, and a timed out
        operation may still finish later. Either way the caller never learns
        the resource exists, so it is removed here before the error propagates.

        Args:
            what: Description of the call, for logs and errors
            path: Insert path
            body: Insert body, including the resource name
            resource_path: Path of the resource the insert creates
        """
        try:
            op = self._call("POST", path, what, json=body)
            self._wait_for_operation(op, what)
        except ResizeError as e:
            logger.warning(f"{what} failed ({e}), deleting {_short(resource_path)}")
            try:
                self._call("DELETE", resource_path, f"Clean up after: {what}")
            except NotFoundError:
                logger.debug(f"{_short(resource_path)} was never created")
            except ResizeError as cleanup_error:
                logger.error(f"LEAKED {_short(resource_path)}: {cleanup_error}")
            raise

    # ------------------------------------------------------------------
    # Instances
    # ------------------------------------------------------------------

    def get_instance(self, instance_id: str) -> Instance:
        """
        Get details of an instance.

        Raises:
            NotFoundError: If the instance does not exist
            ProviderCallError: If API call fails
        """
        data = self._call(
            "GET",
            self._zone_path("instances", instance_id),
            what=f"Get instance {instance_id}",
        )
        return self._parse_instance(data)

    def stop_instance(self, instance_id: str) -> None:
        what = f"Stop instance {instance_id}"
        op = self._call("POST", self._zone_path("instances", instance_id, "stop"), what)
        self._wait_for_operation(op, what)

    def start_instance(self, instance_id: str) -> ResizeArtifact:
        """
        Start an instance and wait until it is running with an external IP.

        Returns:
            ResizeArtifact with the instance id and its new IP address
        """
        what = f"Start instance {instance_id}"
        op = self._call(
            "POST", self._zone_path("instances", instance_id, "start"), what
        )
        self._wait_for_operation(op, what)

        instance = self.operation_poller.wait(
            lambda: self.get_instance(instance_id),
            lambda inst: inst.state == MachineState.RUNNING
            and bool(inst.ip_address),
            description=f"instance {instance_id} running with an external IP",
        )
        return ResizeArtifact(instance_id=instance_id, ip_address=instance.ip_address)

    def tag_instance(self, instance_id: str, key: str, value: str) -> None:
        """Set a metadata item on the instance, keeping the other items."""
        data = self._call(
            "GET",
            self._zone_path("instances", instance_id),
            what=f"Get instance {instance_id}",
        )
        metadata = data.get("metadata", {})
        items = [i for i in metadata.get("items", []) if i.get("key") != key]
        items.append({"key": key, "value": value})

        what = f"Tag instance {instance_id} ({key}={value})"
        op = self._call(
            "POST",
            self._zone_path("instances", instance_id, "setMetadata"),
            what,
            json={"fingerprint": metadata.get("fingerprint"), "items": items},
        )
        self._wait_for_operation(op, what)

    # ------------------------------------------------------------------
    # Volumes
    # ------------------------------------------------------------------

    def list_volumes(self, volume_ids: List[str]) -> List[Volume]:
        return [
            self._parse_volume(
                self._call(
                    "GET",
                    self._zone_path("disks", volume_id),
                    what=f"Get volume {volume_id}",
                )
            )
            for volume_id in volume_ids
        ]

    def create_volume(
        self, zone: str, size_gb: int, snapshot_id: str, volume_type: str
    ) -> Volume:
        """
        Create a volume from a snapshot.

        Args:
            zone: Zone to create the volume in (same as the instance)
            size_gb: Size of the new volume in GB
            snapshot_id: Snapshot to seed the volume from
            volume_type: Disk type, e.g. 'pd-ssd'

        Returns:
            The new Volume (still creating)
        """
        name = self._resource_name(snapshot_id, f"{size_gb}gb")
        body = {
            "name": name,
            "sizeGb": str(size_gb),
            "sourceSnapshot": self._global_path("snapshots", snapshot_id),
            "type": self._zone_path("diskTypes", volume_type, zone=zone),
        }
        self._create(
            f"Create volume {name}",
            self._zone_path("disks", zone=zone),
            body,
            self._zone_path("disks", name, zone=zone),
        )
        return Volume(
            volume_id=name,
            size_gb=size_gb,
            zone=zone,
            state=VolumeState.CREATING,
            snapshot_id=snapshot_id,
        )

    def delete_volume(self, volume_id: str) -> None:
        what = f"Delete volume {volume_id}"
        op = self._call("DELETE", self._zone_path("disks", volume_id), what)
        self._wait_for_operation(op, what)

    def detach_volume(self, volume_id: str) -> None:
        """
        Detach a volume from the instance using it.

        Raises:
            ProviderCallError: If the volume is not attached or the call fails
        """
        disk = self._call(
            "GET", self._zone_path("disks", volume_id), what=f"Get volume {volume_id}"
        )
        users = disk.get("users", [])
        if not users:
            raise ProviderCallError(f"Volume {volume_id} is not attached")

        instance_id = _short(users[0])
        data = self._call(
            "GET",
            self._zone_path("instances", instance_id),
            what=f"Get instance {instance_id}",
        )
        device_name = next(
            (
                d.get("deviceName")
                for d in data.get("disks", [])
                if _short(d.get("source", "")) == volume_id
            ),
            None,
        )
        if not device_name:
            raise ProviderCallError(
                f"Volume {volume_id} not found on instance {instance_id}"
            )

        what = f"Detach volume {volume_id} from {instance_id}"
        op = self._call(
            "POST",
            self._zone_path("instances", instance_id, "detachDisk"),
            what,
            params={"deviceName": device_name},
        )
        self._wait_for_operation(op, what)

    def attach_volume(
        self, volume_id: str, instance_id: str, device_path: str, boot: bool = True
    ) -> None:
        what = f"Attach volume {volume_id} to {instance_id} as {device_path}"
        op = self._call(
            "POST",
            self._zone_path("instances", instance_id, "attachDisk"),
            what,
            json={
                "source": self._zone_path("disks", volume_id),
                "deviceName": device_path,
                "boot": boot,
            },
        )
        self._wait_for_operation(op, what)

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def create_snapshot(self, volume_id: str, description: str) -> Snapshot:
        name = self._resource_name(volume_id, f"resize-{int(time.time())}")
        self._create(
            f"Create snapshot {name} of {volume_id}",
            self._zone_path("disks", volume_id, "createSnapshot"),
            {"name": name, "description": description},
            self._global_path("snapshots", name),
        )
        return Snapshot(
            snapshot_id=name, volume_id=volume_id, state=SnapshotState.PENDING
        )

    def get_snapshots(self, snapshot_ids: List[str]) -> List[Snapshot]:
        snapshots = []
        for snapshot_id in snapshot_ids:
            data = self._call(
                "GET",
                self._global_path("snapshots", snapshot_id),
                what=f"Get snapshot {snapshot_id}",
            )
            status = str(data.get("status", "")).upper()
            snapshots.append(
                Snapshot(
                    snapshot_id=data.get("name", snapshot_id),
                    volume_id=_short(data.get("sourceDisk", "")),
                    state=SNAPSHOT_STATES.get(status, SnapshotState.PENDING),
                )
            )
        return snapshots

    def delete_snapshot(self, snapshot_id: str) -> None:
        what = f"Delete snapshot {snapshot_id}"
        op = self._call("DELETE", self._global_path("snapshots", snapshot_id), what)
        self._wait_for_operation(op, what)
