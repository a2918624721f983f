"""
Volume resize workflow for a single Compute Engine instance.

The primary disk of a stopped instance is replaced by a bigger copy:

    stop -> snapshot -> new volume from snapshot -> detach old -> attach new
    -> start -> finalize (domain record, tag, health probe)

Every mutating step registers its compensation on a CompensationStack right
where the mutation happens. The stack is unwound once the instance has
started (success) or as soon as a step fails (rollback). Finalization runs
after the storage change is committed and never rolls it back.
"""

import logging
import threading
import time
from datetime import datetime
from typing import Callable, List, Optional, Set, Tuple

from clients import ComputeRestClient
from compensation import CompensationStack
from domains import CloudDnsClient
from errors import (
    InvalidSizeError,
    NoBlockDeviceError,
    NotFoundError,
    PartialFailureWarning,
    ProviderCallError,
    ResizeError,
)
from finalizer import Finalizer
from health import AgentHealthCheck
from locking import MachineLocks
from models import (
    AttachmentState,
    BlockDevice,
    Instance,
    MachineState,
    ResizeArtifact,
    ResizeRequest,
    ResizeResult,
    SnapshotState,
    Volume,
    VolumeState,
)
from poller import StatePoller
from provider import ResourceProvider
from state import MachineStateTracker

logger = logging.getLogger(__name__)

SNAPSHOT_DESCRIPTION = "Temporary snapshot for instance {instance_id}"


class VolumeResizer:
    """Grows the primary volume of an instance, rolling back on failure."""

    def __init__(
        self,
        provider: ResourceProvider,
        finalizer: Finalizer,
        max_size_gb: int = 100,
        volume_type: str = "pd-ssd",
        timeout: int = 900,
        poll_interval: int = 10,
        compensation_timeout: int = 600,
        state_tracker: Optional[MachineStateTracker] = None,
        locks: Optional[MachineLocks] = None,
        run_in_background: Optional[Callable[[Callable[[], None]], None]] = None,
    ):
        """
        Initialize the resizer.

        Args:
            provider: Instance/volume/snapshot operations
            finalizer: Post-resize domain, tag and health handling
            max_size_gb: Largest size a volume may be grown to (GB)
            volume_type: Disk type of the new volume
            timeout: Timeout of each wait for a provider state (seconds)
            poll_interval: Interval between provider state polls (seconds)
            compensation_timeout: Timeout of each wait while rolling back (seconds)
            state_tracker: Receives lifecycle state and progress of the machine
            locks: Per-machine locks shared between concurrent runs
            run_in_background: Runs fire-and-forget cleanups (tracked thread by default,
                drained by wait_for_cleanups)
        """
        self.provider = provider
        self.finalizer = finalizer
        self.max_size_gb = max_size_gb
        self.volume_type = volume_type
        self.poller = StatePoller(timeout=timeout, interval=poll_interval)
        self.compensation_poller = StatePoller(
            timeout=compensation_timeout, interval=poll_interval
        )
        self.state_tracker = state_tracker or MachineStateTracker()
        self.locks = locks if locks is not None else MachineLocks()
        self._run_in_background = run_in_background or self._start_cleanup_thread
        self._cleanup_lock = threading.Lock()
        self._cleanup_threads: List[threading.Thread] = []
        self._pending_deletes: Set[str] = set()

    @classmethod
    def from_config(
        cls,
        config,
        state_tracker: Optional[MachineStateTracker] = None,
        locks: Optional[MachineLocks] = None,
    ) -> "VolumeResizer":
        """
        Wire a resizer against Compute Engine, Cloud DNS and the machine agent.

        Args:
            config: ResizerConfig

        Raises:
            ValueError: If no DNS managed zone is configured
        """
        if not config.managed_zone:
            raise ValueError("managed_zone is required to update the domain record")

        provider = ComputeRestClient(
            project_id=config.project_id,
            zone=config.zone,
            operation_timeout=config.timeout,
            poll_interval=config.poll_interval,
        )
        finalizer = Finalizer(
            provider=provider,
            domain_updater=CloudDnsClient(
                project_id=config.project_id,
                managed_zone=config.managed_zone,
                base_domain=config.base_domain,
            ),
            health_checker=AgentHealthCheck(port=config.agent_port),
            domain_tag_key=config.domain_tag_key,
            health_check_timeout=config.health_check_timeout,
        )
        return cls(
            provider=provider,
            finalizer=finalizer,
            max_size_gb=config.max_size_gb,
            volume_type=config.volume_type,
            timeout=config.timeout,
            poll_interval=config.poll_interval,
            compensation_timeout=config.compensation_timeout,
            state_tracker=state_tracker,
            locks=locks,
        )

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def resize(self, request: ResizeRequest) -> ResizeArtifact:
        """
        Resize the primary volume of the requested instance.

        Args:
            request: What to resize and how to finalize it

        Returns:
            ResizeArtifact with the new IP and domain

        Raises:
            ValidationError: If the request is not eligible (nothing was changed)
            ProviderCallError: If a provider call failed (changes rolled back)
            PollTimeoutError: If a resource never reached its state (rolled back)
            PartialFailureWarning: If finalization failed after the resize committed
            MachineBusyError: If another resize holds the machine
        """
        return self._resize(request, self._new_result(request))

    def run(self, request: ResizeRequest) -> ResizeResult:
        """
        Execute a resize and report its outcome instead of raising.

        Args:
            request: What to resize

        Returns:
            ResizeResult describing the run
        """
        result = self._new_result(request)
        result.start_time = time.time()

        logger.info("=" * 70)
        logger.info("Compute Engine Volume Resize")
        logger.info("=" * 70)
        logger.info(f"Machine: {request.machine_id}")
        logger.info(f"Instance: {request.instance_id}")
        logger.info(f"Desired size: {request.desired_size_gb}GB")
        logger.info(f"Max size: {self.max_size_gb}GB")
        logger.info(f"Volume type: {self.volume_type}")
        logger.info(f"Poll timeout: {self.poller.timeout}s")
        logger.info(f"Poll interval: {self.poller.interval}s")
        logger.info(f"Domain: {request.domain_name}")
        logger.info(f"Start time: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
        logger.info("=" * 70)

        try:
            result.artifact = self._resize(request, result)
            result.status = "success"
        except PartialFailureWarning as e:
            logger.warning(f"Resize committed with a finalization issue: {e}")
            result.status = "partial"
            result.artifact = e.artifact
            result.error_message = str(e)
            result.error_type = type(e).__name__
        except ResizeError as e:
            logger.error(f"Resize FAILED for {request.instance_id}: {e}")
            result.status = "failed"
            result.error_message = str(e)
            result.error_type = type(e).__name__
        finally:
            result.end_time = time.time()
            result.duration_seconds = result.end_time - result.start_time

        return result

    def check(self, request: ResizeRequest) -> ResizeResult:
        """Dry run: check eligibility only, without changing anything."""
        result = self._new_result(request)
        result.start_time = time.time()
        try:
            instance, device, volume = self.check_eligibility(request)
            result.status = "dry_run"
            result.current_size_gb = volume.size_gb
            result.old_volume_id = volume.volume_id
            logger.info(
                f"DRY RUN: Would resize volume {volume.volume_id} ({device.device_path}) "
                f"of {instance.instance_id} from {volume.size_gb}GB "
                f"to {request.desired_size_gb}GB"
            )
        except ResizeError as e:
            logger.error(f"Instance {request.instance_id} is not eligible: {e}")
            result.status = "failed"
            result.error_message = str(e)
            result.error_type = type(e).__name__
        result.end_time = time.time()
        result.duration_seconds = result.end_time - result.start_time
        return result

    def wait_for_cleanups(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for background cleanups started by earlier runs.

        Call before the process exits. Volumes still being deleted when the
        timeout expires are logged as leaked.

        Args:
            timeout: Maximum time to wait in total (seconds), None to wait forever

        Returns:
            True if no cleanup is pending anymore
        """
        deadline = None if timeout is None else time.time() + timeout
        with self._cleanup_lock:
            threads = list(self._cleanup_threads)

        for thread in threads:
            remaining = None if deadline is None else max(0.0, deadline - time.time())
            thread.join(remaining)

        with self._cleanup_lock:
            self._cleanup_threads = [t for t in self._cleanup_threads if t.is_alive()]
            pending = sorted(self._pending_deletes)

        for volume_id in pending:
            logger.error(
                f"LEAKED VOLUME {volume_id}: delete still running after {timeout}s"
            )
        return not pending

    # ------------------------------------------------------------------
    # Eligibility
    # ------------------------------------------------------------------

    def check_eligibility(
        self, request: ResizeRequest
    ) -> Tuple[Instance, BlockDevice, Volume]:
        """
        Read the instance and its primary volume and validate the new size.

        Returns:
            Tuple of (instance, primary block device, primary volume)

        Raises:
            NoBlockDeviceError: If the instance has no block device
            InvalidSizeError: If the desired size is not allowed
        """
        logger.info(f"0. Checking if size is eligible for instance {request.instance_id}")
        instance = self.provider.get_instance(request.instance_id)
        if not instance.block_devices:
            raise NoBlockDeviceError(
                f"No block device available for instance {request.instance_id}"
            )

        device = instance.block_devices[0]
        volume = self._volume(device.volume_id)
        self.validate_size(volume.size_gb, request.desired_size_gb)
        return instance, device, volume

    def validate_size(self, current_size: int, desired_size: int) -> None:
        if desired_size <= current_size:
            raise InvalidSizeError(
                f"Resizing is not allowed. Desired size: {desired_size}GB should be "
                f"larger than current size: {current_size}GB",
                current_size=current_size,
                desired_size=desired_size,
            )
        if desired_size > self.max_size_gb:
            raise InvalidSizeError(
                f"Resizing is not allowed. Desired size: {desired_size}GB can't be "
                f"larger than {self.max_size_gb}GB",
                current_size=current_size,
                desired_size=desired_size,
            )

    # ------------------------------------------------------------------
    # Workflow
    # ------------------------------------------------------------------

    def _new_result(self, request: ResizeRequest) -> ResizeResult:
        return ResizeResult(
            machine_id=request.machine_id,
            instance_id=request.instance_id,
            status="failed",
            desired_size_gb=request.desired_size_gb,
        )

    def _resize(self, request: ResizeRequest, result: ResizeResult) -> ResizeArtifact:
        with self.locks.hold(request.machine_id):
            return self._run_saga(request, result)

    def _run_saga(self, request: ResizeRequest, result: ResizeResult) -> ResizeArtifact:
        machine_id = request.machine_id
        if request.current_state != MachineState.UNKNOWN:
            logger.info(f"[{machine_id}] Caller recorded state {request.current_state.value}")
            self.state_tracker.update_state(machine_id, request.current_state)
        self._progress(machine_id, "Checking eligibility", 10)
        instance, device, old_volume = self.check_eligibility(request)
        result.current_size_gb = old_volume.size_gb
        result.old_volume_id = old_volume.volume_id

        stack = CompensationStack()
        failed = True
        try:
            self._stop(request, instance)
            result.snapshot_id = self._create_snapshot(stack, instance, old_volume)
            result.new_volume_id = self._create_volume(
                stack, request, instance, result.snapshot_id
            )
            self._detach_old(stack, request, instance, device)
            self._attach_new(stack, request, instance, device, result.new_volume_id)
            artifact = self._start(stack, request, instance)
            failed = False
        finally:
            outcomes = stack.unwind(failed)
            result.compensation_failures = [
                f"{o.description}: {o.error}" for o in outcomes if not o.ok
            ]
            if failed:
                result.rolled_back = bool(outcomes)
                self._refresh_state(machine_id, instance.instance_id)

        self._progress(
            machine_id, "Checking remote machine", 90, MachineState.RUNNING
        )
        artifact = self.finalizer.finalize(
            artifact.ip_address,
            request.domain_name,
            request.username,
            artifact.instance_id,
            request.query_string,
        )
        self._progress(machine_id, "Resize finished", 100)
        logger.info(
            f"✓ Resized {instance.instance_id} to {request.desired_size_gb}GB "
            f"(ip={artifact.ip_address}, domain={artifact.domain_name})"
        )
        return artifact

    def _stop(self, request: ResizeRequest, instance: Instance) -> None:
        logger.info(f"1. Stopping machine {instance.instance_id}")
        already_stopped = instance.state.is_stopped()
        if already_stopped:
            logger.info(f"Instance {instance.instance_id} is already stopped")
        else:
            self.provider.stop_instance(instance.instance_id)

        self._progress(request.machine_id, "Stopping machine", 20, MachineState.PENDING)

        if not already_stopped:
            self.poller.wait(
                lambda: self.provider.get_instance(instance.instance_id).state,
                lambda state: state.is_stopped(),
                description=f"instance {instance.instance_id} to stop",
            )

    def _create_snapshot(
        self, stack: CompensationStack, instance: Instance, volume: Volume
    ) -> str:
        logger.info(f"2. Creating snapshot from volume {volume.volume_id}")
        snapshot = self.provider.create_snapshot(
            volume.volume_id,
            SNAPSHOT_DESCRIPTION.format(instance_id=instance.instance_id),
        )
        snapshot_id = snapshot.snapshot_id
        stack.always(
            f"delete snapshot {snapshot_id}",
            lambda: self.provider.delete_snapshot(snapshot_id),
        )
        self.poller.wait(
            lambda: self._snapshot_state(snapshot_id),
            SnapshotState.COMPLETED,
            description=f"snapshot {snapshot_id} to complete",
        )
        return snapshot_id

    def _create_volume(
        self,
        stack: CompensationStack,
        request: ResizeRequest,
        instance: Instance,
        snapshot_id: str,
    ) -> str:
        logger.info(
            f"3. Creating {request.desired_size_gb}GB volume from snapshot "
            f"{snapshot_id} in {instance.zone}"
        )
        self._progress(request.machine_id, "Creating new volume", 40)
        volume = self.provider.create_volume(
            instance.zone, request.desired_size_gb, snapshot_id, self.volume_type
        )
        volume_id = volume.volume_id
        stack.register(
            f"delete new volume {volume_id}",
            on_failure=lambda: self.provider.delete_volume(volume_id),
        )
        self.poller.wait(
            lambda: self._volume_state(volume_id),
            VolumeState.AVAILABLE,
            description=f"volume {volume_id} to become available",
        )
        return volume_id

    def _detach_old(
        self,
        stack: CompensationStack,
        request: ResizeRequest,
        instance: Instance,
        device: BlockDevice,
    ) -> None:
        old_volume_id = device.volume_id
        logger.info(f"4. Detaching old volume {old_volume_id}")
        self._progress(request.machine_id, "Detaching old volume", 55)
        stack.register(
            f"restore old volume {old_volume_id}",
            on_failure=lambda: self._reattach(
                old_volume_id, instance.instance_id, device.device_path
            ),
            on_success=lambda: self._discard(old_volume_id),
        )
        self.provider.detach_volume(old_volume_id)
        self.poller.wait(
            lambda: self._attachment_state(old_volume_id),
            AttachmentState.DETACHED,
            description=f"volume {old_volume_id} to detach",
        )

    def _attach_new(
        self,
        stack: CompensationStack,
        request: ResizeRequest,
        instance: Instance,
        device: BlockDevice,
        new_volume_id: str,
    ) -> None:
        logger.info(
            f"5. Attaching new volume {new_volume_id} as {device.device_path}"
        )
        self._progress(request.machine_id, "Attaching new volume", 70)
        stack.register(
            f"detach new volume {new_volume_id}",
            on_failure=lambda: self._detach(new_volume_id),
        )
        self.provider.attach_volume(
            new_volume_id, instance.instance_id, device.device_path
        )
        self.poller.wait(
            lambda: self._attachment_state(new_volume_id),
            AttachmentState.ATTACHED,
            description=f"volume {new_volume_id} to attach",
        )

    def _start(
        self, stack: CompensationStack, request: ResizeRequest, instance: Instance
    ) -> ResizeArtifact:
        logger.info(f"6. Starting machine {instance.instance_id}")
        self._progress(
            request.machine_id, "Starting machine", 80, MachineState.STARTING
        )
        stack.register(
            f"stop instance {instance.instance_id}",
            on_failure=lambda: self._ensure_stopped(instance.instance_id),
        )
        return self.provider.start_instance(instance.instance_id)

    # ------------------------------------------------------------------
    # Compensations
    # ------------------------------------------------------------------

    def _reattach(self, volume_id: str, instance_id: str, device_path: str) -> None:
        # An attach issued while a detach is in flight is rejected by the provider
        state = self.compensation_poller.wait(
            lambda: self._attachment_state(volume_id),
            lambda s: s in (AttachmentState.ATTACHED, AttachmentState.DETACHED),
            description=f"volume {volume_id} to settle before re-attaching",
        )
        if state == AttachmentState.ATTACHED:
            logger.info(f"Old volume {volume_id} is still attached, nothing to restore")
            return
        logger.warning(
            f"Re-attaching old volume {volume_id} to {instance_id} as {device_path}"
        )
        self.provider.attach_volume(volume_id, instance_id, device_path)
        self.compensation_poller.wait(
            lambda: self._attachment_state(volume_id),
            AttachmentState.ATTACHED,
            description=f"volume {volume_id} to re-attach",
        )

    def _detach(self, volume_id: str) -> None:
        if self._attachment_state(volume_id) == AttachmentState.DETACHED:
            return
        logger.warning(f"Detaching new volume {volume_id}")
        self.provider.detach_volume(volume_id)
        self.compensation_poller.wait(
            lambda: self._attachment_state(volume_id),
            AttachmentState.DETACHED,
            description=f"volume {volume_id} to detach",
        )

    def _ensure_stopped(self, instance_id: str) -> None:
        if self.provider.get_instance(instance_id).state.is_stopped():
            return
        logger.warning(f"Stopping instance {instance_id} before restoring its volume")
        self.provider.stop_instance(instance_id)
        self.compensation_poller.wait(
            lambda: self.provider.get_instance(instance_id).state,
            lambda state: state.is_stopped(),
            description=f"instance {instance_id} to stop",
        )

    def _discard(self, volume_id: str) -> None:
        logger.info(f"Deleting old volume {volume_id}")
        with self._cleanup_lock:
            self._pending_deletes.add(volume_id)
        self._run_in_background(lambda: self._delete_old_volume(volume_id))

    def _delete_old_volume(self, volume_id: str) -> None:
        # Runs detached from the workflow: failures only reach the operator log
        try:
            self.provider.delete_volume(volume_id)
            logger.info(f"Deleted old volume {volume_id}")
        except Exception as e:
            logger.error(f"LEAKED VOLUME {volume_id}: deleting old volume failed: {e}")
        finally:
            with self._cleanup_lock:
                self._pending_deletes.discard(volume_id)

    def _start_cleanup_thread(self, fn: Callable[[], None]) -> None:
        # Not a daemon: interpreter shutdown waits for a delete already in flight
        thread = threading.Thread(target=fn, name="resize-cleanup")
        with self._cleanup_lock:
            self._cleanup_threads = [t for t in self._cleanup_threads if t.is_alive()]
            thread.start()
            self._cleanup_threads.append(thread)

    # ------------------------------------------------------------------
    # Provider state queries
    # ------------------------------------------------------------------

    def _volume(self, volume_id: str) -> Volume:
        volumes = self.provider.list_volumes([volume_id])
        if not volumes:
            raise NotFoundError(f"Volume {volume_id} not found")
        return volumes[0]

    def _volume_state(self, volume_id: str) -> VolumeState:
        state = self._volume(volume_id).state
        if state == VolumeState.ERROR:
            raise ProviderCallError(f"Volume {volume_id} is in error state")
        return state

    def _attachment_state(self, volume_id: str) -> AttachmentState:
        volume = self._volume(volume_id)
        if not volume.attachments:
            return AttachmentState.DETACHED
        return volume.attachments[0].state

    def _snapshot_state(self, snapshot_id: str) -> SnapshotState:
        snapshots = self.provider.get_snapshots([snapshot_id])
        if not snapshots:
            raise NotFoundError(f"Snapshot {snapshot_id} not found")
        state = snapshots[0].state
        if state == SnapshotState.ERROR:
            raise ProviderCallError(f"Snapshot {snapshot_id} failed")
        return state

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def _progress(
        self,
        machine_id: str,
        message: str,
        percentage: int,
        state: Optional[MachineState] = None,
    ) -> None:
        logger.debug(f"[{machine_id}] {percentage}% {message}")
        self.state_tracker.push(machine_id, message, percentage, state)

    def _refresh_state(self, machine_id: str, instance_id: str) -> None:
        try:
            state = self.provider.get_instance(instance_id).state
        except ResizeError as e:
            logger.warning(f"Could not read state of {instance_id} after failure: {e}")
            state = MachineState.UNKNOWN
        self.state_tracker.update_state(machine_id, state)
