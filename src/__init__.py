"""
Compute Engine Volume Resizer.
"""

from clients import ComputeRestClient
from compensation import CompensationStack
from config import ResizerConfig
from domains import CloudDnsClient
from finalizer import Finalizer
from health import AgentHealthCheck
from locking import MachineLocks
from log_utils import setup_logging
from models import ResizeArtifact, ResizeRequest, ResizeResult
from poller import StatePoller
from resizer import VolumeResizer
from state import MachineStateTracker

__all__ = [
    "ComputeRestClient",
    "CompensationStack",
    "ResizerConfig",
    "CloudDnsClient",
    "Finalizer",
    "AgentHealthCheck",
    "MachineLocks",
    "setup_logging",
    "ResizeArtifact",
    "ResizeRequest",
    "ResizeResult",
    "StatePoller",
    "VolumeResizer",
    "MachineStateTracker",
]
