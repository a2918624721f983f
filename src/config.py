"""
Configuration management for the Compute Engine volume resizer.
"""

from dataclasses import dataclass
from typing import Optional

from models import MachineState, ResizeRequest


@dataclass
class ResizerConfig:
    """Configuration for a volume resize run."""

    project_id: str
    zone: str
    instance_id: str
    size_gb: int
    domain: str
    username: str
    managed_zone: Optional[str] = None
    base_domain: Optional[str] = None
    machine_id: Optional[str] = None
    query_string: Optional[str] = None
    dry_run: bool = False
    max_size_gb: int = 100
    volume_type: str = "pd-ssd"
    timeout: int = 900
    poll_interval: int = 10
    compensation_timeout: int = 600
    health_check_timeout: int = 60
    agent_port: int = 56789
    domain_tag_key: str = "resizer-domain"
    report_dir: str = "."
    verbose: bool = False

    @classmethod
    def from_args(cls, args) -> "ResizerConfig":
        """
        Create configuration from command-line arguments.

        Args:
            args: Parsed argparse arguments

        Returns:
            ResizerConfig instance
        """
        return cls(
            project_id=args.project,
            zone=args.zone,
            instance_id=args.instance,
            size_gb=args.size,
            domain=args.domain,
            username=args.username,
            managed_zone=args.managed_zone,
            base_domain=args.base_domain,
            machine_id=args.machine_id,
            query_string=args.query_string,
            dry_run=args.dry_run,
            max_size_gb=args.max_size,
            volume_type=args.volume_type,
            timeout=args.timeout,
            poll_interval=args.poll_interval,
            compensation_timeout=args.compensation_timeout,
            health_check_timeout=args.health_check_timeout,
            agent_port=args.agent_port,
            report_dir=args.report_dir,
            verbose=args.verbose,
        )

    def to_request(
        self, current_state: MachineState = MachineState.UNKNOWN
    ) -> ResizeRequest:
        """Build the resize request this configuration describes."""
        return ResizeRequest(
            machine_id=self.machine_id or self.instance_id,
            instance_id=self.instance_id,
            desired_size_gb=self.size_gb,
            current_state=current_state,
            domain_name=self.domain,
            username=self.username,
            query_string=self.query_string,
        )
