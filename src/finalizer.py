"""
Post-resize bookkeeping: domain record, instance tag and health probe.
"""

import logging
from typing import Optional

from errors import PartialFailureWarning, ResizeError
from models import ResizeArtifact
from provider import DomainUpdater, HealthChecker, ResourceProvider

logger = logging.getLogger(__name__)

DEFAULT_DOMAIN_TAG_KEY = "resizer-domain"


class Finalizer:
    """Runs after the storage resize has committed and the instance is started."""

    def __init__(
        self,
        provider: ResourceProvider,
        domain_updater: DomainUpdater,
        health_checker: HealthChecker,
        domain_tag_key: str = DEFAULT_DOMAIN_TAG_KEY,
        health_check_timeout: float = 60,
    ):
        """
        Initialize the finalizer.

        Args:
            provider: Resource provider used to tag the instance
            domain_updater: Updates the domain record with the new IP
            health_checker: Connects to the agent on the machine
            domain_tag_key: Instance tag key holding the domain binding
            health_check_timeout: Budget of the health probe (seconds)
        """
        self.provider = provider
        self.domain_updater = domain_updater
        self.health_checker = health_checker
        self.domain_tag_key = domain_tag_key
        self.health_check_timeout = health_check_timeout

    def finalize(
        self,
        ip_address: str,
        domain_name: str,
        username: str,
        instance_id: str,
        query_string: Optional[str] = None,
    ) -> ResizeArtifact:
        """
        Update the domain record, tag the instance and probe the agent.

        Args:
            ip_address: New IP address of the instance
            domain_name: Domain bound to the machine
            username: Owner of the machine
            instance_id: Instance to tag
            query_string: Agent URL; derived from the IP if not given

        Returns:
            ResizeArtifact of the resized machine

        Raises:
            PartialFailureWarning: If the domain update or tagging failed.
                The storage resize itself is already committed.
        """
        artifact = ResizeArtifact(instance_id=instance_id, ip_address=ip_address)

        try:
            self.domain_updater.update_domain(ip_address, domain_name, username)
        except ResizeError as e:
            logger.error(f"Domain update failed for {domain_name}: {e}")
            raise PartialFailureWarning(
                f"Volume resized, but updating domain {domain_name} failed: {e}",
                artifact,
            ) from e

        logger.info(
            f"Updating domain tag '{domain_name}' of instance '{instance_id}'"
        )
        try:
            self.provider.tag_instance(instance_id, self.domain_tag_key, domain_name)
        except ResizeError as e:
            logger.error(f"Tagging instance {instance_id} failed: {e}")
            raise PartialFailureWarning(
                f"Volume resized, but tagging instance {instance_id} failed: {e}",
                artifact,
            ) from e

        artifact.domain_name = domain_name
        self.probe(ip_address, query_string)
        return artifact

    def probe(self, ip_address: str, query_string: Optional[str] = None) -> bool:
        """
        Best-effort health probe of the restarted machine.

        Returns:
            True if the agent answered a ping, False otherwise (logged only)
        """
        url = query_string or self.health_checker.url_for(ip_address)
        logger.info(f"Connecting to remote agent at {url}")
        try:
            with self.health_checker.connect(url, self.health_check_timeout) as handle:
                logger.info("Sending a ping message")
                handle.ping()
        except ResizeError as e:
            logger.warning(f"Health probe of {url} failed: {e}")
            return False
        return True
