"""
Cloud DNS client used to point a machine's domain at its new address.
"""

import logging
from typing import Dict, Optional

from clients import GoogleRestClient
from errors import ProviderCallError, ValidationError

logger = logging.getLogger(__name__)

DNS_API_BASE = "https://dns.googleapis.com/dns/v1"


class CloudDnsClient(GoogleRestClient):
    """Updates A records in a Cloud DNS managed zone."""

    API_BASE = DNS_API_BASE

    def __init__(
        self,
        project_id: str,
        managed_zone: str,
        base_domain: Optional[str] = None,
        ttl: int = 300,
        **kwargs,
    ):
        """
        Initialize the Cloud DNS client.

        Args:
            project_id: GCP project ID owning the managed zone
            managed_zone: Name of the Cloud DNS managed zone
            base_domain: If set, domains must live under '<username>.<base_domain>'
            ttl: TTL of the records written (seconds)
            **kwargs: Passed to GoogleRestClient (timeouts, retries)
        """
        super().__init__(project_id=project_id, **kwargs)
        self.managed_zone = managed_zone
        self.base_domain = base_domain.strip(".") if base_domain else None
        self.ttl = ttl

    def _zone_path(self, *parts: str) -> str:
        base = f"projects/{self.project_id}/managedZones/{self.managed_zone}"
        return "/".join((base,) + parts)

    def check_ownership(self, domain_name: str, username: str) -> None:
        """
        Make sure the domain belongs to the user.

        Raises:
            ValidationError: If the domain is outside the user's namespace
        """
        if not self.base_domain:
            return
        user_domain = f"{username}.{self.base_domain}"
        domain = domain_name.rstrip(".")
        if domain != user_domain and not domain.endswith(f".{user_domain}"):
            raise ValidationError(
                f"Domain {domain_name} does not belong to user {username} "
                f"(expected *.{user_domain})"
            )

    def get_record(self, fqdn: str) -> Optional[Dict]:
        """Return the A record set for the name, if any."""
        data = self._call(
            "GET",
            self._zone_path("rrsets"),
            what=f"List records for {fqdn}",
            params={"name": fqdn, "type": "A"},
        )
        rrsets = data.get("rrsets", [])
        return rrsets[0] if rrsets else None

    def update_domain(self, ip_address: str, domain_name: str, username: str) -> None:
        """
        Point the domain's A record at the given address.

        Args:
            ip_address: New IP address of the machine
            domain_name: Domain of the machine
            username: Owner of the machine

        Raises:
            ValidationError: If the domain does not belong to the user
            ProviderCallError: If the change could not be submitted
        """
        self.check_ownership(domain_name, username)
        fqdn = domain_name.rstrip(".") + "."

        existing = self.get_record(fqdn)
        if existing and existing.get("rrdatas") == [ip_address]:
            logger.info(f"Domain {domain_name} already points to {ip_address}")
            return

        change = {
            "additions": [
                {"name": fqdn, "type": "A", "ttl": self.ttl, "rrdatas": [ip_address]}
            ]
        }
        if existing:
            change["deletions"] = [existing]

        logger.info(f"Updating domain {domain_name} -> {ip_address} (user {username})")
        data = self._call(
            "POST",
            self._zone_path("changes"),
            what=f"Update domain {domain_name}",
            expected=(200, 201),
            json=change,
        )
        if "id" not in data:
            raise ProviderCallError(
                f"Update domain {domain_name} returned unexpected response: {data}"
            )
        logger.debug(f"DNS change {data['id']} status={data.get('status')}")
