"""
Unit tests for Finalizer.
"""

import unittest
from unittest.mock import MagicMock

from errors import HealthCheckError, PartialFailureWarning, ProviderCallError
from finalizer import Finalizer


class TestFinalizer(unittest.TestCase):
    """Test domain update, tagging and the health probe."""

    def setUp(self):
        self.provider = MagicMock()
        self.domain_updater = MagicMock()
        self.health_checker = MagicMock()
        self.health_checker.url_for.return_value = "http://10.0.0.2:56789/kite"
        self.handle = self.health_checker.connect.return_value.__enter__.return_value
        self.finalizer = Finalizer(
            provider=self.provider,
            domain_updater=self.domain_updater,
            health_checker=self.health_checker,
            health_check_timeout=30,
        )

    def finalize(self, query_string=None):
        return self.finalizer.finalize(
            "10.0.0.2", "vm-1.alice.example.com", "alice", "vm-1", query_string
        )

    def test_finalize_success(self):
        """Test the domain is updated, the instance tagged and the agent pinged."""
        artifact = self.finalize()

        self.assertEqual(artifact.instance_id, "vm-1")
        self.assertEqual(artifact.ip_address, "10.0.0.2")
        self.assertEqual(artifact.domain_name, "vm-1.alice.example.com")
        self.domain_updater.update_domain.assert_called_once_with(
            "10.0.0.2", "vm-1.alice.example.com", "alice"
        )
        self.provider.tag_instance.assert_called_once_with(
            "vm-1", "resizer-domain", "vm-1.alice.example.com"
        )
        self.health_checker.connect.assert_called_once_with(
            "http://10.0.0.2:56789/kite", 30
        )
        self.handle.ping.assert_called_once()

    def test_query_string_overrides_agent_url(self):
        """Test an explicit agent URL is used for the probe."""
        self.finalize(query_string="https://agent.example.com/kite")

        self.health_checker.connect.assert_called_once_with(
            "https://agent.example.com/kite", 30
        )
        self.health_checker.url_for.assert_not_called()

    def test_domain_failure_is_partial(self):
        """Test a failed domain update raises PartialFailureWarning."""
        self.domain_updater.update_domain.side_effect = ProviderCallError("dns down")

        with self.assertRaises(PartialFailureWarning) as ctx:
            self.finalize()

        self.assertEqual(ctx.exception.artifact.ip_address, "10.0.0.2")
        self.assertEqual(ctx.exception.artifact.domain_name, "")
        self.provider.tag_instance.assert_not_called()
        self.health_checker.connect.assert_not_called()

    def test_tag_failure_is_partial(self):
        """Test a failed tag update raises PartialFailureWarning."""
        self.provider.tag_instance.side_effect = ProviderCallError("conflict", 412)

        with self.assertRaises(PartialFailureWarning) as ctx:
            self.finalize()
        self.assertIn("tagging instance vm-1", str(ctx.exception))

    def test_probe_failure_is_logged_only(self):
        """Test an unreachable agent does not fail finalization."""
        self.health_checker.connect.side_effect = HealthCheckError("unreachable")

        with self.assertLogs("finalizer", level="WARNING"):
            artifact = self.finalize()
        self.assertEqual(artifact.domain_name, "vm-1.alice.example.com")

    def test_probe_ping_failure(self):
        """Test a failed ping makes the probe return False."""
        self.handle.ping.side_effect = HealthCheckError("no pong")

        self.assertFalse(self.finalizer.probe("10.0.0.2"))

    def test_probe_success(self):
        """Test a successful ping makes the probe return True."""
        self.assertTrue(self.finalizer.probe("10.0.0.2"))


if __name__ == "__main__":
    unittest.main()
