"""
Unit tests for the agent health check.
"""

import unittest
from unittest.mock import MagicMock, patch

import requests

from errors import HealthCheckError, PollTimeoutError
from health import AgentHandle, AgentHealthCheck


def make_response(status_code=200, text="pong"):
    resp = MagicMock()
    resp.status_code = status_code
    resp.text = text
    return resp


class TestAgentHealthCheck(unittest.TestCase):
    """Test connecting to and pinging the agent."""

    def setUp(self):
        self.check = AgentHealthCheck(poll_interval=0)

    def test_url_for(self):
        """Test the default agent URL."""
        self.assertEqual(self.check.url_for("10.0.0.2"), "http://10.0.0.2:56789/kite")
        self.assertEqual(
            AgentHealthCheck(port=8080, path="/health").url_for("10.0.0.2"),
            "http://10.0.0.2:8080/health",
        )

    @patch("health.requests.Session")
    def test_connect_and_ping(self, mock_session_class):
        """Test a reachable agent yields a working handle."""
        session = mock_session_class.return_value
        session.get.return_value = make_response(200)

        with self.check.connect("http://10.0.0.2:56789/kite", 30) as handle:
            handle.ping()

        self.assertEqual(session.get.call_count, 2)
        session.close.assert_called_once()

    @patch("health.requests.Session")
    def test_connect_retries_until_reachable(self, mock_session_class):
        """Test connection errors are retried until the agent answers."""
        session = mock_session_class.return_value
        session.get.side_effect = [
            requests.ConnectionError("refused"),
            make_response(503),
            make_response(404),
        ]

        handle = self.check.connect("http://10.0.0.2:56789/kite", 30)

        self.assertIsInstance(handle, AgentHandle)
        self.assertEqual(session.get.call_count, 3)

    @patch("health.requests.Session")
    def test_connect_timeout_closes_session(self, mock_session_class):
        """Test an unreachable agent raises and releases the session."""
        session = mock_session_class.return_value
        session.get.side_effect = requests.ConnectionError("refused")

        with self.assertRaises(PollTimeoutError):
            self.check.connect("http://10.0.0.2:56789/kite", 0)
        session.close.assert_called_once()

    def test_ping_failure_status(self):
        """Test a non-200 answer fails the ping."""
        session = MagicMock()
        session.get.return_value = make_response(500, "error")

        with self.assertRaises(HealthCheckError):
            AgentHandle(session, "http://agent", 5).ping()

    def test_ping_connection_error(self):
        """Test a connection error fails the ping."""
        session = MagicMock()
        session.get.side_effect = requests.Timeout("slow")

        with self.assertRaises(HealthCheckError):
            AgentHandle(session, "http://agent", 5).ping()


if __name__ == "__main__":
    unittest.main()
