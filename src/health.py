"""
Reachability probe for the agent running on a resized machine.
"""

import logging

import requests

from errors import HealthCheckError
from poller import StatePoller

logger = logging.getLogger(__name__)

DEFAULT_AGENT_PORT = 56789
DEFAULT_AGENT_PATH = "/kite"


class AgentHandle:
    """Open connection to a machine agent. Close it when done."""

    def __init__(self, session: requests.Session, url: str, timeout: float):
        self.session = session
        self.url = url
        self.timeout = timeout

    def ping(self) -> None:
        """
        Send a ping to the agent.

        Raises:
            HealthCheckError: If the agent does not answer with HTTP 200
        """
        try:
            resp = self.session.get(self.url, timeout=self.timeout)
        except requests.RequestException as e:
            raise HealthCheckError(f"Ping to {self.url} failed: {e}") from e
        if resp.status_code != 200:
            raise HealthCheckError(
                f"Ping to {self.url} failed ({resp.status_code}): {resp.text[:200]}"
            )

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "AgentHandle":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return None


class AgentHealthCheck:
    """Connects to the agent of a machine over HTTP."""

    def __init__(
        self,
        port: int = DEFAULT_AGENT_PORT,
        path: str = DEFAULT_AGENT_PATH,
        poll_interval: float = 5.0,
        request_timeout: float = 5.0,
    ):
        self.port = port
        self.path = path
        self.poll_interval = poll_interval
        self.request_timeout = request_timeout

    def url_for(self, ip_address: str) -> str:
        return f"http://{ip_address}:{self.port}{self.path}"

    def connect(self, query_string: str, timeout: float) -> AgentHandle:
        """
        Wait until the agent answers, then return a handle to it.

        Args:
            query_string: Agent URL
            timeout: Maximum time to wait for the agent (seconds)

        Raises:
            PollTimeoutError: If the agent did not answer in time
        """
        session = requests.Session()
        request_timeout = min(self.request_timeout, timeout) if timeout else None

        def reachable() -> bool:
            try:
                resp = session.get(query_string, timeout=request_timeout)
            except requests.RequestException as e:
                logger.debug(f"Agent at {query_string} not reachable yet: {e}")
                return False
            return resp.status_code < 500

        poller = StatePoller(timeout=timeout, interval=self.poll_interval)
        try:
            poller.wait(reachable, True, description=f"agent at {query_string}")
        except Exception:
            session.close()
            raise

        logger.info(f"Connected to agent at {query_string}")
        return AgentHandle(session, query_string, request_timeout)
