"""
Unit tests for StatePoller.
"""

import itertools
import unittest
from unittest.mock import MagicMock, patch

from errors import PollTimeoutError, ResizeError
from poller import StatePoller


class TestStatePoller(unittest.TestCase):
    """Test polling until a desired state."""

    def test_returns_immediately_when_state_matches(self):
        """Test no sleep happens when the first query matches."""
        query = MagicMock(return_value="DONE")
        with patch("poller.time.sleep") as mock_sleep:
            state = StatePoller(timeout=10, interval=1).wait(query, "DONE")

        self.assertEqual(state, "DONE")
        query.assert_called_once()
        mock_sleep.assert_not_called()

    @patch("poller.time.sleep")
    def test_polls_until_match(self, mock_sleep):
        """Test the query is repeated until the state matches."""
        query = MagicMock(side_effect=["PENDING", "PENDING", "DONE"])

        state = StatePoller(timeout=60, interval=2).wait(query, "DONE")

        self.assertEqual(state, "DONE")
        self.assertEqual(query.call_count, 3)
        self.assertEqual(mock_sleep.call_count, 2)
        mock_sleep.assert_called_with(2)

    @patch("poller.time.sleep")
    def test_predicate(self, mock_sleep):
        """Test a callable is used as a predicate over the state."""
        query = MagicMock(side_effect=[1, 2, 3])

        state = StatePoller(timeout=60, interval=0).wait(query, lambda n: n >= 3)
        self.assertEqual(state, 3)

    def test_zero_timeout_raises_on_first_mismatch(self):
        """Test a zero budget fails after exactly one query."""
        query = MagicMock(return_value="PENDING")

        with self.assertRaises(PollTimeoutError) as ctx:
            StatePoller(timeout=0, interval=5).wait(query, "DONE", "snapshot")

        query.assert_called_once()
        self.assertEqual(ctx.exception.last_state, "PENDING")
        self.assertEqual(ctx.exception.description, "snapshot")
        self.assertIn("snapshot", str(ctx.exception))
        self.assertIsInstance(ctx.exception, ResizeError)
        self.assertIsInstance(ctx.exception, TimeoutError)

    @patch("poller.time.sleep")
    @patch("poller.time.time")
    def test_timeout_after_elapsed(self, mock_time, mock_sleep):
        """Test the wait fails once the elapsed time reaches the timeout."""
        mock_time.side_effect = itertools.chain([0, 5, 10, 20], itertools.repeat(20))
        query = MagicMock(return_value="PENDING")

        with self.assertRaises(PollTimeoutError) as ctx:
            StatePoller(timeout=15, interval=5).wait(query, "DONE")

        self.assertEqual(query.call_count, 3)
        self.assertEqual(ctx.exception.elapsed, 20)

    @patch("poller.time.sleep")
    def test_max_attempts(self, mock_sleep):
        """Test the attempt budget is honoured."""
        query = MagicMock(return_value="PENDING")

        with self.assertRaises(PollTimeoutError):
            StatePoller(timeout=3600, interval=1, max_attempts=4).wait(query, "DONE")

        self.assertEqual(query.call_count, 4)
        self.assertEqual(mock_sleep.call_count, 3)

    @patch("poller.time.sleep")
    def test_backoff_capped(self, mock_sleep):
        """Test the interval grows by the backoff factor up to the cap."""
        query = MagicMock(side_effect=["A", "A", "A", "A", "B"])

        StatePoller(timeout=3600, interval=1, backoff=2.0, max_interval=3).wait(
            query, "B"
        )

        self.assertEqual(
            [c.args[0] for c in mock_sleep.call_args_list], [1, 2, 3, 3]
        )

    def test_query_errors_propagate(self):
        """Test errors from the query abort the wait."""
        query = MagicMock(side_effect=RuntimeError("api down"))

        with self.assertRaises(RuntimeError):
            StatePoller(timeout=60, interval=0).wait(query, "DONE")
        query.assert_called_once()


if __name__ == "__main__":
    unittest.main()
