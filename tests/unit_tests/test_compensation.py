"""
Unit tests for CompensationStack.
"""

import unittest
from unittest.mock import MagicMock

from compensation import CompensationAction, CompensationStack


class TestCompensationStack(unittest.TestCase):
    """Test registration and unwinding."""

    def setUp(self):
        self.stack = CompensationStack()
        self.calls = []

    def record(self, name):
        return lambda: self.calls.append(name)

    def test_failure_unwinds_in_reverse(self):
        """Test failure compensations run newest first."""
        self.stack.register("first", on_failure=self.record("undo first"))
        self.stack.register("second", on_failure=self.record("undo second"))
        self.stack.register("third", on_failure=self.record("undo third"))

        outcomes = self.stack.unwind(failed=True)

        self.assertEqual(self.calls, ["undo third", "undo second", "undo first"])
        self.assertEqual([o.description for o in outcomes], ["third", "second", "first"])
        self.assertTrue(all(o.ok for o in outcomes))
        self.assertTrue(all(o.phase == "failure" for o in outcomes))

    def test_success_runs_success_side_only(self):
        """Test success compensations skip failure-only actions."""
        self.stack.register("snapshot", on_failure=self.record("fail"))
        self.stack.register(
            "old volume",
            on_failure=self.record("reattach"),
            on_success=self.record("delete old"),
        )

        outcomes = self.stack.unwind(failed=False)

        self.assertEqual(self.calls, ["delete old"])
        self.assertEqual(len(outcomes), 1)
        self.assertEqual(outcomes[0].phase, "success")

    def test_always_runs_on_both_outcomes(self):
        """Test always() registers the same cleanup on both sides."""
        action = self.stack.always("cleanup", self.record("cleanup"))
        self.assertIs(action.on_failure, action.on_success)

        other = CompensationStack()
        other.always("cleanup", self.record("cleanup"))

        self.stack.unwind(failed=True)
        other.unwind(failed=False)
        self.assertEqual(self.calls, ["cleanup", "cleanup"])

    def test_errors_are_recorded_and_do_not_stop_unwind(self):
        """Test a failing compensation does not prevent the others."""
        self.stack.register("first", on_failure=self.record("undo first"))
        self.stack.register(
            "broken", on_failure=MagicMock(side_effect=RuntimeError("boom"))
        )
        self.stack.register("third", on_failure=self.record("undo third"))

        with self.assertLogs("compensation", level="ERROR"):
            outcomes = self.stack.unwind(failed=True)

        self.assertEqual(self.calls, ["undo third", "undo first"])
        failed = [o for o in outcomes if not o.ok]
        self.assertEqual(len(failed), 1)
        self.assertEqual(failed[0].description, "broken")
        self.assertEqual(failed[0].error, "boom")

    def test_unwind_only_once(self):
        """Test a stack cannot be unwound twice."""
        self.stack.register("only", on_failure=self.record("undo"))
        self.stack.unwind(failed=True)

        with self.assertRaises(RuntimeError):
            self.stack.unwind(failed=True)
        self.assertEqual(self.calls, ["undo"])

    def test_register_after_unwind_rejected(self):
        """Test registration on an unwound stack fails."""
        self.stack.unwind(failed=False)
        with self.assertRaises(RuntimeError):
            self.stack.register("late", on_failure=self.record("late"))

    def test_empty_stack(self):
        """Test unwinding an empty stack does nothing."""
        self.assertEqual(len(self.stack), 0)
        self.assertEqual(self.stack.unwind(failed=True), [])

    def test_actions_is_a_copy(self):
        """Test the actions property does not expose internal state."""
        self.stack.register("one")
        actions = self.stack.actions
        actions.clear()
        self.assertEqual(len(self.stack), 1)

    def test_action_select(self):
        """Test CompensationAction picks the side matching the outcome."""
        on_failure, on_success = MagicMock(), MagicMock()
        action = CompensationAction("x", on_failure=on_failure, on_success=on_success)

        self.assertIs(action.select(True), on_failure)
        self.assertIs(action.select(False), on_success)


if __name__ == "__main__":
    unittest.main()
