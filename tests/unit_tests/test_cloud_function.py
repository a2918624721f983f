"""
Unit tests for the Cloud Function HTTP entry point.
"""

import importlib.util
import os
import unittest
from unittest.mock import MagicMock, patch

from flask import Flask, request

from models import MachineState, ResizeResult

MAIN_PATH = os.path.join(
    os.path.dirname(__file__), "..", "..", "cloud_function", "main.py"
)


def load_function_module():
    spec = importlib.util.spec_from_file_location("cloud_function_main", MAIN_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


cf = load_function_module()
app = Flask(__name__)

RESIZE_BODY = {
    "project_id": "my-project",
    "zone": "europe-west2-a",
    "instance_id": "vm-1",
    "size_gb": 40,
    "domain": "vm-1.alice.example.com",
    "username": "alice",
    "managed_zone": "example-com",
}


def make_result(status, error_type=None):
    return ResizeResult(
        machine_id="vm-1",
        instance_id="vm-1",
        status=status,
        desired_size_gb=40,
        error_type=error_type,
    )


class TestCloudFunction(unittest.TestCase):
    """Test routing, validation and responses."""

    def call(self, path, method="GET", json=None, **kwargs):
        with app.test_request_context(path, method=method, json=json, **kwargs):
            return cf.main(request)

    def test_info(self):
        """Test the API info endpoint."""
        body, status = self.call("/")
        self.assertEqual(status, 200)
        self.assertIn("POST /resize", body["data"]["endpoints"])

    def test_health(self):
        """Test the health endpoint."""
        body, status = self.call("/health")
        self.assertEqual(status, 200)
        self.assertEqual(body["data"]["status"], "healthy")

    def test_unknown_endpoint(self):
        """Test unknown paths return 404."""
        _, status = self.call("/nope")
        self.assertEqual(status, 404)

    def test_resize_requires_post(self):
        """Test GET on /resize is rejected."""
        _, status = self.call("/resize")
        self.assertEqual(status, 405)

    def test_resize_requires_json(self):
        """Test non-JSON bodies are rejected."""
        with app.test_request_context(
            "/resize", method="POST", data="size=40", content_type="text/plain"
        ):
            _, status = cf.main(request)
        self.assertEqual(status, 415)

    def test_resize_invalid_zone(self):
        """Test malformed input is a 400."""
        body, status = self.call(
            "/resize", "POST", json=dict(RESIZE_BODY, zone="Europe West")
        )
        self.assertEqual(status, 400)
        self.assertIn("zone", body["message"])

    def test_resize_missing_size(self):
        """Test the size is required."""
        payload = {k: v for k, v in RESIZE_BODY.items() if k != "size_gb"}
        body, status = self.call("/resize", "POST", json=payload)
        self.assertEqual(status, 400)
        self.assertIn("size_gb", body["message"])

    def test_resize_invalid_state(self):
        """Test an unknown machine state is a 400."""
        _, status = self.call(
            "/resize", "POST", json=dict(RESIZE_BODY, state="Sleeping")
        )
        self.assertEqual(status, 400)

    def test_resize_defaults_to_dry_run(self):
        """Test the resize endpoint only checks eligibility by default."""
        resizer = MagicMock()
        resizer.check.return_value = make_result("dry_run")

        with patch.object(cf, "build_resizer", return_value=resizer) as build:
            body, status = self.call("/resize", "POST", json=RESIZE_BODY)

        self.assertEqual(status, 200)
        self.assertTrue(body["success"])
        self.assertEqual(body["data"]["status"], "dry_run")
        config = build.call_args.args[0]
        self.assertTrue(config.dry_run)
        self.assertEqual(config.managed_zone, "example-com")
        resizer.run.assert_not_called()

    def test_resize_runs_when_requested(self):
        """Test dry_run=false runs the resize with the recorded state."""
        resizer = MagicMock()
        resizer.run.return_value = make_result("success")

        with patch.object(cf, "build_resizer", return_value=resizer):
            body, status = self.call(
                "/resize",
                "POST",
                json=dict(RESIZE_BODY, dry_run=False, state="Running"),
            )

        self.assertEqual(status, 200)
        resize_request = resizer.run.call_args.args[0]
        self.assertEqual(resize_request.current_state, MachineState.RUNNING)
        self.assertEqual(resize_request.desired_size_gb, 40)
        resizer.wait_for_cleanups.assert_called_once_with(timeout=540)

    def test_timeout_is_capped(self):
        """Test per-wait timeouts are capped for the function runtime."""
        with app.test_request_context(
            "/resize", method="POST", json=dict(RESIZE_BODY, timeout=5000)
        ):
            config = cf.get_config_from_request(request)
        self.assertEqual(config.timeout, 540)

    def test_status_code_for(self):
        """Test result statuses map to HTTP codes."""
        self.assertEqual(cf.status_code_for(make_result("success")), 200)
        self.assertEqual(cf.status_code_for(make_result("partial")), 207)
        self.assertEqual(
            cf.status_code_for(make_result("failed", "InvalidSizeError")), 400
        )
        self.assertEqual(
            cf.status_code_for(make_result("failed", "MachineBusyError")), 409
        )
        self.assertEqual(
            cf.status_code_for(make_result("failed", "PollTimeoutError")), 500
        )

    def test_status(self):
        """Test the status endpoint reports tracked progress."""
        cf.STATE_TRACKER.push("machine-9", "Creating new volume", 40, MachineState.PENDING)

        body, status = self.call("/status", query_string={"machine_id": "machine-9"})

        self.assertEqual(status, 200)
        self.assertEqual(body["data"]["state"], "Pending")
        self.assertEqual(body["data"]["progress"]["percentage"], 40)
        self.assertFalse(body["data"]["locked"])

    def test_status_requires_machine_id(self):
        """Test the machine id is required."""
        _, status = self.call("/status")
        self.assertEqual(status, 400)


if __name__ == "__main__":
    unittest.main()
