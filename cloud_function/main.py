"""
Google Cloud Function entry point for the Compute Engine Volume Resizer.

This module provides HTTP endpoints for:
- /resize: Resize the boot disk of an instance (or check eligibility)
- /status: Tracked lifecycle state and progress of a machine
- /health: Health check endpoint

Configuration comes from the request body with environment variable fallbacks.
"""

import logging
import os
import re
import sys
from datetime import datetime
from functools import wraps
from typing import Any, Callable, Dict, Optional, Tuple

import functions_framework
from flask import Request

# Deploy bundles ship src/ next to this file; a checkout has it one level up
HERE = os.path.dirname(os.path.abspath(__file__))
for path in (os.path.join(HERE, "src"), os.path.join(HERE, "..", "src")):
    if os.path.isdir(path) and path not in sys.path:
        sys.path.insert(0, path)

from config import ResizerConfig
from locking import MachineLocks
from models import MachineState
from report import result_to_dict
from resizer import VolumeResizer
from state import MachineStateTracker

# Configure logging for Cloud Functions (JSON structured logging)
logging.basicConfig(
    level=logging.INFO,
    format='{"severity": "%(levelname)s", "message": "%(message)s", "timestamp": "%(asctime)s"}',
)
logger = logging.getLogger(__name__)

# Shared by every request served by this function instance
STATE_TRACKER = MachineStateTracker()
MACHINE_LOCKS = MachineLocks()

VALIDATION_ERRORS = {"ValidationError", "NoBlockDeviceError", "InvalidSizeError"}


# =============================================================================
# Security and Validation
# =============================================================================


def validate_request(func: Callable) -> Callable:
    """Reject POST requests that are not JSON."""

    @wraps(func)
    def wrapper(request: Request) -> Tuple[Dict[str, Any], int]:
        if request.method == "POST":
            content_type = request.headers.get("Content-Type", "")
            if "application/json" not in content_type:
                return {
                    "error": "Invalid content type",
                    "message": "Content-Type must be application/json",
                }, 415

        return func(request)

    return wrapper


def sanitize_input(value: str, max_length: int = 256) -> str:
    """Sanitize string input to prevent injection attacks."""
    if not value:
        return ""
    sanitized = "".join(c for c in str(value) if c.isprintable())
    return sanitized[:max_length]


def validate_project_id(project_id: str) -> bool:
    """Validate GCP project ID format."""
    # 6-30 chars, lowercase letters, digits, hyphens; starts with a letter
    return bool(re.match(r"^[a-z][a-z0-9-]{4,28}[a-z0-9]$", project_id))


def validate_zone(zone: str) -> bool:
    """Validate GCP zone format (e.g., europe-west2-a)."""
    return bool(re.match(r"^[a-z]+-[a-z]+\d+-[a-z]$", zone))


def validate_resource_name(name: str) -> bool:
    """Validate a Compute Engine resource name."""
    return bool(re.match(r"^[a-z]([a-z0-9-]{0,61}[a-z0-9])?$", name))


def validate_domain(domain: str) -> bool:
    return bool(
        re.match(r"^([a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,63}\.?$", domain)
    )


# =============================================================================
# Configuration Loading
# =============================================================================


def get_config_from_request(request: Request) -> ResizerConfig:
    """
    Build configuration from request body and environment variables.

    Priority: Request body > Environment variables > Defaults
    """
    request_json = request.get_json(silent=True) or {}

    def get_str(key: str, env: Optional[str] = None) -> str:
        value = request_json.get(key)
        if value is None and env:
            value = os.environ.get(env, "")
        return sanitize_input(value or "")

    def get_bool(key: str, default: bool) -> bool:
        req_val = request_json.get(key)
        if req_val is not None:
            return bool(req_val)
        env_val = os.environ.get(key.upper(), "").lower()
        if env_val in ("true", "1", "yes"):
            return True
        if env_val in ("false", "0", "no"):
            return False
        return default

    def get_int(key: str, default: int) -> int:
        req_val = request_json.get(key)
        if req_val is not None:
            return int(req_val)
        env_val = os.environ.get(key.upper(), "")
        if env_val:
            return int(env_val)
        return default

    project_id = get_str("project_id", "GCP_PROJECT_ID")
    if not project_id:
        raise ValueError(
            "project_id is required (request body or GCP_PROJECT_ID env var)"
        )
    if not validate_project_id(project_id):
        raise ValueError(f"Invalid project_id format: {project_id}")

    zone = get_str("zone", "ZONE")
    if not validate_zone(zone):
        raise ValueError(f"Invalid zone format: {zone!r}")

    instance_id = get_str("instance_id")
    if not validate_resource_name(instance_id):
        raise ValueError(f"Invalid instance_id format: {instance_id!r}")

    domain = get_str("domain").lower()
    if not validate_domain(domain):
        raise ValueError(f"Invalid domain format: {domain!r}")

    username = get_str("username")
    if not username:
        raise ValueError("username is required")

    managed_zone = get_str("managed_zone", "MANAGED_ZONE")
    if not managed_zone:
        raise ValueError(
            "managed_zone is required (request body or MANAGED_ZONE env var)"
        )

    try:
        size_gb = int(request_json.get("size_gb"))
    except (TypeError, ValueError):
        raise ValueError("size_gb is required and must be an integer") from None

    return ResizerConfig(
        project_id=project_id,
        zone=zone,
        instance_id=instance_id,
        size_gb=size_gb,
        domain=domain,
        username=username,
        managed_zone=managed_zone,
        base_domain=get_str("base_domain", "BASE_DOMAIN") or None,
        machine_id=get_str("machine_id") or None,
        query_string=get_str("query_string") or None,
        dry_run=get_bool("dry_run", True),  # Default to dry_run=True for safety
        max_size_gb=get_int("max_size_gb", 100),
        volume_type=get_str("volume_type", "VOLUME_TYPE") or "pd-ssd",
        # Cap at 9 minutes per wait (Cloud Function max is 60 minutes total)
        timeout=min(get_int("timeout", 540), 540),
        poll_interval=max(get_int("poll_interval", 10), 5),  # Min 5 seconds
        compensation_timeout=min(get_int("compensation_timeout", 300), 540),
        health_check_timeout=get_int("health_check_timeout", 60),
        agent_port=get_int("agent_port", 56789),
    )


def get_current_state(request: Request) -> MachineState:
    """Recorded lifecycle state sent by the caller, if any."""
    request_json = request.get_json(silent=True) or {}
    value = request_json.get("state")
    if not value:
        return MachineState.UNKNOWN
    try:
        return MachineState(value)
    except ValueError:
        raise ValueError(f"Invalid state: {value!r}") from None


def build_resizer(config: ResizerConfig) -> VolumeResizer:
    return VolumeResizer.from_config(
        config, state_tracker=STATE_TRACKER, locks=MACHINE_LOCKS
    )


# =============================================================================
# Response Helpers
# =============================================================================


def create_response(
    success: bool,
    data: Optional[Dict] = None,
    error: Optional[str] = None,
    message: Optional[str] = None,
    status_code: int = 200,
) -> Tuple[Dict[str, Any], int]:
    """Create a standardized API response."""
    response = {
        "success": success,
        "timestamp": datetime.utcnow().isoformat() + "Z",
    }

    if data:
        response["data"] = data
    if error:
        response["error"] = error
    if message:
        response["message"] = message

    return response, status_code


def status_code_for(result) -> int:
    if result.status in ("success", "dry_run"):
        return 200
    if result.status == "partial":
        return 207  # resized, but the domain was not updated
    if result.error_type in VALIDATION_ERRORS:
        return 400
    if result.error_type == "MachineBusyError":
        return 409
    return 500


# =============================================================================
# HTTP Endpoint Handlers
# =============================================================================


@functions_framework.http
def main(request: Request) -> Tuple[Dict[str, Any], int]:
    """
    Main entry point for Cloud Function.

    Routes requests based on path:
    - POST /resize: Resize an instance's boot disk
    - GET /status: Get tracked machine state
    - GET /health: Health check
    - GET /: API info
    """
    path = request.path.rstrip("/")

    routes = {
        "": handle_info,
        "/": handle_info,
        "/resize": handle_resize,
        "/status": handle_status,
        "/health": handle_health,
    }

    handler = routes.get(path)
    if not handler:
        return create_response(
            success=False,
            error="Not Found",
            message=f"Unknown endpoint: {path}",
            status_code=404,
        )

    try:
        return handler(request)
    except ValueError as e:
        logger.error(f"Validation error: {e}")
        return create_response(
            success=False,
            error="Validation Error",
            message=str(e),
            status_code=400,
        )
    except Exception as e:
        logger.exception(f"Internal error: {e}")
        return create_response(
            success=False,
            error="Internal Server Error",
            message="An unexpected error occurred. Check Cloud Function logs for details.",
            status_code=500,
        )


def handle_info(request: Request) -> Tuple[Dict[str, Any], int]:
    """Handle API info request."""
    return create_response(
        success=True,
        data={
            "service": "Compute Engine Volume Resizer",
            "version": os.environ.get("APP_VERSION", "1.0.0"),
            "endpoints": {
                "POST /resize": "Resize the boot disk of an instance",
                "GET /status": "Get tracked machine state and progress",
                "GET /health": "Health check",
            },
        },
    )


@validate_request
def handle_resize(request: Request) -> Tuple[Dict[str, Any], int]:
    """
    Handle resize request.

    Request body:
    {
        "project_id": "my-project",  // or use GCP_PROJECT_ID env var
        "zone": "europe-west2-a",  // or use ZONE env var
        "instance_id": "vm-1",
        "size_gb": 40,
        "domain": "vm-1.alice.example.com",
        "username": "alice",
        "managed_zone": "example-com",  // or use MANAGED_ZONE env var
        "state": "Running",  // optional, recorded machine state
        "dry_run": true  // default: true
    }
    """
    if request.method != "POST":
        return create_response(
            success=False,
            error="Method Not Allowed",
            message="Use POST for resize operations",
            status_code=405,
        )

    config = get_config_from_request(request)
    resize_request = config.to_request(get_current_state(request))

    logger.info(
        f"Starting resize: project={config.project_id}, zone={config.zone}, "
        f"instance={config.instance_id}, size={config.size_gb}GB, dry_run={config.dry_run}"
    )

    resizer = build_resizer(config)
    if config.dry_run:
        result = resizer.check(resize_request)
    else:
        result = resizer.run(resize_request)
    resizer.wait_for_cleanups(timeout=config.timeout)

    status_code = status_code_for(result)
    messages = {
        "success": "Resize completed",
        "dry_run": "Dry run completed",
        "partial": "Resize completed, but finalization failed",
        "failed": "Resize failed",
    }
    return create_response(
        success=status_code == 200,
        data=result_to_dict(result),
        error=result.error_type,
        message=messages.get(result.status),
        status_code=status_code,
    )


def handle_status(request: Request) -> Tuple[Dict[str, Any], int]:
    """
    Handle status request - tracked state of a machine.

    Query parameters or JSON body:
    - machine_id: Machine identifier (instance name by default)
    """
    request_json = request.get_json(silent=True) or {}
    machine_id = sanitize_input(
        request.args.get("machine_id") or request_json.get("machine_id", "")
    )
    if not machine_id:
        raise ValueError("machine_id is required")

    last = STATE_TRACKER.last_event(machine_id)
    return create_response(
        success=True,
        data={
            "machine_id": machine_id,
            "state": STATE_TRACKER.get_state(machine_id).value,
            "locked": MACHINE_LOCKS.is_locked(machine_id),
            "progress": (
                {"message": last.message, "percentage": last.percentage}
                if last
                else None
            ),
        },
    )


def handle_health(request: Request) -> Tuple[Dict[str, Any], int]:
    """Handle health check request."""
    try:
        import google.auth  # noqa: F401

        return create_response(
            success=True,
            data={"status": "healthy"},
        )
    except ImportError as e:
        return create_response(
            success=False,
            error="Unhealthy",
            message=str(e),
            status_code=503,
        )
