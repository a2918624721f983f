"""
Run reports for the volume resizer.
"""

import json
import logging
import os
from dataclasses import asdict
from datetime import datetime
from typing import Dict, Optional

from models import ResizeResult

logger = logging.getLogger(__name__)


def format_duration(seconds: float) -> str:
    """Format duration in human-readable format."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        mins = int(seconds // 60)
        secs = seconds % 60
        return f"{mins}m {secs:.0f}s"
    else:
        hours = int(seconds // 3600)
        mins = int((seconds % 3600) // 60)
        secs = seconds % 60
        return f"{hours}h {mins}m {secs:.0f}s"


def _timestamp(value: Optional[float]) -> Optional[str]:
    return datetime.fromtimestamp(value).isoformat() if value else None


def result_to_dict(result: ResizeResult) -> Dict:
    """Serialize a result for JSON reports and API responses."""
    data = asdict(result)
    data["start_time"] = _timestamp(result.start_time)
    data["end_time"] = _timestamp(result.end_time)
    return data


def print_report(result: ResizeResult) -> None:
    """Log a detailed timing and status report of a run."""
    logger.info("")
    logger.info("=" * 70)
    logger.info("RESIZE REPORT")
    logger.info("=" * 70)

    if result.start_time and result.end_time:
        logger.info("")
        logger.info("TIMING SUMMARY")
        logger.info("-" * 40)
        logger.info(
            f"Start time:      {datetime.fromtimestamp(result.start_time).strftime('%Y-%m-%d %H:%M:%S')}"
        )
        logger.info(
            f"End time:        {datetime.fromtimestamp(result.end_time).strftime('%Y-%m-%d %H:%M:%S')}"
        )
        logger.info(
            f"Total duration:  {format_duration(result.end_time - result.start_time)}"
        )

    current = (
        f"{result.current_size_gb}GB" if result.current_size_gb is not None else "N/A"
    )
    logger.info("")
    logger.info("RESIZE")
    logger.info("-" * 40)
    logger.info(f"{'Machine':<20}: {result.machine_id}")
    logger.info(f"{'Instance':<20}: {result.instance_id}")
    logger.info(f"{'Status':<20}: {result.status}")
    logger.info(f"{'Size':<20}: {current} -> {result.desired_size_gb}GB")
    logger.info(f"{'Old volume':<20}: {result.old_volume_id or 'N/A'}")
    logger.info(f"{'New volume':<20}: {result.new_volume_id or 'N/A'}")
    logger.info(f"{'Snapshot':<20}: {result.snapshot_id or 'N/A'}")

    if result.artifact:
        logger.info(f"{'IP address':<20}: {result.artifact.ip_address}")
        logger.info(f"{'Domain':<20}: {result.artifact.domain_name or 'N/A'}")

    if result.error_message:
        logger.info("")
        logger.info("ERROR")
        logger.info("-" * 40)
        logger.info(f"{result.error_type or 'Error'}: {result.error_message}")
        logger.info(f"Rolled back: {'Yes' if result.rolled_back else 'No'}")

    if result.compensation_failures:
        logger.info("")
        logger.info("FAILED COMPENSATIONS (manual cleanup may be needed)")
        logger.info("-" * 40)
        for failure in result.compensation_failures:
            logger.info(f"  {failure}")

    logger.info("")
    logger.info("=" * 70)


def export_results_json(result: ResizeResult, directory: str = ".") -> str:
    """
    Export a run result to a JSON file for further processing.

    Returns:
        Path of the written file
    """
    filename = os.path.join(
        directory, f"resize-report-{datetime.now().strftime('%Y%m%d-%H%M%S')}.json"
    )
    with open(filename, "w") as f:
        json.dump(result_to_dict(result), f, indent=2)
    logger.info(f"Detailed report exported to: {filename}")
    return filename
