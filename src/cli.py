"""Console entry point for the Compute Engine volume resizer CLI."""

from __future__ import annotations

import argparse
from typing import List

from config import ResizerConfig
from errors import ValidationError
from log_utils import setup_logging
from report import export_results_json, print_report
from resizer import VolumeResizer


def build_parser() -> argparse.ArgumentParser:
    """Build and return the CLI argument parser."""
    parser = argparse.ArgumentParser(
        description=(
            "Compute Engine Volume Resizer\n\n"
            "Grows the boot disk of an instance through a snapshot and a new, bigger\n"
            "disk. Every step is rolled back automatically if a later one fails."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  # Check eligibility only\n"
            "  volume-resizer --project my-project --zone europe-west2-a \\\n"
            "      --instance vm-1 --size 40 --domain vm-1.alice.example.com \\\n"
            "      --username alice --managed-zone example-com --dry-run\n\n"
            "  # Resize\n"
            "  volume-resizer --project my-project --zone europe-west2-a \\\n"
            "      --instance vm-1 --size 40 --domain vm-1.alice.example.com \\\n"
            "      --username alice --managed-zone example-com"
        ),
    )

    required = parser.add_argument_group("required arguments")
    required.add_argument(
        "--project", required=True, metavar="PROJECT_ID", help="GCP project ID"
    )
    required.add_argument(
        "--zone",
        required=True,
        metavar="ZONE",
        help="Zone of the instance (e.g., europe-west2-a)",
    )
    required.add_argument(
        "--instance", required=True, metavar="INSTANCE", help="Instance name"
    )
    required.add_argument(
        "--size",
        required=True,
        type=int,
        metavar="GB",
        help="Desired size of the boot disk in GB",
    )
    required.add_argument(
        "--domain", required=True, help="Domain record pointing at the machine"
    )
    required.add_argument("--username", required=True, help="Owner of the machine")
    required.add_argument(
        "--managed-zone",
        required=True,
        metavar="ZONE_NAME",
        help="Cloud DNS managed zone holding the domain record",
    )

    options = parser.add_argument_group("resize options")
    options.add_argument(
        "--machine-id",
        help="Machine identifier used for locking and state (default: instance name)",
    )
    options.add_argument(
        "--base-domain",
        help="If set, the domain must be <username>.<base-domain> or below it",
    )
    options.add_argument(
        "--max-size",
        type=int,
        default=100,
        metavar="GB",
        help="Largest allowed disk size (default: 100)",
    )
    options.add_argument(
        "--volume-type",
        default="pd-ssd",
        help="Disk type of the new disk (default: pd-ssd)",
    )
    options.add_argument(
        "--query-string",
        metavar="URL",
        help="Agent URL for the final health probe (default: derived from the new IP)",
    )
    options.add_argument(
        "--agent-port",
        type=int,
        default=56789,
        help="Agent port used when deriving the probe URL (default: 56789)",
    )
    options.add_argument(
        "--dry-run",
        action="store_true",
        help="Only check eligibility, do not change anything (RECOMMENDED first)",
    )

    timeouts = parser.add_argument_group("timeouts")
    timeouts.add_argument(
        "--timeout",
        type=int,
        default=900,
        metavar="SECONDS",
        help="Maximum wait for each provider state change (default: 900)",
    )
    timeouts.add_argument(
        "--poll-interval",
        type=int,
        default=10,
        metavar="SECONDS",
        help="Time between state checks (default: 10)",
    )
    timeouts.add_argument(
        "--compensation-timeout",
        type=int,
        default=600,
        metavar="SECONDS",
        help="Maximum wait for each rollback step (default: 600)",
    )
    timeouts.add_argument(
        "--health-check-timeout",
        type=int,
        default=60,
        metavar="SECONDS",
        help="Maximum wait for the machine agent after restart (default: 60)",
    )

    output = parser.add_argument_group("logging and output")
    output.add_argument(
        "--report-dir",
        default=".",
        metavar="DIR",
        help="Directory for the JSON report (default: current directory)",
    )
    output.add_argument("--verbose", action="store_true", help="Verbose logging")
    return parser


def main(argv: List[str] | None = None) -> int:
    """CLI main for console_scripts entry point."""
    parser = build_parser()
    args = parser.parse_args(args=argv)

    setup_logging(verbose=args.verbose, log_file="volume-resize.log")

    config = ResizerConfig.from_args(args)
    try:
        request = config.to_request()
    except ValidationError as e:
        parser.error(str(e))
    resizer = VolumeResizer.from_config(config)

    if config.dry_run:
        result = resizer.check(request)
    else:
        result = resizer.run(request)

    resizer.wait_for_cleanups(timeout=config.timeout)
    print_report(result)
    export_results_json(result, config.report_dir)
    return 0 if result.status in ("success", "dry_run") else 1
