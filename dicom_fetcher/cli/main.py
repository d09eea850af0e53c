#!/usr/bin/env python3
"""DICOM Fetcher CLI - run the service or fetch studies from the command line."""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from dicom_fetcher.exceptions import FetcherError
from dicom_fetcher.services.fetch import BatchResult, FetchService
from dicom_fetcher.settings import settings
from dicom_fetcher.utils.logger import logger

SETTINGS_TEMPLATE = """# DICOM Fetcher Configuration File

# Server settings
port = 8080
host = "127.0.0.1"
debug = false

# Upstream Orthanc (credentials are better set via the ORTHANC_TOKEN environment variable)
orthanc_url = "http://localhost:8042"
request_timeout = 30.0

# Batch fetch settings
max_concurrency = 16
batch_timeout = 120.0
fetch_retry_count = 2

# Cache settings
cache_ttl_hours = 24
cache_max_size_mb = 512
"""


def init_project(path: str) -> None:
    """Write a settings.toml template into the specified directory."""
    project_path = Path(path).resolve()
    project_path.mkdir(parents=True, exist_ok=True)

    settings_file = project_path / "settings.toml"
    if settings_file.exists():
        logger.warning(f"Settings file already exists: {settings_file}")
        return

    settings_file.write_text(SETTINGS_TEMPLATE)
    logger.info(f"Created settings file: {settings_file}")


def run_server(host: str | None = None, port: int | None = None) -> None:
    """Run the DICOM Fetcher server."""
    import uvicorn

    host = host or settings.host
    port = port or settings.port

    logger.info(f"Starting DICOM Fetcher server at http://{host}:{port}")
    uvicorn.run(
        "dicom_fetcher.api.app:app",
        host=host,
        port=port,
        reload=settings.debug,
        log_level="info" if settings.debug else "warning",
    )


def summarize(batch: BatchResult, study_id: str | None = None) -> dict[str, object]:
    """Build a printable summary of a batch, without image payloads."""
    summary: dict[str, object] = {
        "total_instances": batch.total_requested,
        "successful": batch.success_count,
        "failed": batch.failure_count,
        "processing_time": round(batch.processing_time, 3),
        "cache_status": batch.cache_status.value,
        "errors": {r.instance_id: r.error for r in batch.results if not r.success},
    }
    if study_id is not None:
        summary = {"study_id": study_id, **summary}
    return summary


async def fetch_study(study_id: str, timeout: float | None = None) -> dict[str, object]:
    """Fetch one study with a short-lived service and summarize the outcome."""
    service = FetchService.from_settings(settings)
    try:
        result = await service.fetch_study(study_id, timeout=timeout)
    finally:
        await service.close()
    return summarize(result.batch, study_id=study_id)


async def fetch_instances(
    instance_ids: list[str], timeout: float | None = None
) -> dict[str, object]:
    """Fetch explicit instances with a short-lived service and summarize the outcome."""
    service = FetchService.from_settings(settings)
    try:
        batch = await service.fetch_instances(instance_ids, timeout=timeout)
    finally:
        await service.close()
    return summarize(batch)


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="dicom-fetcher", description="DICOM Fetcher - cached batch fetching from Orthanc"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    init_parser = subparsers.add_parser("init", help="Write a settings.toml template")
    init_parser.add_argument(
        "path",
        nargs="?",
        default=".",
        help="Directory for settings.toml (default: current directory)",
    )

    run_parser = subparsers.add_parser("run", help="Run the HTTP server")
    run_parser.add_argument("--host", type=str, default=None, help="Host to bind to")
    run_parser.add_argument("--port", type=int, default=None, help="Port to bind to")

    study_parser = subparsers.add_parser("fetch-study", help="Fetch every image of a study")
    study_parser.add_argument("study_id", help="Orthanc study ID")
    study_parser.add_argument("--timeout", type=float, default=None, help="Batch timeout (s)")

    instances_parser = subparsers.add_parser("fetch-instances", help="Fetch explicit instances")
    instances_parser.add_argument("instance_ids", nargs="+", help="Orthanc instance IDs")
    instances_parser.add_argument("--timeout", type=float, default=None, help="Batch timeout (s)")

    args = parser.parse_args(argv)

    if args.command == "init":
        init_project(args.path)
    elif args.command == "run":
        run_server(args.host, args.port)
    elif args.command in ("fetch-study", "fetch-instances"):
        try:
            if args.command == "fetch-study":
                summary = asyncio.run(fetch_study(args.study_id, args.timeout))
            else:
                summary = asyncio.run(fetch_instances(args.instance_ids, args.timeout))
        except FetcherError as e:
            logger.error(str(e))
            sys.exit(1)
        print(json.dumps(summary, indent=2))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
