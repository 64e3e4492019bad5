#!/usr/bin/env python3
"""
CEP Automation - Main Entry Point

Usage:
    # Run API server
    python main.py server

    # Download yesterday's CEPs once and print the job
    python main.py run --email ops@example.com --format both

    # Download a date range
    python main.py run --email ops@example.com --start-date 2024-03-01 --end-date 2024-03-15
"""

import argparse
import asyncio
import json
import logging
import sys

from api.config import config
from api.logging_config import setup_logging
from core.dates import parse_iso_date
from core.models import FormatType, JobStatus

logger = logging.getLogger(__name__)


def check_environment() -> bool:
    """Check that required environment variables are set."""
    missing = config.validate()

    if missing:
        print("❌ Missing required environment variables:")
        for var in missing:
            print(f"  - {var}")
        print("\nPlease set these in your .env file or environment.")
        return False

    print("✅ All required environment variables set")
    return True


def run_server(host: str = "0.0.0.0", port: int = 8080, reload: bool = False):
    """Run the FastAPI server."""
    import uvicorn

    print(f"🚀 Starting server on {host}:{port}")
    uvicorn.run(
        "api.main:app",
        host=host,
        port=port,
        reload=reload,
        log_level="info"
    )


async def run_job(email: str, fmt: FormatType, start_date: str = None, end_date: str = None) -> dict:
    """Run one job end to end and return its final state."""
    from api.main import build_manager

    manager = build_manager()
    try:
        job = await manager.submit(email, fmt, start_date, end_date)
        logger.info(f"Job {job.id} submitted, waiting for it to finish")
        finished = await manager.wait(job.id)
    finally:
        await manager.shutdown()
    return finished.to_dict()


def iso_date(value: str) -> str:
    """argparse type for ``YYYY-MM-DD`` dates."""
    try:
        return parse_iso_date(value).isoformat()
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid date: {value!r} (expected YYYY-MM-DD)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="CEP Automation - payment confirmation downloads from the Banxico portal"
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    # Server command
    server_parser = subparsers.add_parser('server', help='Run API server')
    server_parser.add_argument('--host', default=config.HOST, help='Host to bind to')
    server_parser.add_argument('--port', type=int, default=config.PORT, help='Port to bind to')
    server_parser.add_argument('--reload', action='store_true', help='Enable auto-reload')

    # Run command
    run_parser = subparsers.add_parser('run', help='Run one CEP job and wait for it')
    run_parser.add_argument('--email', required=True, help='Address the portal sends results to')
    run_parser.add_argument('--format', default='both', help='pdf, xml or both')
    run_parser.add_argument('--start-date', type=iso_date, help='First payment date (YYYY-MM-DD)')
    run_parser.add_argument('--end-date', type=iso_date, help='Last payment date (YYYY-MM-DD)')

    return parser


def main():
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    setup_logging(log_dir=config.LOG_DIR)

    # Check environment
    if not check_environment():
        sys.exit(1)

    if args.command == 'server':
        run_server(args.host, args.port, args.reload)

    elif args.command == 'run':
        if bool(args.start_date) != bool(args.end_date):
            parser.error("--start-date and --end-date must be given together")
        if args.start_date and args.start_date > args.end_date:
            parser.error("--start-date must be on or before --end-date")
        try:
            fmt = FormatType(args.format)
        except ValueError:
            parser.error(f"unknown format: {args.format}")

        result = asyncio.run(run_job(args.email, fmt, args.start_date, args.end_date))
        print(json.dumps(result, indent=2))
        if result["status"] != JobStatus.COMPLETED.value:
            sys.exit(1)


if __name__ == "__main__":
    main()
