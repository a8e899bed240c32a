"""
Application entry point for the course records service.

Usage:
    python main.py <command> [options]

Commands:
    checks   Run the built-in checks against the configured store
    export   Write the full dataset as JSON (stdout or --output)
    info     Print application and dataset information
    reset    Delete every course and student (requires --yes)

Environment:
    STORAGE_BACKEND   memory|file
    STORAGE_PATH      JSON file used by the file backend
    API_DELAY_MS      simulated latency base
    LOG_LEVEL         DEBUG|INFO|WARNING|ERROR
"""
import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional

from core.config import get_settings
from core.context import APP_VERSION, build_app_context
from core.logging_config import configure_logging
from services.harness import ALL_CATEGORIES


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="course-records",
        description="Course and student records keeper",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s checks --category unit
  %(prog)s export --output snapshot.json
  %(prog)s info
        """
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {APP_VERSION}")
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: LOG_LEVEL or INFO)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    checks_parser = subparsers.add_parser("checks", help="Run built-in checks")
    checks_parser.add_argument(
        "--category",
        default=ALL_CATEGORIES,
        help="Category to run: all, unit, integration, validation (default: all)"
    )

    export_parser = subparsers.add_parser("export", help="Export the full dataset")
    export_parser.add_argument("--output", "-o", help="File to write instead of stdout")

    subparsers.add_parser("info", help="Show application information")

    reset_parser = subparsers.add_parser("reset", help="Delete all data")
    reset_parser.add_argument("--yes", action="store_true", help="Confirm the reset")

    return parser


async def run_checks(category: str) -> int:
    context = await build_app_context()
    report = await context.harness.run(category)
    for result in report.results:
        line = f"[{result.status.value.upper():7}] {result.name} ({result.duration_ms:.1f} ms)"
        if result.error:
            line += f" - {result.error}"
        print(line)
    summary = report.summary
    print(f"\n{summary.passed}/{summary.total} passed, {summary.failed} failed, "
          f"{summary.skipped} skipped ({summary.pass_rate:g}% pass rate, "
          f"{summary.total_duration:.1f} ms total)")
    return 0 if summary.failed == 0 else 1


async def run_export(output: Optional[str]) -> int:
    context = await build_app_context(register_checks=False)
    data = await context.export_application_data()
    text = json.dumps(data, indent=2, ensure_ascii=False)
    if output:
        path = Path(output)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        print(f"Exported {len(data['courses'])} courses and {len(data['students'])} students to {path}")
    else:
        print(text)
    return 0


async def run_info() -> int:
    context = await build_app_context()
    print(json.dumps(await context.get_info(), indent=2))
    return 0


async def run_reset(confirmed: bool) -> int:
    if not confirmed:
        print("Refusing to reset without --yes", file=sys.stderr)
        return 2
    context = await build_app_context(register_checks=False)
    await context.reset()
    print("All course and student data deleted")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    level = args.log_level or settings.log_level
    if args.command == "export" and not args.output and not args.log_level:
        # keep stdout parseable when the export itself goes there
        level = "WARNING"
    configure_logging(level)

    if args.command == "checks":
        return asyncio.run(run_checks(args.category))
    if args.command == "export":
        return asyncio.run(run_export(args.output))
    if args.command == "info":
        return asyncio.run(run_info())
    if args.command == "reset":
        return asyncio.run(run_reset(args.yes))

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
