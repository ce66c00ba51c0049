"""
Orchestrator - CLI.

============================================================
RESPONSIBILITY
============================================================
Command-line interface for the digest pipeline.

- Provides argparse-based CLI
- Supports all run modes
- Loads configuration from YAML, environment and CLI
- Entry point for the application

============================================================
USAGE
============================================================
python -m orchestrator.cli --mode daily
python -m orchestrator.cli --mode weekend --log-format text
python -m orchestrator.cli --mode phase3 --date 2026-01-15 --state-dir /tmp/state

============================================================
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import date as date_type
from typing import Any, List, Optional

from dotenv import load_dotenv

from core.exceptions import PipelineException

from .config import PipelineConfig
from .core import Orchestrator, setup_logging
from .dependencies import Dependencies
from .models import RunMode


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="market-digest",
        description="Market data collection, reconciliation and brief assembly pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Run Modes:
  daily     - phase1 -> phase2 -> phase3 -> phase4
  weekend   - phase3 -> phase4 on the last trading day's data (48h stale window)
  phase1    - Collect US market close only
  phase2    - Collect Taiwan market data only
  phase3    - Validate and reconcile only
  phase4    - Assemble the brief only

Examples:
  %(prog)s --mode daily
  %(prog)s --mode weekend --log-format text
  %(prog)s --mode phase3 --date 2026-01-15
        """
    )

    # --------------------------------------------------------
    # Mode Selection
    # --------------------------------------------------------
    parser.add_argument(
        "--mode", "-m",
        type=str,
        choices=[m.value for m in RunMode],
        default="daily",
        help="Run mode (default: daily)",
    )

    parser.add_argument(
        "--date",
        type=str,
        metavar="YYYY-MM-DD",
        help="Run date (default: today in the configured timezone)",
    )

    # --------------------------------------------------------
    # Configuration Options
    # --------------------------------------------------------
    config_group = parser.add_argument_group("Configuration Options")

    config_group.add_argument(
        "--config", "-c",
        type=str,
        metavar="PATH",
        help="Pipeline YAML config (default: config/pipeline.yaml if present)",
    )

    config_group.add_argument(
        "--state-dir",
        type=str,
        metavar="PATH",
        help="Directory of checkpoints, metrics and lineage documents",
    )

    config_group.add_argument(
        "--store",
        type=str,
        choices=["filesystem", "memory", "sql"],
        help="Storage backend for checkpoints",
    )

    # --------------------------------------------------------
    # Logging Options
    # --------------------------------------------------------
    logging_group = parser.add_argument_group("Logging Options")

    logging_group.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: from config, INFO)",
    )

    logging_group.add_argument(
        "--log-format",
        type=str,
        choices=["json", "text"],
        help="Logging format (default: from config, json)",
    )

    # --------------------------------------------------------
    # Output / Info
    # --------------------------------------------------------
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the run result as JSON when done",
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version="%(prog)s 1.0.0",
    )

    parser.add_argument(
        "--show-phases",
        action="store_true",
        help="Show the phases of the selected mode and exit",
    )

    return parser


# ============================================================
# CLI VALIDATION
# ============================================================

def validate_args(args: argparse.Namespace) -> List[str]:
    """
    Validate CLI arguments.

    Args:
        args: Parsed arguments

    Returns:
        List of validation errors
    """
    errors = []

    if args.date:
        try:
            date_type.fromisoformat(args.date)
        except ValueError:
            errors.append(f"Invalid --date {args.date!r}, expected YYYY-MM-DD")

    return errors


# ============================================================
# CLI CONFIGURATION BUILDER
# ============================================================

def build_config(args: argparse.Namespace) -> PipelineConfig:
    """
    Build pipeline configuration: YAML, then environment, then CLI.

    Args:
        args: Parsed arguments

    Returns:
        PipelineConfig instance
    """
    config = PipelineConfig.load(args.config)

    if args.state_dir:
        config.state_dir = args.state_dir
    if args.store:
        config.store_backend = args.store
    if args.log_level:
        config.log_level = args.log_level
    if args.log_format:
        config.log_format = args.log_format

    return config


# ============================================================
# SHOW PHASES
# ============================================================

def show_phases(mode: RunMode, config: Optional[PipelineConfig] = None) -> None:
    """Print the phases of a mode."""
    config = config or PipelineConfig()

    print(f"\nPhases for mode: {mode.value}")
    print("=" * 60)

    for i, name in enumerate(mode.phases, 1):
        phase = config.phase(name)
        flag = "required" if phase.required else "optional"
        print(
            f"  {i}. {name:8s} timeout={phase.timeout_seconds:>5.0f}s "
            f"retries={phase.retries} {flag:8s} - {phase.description}"
        )

    print()


# ============================================================
# MAIN ENTRY POINT
# ============================================================

async def async_main(args: argparse.Namespace, config: PipelineConfig, **build_kwargs: Any) -> int:
    """
    Async main entry point.

    Args:
        args: Parsed arguments
        config: Validated configuration
        **build_kwargs: Passed to Dependencies.build (publisher, cost_provider)

    Returns:
        Exit code
    """
    try:
        deps = Dependencies.build(config, **build_kwargs)
    except PipelineException as e:
        logging.error(f"Failed to build pipeline: {e.message}")
        return 1

    orchestrator = Orchestrator(deps)

    try:
        result = await orchestrator.run(args.mode, date=args.date)
    except PipelineException as e:
        logging.error(f"Pipeline error: {e.message}")
        return 1
    finally:
        await deps.close()

    if args.json:
        print(json.dumps(result.to_dict(), indent=2, default=str))

    return 1 if result.aborted else 0


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    load_dotenv()

    parser = create_parser()
    args = parser.parse_args(argv)

    # Validate arguments
    errors = validate_args(args)
    if errors:
        for error in errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1

    try:
        config = build_config(args)
    except PipelineException as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    # Show phases if requested
    if args.show_phases:
        show_phases(RunMode(args.mode), config)
        return 0

    config_errors = config.validate()
    if config_errors:
        for error in config_errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1

    setup_logging(config.log_level, config.log_format)

    try:
        return asyncio.run(async_main(args, config))
    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        return 130


# ============================================================
# MODULE EXECUTION
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
