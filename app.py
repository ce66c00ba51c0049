#!/usr/bin/env python3
"""
Market Digest Pipeline - Main Application Entry Point.

============================================================
SINGLE ENTRYPOINT
============================================================
This is the executable entry point for scheduled runs.

- Loads .env before reading DIGEST_* settings
- Builds the pipeline from config/pipeline.yaml
- Archives every assembled brief under <state_dir>/briefs
- Exits non-zero when the run is aborted

============================================================
USAGE
============================================================
Direct execution:
    python app.py --mode daily

Cron (Asia/Taipei):
    30 7 * * 1-5  cd /srv/digest && python app.py --mode daily
    0 9 * * 6     cd /srv/digest && python app.py --mode weekend

Environment-based configuration:
    DIGEST_STATE_DIR=/var/lib/digest DIGEST_LOG_FORMAT=text python app.py

============================================================
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Dict

from dotenv import load_dotenv

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.absolute()
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from core.exceptions import PipelineException
from orchestrator.cli import async_main, build_config, create_parser, show_phases, validate_args
from orchestrator.config import PipelineConfig
from orchestrator.core import setup_logging
from orchestrator.models import RunMode
from storage.phase_store import FilesystemPhaseStore


logger = logging.getLogger("app")


# ============================================================
# BRIEF ARCHIVE
# ============================================================

class BriefArchive:
    """Publisher writing each brief to <directory>/brief-YYYY-MM-DD.json."""

    def __init__(self, directory: Path):
        self._store = FilesystemPhaseStore(str(directory))

    def __call__(self, brief: Dict[str, Any]) -> None:
        key = f"brief-{brief['date']}"
        self._store.save(key, brief)
        logger.info(f"Brief archived: {self._store.path_for(key)}")


# ============================================================
# APPLICATION
# ============================================================

async def run_application(args, config: PipelineConfig, **build_kwargs: Any) -> int:
    """Run one pipeline invocation with the application publisher."""
    publisher = BriefArchive(Path(config.state_dir) / "briefs")
    return await async_main(args, config, publisher=publisher, **build_kwargs)


def main() -> int:
    """Main entry point."""
    load_dotenv()

    # Parse arguments
    parser = create_parser()
    args = parser.parse_args()

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

    errors = config.validate()
    if errors:
        for error in errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1

    setup_logging(config.log_level, config.log_format)

    # Run application
    try:
        return asyncio.run(run_application(args, config))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130


# ============================================================
# ENTRY POINT
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
