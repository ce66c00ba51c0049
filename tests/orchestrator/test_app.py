"""
Tests for the application entry point.
"""

import json

import pytest

from app import BriefArchive, run_application
from orchestrator.cli import create_parser
from orchestrator.config import PipelineConfig

from conftest import RUN_DATE, TW_COLLECTORS, US_COLLECTORS


class TestBriefArchive:

    def test_writes_brief_per_date(self, tmp_path):
        archive = BriefArchive(tmp_path / "briefs")

        archive({"date": RUN_DATE, "status": "ok"})

        path = tmp_path / "briefs" / f"brief-{RUN_DATE}.json"
        assert json.loads(path.read_text(encoding="utf-8")) == {"date": RUN_DATE, "status": "ok"}


class TestRunApplication:

    @pytest.mark.asyncio
    async def test_daily_run_archives_brief(self, tmp_path, mock_clock, no_sleep):
        config = PipelineConfig(
            state_dir=str(tmp_path / "state"),
            cache_dir=str(tmp_path / "cache"),
            collectors={"phase1": list(US_COLLECTORS), "phase2": list(TW_COLLECTORS)},
        )
        args = create_parser().parse_args(["--mode", "daily", "--date", RUN_DATE])

        code = await run_application(args, config, clock=mock_clock, sleep=no_sleep)

        assert code == 0
        state = tmp_path / "state"
        assert (state / "phase4-result.json").exists()
        assert (state / f"metrics-{RUN_DATE}.json").exists()
        assert (state / f"lineage-{RUN_DATE}.json").exists()
        brief = json.loads((state / "briefs" / f"brief-{RUN_DATE}.json").read_text(encoding="utf-8"))
        assert brief["marketData"]["TAIEX"]["value"] == 22458.0
