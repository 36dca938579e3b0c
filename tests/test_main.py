"""Tests for main entry point module."""

import json
import os
from dataclasses import replace
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from bookmark_insights.core.bookmark import Liveness
from bookmark_insights.core.config import Config, reset_config
from bookmark_insights.core.logger import reset_logging
from bookmark_insights.core.record_store import RecordStore
from bookmark_insights.core.scheduler import BatchSummary, ProgressEvent, ProgressStatus
from bookmark_insights.main import (
    build_app,
    create_argument_parser,
    main,
    print_progress,
    print_stats,
    run_enrichment,
)

from conftest import NOW, FakeFetcher

PAGE = '<html><head><meta name="description" content="Hi"></head></html>'


@pytest.fixture(autouse=True)
def clean_globals():
    """Reload config and logging for every test."""
    reset_config()
    yield
    reset_config()
    reset_logging()


@pytest.fixture
def mock_env(temp_data_dir: Path) -> dict:
    """Environment pointing the data directory at a temp dir."""
    return {"BOOKMARK_INSIGHTS_DATA_DIR": str(temp_data_dir), "LOG_LEVEL": "WARNING"}


@pytest.fixture
def export_file(tmp_path: Path) -> Path:
    """A flat bookmark export with two records."""
    path = tmp_path / "export.json"
    path.write_text(
        json.dumps(
            [
                {"id": "1", "url": "https://a.test/one", "title": "One"},
                {"id": "2", "url": "https://a.test/two", "title": "Two"},
            ]
        )
    )
    return path


class TestArgumentParser:
    """Tests for argument parsing."""

    def test_defaults(self) -> None:
        """No flags means no action."""
        args = create_argument_parser().parse_args([])

        assert args.import_file is None
        assert not args.once
        assert not args.stats
        assert not args.backfill_platforms
        assert args.batch_size is None
        assert args.concurrency is None

    def test_all_flags(self) -> None:
        """Every option is recognized."""
        args = create_argument_parser().parse_args(
            [
                "--import", "export.json",
                "--once",
                "--batch-size", "20",
                "--concurrency", "3",
                "--recheck-dead",
                "--backfill-platforms",
                "--stats",
                "-v",
            ]
        )

        assert args.import_file == "export.json"
        assert (args.batch_size, args.concurrency) == (20, 3)
        assert args.once and args.recheck_dead and args.stats and args.verbose
        assert args.backfill_platforms


class TestMain:
    """Tests for main()."""

    def test_no_action_prints_help(self, capsys) -> None:
        """Without an action flag, help is shown."""
        assert main([]) == 0
        assert "usage: bookmark-insights" in capsys.readouterr().out

    def test_invalid_config_fails(self, capsys) -> None:
        """A bad environment value exits with 1."""
        with patch.dict(os.environ, {"BOOKMARK_INSIGHTS_TIMEOUT_MS": "soon"}):
            assert main(["--stats"]) == 1

        assert "Configuration error" in capsys.readouterr().err

    def test_import_syncs_store(self, mock_env: dict, export_file: Path, capsys) -> None:
        """--import stores the records."""
        with patch.dict(os.environ, mock_env):
            assert main(["--import", str(export_file)]) == 0

        out = capsys.readouterr().out
        assert "Imported 2 bookmarks: 2 added, 0 updated, 0 removed" in out
        store = RecordStore(Path(mock_env["BOOKMARK_INSIGHTS_DATA_DIR"]) / "bookmarks.json")
        assert [r.id for r in store.all()] == ["1", "2"]

    def test_import_missing_file_fails(self, mock_env: dict, tmp_path: Path, capsys) -> None:
        """A missing export exits with 1."""
        with patch.dict(os.environ, mock_env):
            assert main(["--import", str(tmp_path / "missing.json")]) == 1

        assert "Import failed" in capsys.readouterr().err

    def test_stats_prints_json(self, mock_env: dict, export_file: Path, capsys) -> None:
        """--stats prints the insights summary."""
        with patch.dict(os.environ, mock_env):
            main(["--import", str(export_file)])
            capsys.readouterr()
            reset_config()

            assert main(["--stats"]) == 0

        summary = json.loads(capsys.readouterr().out)
        assert summary["total_bookmarks"] == 2
        assert summary["unique_domains"] == 1

    def test_once_runs_enrichment(self, mock_env: dict, export_file: Path, capsys) -> None:
        """--once drains the queue rebuilt from the store."""
        mock_run = AsyncMock(return_value=BatchSummary(processed=2, success=2))
        with patch.dict(os.environ, mock_env):
            with patch("bookmark_insights.main.run_enrichment", mock_run):
                result = main(["--import", str(export_file), "--once", "--concurrency", "2"])

        assert result == 0
        app = mock_run.call_args.args[0]
        assert len(app.queue) == 2
        assert mock_run.call_args.kwargs["concurrency"] == 2
        assert "Enriched:  2" in capsys.readouterr().out

    def test_once_rebuilds_queue_without_import(
        self, mock_env: dict, export_file: Path
    ) -> None:
        """Unenriched records are queued on every run."""
        mock_run = AsyncMock(return_value=BatchSummary())
        with patch.dict(os.environ, mock_env):
            main(["--import", str(export_file)])
            reset_config()
            with patch("bookmark_insights.main.run_enrichment", mock_run):
                main(["--once"])

        assert len(mock_run.call_args.args[0].queue) == 2

    def test_once_requeues_retryable_failures(self, mock_env: dict, export_file: Path) -> None:
        """Records left by a retryable failure are queued with force on the next run."""
        mock_run = AsyncMock(return_value=BatchSummary())
        with patch.dict(os.environ, mock_env):
            main(["--import", str(export_file)])
            store = RecordStore(Path(mock_env["BOOKMARK_INSIGHTS_DATA_DIR"]) / "bookmarks.json")
            store.put(replace(store.get("1"), last_checked=NOW, retry_pending=True))
            reset_config()
            with patch("bookmark_insights.main.run_enrichment", mock_run):
                main(["--once"])

        queue = mock_run.call_args.args[0].queue
        assert {e.bookmark_id: e.force for e in queue.peek()} == {"1": True, "2": False}

    def test_backfill_platforms(self, mock_env: dict, tmp_path: Path, capsys) -> None:
        """--backfill-platforms classifies stored URLs without fetching."""
        export = tmp_path / "platforms.json"
        export.write_text(
            json.dumps(
                [
                    {"id": "1", "url": "https://github.com/acme/widgets/issues/42"},
                    {"id": "2", "url": "https://a.test/two"},
                ]
            )
        )
        with patch.dict(os.environ, mock_env):
            main(["--import", str(export)])
            capsys.readouterr()
            reset_config()

            assert main(["--backfill-platforms"]) == 0

        out = capsys.readouterr().out
        assert "Backfilled platform data: 1 of 2 bookmarks updated, 0 errors" in out
        assert "  github: 1" in out
        store = RecordStore(Path(mock_env["BOOKMARK_INSIGHTS_DATA_DIR"]) / "bookmarks.json")
        record = store.get("1")
        assert (record.platform, record.content_type) == ("github", "issue")
        assert record.last_checked is None

    def test_returns_one_on_failures(self, mock_env: dict) -> None:
        """Failed enrichments give exit code 1."""
        mock_run = AsyncMock(return_value=BatchSummary(processed=1, failed=1, errors=["1: x"]))
        with patch.dict(os.environ, mock_env):
            with patch("bookmark_insights.main.run_enrichment", mock_run):
                assert main(["--once"]) == 1

    def test_invalid_concurrency_fails(self, mock_env: dict, capsys) -> None:
        """Validation errors from the scheduler exit with 1."""
        mock_run = AsyncMock(side_effect=ValueError("concurrency must be between 1 and 10"))
        with patch.dict(os.environ, mock_env):
            with patch("bookmark_insights.main.run_enrichment", mock_run):
                assert main(["--once", "--concurrency", "50"]) == 1

        assert "concurrency must be between" in capsys.readouterr().err


class TestRunEnrichment:
    """Tests for run_enrichment with a fake network."""

    @pytest.mark.asyncio
    async def test_enriches_synced_records(self, temp_data_dir: Path, make_record, capsys) -> None:
        """Queued records are enriched and persisted."""
        app = build_app(Config(data_dir=temp_data_dir))
        url = "https://a.test/one"
        app.events.sync([make_record("1", url=url, title="One")])
        fetcher = FakeFetcher()
        fetcher.page(url, PAGE)

        summary = await run_enrichment(app, fetcher=fetcher)

        assert summary.success == 1
        assert app.store.get("1").description == "Hi"
        assert len(app.queue) == 0
        assert "[1/1] completed: One" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_recheck_dead_queues_dead_links(self, temp_data_dir: Path, make_record) -> None:
        """Dead links are probed again even when recently checked."""
        app = build_app(Config(data_dir=temp_data_dir))
        url = "https://a.test/back"
        app.store.put(make_record("1", url=url, is_alive=Liveness.DEAD, last_checked=NOW))
        fetcher = FakeFetcher()
        fetcher.page(url, PAGE)

        summary = await run_enrichment(app, recheck_dead=True, fetcher=fetcher)

        assert summary.success == 1
        assert app.store.get("1").is_alive is Liveness.ALIVE


class TestPrinting:
    """Tests for console output helpers."""

    def test_progress_skips_processing(self, capsys) -> None:
        """Only terminal events are printed."""
        event = ProgressEvent(
            current=0,
            total=2,
            index=0,
            bookmark_id="1",
            title="One",
            url="https://a.test/one",
            status=ProgressStatus.PROCESSING,
        )
        print_progress(event)
        assert capsys.readouterr().out == ""

    def test_progress_line(self, capsys) -> None:
        """Failures include the error message."""
        event = ProgressEvent(
            current=1,
            total=2,
            index=0,
            bookmark_id="1",
            title="",
            url="https://a.test/one",
            status=ProgressStatus.FAILED,
            error="timed out",
        )
        print_progress(event)
        assert capsys.readouterr().out == "  [1/2] failed: https://a.test/one (timed out)\n"

    def test_prints_basic_stats(self, capsys) -> None:
        """print_stats shows counts."""
        print_stats(BatchSummary(processed=5, success=3, skipped=1, failed=1))

        out = capsys.readouterr().out
        assert "Processed: 5" in out
        assert "Enriched:  3" in out
        assert "Skipped:   1" in out
        assert "Failed:    1" in out

    def test_truncates_many_errors(self, capsys) -> None:
        """At most ten errors are listed."""
        errors = [f"{i}: boom" for i in range(15)]
        print_stats(BatchSummary(processed=15, failed=15, errors=errors))

        out = capsys.readouterr().out
        assert "Errors (15):" in out
        assert "... and 5 more" in out
