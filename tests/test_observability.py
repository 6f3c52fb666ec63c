"""
Tests for logging setup — level resolution, file output and run context.
"""

import logging
from pathlib import Path

import pytest

from sapphire.core.models import PackageManifest, ReconcilePolicy
from sapphire.core.observability.logging_config import (
    ENV_LEVEL,
    NO_RUN,
    current_run_id,
    resolve_level,
    run_context,
    setup_logging,
)
from sapphire.core.use_cases.reconcile import reconcile


@pytest.fixture(autouse=True)
def _restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestResolveLevel:
    def test_flag_wins(self, monkeypatch):
        monkeypatch.setenv(ENV_LEVEL, "DEBUG")
        assert resolve_level("ERROR") == "ERROR"

    def test_env_then_default(self, monkeypatch):
        monkeypatch.setenv(ENV_LEVEL, "INFO")
        assert resolve_level() == "INFO"
        monkeypatch.delenv(ENV_LEVEL)
        assert resolve_level() == "WARNING"


class TestSetupLogging:
    def test_console_level(self):
        setup_logging("INFO")
        root = logging.getLogger()
        assert root.level == logging.INFO
        assert len(root.handlers) == 1

    def test_unknown_level_falls_back(self):
        setup_logging("CHATTY")
        assert logging.getLogger().level == logging.WARNING

    def test_file_output(self, tmp_path: Path):
        log_file = tmp_path / "sapphire.log"
        setup_logging("WARNING", log_file=str(log_file), log_file_level="DEBUG")
        assert logging.getLogger().level == logging.DEBUG

        logging.getLogger("sapphire.test").debug("planned 3 operations")
        for handler in logging.getLogger().handlers:
            handler.flush()
        assert "planned 3 operations" in log_file.read_text()

    def test_third_party_quieted(self):
        setup_logging("INFO")
        assert logging.getLogger("urllib3").level == logging.WARNING


def _flushed(path: Path) -> str:
    for handler in logging.getLogger().handlers:
        handler.flush()
    return path.read_text()


# ── Run context ─────────────────────────────────────────────────────


class TestRunContext:
    def test_nesting_restores(self):
        assert current_run_id() == NO_RUN
        with run_context("run-a"):
            with run_context("run-b"):
                assert current_run_id() == "run-b"
            assert current_run_id() == "run-a"
        assert current_run_id() == NO_RUN

    def test_records_tagged(self, tmp_path: Path):
        log_file = tmp_path / "sapphire.log"
        setup_logging("WARNING", log_file=str(log_file), log_file_level="INFO")
        log = logging.getLogger("sapphire.test")

        log.info("before run")
        with run_context("run-20260101-abc"):
            log.info("inside run")

        lines = _flushed(log_file).splitlines()
        assert f" {NO_RUN} sapphire.test" in lines[0]
        assert "run-20260101-abc sapphire.test" in lines[1]

    def test_reconcile_tags_its_records(self, tmp_path: Path, mock_host, config):
        log_file = tmp_path / "sapphire.log"
        setup_logging("WARNING", log_file=str(log_file), log_file_level="INFO")

        report = reconcile(
            [PackageManifest(name="dev", formulas=[{"name": "git"}])],
            ReconcilePolicy(retry_base_delay=0),
            host=mock_host,
            config=config,
        )

        text = _flushed(log_file)
        assert f"{report.run_id} sapphire.core.engine.executor" in text
        assert current_run_id() == NO_RUN
