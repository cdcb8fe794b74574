"""Tests for loguru-based organizer logging."""

import pytest
from loguru import logger

from audiobook_organizer.config import OrganizerConfig


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for var in ["DATA_DIR", "LOG_DIR", "LOG_LEVEL"]:
        monkeypatch.delenv(var, raising=False)


class TestSetupLogging:
    def setup_method(self):
        logger.remove()

    def teardown_method(self):
        logger.remove()

    def test_setup_creates_log_dir(self, tmp_path):
        log_dir = tmp_path / "logs"
        OrganizerConfig(_env_file=None, log_dir=log_dir).setup_logging()
        assert log_dir.exists()

    def test_setup_adds_file_sink(self, tmp_path):
        log_dir = tmp_path / "logs"
        OrganizerConfig(_env_file=None, log_dir=log_dir).setup_logging()
        logger.bind(stage="test").info("hello from test")
        content = (log_dir / "organizer.log").read_text()
        assert "hello from test" in content

    def test_stage_context_in_output(self, tmp_path):
        log_dir = tmp_path / "logs"
        OrganizerConfig(_env_file=None, log_dir=log_dir).setup_logging()
        logger.bind(stage="scanner").info("scanning")
        content = (log_dir / "organizer.log").read_text()
        assert "scanner" in content

    def test_default_stage_empty(self, tmp_path):
        log_dir = tmp_path / "logs"
        OrganizerConfig(_env_file=None, log_dir=log_dir).setup_logging()
        logger.info("no stage bound")
        assert "no stage bound" in (log_dir / "organizer.log").read_text()

    def test_file_sink_captures_debug(self, tmp_path):
        log_dir = tmp_path / "logs"
        OrganizerConfig(_env_file=None, log_dir=log_dir, log_level="WARNING").setup_logging()
        logger.bind(stage="cache").debug("quiet detail")
        assert "quiet detail" in (log_dir / "organizer.log").read_text()
