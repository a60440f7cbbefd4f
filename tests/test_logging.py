# tests/test_logging.py
"""Tests for session logging helpers."""

import logging

import pytest


@pytest.fixture
def clean_root_logger():
    root = logging.getLogger("unstruct")
    handlers, level, propagate = root.handlers[:], root.level, root.propagate
    yield root
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
    for f in root.filters[:]:
        root.removeFilter(f)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)
    root.propagate = propagate


class TestSetupLogging:
    def test_creates_session_file_and_symlink(self, tmp_path, clean_root_logger):
        from unstruct.utils.logging import get_current_log_file, get_logger, get_session_id, setup_logging

        log_file = setup_logging(level="DEBUG", log_dir=tmp_path)
        get_logger("unstruct.tests").debug("hello from test")
        for handler in clean_root_logger.handlers:
            handler.flush()

        assert log_file.exists()
        assert get_current_log_file() == log_file
        session_id = get_session_id()
        assert session_id and session_id in log_file.name
        content = log_file.read_text(encoding="utf-8")
        assert "hello from test" in content
        assert f"| {session_id} |" in content
        link = tmp_path / "unstruct.log"
        if link.is_symlink():
            assert link.resolve() == log_file.resolve()

    def test_env_log_dir(self, tmp_path, monkeypatch):
        from unstruct.utils.logging import get_log_directory

        monkeypatch.setenv("UNSTRUCT_LOG_DIR", str(tmp_path))
        assert get_log_directory() == tmp_path


class TestGetLogger:
    def test_namespaces_foreign_names(self):
        from unstruct.utils.logging import get_logger

        assert get_logger("unstruct.engine").name == "unstruct.engine"
        assert get_logger("myapp").name == "unstruct.myapp"


class TestLogHelpers:
    def test_log_prompt_truncates(self, caplog):
        from unstruct.utils.logging import log_prompt

        logger = logging.getLogger("unstruct.tests.helpers")
        with caplog.at_level(logging.DEBUG, logger="unstruct.tests.helpers"):
            log_prompt(logger, "basic", "x" * 50, truncate_at=10)
        assert "PROMPT (basic)" in caplog.text
        assert "TRUNCATED, 50 chars total" in caplog.text

    def test_log_llm_response_skipped_above_debug(self, caplog):
        from unstruct.utils.logging import log_llm_response

        logger = logging.getLogger("unstruct.tests.quiet")
        with caplog.at_level(logging.INFO, logger="unstruct.tests.quiet"):
            log_llm_response(logger, "basic", "{}")
        assert "LLM RESPONSE" not in caplog.text
