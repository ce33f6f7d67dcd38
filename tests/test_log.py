"""Tests for session logging setup."""

import logging

import pytest
from rich.logging import RichHandler

from cairn.log import LOGGER_NAME, init_logging


@pytest.fixture
def session_factory():
    sessions = []

    def factory(*args, **kwargs):
        session = init_logging(*args, **kwargs)
        sessions.append(session)
        return session

    yield factory
    for session in sessions:
        session.close()


class TestInitLogging:
    def test_writes_session_file(self, tmp_path, session_factory):
        session = session_factory(tmp_path / "logs", session_id="abc123")
        assert session.path.parent == tmp_path / "logs"
        assert session.path.name.startswith("session-")
        assert session.path.name.endswith("-abc123.log")

        logging.getLogger(f"{LOGGER_NAME}.tools").debug("probe %d", 42)
        for handler in session.handlers:
            handler.flush()
        text = session.path.read_text()
        assert "session abc123 started" in text
        assert "probe 42" in text

    def test_no_console_handler_by_default(self, tmp_path, session_factory):
        session = session_factory(tmp_path)
        assert not any(isinstance(h, RichHandler) for h in session.handlers)

    def test_console_level(self, tmp_path, session_factory):
        session = session_factory(tmp_path, "warning")
        rich = [h for h in session.handlers if isinstance(h, RichHandler)]
        assert len(rich) == 1
        assert rich[0].level == logging.WARNING

    def test_no_file_no_console_uses_null_handler(self, session_factory):
        session = session_factory(None)
        assert session.path is None
        assert [type(h) for h in session.handlers] == [logging.NullHandler]

    def test_close_detaches_handlers(self, tmp_path):
        session = init_logging(tmp_path, "info")
        logger = logging.getLogger(LOGGER_NAME)
        attached = list(session.handlers)
        session.close()
        assert not any(h in logger.handlers for h in attached)
        assert logger.propagate

    def test_generated_session_id(self, tmp_path, session_factory):
        session = session_factory(tmp_path)
        assert len(session.session_id) == 8
