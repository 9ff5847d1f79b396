import json
import logging

from gambit.logging_utils import SessionJsonFormatter, get_session_context, set_session_context, setup_logging


def make_record(message: str) -> logging.LogRecord:
    return logging.LogRecord("gambit.test", logging.INFO, __file__, 1, message, None, None)


def test_json_formatter_tags_session_and_component():
    formatter = SessionJsonFormatter(component="trainer")
    set_session_context("session_abc")
    try:
        payload = json.loads(formatter.format(make_record("hello")))
    finally:
        set_session_context(None)

    assert payload["message"] == "hello"
    assert payload["component"] == "trainer"
    assert payload["level"] == "INFO"
    assert payload["target"] == "gambit.test"
    assert payload["session_id"] == "session_abc"
    assert "timestamp" in payload
    assert get_session_context() is None


def test_setup_logging_installs_single_handler():
    root = logging.getLogger()
    saved = root.handlers[:], root.level
    try:
        setup_logging("debug", json_format=True)
        setup_logging("info", json_format=True)
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, SessionJsonFormatter)
        assert root.level == logging.INFO
    finally:
        for handler in root.handlers[:]:
            root.removeHandler(handler)
        for handler in saved[0]:
            root.addHandler(handler)
        root.setLevel(saved[1])
