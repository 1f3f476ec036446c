from __future__ import annotations

import io
import re

import pytest

from ghphotos.errors import ConfigurationError
from ghphotos.utils.logging import configure_logging, get_logger, resolve_log_level


def test_log_lines_use_level_tags() -> None:
    stream = io.StringIO()
    configure_logging("debug", stream=stream)
    logger = get_logger()
    logger.warning("Remote connectivity test failed")
    logger.debug("Running rclone version")

    lines = stream.getvalue().splitlines()
    assert re.match(r"^\d{4}/\d{2}/\d{2} \d{2}:\d{2}:\d{2} \[WARN\] Remote connectivity test failed$", lines[0])
    assert lines[1].endswith("[DEBUG] Running rclone version")


def test_level_filters_lower_records() -> None:
    stream = io.StringIO()
    configure_logging("warn", stream=stream)
    get_logger("child").info("hidden")
    get_logger("child").error("shown")
    assert "hidden" not in stream.getvalue()
    assert "[ERROR] shown" in stream.getvalue()


def test_reconfiguring_replaces_handler() -> None:
    first, second = io.StringIO(), io.StringIO()
    configure_logging("info", stream=first)
    configure_logging("info", stream=second)
    get_logger().info("once")
    assert first.getvalue() == ""
    assert second.getvalue().count("once") == 1


@pytest.mark.parametrize(
    ("value", "explicit", "env", "expected"),
    [
        (None, False, {}, "info"),
        (None, False, {"LOG_LEVEL": "DEBUG"}, "debug"),
        (" Warn ", True, {"LOG_LEVEL": "debug"}, "warn"),
        ("info", True, {"LOG_LEVEL": "error"}, "info"),
    ],
)
def test_resolve_log_level(value, explicit, env, expected) -> None:
    assert resolve_log_level(value, explicit, environ=env) == expected


def test_resolve_log_level_rejects_unknown() -> None:
    with pytest.raises(ConfigurationError, match="invalid log level 'verbose'"):
        resolve_log_level("verbose", True, environ={})
