import logging
import os
from datetime import datetime

import pytest

from gpumetrics.stdout import OutputEntry, capture, parse_output_entry

LOGGER_NAME = "gpumetrics.tests.capture"
DCGM_LINE = (
    "2024-02-07 18:01:05.641 INFO  [517155:517155] Linux 4.15.0-180-generic "
    "[{anonymous}::StartEmbeddedV2]"
)


def _messages(caplog):
    return [r.getMessage() for r in caplog.records if r.name == LOGGER_NAME]


@pytest.mark.parametrize(
    "log_message, expected",
    [
        ("hello from dcgm", "hello from dcgm"),
        ("2024-02-07 18:01:05.641", "2024-02-07 18:01:05.641"),
    ],
)
def test_capture_raw_lines(caplog, log_message, expected):
    logger = logging.getLogger(LOGGER_NAME)
    with caplog.at_level(logging.INFO, logger=LOGGER_NAME):
        result = capture(lambda: print(log_message), logger)
    assert result is None
    assert [m.strip() for m in _messages(caplog)] == [expected]


def test_capture_dcgm_log_entry(caplog):
    logger = logging.getLogger(LOGGER_NAME)
    with caplog.at_level(logging.INFO, logger=LOGGER_NAME):
        capture(lambda: print(DCGM_LINE), logger)
    records = [r for r in caplog.records if r.name == LOGGER_NAME]
    assert len(records) == 1
    assert "Linux 4.15.0-180-generic" in records[0].getMessage()
    assert records[0].dcgm_level == "INFO"


def test_capture_low_level_fd_write(caplog):
    logger = logging.getLogger(LOGGER_NAME)

    def write_to_fd():
        os.write(1, b"Boom\n")

    with caplog.at_level(logging.INFO, logger=LOGGER_NAME):
        capture(write_to_fd, logger)
    assert [m.strip() for m in _messages(caplog)] == ["Boom"]


def test_capture_returns_inner_result():
    logger = logging.getLogger(LOGGER_NAME)
    assert capture(lambda: 42, logger) == 42


def test_capture_propagates_and_restores_stdout(caplog):
    logger = logging.getLogger(LOGGER_NAME)

    def failing():
        print("before failure")
        raise RuntimeError("Boom!")

    with caplog.at_level(logging.INFO, logger=LOGGER_NAME):
        with pytest.raises(RuntimeError, match="Boom!"):
            capture(failing, logger)
        assert _messages(caplog) == ["before failure"]
        capture(lambda: print("second run"), logger)
    assert _messages(caplog) == ["before failure", "second run"]


def test_parse_dcgm_entry():
    parsed = parse_output_entry(DCGM_LINE)
    assert parsed.is_raw_string is False
    assert parsed.level == "INFO"
    assert parsed.timestamp == datetime(2024, 2, 7, 18, 1, 5, 641000)
    assert parsed.message == "Linux 4.15.0-180-generic [{anonymous}::StartEmbeddedV2]"


def test_parse_date_only_is_raw():
    parsed = parse_output_entry("2024-02-07 18:01:05.641")
    assert parsed == OutputEntry(message="2024-02-07 18:01:05.641", is_raw_string=True)


def test_parse_invalid_timestamp_is_raw():
    entry = "hello from dcgm again"
    parsed = parse_output_entry(entry)
    assert parsed.is_raw_string is True
    assert parsed.message == entry
    assert parsed.timestamp is None


def test_parse_out_of_range_timestamp_is_raw():
    entry = "2024-13-07 18:01:05.641 INFO [1:1] message"
    parsed = parse_output_entry(entry)
    assert parsed.is_raw_string is True
    assert parsed.message == entry


def test_parse_three_fields_has_empty_message():
    parsed = parse_output_entry("2024-02-07 18:01:05.641 WARN")
    assert parsed.is_raw_string is False
    assert parsed.level == "WARN"
    assert parsed.message == ""