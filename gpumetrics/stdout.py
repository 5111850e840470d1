"""Capturing process standard output and turning it into log records."""

from __future__ import annotations

import contextlib
import logging
import os
import re
import sys
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, TypeVar

T = TypeVar("T")

_DATE_RE = re.compile(r"\d{4}-\d{2}-\d{2}")
_TIME_RE = re.compile(r"\d{2}:\d{2}:\d{2}\.\d{3}")
_READER_JOIN_TIMEOUT = 5.0


@dataclass
class OutputEntry:
    """A line of output, parsed into a log entry where it has that shape."""

    timestamp: Optional[datetime] = None
    level: str = ""
    message: str = ""
    is_raw_string: bool = False


def _parse_timestamp(date_part: str, time_part: str) -> Optional[datetime]:
    if not (_DATE_RE.fullmatch(date_part) and _TIME_RE.fullmatch(time_part)):
        return None
    try:
        return datetime.strptime(f"{date_part} {time_part}", "%Y-%m-%d %H:%M:%S.%f")
    except ValueError:
        return None


def parse_output_entry(entry: str) -> OutputEntry:
    """Parse ``date time LEVEL [thread] message`` lines; anything else is raw."""
    fields = entry.split()
    if len(fields) > 2:
        timestamp = _parse_timestamp(fields[0], fields[1])
        if timestamp is None:
            return OutputEntry(message=entry, is_raw_string=True)
        return OutputEntry(
            timestamp=timestamp,
            level=fields[2],
            message=" ".join(fields[4:]),
        )
    return OutputEntry(message=entry, is_raw_string=True)


def _forward_lines(read_fd: int, logger: logging.Logger) -> None:
    with os.fdopen(read_fd, "r", encoding="utf-8", errors="replace") as reader:
        for line in reader:
            text = line.rstrip("\n")
            if text.endswith("\r"):
                text = text[:-1]
            parsed = parse_output_entry(text)
            if parsed.is_raw_string:
                logger.info(parsed.message)
            else:
                logger.info(parsed.message, extra={"dcgm_level": parsed.level})


def capture(inner: Callable[[], T], logger: Optional[logging.Logger] = None) -> T:
    """Call ``inner`` with standard output sent to ``logger`` line by line.

    Both Python-level writes and writes to file descriptor 1 are captured.
    Returns what ``inner`` returns; its exceptions propagate.
    """
    if logger is None:
        logger = logging.getLogger(__name__)

    with contextlib.suppress(Exception):
        sys.stdout.flush()

    saved_fd = os.dup(1)
    read_fd, write_fd = os.pipe()
    os.dup2(write_fd, 1)
    os.close(write_fd)

    reader = threading.Thread(
        target=_forward_lines, args=(read_fd, logger), daemon=True
    )
    reader.start()

    writer = os.fdopen(os.dup(1), "w", buffering=1, encoding="utf-8")
    try:
        with contextlib.redirect_stdout(writer):
            result = inner()
    finally:
        writer.flush()
        writer.close()
        os.dup2(saved_fd, 1)
        os.close(saved_fd)
        reader.join(_READER_JOIN_TIMEOUT)
    return result