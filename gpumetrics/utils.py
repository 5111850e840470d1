"""Small helpers."""

from __future__ import annotations

import threading
from typing import Callable


def wait_with_timeout(wait: Callable[[], object], timeout: float) -> None:
    """Run the blocking ``wait`` callable, giving up after ``timeout`` seconds.

    Raises TimeoutError if ``wait`` has not returned in time; an exception
    raised by ``wait`` itself is re-raised.
    """
    failure: list[BaseException] = []

    def _runner() -> None:
        try:
            wait()
        except BaseException as exc:  # handed back to the caller
            failure.append(exc)

    worker = threading.Thread(target=_runner, daemon=True)
    worker.start()
    worker.join(timeout)
    if worker.is_alive():
        raise TimeoutError("timeout waiting for WaitGroup")
    if failure:
        raise failure[0]