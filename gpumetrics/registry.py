"""A registry that gathers metrics from many collectors at once."""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from typing import List

from gpumetrics.types import Collector, MetricsByCounter


class Registry:
    """Holds collectors and merges their metrics by counter."""

    def __init__(self) -> None:
        self.collectors: List[Collector] = []
        self._lock = threading.Lock()

    def register(self, collector: Collector) -> None:
        """Add a collector."""
        self.collectors.append(collector)

    def gather(self) -> MetricsByCounter:
        """Collect from every collector concurrently; the first failure is raised."""
        with self._lock:
            if not self.collectors:
                return {}
            with ThreadPoolExecutor(max_workers=len(self.collectors)) as pool:
                futures = [pool.submit(c.get_metrics) for c in self.collectors]
            output: MetricsByCounter = {}
            for future in futures:
                metrics = future.result()
                for counter, values in metrics.items():
                    output.setdefault(counter, []).extend(values)
            return output

    def cleanup(self) -> None:
        """Release the resources of every registered collector."""
        for collector in self.collectors:
            collector.cleanup()