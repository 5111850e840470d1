"""Periodic collection of metrics and their rendering in the Prometheus text format."""

from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from gpumetrics.types import Collector, Counter, EntityGroup, Metric, MetricsByCounter, Transform

logger = logging.getLogger(__name__)

DEFAULT_COLLECT_INTERVAL = 30.0
_PUT_POLL_INTERVAL = 0.1

_COLLECTOR_ORDER = (
    EntityGroup.GPU,
    EntityGroup.SWITCH,
    EntityGroup.LINK,
    EntityGroup.CPU,
    EntityGroup.CPU_CORE,
)


class PipelineError(RuntimeError):
    """Collecting, transforming or formatting metrics failed."""


def _counter_key(counter: Counter):
    return (counter.field_id, counter.field_name, counter.prom_type, counter.help)


def _label_pairs(values: Mapping[str, str]) -> str:
    return "".join(f',{key}="{value}"' for key, value in sorted(values.items()))


def _format(
    metrics: MetricsByCounter,
    head: Callable[[Metric], str],
    with_attributes: bool = False,
) -> str:
    blocks: List[str] = []
    for counter in sorted(metrics, key=_counter_key):
        name = counter.field_name
        lines = [f"# HELP {name} {counter.help}", f"# TYPE {name} {counter.prom_type}"]
        for metric in metrics[counter]:
            labels = head(metric)
            if metric.hostname:
                labels += f',Hostname="{metric.hostname}"'
            labels += _label_pairs(metric.labels)
            if with_attributes:
                labels += _label_pairs(metric.attributes)
            lines.append(f"{name}{{{labels}}} {metric.value}")
        blocks.append("\n".join(lines) + "\n")
    return "".join(blocks)


def _gpu_head(metric: Metric) -> str:
    head = (
        f'gpu="{metric.gpu}",{metric.uuid}="{metric.gpu_uuid}",'
        f'device="{metric.gpu_device}",modelName="{metric.gpu_model_name}"'
    )
    if metric.mig_profile:
        head += f',GPU_I_PROFILE="{metric.mig_profile}",GPU_I_ID="{metric.gpu_instance_id}"'
    return head


def format_gpu_metrics(metrics: MetricsByCounter) -> str:
    """Render GPU and GPU instance metrics, attributes included."""
    return _format(metrics, _gpu_head, with_attributes=True)


def format_switch_metrics(metrics: MetricsByCounter) -> str:
    """Render NvSwitch metrics."""
    return _format(metrics, lambda m: f'nvswitch="{m.gpu}"')


def format_link_metrics(metrics: MetricsByCounter) -> str:
    """Render NvLink metrics, labelled with their switch."""
    return _format(metrics, lambda m: f'nvlink="{m.gpu}",nvswitch="{m.gpu_device}"')


def format_cpu_metrics(metrics: MetricsByCounter) -> str:
    """Render CPU metrics."""
    return _format(metrics, lambda m: f'cpu="{m.gpu}"')


def format_cpu_core_metrics(metrics: MetricsByCounter) -> str:
    """Render CPU core metrics, labelled with their CPU."""
    return _format(metrics, lambda m: f'cpucore="{m.gpu}",cpu="{m.gpu_device}"')


class MetricsPipeline:
    """Collects metrics from each kind of collector and renders them as one text."""

    def __init__(
        self,
        collect_interval: float = DEFAULT_COLLECT_INTERVAL,
        gpu_collector: Optional[Collector] = None,
        switch_collector: Optional[Collector] = None,
        link_collector: Optional[Collector] = None,
        cpu_collector: Optional[Collector] = None,
        core_collector: Optional[Collector] = None,
        transformations: Optional[Sequence[Transform]] = None,
        cleanups: Optional[Iterable[Callable[[], None]]] = None,
    ) -> None:
        if collect_interval <= 0:
            raise ValueError("collect_interval must be positive")
        self.collect_interval = collect_interval
        self.gpu_collector = gpu_collector
        self.switch_collector = switch_collector
        self.link_collector = link_collector
        self.cpu_collector = cpu_collector
        self.core_collector = core_collector
        self.transformations: List[Transform] = list(transformations or [])
        self._cleanups: List[Callable[[], None]] = list(cleanups or [])

    def __enter__(self) -> "MetricsPipeline":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        """Run every cleanup once."""
        cleanups, self._cleanups = self._cleanups, []
        for cleanup in cleanups:
            cleanup()

    def _collect_gpu(self) -> str:
        collector = self.gpu_collector
        try:
            metrics = collector.get_metrics()
        except Exception as exc:
            raise PipelineError(f"failed to collect gpu metrics; err: {exc}") from exc

        sys_info = getattr(collector, "sys_info", None)
        for transform in self.transformations:
            try:
                transform.process(metrics, sys_info)
            except Exception as exc:
                raise PipelineError(
                    f"failed to transform metrics for transform '{transform.name()}'; "
                    f"err: {exc}"
                ) from exc

        try:
            return format_gpu_metrics(metrics)
        except Exception as exc:
            raise PipelineError(f"failed to format metrics; err: {exc}") from exc

    @staticmethod
    def _collect_other(
        collector: Collector,
        kind: str,
        formatter: Callable[[MetricsByCounter], str],
    ) -> str:
        try:
            metrics = collector.get_metrics()
        except Exception as exc:
            raise PipelineError(f"failed to collect {kind} metrics; err: {exc}") from exc
        if not metrics:
            return ""
        try:
            return formatter(metrics)
        except Exception as exc:
            logger.warning("failed to format %s metrics; err: %s", kind, exc)
            return ""

    def run_once(self) -> str:
        """Collect and render every kind of metric once."""
        formatted = ""
        if self.gpu_collector is not None:
            formatted = self._collect_gpu()
        others = (
            (self.switch_collector, "switch", format_switch_metrics),
            (self.link_collector, "link", format_link_metrics),
            (self.cpu_collector, "CPU", format_cpu_metrics),
            (self.core_collector, "CPU core", format_cpu_core_metrics),
        )
        for collector, kind, formatter in others:
            if collector is not None:
                formatted += self._collect_other(collector, kind, formatter)
        return formatted

    @staticmethod
    def _put_blocking(out: "queue.Queue[str]", item: str, stop: threading.Event) -> None:
        while not stop.is_set():
            try:
                out.put(item, timeout=_PUT_POLL_INTERVAL)
                return
            except queue.Full:
                continue

    def run(self, out: "queue.Queue[str]", stop: threading.Event) -> None:
        """Put fresh output on ``out`` every interval until ``stop`` is set."""
        logger.info("Pipeline starting")
        next_tick = time.monotonic() + self.collect_interval
        while not stop.wait(max(0.0, next_tick - time.monotonic())):
            now = time.monotonic()
            next_tick += self.collect_interval
            if next_tick < now:
                next_tick = now + self.collect_interval
            try:
                output = self.run_once()
            except PipelineError as exc:
                logger.error("Failed to collect metrics; err: %s", exc)
                # Flush the output rather than serve stale data.
                self._put_blocking(out, "", stop)
                continue
            if out.full():
                logger.error("Channel is full skipping.")
                continue
            try:
                out.put_nowait(output)
            except queue.Full:
                logger.error("Channel is full skipping.")


CollectorFactory = Callable[[Sequence[Counter], str, object], Optional[Collector]]


def new_metrics_pipeline(
    counters: Sequence[Counter],
    hostname: str,
    collector_factory: CollectorFactory,
    system_infos: Mapping[EntityGroup, object],
    collect_interval: float = DEFAULT_COLLECT_INTERVAL,
    transformations: Optional[Sequence[Transform]] = None,
) -> MetricsPipeline:
    """Build a pipeline with one collector per entity kind found in ``system_infos``.

    ``collector_factory(counters, hostname, item)`` makes each collector; a
    factory that raises only leaves that kind uncollected.
    """
    logger.debug("Counters are initialized: %r", list(counters))
    collectors: Dict[EntityGroup, Optional[Collector]] = {}
    cleanups: List[Callable[[], None]] = []
    for group in _COLLECTOR_ORDER:
        if group not in system_infos:
            continue
        try:
            collector = collector_factory(counters, hostname, system_infos[group])
        except Exception as exc:
            logger.warning("Cannot create collector for %s: %s", group.name, exc)
            collector = None
        if collector is not None:
            cleanups.append(collector.cleanup)
        collectors[group] = collector

    return MetricsPipeline(
        collect_interval=collect_interval,
        gpu_collector=collectors.get(EntityGroup.GPU),
        switch_collector=collectors.get(EntityGroup.SWITCH),
        link_collector=collectors.get(EntityGroup.LINK),
        cpu_collector=collectors.get(EntityGroup.CPU),
        core_collector=collectors.get(EntityGroup.CPU_CORE),
        transformations=transformations,
        cleanups=cleanups,
    )