# gpumetrics

`gpumetrics` is a small framework for exporting metrics about GPUs, MIG
GPU instances, NVSwitches, NvLinks, CPUs and CPU cores in the Prometheus
text exposition format over HTTP.

It uses only the Python standard library and supports Python 3.10 and
later.

## Modules

- `gpumetrics.types`: the shared data model.
  - `Counter` (frozen dataclass): `field_id`, `field_name`, `prom_type`,
    `help`. Counters are the keys of a metrics mapping
    (`Dict[Counter, List[Metric]]`).
  - `Metric`: one sampled value and its device details (`gpu`,
    `gpu_uuid`, `gpu_device`, `gpu_model_name`, `uuid`, `mig_profile`,
    `gpu_instance_id`, `hostname`, `labels`, `attributes`).
    `Metric.id_of_type(id_type)` returns `"<gpu>-<gpu_instance_id>"` for
    MIG metrics, otherwise the UUID or device name depending on the
    `KubernetesGPUIDType`; an unknown type raises `ValueError`.
  - `EntityGroup`, `LinkState`, `DeviceOptions`, `GroupEntityPair`,
    `NvLinkStatus`, `MigEntityInfo`, `Device`, `CounterSet`, `PodInfo`.
  - The abstract interfaces `Collector` (`get_metrics()`, `cleanup()`) and
    `Transform` (`process(metrics, sys_info)`, `name()`).
  - `is_valid_prom_type(prom_type)`: true for `gauge`, `counter`,
    `histogram`, `summary` and `label`.
  - `is_xid_errors_count_enabled(counters)`: true when a counter is named
    `DCGM_EXP_XID_ERRORS_COUNT`.
- `gpumetrics.system_info`: `SystemInfo` holds the GPUs (with their GPU and
  compute instances), switches and links, and CPUs and cores of one
  entity kind, plus the `DeviceOptions` selecting them. It answers
  existence questions (`gpu_id_exists`, `switch_id_exists`,
  `cpu_id_exists`, `gpu_instance_id_exists`, `link_id_exists`,
  `cpu_core_id_exists`), applies MIG profile names from `FieldValue`s
  (`set_mig_profile_names`, raising `ProfileNameError` for unknown
  instances), and checks that requested devices exist
  (`verify_device_presence`, `verify_switch_device_presence`,
  `verify_cpu_device_presence`, raising `DeviceNotFoundError`). A range
  whose first element is `-1` means "all"; `flex` skips the checks.
  `core_array(bitmask)` turns a list of 64-bit words (at most 16) into the
  ids of the set bits.
- `gpumetrics.monitoring`: `is_switch_watched`, `is_link_watched`,
  `is_cpu_watched`, `is_core_watched`, the `add_all_*` builders, and
  `get_monitored_entities(sys_info)`, which returns the `MonitoringInfo`
  entries selected for the system's `info_type`. Only links in the
  `UP` state are monitored. `gpu_instance_identifier` returns
  `"<gpu>-<instance>"` for a GPU UUID, or an empty string.
- `gpumetrics.pipeline`: `format_gpu_metrics`, `format_switch_metrics`,
  `format_link_metrics`, `format_cpu_metrics` and
  `format_cpu_core_metrics` render a metrics mapping as `# HELP` / `# TYPE`
  blocks (counters sorted, labels sorted by name). `MetricsPipeline`
  collects from up to five collectors (GPU, switch, link, CPU, CPU core):
  `run_once()` returns the rendered text and raises `PipelineError` when a
  collector or transformation fails; `run(out, stop)` puts fresh text on a
  `queue.Queue` every `collect_interval` seconds until a `threading.Event`
  is set, putting an empty string after a failure and skipping a round
  when the queue is full. `close()` (or leaving a `with` block) runs the
  cleanups. `new_metrics_pipeline(counters, hostname, collector_factory,
  system_infos, ...)` calls the factory once per entity kind present in
  `system_infos`; a factory that raises leaves that kind uncollected.
- `gpumetrics.registry`: `Registry.register(collector)`,
  `Registry.gather()` (collects from all collectors concurrently, merges
  by counter, re-raises the first failure) and `Registry.cleanup()`.
- `gpumetrics.server`: `MetricsServer(address, metrics)` takes an address
  such as `"127.0.0.1:9400"` and the queue the pipeline writes to.
  `run(stop)` serves until `stop` is set. `/` returns an index page,
  `/health` returns `OK` (200) once non-empty metrics have arrived and
  `KO` (503) before, `/metrics` returns the latest pipeline text followed
  by whatever the server's `registry` gathers. Any other path is a 404.
  `respond(path)` builds a response without going over the network.
- `gpumetrics.stdout`: `parse_output_entry(line)` splits lines shaped like
  `2024-02-07 18:01:05.641 INFO [thread] message` into an `OutputEntry`;
  other lines are marked raw. `capture(inner, logger=None)` calls `inner`
  with both `sys.stdout` and file descriptor 1 redirected into `logger`,
  one record per line, and returns what `inner` returns.
- `gpumetrics.utils`: `wait_with_timeout(wait, timeout)` runs a blocking
  callable and raises `TimeoutError` if it has not returned in time.

## Example

```python
import queue
import threading

from gpumetrics.pipeline import MetricsPipeline
from gpumetrics.server import MetricsServer
from gpumetrics.types import Collector, Counter, Metric


class PowerCollector(Collector):
    counter = Counter(field_id=155, field_name="DCGM_FI_DEV_POWER_USAGE",
                      prom_type="gauge", help="Power draw (in W).")

    def get_metrics(self):
        return {self.counter: [Metric(counter=self.counter, value="71.5",
                                      gpu="0", uuid="UUID", gpu_uuid="GPU-0")]}

    def cleanup(self):
        pass


out = queue.Queue(maxsize=1)
stop = threading.Event()
pipeline = MetricsPipeline(collect_interval=5.0, gpu_collector=PowerCollector())
server = MetricsServer("127.0.0.1:9400", out)

threads = [threading.Thread(target=pipeline.run, args=(out, stop)),
           threading.Thread(target=server.run, args=(stop,))]
for thread in threads:
    thread.start()
# ... later
stop.set()
for thread in threads:
    thread.join()
pipeline.close()
```

## What the package does not do

The package does not talk to GPUs, switches or CPUs itself: it ships no
collector that reads hardware and no discovery that fills in a
`SystemInfo`. You supply `Collector` implementations and build the system
information yourself. There is no command-line program, no TLS or
authentication for the HTTP server, and no transformation that maps
devices to Kubernetes pods; `Transform` is the hook for adding one.

## Running the tests

The tests use pytest, declared under the `test` extra:

```
pip install -e .[test]
pytest
```