"""Core data types shared by the collectors, the pipeline and the server."""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Iterable, List

SKIP_DCGM_VALUE = "SKIPPING DCGM VALUE"
FAILED_TO_CONVERT = "ERROR - FAILED TO CONVERT TO STRING"

NVIDIA_RESOURCE_NAME = "nvidia.com/gpu"
NVIDIA_MIG_RESOURCE_PREFIX = "nvidia.com/mig-"
MIG_UUID_PREFIX = "MIG-"

POD_ATTRIBUTE = "pod"
NAMESPACE_ATTRIBUTE = "namespace"
CONTAINER_ATTRIBUTE = "container"

OLD_POD_ATTRIBUTE = "pod_name"
OLD_NAMESPACE_ATTRIBUTE = "pod_namespace"
OLD_CONTAINER_ATTRIBUTE = "container_name"

UNDEFINED_CONFIG_MAP_DATA = "none"

XID_ERRORS_COUNT_NAME = "DCGM_EXP_XID_ERRORS_COUNT"

PROM_METRIC_TYPES = frozenset({"gauge", "counter", "histogram", "summary", "label"})


class EntityGroup(enum.IntEnum):
    """Kinds of entities that fields can be watched on."""

    NONE = 0
    GPU = 1
    VGPU = 2
    SWITCH = 3
    GPU_I = 4
    GPU_CI = 5
    LINK = 6
    CPU = 7
    CPU_CORE = 8


class LinkState(enum.IntEnum):
    """State of an NvLink."""

    NOT_SUPPORTED = 0
    DISABLED = 1
    DOWN = 2
    UP = 3


class KubernetesGPUIDType(str, enum.Enum):
    """How a GPU is identified when mapping it to Kubernetes resources."""

    GPU_UID = "uid"
    DEVICE_NAME = "device-name"


@dataclass(frozen=True)
class Counter:
    """A field to be exported, with its Prometheus name, type and help text."""

    field_id: int = 0
    field_name: str = ""
    prom_type: str = ""
    help: str = ""


@dataclass
class Metric:
    """One sampled value of a counter on one entity."""

    counter: Counter = field(default_factory=Counter)
    value: str = ""

    gpu: str = ""
    gpu_uuid: str = ""
    gpu_device: str = ""
    gpu_model_name: str = ""

    uuid: str = ""

    mig_profile: str = ""
    gpu_instance_id: str = ""
    hostname: str = ""

    labels: Dict[str, str] = field(default_factory=dict)
    attributes: Dict[str, str] = field(default_factory=dict)

    def id_of_type(self, id_type: KubernetesGPUIDType) -> str:
        """Return the identifier used to match this metric's device."""
        if self.mig_profile:
            return f"{self.gpu}-{self.gpu_instance_id}"
        if id_type == KubernetesGPUIDType.GPU_UID:
            return self.gpu_uuid
        if id_type == KubernetesGPUIDType.DEVICE_NAME:
            return self.gpu_device
        raise ValueError(f"unsupported KubernetesGPUIDType for MetricID '{id_type}'")


MetricsByCounter = Dict[Counter, List[Metric]]


@dataclass
class CounterSet:
    """Counters split into those read from the library and those computed here."""

    dcgm_counters: List[Counter] = field(default_factory=list)
    exporter_counters: List[Counter] = field(default_factory=list)


@dataclass
class PodInfo:
    """The Kubernetes workload a device is assigned to."""

    name: str = ""
    namespace: str = ""
    container: str = ""


@dataclass
class DeviceOptions:
    """Which devices (major) and sub-devices (minor) to watch; -1 means all."""

    flex: bool = False
    major_range: List[int] = field(default_factory=list)
    minor_range: List[int] = field(default_factory=list)


@dataclass(frozen=True)
class GroupEntityPair:
    """An entity identified by its group and its id within the group."""

    entity_group_id: EntityGroup = EntityGroup.NONE
    entity_id: int = 0


@dataclass
class NvLinkStatus:
    """Status of one NvLink and the entity it belongs to."""

    parent_id: int = 0
    parent_type: EntityGroup = EntityGroup.NONE
    state: int = LinkState.NOT_SUPPORTED
    index: int = 0


@dataclass
class MigEntityInfo:
    """Description of a MIG GPU or compute instance."""

    gpu_uuid: str = ""
    nvml_gpu_index: int = 0
    nvml_instance_id: int = 0
    nvml_compute_instance_id: int = 0
    nvml_mig_profile_id: int = 0
    nvml_profile_slices: int = 0


@dataclass
class Device:
    """Static description of a GPU."""

    gpu: int = 0
    uuid: str = ""
    model_name: str = ""
    pci_bus_id: str = ""


class Transform(ABC):
    """A step that enriches collected metrics in place."""

    @abstractmethod
    def process(self, metrics: MetricsByCounter, sys_info) -> None:
        """Modify ``metrics``; raise on failure."""

    @abstractmethod
    def name(self) -> str:
        """Return a short name for error messages."""


class Collector(ABC):
    """Something that produces metrics on demand."""

    @abstractmethod
    def get_metrics(self) -> MetricsByCounter:
        """Collect and return the current metrics."""

    @abstractmethod
    def cleanup(self) -> None:
        """Release any resources held by the collector."""


def is_valid_prom_type(prom_type: str) -> bool:
    """Tell whether ``prom_type`` is a supported Prometheus metric type."""
    return prom_type in PROM_METRIC_TYPES


def is_xid_errors_count_enabled(counters: Iterable[Counter]) -> bool:
    """Tell whether the XID error count counter is among ``counters``."""
    return any(c.field_name == XID_ERRORS_COUNT_NAME for c in counters)