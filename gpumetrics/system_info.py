"""Inventory of the GPUs, MIG instances, switches, links and CPUs on a host."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from gpumetrics.types import (
    Device,
    DeviceOptions,
    EntityGroup,
    GroupEntityPair,
    MigEntityInfo,
    NvLinkStatus,
)

FIELD_TYPE_DOUBLE = "d"
FIELD_TYPE_INT64 = "i"
FIELD_TYPE_STRING = "s"
FIELD_TYPE_TIMESTAMP = "t"
FIELD_TYPE_BINARY = "b"

MAX_NUM_CPU_CORES = 1024
_BITS_PER_WORD = 64
MAX_CPU_CORE_BITMASK_COUNT = MAX_NUM_CPU_CORES // _BITS_PER_WORD
_WORD_MASK = (1 << _BITS_PER_WORD) - 1

PARENT_ID_IGNORED = 0


class DeviceNotFoundError(LookupError):
    """A requested device or sub-device does not exist on this host."""


class ProfileNameError(LookupError):
    """Profile names were given for GPU instances that do not exist."""


@dataclass
class FieldValue:
    """A sampled field value for one entity."""

    entity_group_id: EntityGroup = EntityGroup.NONE
    entity_id: int = 0
    field_id: int = 0
    field_type: str = FIELD_TYPE_STRING
    string_value: Optional[str] = None
    value: bytes = b""

    def as_string(self) -> str:
        """Return the value as text: the string value, or the raw bytes decoded."""
        if self.field_type == FIELD_TYPE_STRING:
            return self.string_value or ""
        return bytes(self.value).rstrip(b"\0").decode("utf-8", errors="replace")


@dataclass
class ComputeInstanceInfo:
    """A compute instance inside a MIG GPU instance."""

    instance_info: MigEntityInfo = field(default_factory=MigEntityInfo)
    profile_name: str = ""
    entity_id: int = 0


@dataclass
class GPUInstanceInfo:
    """A MIG GPU instance and the compute instances it holds."""

    info: MigEntityInfo = field(default_factory=MigEntityInfo)
    profile_name: str = ""
    entity_id: int = 0
    compute_instances: List[ComputeInstanceInfo] = field(default_factory=list)


@dataclass
class GPUInfo:
    """A GPU and, when MIG is enabled, its GPU instances."""

    device_info: Device = field(default_factory=Device)
    gpu_instances: List[GPUInstanceInfo] = field(default_factory=list)
    mig_enabled: bool = False


@dataclass
class SwitchInfo:
    """An NvSwitch and the links attached to it."""

    entity_id: int = 0
    nv_links: List[NvLinkStatus] = field(default_factory=list)


@dataclass
class CPUInfo:
    """A CPU and the ids of the cores it owns."""

    entity_id: int = 0
    cores: List[int] = field(default_factory=list)


@dataclass
class MonitoringInfo:
    """An entity selected for monitoring, with what is known about its device."""

    entity: GroupEntityPair = field(default_factory=GroupEntityPair)
    device_info: Device = field(default_factory=Device)
    instance_info: Optional[GPUInstanceInfo] = None
    parent_id: int = PARENT_ID_IGNORED


@dataclass
class SystemInfo:
    """The entities of one kind found on the host and the options selecting them."""

    gpus: List[GPUInfo] = field(default_factory=list)
    gpu_options: DeviceOptions = field(default_factory=DeviceOptions)
    switch_options: DeviceOptions = field(default_factory=DeviceOptions)
    cpu_options: DeviceOptions = field(default_factory=DeviceOptions)
    info_type: EntityGroup = EntityGroup.NONE
    switches: List[SwitchInfo] = field(default_factory=list)
    cpus: List[CPUInfo] = field(default_factory=list)

    @property
    def gpu_count(self) -> int:
        """Number of GPUs found."""
        return len(self.gpus)

    def _gpu_instances(self) -> Iterable[GPUInstanceInfo]:
        for gpu in self.gpus:
            yield from gpu.gpu_instances

    def set_gpu_instance_profile_name(self, entity_id: int, profile_name: str) -> bool:
        """Name the profile of the GPU instance ``entity_id``; False if not found."""
        for instance in self._gpu_instances():
            if instance.entity_id == entity_id:
                instance.profile_name = profile_name
                return True
        return False

    def set_mig_profile_names(self, values: Iterable[FieldValue]) -> None:
        """Apply profile names from ``values``, raising for any unknown instance."""
        message = "cannot find match for entities:"
        missing = False
        for value in values:
            if not self.set_gpu_instance_profile_name(value.entity_id, value.as_string()):
                message += f" group {int(value.entity_group_id)}, id {value.entity_id}"
                missing = True
        if missing:
            raise ProfileNameError(message)

    def gpu_id_exists(self, gpu_id: int) -> bool:
        """Tell whether a GPU with this id was found."""
        return any(gpu.device_info.gpu == gpu_id for gpu in self.gpus)

    def switch_id_exists(self, switch_id: int) -> bool:
        """Tell whether a switch with this id was found."""
        return any(sw.entity_id == switch_id for sw in self.switches)

    def cpu_id_exists(self, cpu_id: int) -> bool:
        """Tell whether a CPU with this id was found."""
        return any(cpu.entity_id == cpu_id for cpu in self.cpus)

    def gpu_instance_id_exists(self, gpu_instance_id: int) -> bool:
        """Tell whether a GPU instance with this entity id was found."""
        return any(inst.entity_id == gpu_instance_id for inst in self._gpu_instances())

    def link_id_exists(self, link_id: int) -> bool:
        """Tell whether any switch has a link with this index."""
        return any(link.index == link_id for sw in self.switches for link in sw.nv_links)

    def cpu_core_id_exists(self, core_id: int) -> bool:
        """Tell whether any CPU owns a core with this id."""
        return any(core_id in cpu.cores for cpu in self.cpus)

    def verify_cpu_device_presence(self, options: DeviceOptions) -> None:
        """Raise DeviceNotFoundError unless every requested CPU and core exists."""
        if options.flex:
            return
        if _selects_some(options.major_range):
            for cpu_id in options.major_range:
                if not self.switch_id_exists(cpu_id):
                    raise DeviceNotFoundError(f"couldn't find requested CPU ID '{cpu_id}'")
        if _selects_some(options.minor_range):
            for core_id in options.minor_range:
                if not self.cpu_core_id_exists(core_id):
                    raise DeviceNotFoundError(f"couldn't find requested CPU core '{core_id}'")

    def verify_switch_device_presence(self, options: DeviceOptions) -> None:
        """Raise DeviceNotFoundError unless every requested switch and link exists."""
        if options.flex:
            return
        if _selects_some(options.major_range):
            for switch_id in options.major_range:
                if not self.switch_id_exists(switch_id):
                    raise DeviceNotFoundError(
                        f"couldn't find requested NvSwitch ID '{switch_id}'"
                    )
        if _selects_some(options.minor_range):
            for link_id in options.minor_range:
                if not self.link_id_exists(link_id):
                    raise DeviceNotFoundError(f"couldn't find requested NvLink '{link_id}'")

    def verify_device_presence(self, options: DeviceOptions) -> None:
        """Raise DeviceNotFoundError unless every requested GPU and instance exists."""
        if options.flex:
            return
        if _selects_some(options.major_range):
            for gpu_id in options.major_range:
                if not self.gpu_id_exists(gpu_id):
                    raise DeviceNotFoundError(f"couldn't find requested GPU ID '{gpu_id}'")
        if _selects_some(options.minor_range):
            for instance_id in options.minor_range:
                if not self.gpu_instance_id_exists(instance_id):
                    raise DeviceNotFoundError(
                        f"couldn't find requested GPU instance ID '{instance_id}'"
                    )


def _selects_some(id_range: List[int]) -> bool:
    """True when the range lists specific ids rather than being empty or 'all'."""
    return bool(id_range) and id_range[0] != -1


def core_array(bitmask: Iterable[int]) -> List[int]:
    """Return the ids of the cores whose bits are set in a 64-bit word bitmask."""
    words = list(bitmask)
    if len(words) > MAX_CPU_CORE_BITMASK_COUNT:
        raise ValueError(
            f"core bitmask has {len(words)} words; at most "
            f"{MAX_CPU_CORE_BITMASK_COUNT} are supported"
        )
    cores: List[int] = []
    for word_index, word in enumerate(words):
        word &= _WORD_MASK
        base = word_index * _BITS_PER_WORD
        cores.extend(base + bit for bit in range(_BITS_PER_WORD) if (word >> bit) & 1)
    return cores