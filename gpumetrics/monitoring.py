"""Selecting which entities of a system are monitored."""

from __future__ import annotations

from typing import List, Optional

from gpumetrics.system_info import (
    PARENT_ID_IGNORED,
    DeviceNotFoundError,
    GPUInfo,
    MonitoringInfo,
    SystemInfo,
)
from gpumetrics.types import Device, EntityGroup, GroupEntityPair, LinkState


def _selects_all(id_range: List[int]) -> bool:
    return bool(id_range) and id_range[0] == -1


def _gpu_entry(gpu: GPUInfo) -> MonitoringInfo:
    return MonitoringInfo(
        entity=GroupEntityPair(EntityGroup.GPU, gpu.device_info.gpu),
        device_info=gpu.device_info,
        instance_info=None,
        parent_id=PARENT_ID_IGNORED,
    )


def is_switch_watched(switch_id: int, sys_info: SystemInfo) -> bool:
    """Tell whether the switch ``switch_id`` is selected by the switch options."""
    options = sys_info.switch_options
    if options.flex:
        return True
    if _selects_all(options.major_range):
        return True
    return switch_id in options.major_range


def is_link_watched(link_index: int, switch_id: int, sys_info: SystemInfo) -> bool:
    """Tell whether link ``link_index`` of a watched switch is selected."""
    options = sys_info.switch_options
    if options.flex:
        return True

    switch = next(
        (
            sw
            for sw in sys_info.switches
            if sw.entity_id == switch_id and is_switch_watched(sw.entity_id, sys_info)
        ),
        None,
    )
    if switch is None:
        return False
    if _selects_all(options.minor_range):
        return True
    if any(link.index == link_index for link in switch.nv_links):
        return link_index in options.minor_range
    return False


def is_cpu_watched(cpu_id: int, sys_info: SystemInfo) -> bool:
    """Tell whether the CPU ``cpu_id`` exists and is selected by the CPU options."""
    if not sys_info.cpu_id_exists(cpu_id):
        return False
    options = sys_info.cpu_options
    if options.flex:
        return True
    if _selects_all(options.major_range):
        return True
    return cpu_id in options.major_range


def is_core_watched(core_id: int, cpu_id: int, sys_info: SystemInfo) -> bool:
    """Tell whether core ``core_id`` of the watched CPU ``cpu_id`` is selected."""
    options = sys_info.cpu_options
    if options.flex:
        return True
    cpu_found = any(
        cpu.entity_id == cpu_id and is_cpu_watched(cpu.entity_id, sys_info)
        for cpu in sys_info.cpus
    )
    if not cpu_found:
        return False
    if _selects_all(options.minor_range):
        return True
    return core_id in options.minor_range


def add_all_gpus(sys_info: SystemInfo) -> List[MonitoringInfo]:
    """One entry per GPU."""
    return [_gpu_entry(gpu) for gpu in sys_info.gpus]


def add_all_switches(sys_info: SystemInfo) -> List[MonitoringInfo]:
    """One entry per watched switch."""
    return [
        MonitoringInfo(
            entity=GroupEntityPair(EntityGroup.SWITCH, sw.entity_id),
            device_info=Device(),
            instance_info=None,
            parent_id=PARENT_ID_IGNORED,
        )
        for sw in sys_info.switches
        if is_switch_watched(sw.entity_id, sys_info)
    ]


def add_all_links(sys_info: SystemInfo) -> List[MonitoringInfo]:
    """One entry per link that is up, on a watched switch, and itself watched."""
    return [
        MonitoringInfo(
            entity=GroupEntityPair(EntityGroup.LINK, link.index),
            device_info=Device(),
            instance_info=None,
            parent_id=link.parent_id,
        )
        for sw in sys_info.switches
        for link in sw.nv_links
        if link.state == LinkState.UP
        and is_switch_watched(sw.entity_id, sys_info)
        and is_link_watched(link.index, sw.entity_id, sys_info)
    ]


def add_all_cpus(sys_info: SystemInfo) -> List[MonitoringInfo]:
    """One entry per watched CPU."""
    return [
        MonitoringInfo(
            entity=GroupEntityPair(EntityGroup.CPU, cpu.entity_id),
            device_info=Device(),
            instance_info=None,
            parent_id=PARENT_ID_IGNORED,
        )
        for cpu in sys_info.cpus
        if is_cpu_watched(cpu.entity_id, sys_info)
    ]


def add_all_cpu_cores(sys_info: SystemInfo) -> List[MonitoringInfo]:
    """One entry per watched core of a watched CPU, parented to its CPU."""
    return [
        MonitoringInfo(
            entity=GroupEntityPair(EntityGroup.CPU_CORE, core),
            device_info=Device(),
            instance_info=None,
            parent_id=cpu.entity_id,
        )
        for cpu in sys_info.cpus
        for core in cpu.cores
        if is_cpu_watched(cpu.entity_id, sys_info)
        and is_core_watched(core, cpu.entity_id, sys_info)
    ]


def add_all_gpu_instances(sys_info: SystemInfo, add_flexibly: bool) -> List[MonitoringInfo]:
    """One entry per GPU instance; with ``add_flexibly``, whole GPUs lacking instances."""
    monitoring: List[MonitoringInfo] = []
    for gpu in sys_info.gpus:
        if add_flexibly and not gpu.gpu_instances:
            monitoring.append(_gpu_entry(gpu))
            continue
        monitoring.extend(
            MonitoringInfo(
                entity=GroupEntityPair(EntityGroup.GPU_I, instance.entity_id),
                device_info=gpu.device_info,
                instance_info=instance,
                parent_id=PARENT_ID_IGNORED,
            )
            for instance in gpu.gpu_instances
        )
    return monitoring


def monitoring_info_for_gpu(sys_info: SystemInfo, gpu_id: int) -> Optional[MonitoringInfo]:
    """The entry for GPU ``gpu_id``, or None if there is no such GPU."""
    for gpu in sys_info.gpus:
        if gpu.device_info.gpu == gpu_id:
            return _gpu_entry(gpu)
    return None


def monitoring_info_for_gpu_instance(
    sys_info: SystemInfo, gpu_instance_id: int
) -> Optional[MonitoringInfo]:
    """The entry for GPU instance ``gpu_instance_id``, or None if there is none."""
    for gpu in sys_info.gpus:
        for instance in gpu.gpu_instances:
            if instance.entity_id == gpu_instance_id:
                return MonitoringInfo(
                    entity=GroupEntityPair(EntityGroup.GPU_I, gpu_instance_id),
                    device_info=gpu.device_info,
                    instance_info=instance,
                    parent_id=PARENT_ID_IGNORED,
                )
    return None


def get_monitored_entities(sys_info: SystemInfo) -> List[MonitoringInfo]:
    """Every entity of the system's kind that its options select."""
    info_type = sys_info.info_type
    if info_type == EntityGroup.SWITCH:
        return add_all_switches(sys_info)
    if info_type == EntityGroup.LINK:
        return add_all_links(sys_info)
    if info_type == EntityGroup.CPU:
        return add_all_cpus(sys_info)
    if info_type == EntityGroup.CPU_CORE:
        return add_all_cpu_cores(sys_info)

    options = sys_info.gpu_options
    if options.flex:
        return add_all_gpu_instances(sys_info, True)

    monitoring: List[MonitoringInfo]
    if _selects_all(options.major_range):
        monitoring = add_all_gpus(sys_info)
    else:
        monitoring = []
        for gpu_id in options.major_range:
            entry = monitoring_info_for_gpu(sys_info, gpu_id)
            if entry is None:
                raise DeviceNotFoundError(f"couldn't find requested GPU ID '{gpu_id}'")
            monitoring.append(entry)

    if _selects_all(options.minor_range):
        monitoring = add_all_gpu_instances(sys_info, False)
    else:
        for instance_id in options.minor_range:
            entry = monitoring_info_for_gpu_instance(sys_info, instance_id)
            if entry is None:
                raise DeviceNotFoundError(
                    f"couldn't find requested GPU instance ID '{instance_id}'"
                )
            monitoring.append(entry)

    return monitoring


def gpu_instance_identifier(sys_info: SystemInfo, gpu_uuid: str, gpu_instance_id: int) -> str:
    """``"<gpu>-<instance>"`` for the GPU with ``gpu_uuid``, or an empty string."""
    for gpu in sys_info.gpus:
        if gpu.device_info.uuid == gpu_uuid:
            return f"{gpu.device_info.gpu}-{gpu_instance_id}"
    return ""