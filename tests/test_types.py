import pytest

from gpumetrics.types import (
    Counter,
    DeviceOptions,
    KubernetesGPUIDType,
    Metric,
    XID_ERRORS_COUNT_NAME,
    is_valid_prom_type,
    is_xid_errors_count_enabled,
)


def test_id_of_type_for_mig_uses_gpu_and_instance():
    metric = Metric(gpu="0", gpu_instance_id="3", mig_profile="1g.5gb", gpu_uuid="abc")
    assert metric.id_of_type(KubernetesGPUIDType.GPU_UID) == "0-3"
    assert metric.id_of_type(KubernetesGPUIDType.DEVICE_NAME) == "0-3"


def test_id_of_type_uuid_and_device():
    metric = Metric(gpu="1", gpu_uuid="GPU-uuid-value", gpu_device="nvidia1")
    assert metric.id_of_type(KubernetesGPUIDType.GPU_UID) == "GPU-uuid-value"
    assert metric.id_of_type(KubernetesGPUIDType.DEVICE_NAME) == "nvidia1"


def test_id_of_type_unsupported_raises():
    metric = Metric(gpu="1", gpu_uuid="GPU-uuid-value")
    with pytest.raises(ValueError, match="unsupported KubernetesGPUIDType"):
        metric.id_of_type("something-else")


@pytest.mark.parametrize("prom_type", ["gauge", "counter", "histogram", "summary", "label"])
def test_valid_prom_types(prom_type):
    assert is_valid_prom_type(prom_type) is True


@pytest.mark.parametrize("prom_type", ["", "Gauge", "untyped", "info"])
def test_invalid_prom_types(prom_type):
    assert is_valid_prom_type(prom_type) is False


def test_xid_counter_detection():
    driver = Counter(field_name="DCGM_FI_DRIVER_VERSION", prom_type="label", help="Driver Version")
    xid = Counter(field_name=XID_ERRORS_COUNT_NAME, prom_type="gauge")
    assert is_xid_errors_count_enabled([driver]) is False
    assert is_xid_errors_count_enabled([]) is False
    assert is_xid_errors_count_enabled([driver, xid]) is True
    assert is_xid_errors_count_enabled([xid, xid, xid]) is True
    assert XID_ERRORS_COUNT_NAME == "DCGM_EXP_XID_ERRORS_COUNT"


def test_counter_works_as_mapping_key():
    a = Counter(field_id=155, field_name="DCGM_FI_DEV_POWER_USAGE", prom_type="gauge")
    b = Counter(field_id=155, field_name="DCGM_FI_DEV_POWER_USAGE", prom_type="gauge")
    grouped = {a: [Metric(counter=a, gpu="0")]}
    grouped.setdefault(b, []).append(Metric(counter=b, gpu="1"))
    assert len(grouped) == 1
    assert [m.gpu for m in grouped[a]] == ["0", "1"]


def test_metric_label_maps_are_independent():
    first = Metric()
    second = Metric()
    first.labels["xid"] = "42"
    assert second.labels == {}
    assert first.labels == {"xid": "42"}


def test_device_options_ranges_are_independent():
    first = DeviceOptions()
    second = DeviceOptions()
    first.major_range.append(-1)
    assert second.major_range == []
    assert first.major_range == [-1]