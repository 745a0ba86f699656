import ipaddress
import json

import pytest

from whereabouts.types import (
    IPAMConfig,
    IPReservation,
    KubernetesConfig,
    Operation,
    RangeConfiguration,
    parse_ipam_config,
    sanitize_ip,
)


def test_sanitize_plain_ipv4():
    assert sanitize_ip("10.10.10.1") == ipaddress.ip_address("10.10.10.1")


def test_sanitize_accepts_leading_zeros():
    assert sanitize_ip("010.010.010.001") == ipaddress.ip_address("10.10.10.1")


def test_sanitize_ipv6_round_trip():
    ip = sanitize_ip("fd00::1")
    assert sanitize_ip(str(ip)) == ip
    assert ip.version == 6


def test_sanitize_ipv4_mapped_becomes_ipv4():
    assert sanitize_ip("::ffff:10.10.10.1") == sanitize_ip("10.10.10.1")


@pytest.mark.parametrize("bad", ["", "not-an-ip", "10.10.10", "10.10.10.256", "fd00::1%eth0"])
def test_sanitize_rejects_invalid(bad):
    with pytest.raises(ValueError, match="is not a valid IP address"):
        sanitize_ip(bad)


def test_operation_values():
    assert Operation(0) is Operation.ALLOCATE
    assert Operation(1) is Operation.DEALLOCATE


def test_reservation_str():
    reservation = IPReservation(ip=ipaddress.ip_address("10.10.10.1"), pod_ref="default/pod1")
    assert str(reservation) == "IP: 10.10.10.1 is reserved for pod: default/pod1"


def test_reservation_str_without_ip():
    assert str(IPReservation(pod_ref="default/pod1")).startswith("IP: <nil> ")


def test_pod_ref():
    config = IPAMConfig(pod_name="pod1", pod_namespace="default")
    assert config.pod_ref() == "default/pod1"


def test_parse_defaults():
    config = parse_ipam_config("{}")
    assert config.overlapping_ranges is True
    assert config.sleep_for_race == 0
    assert config.range_start is None
    assert config.kubernetes == KubernetesConfig()


def test_parse_full_config():
    raw = {
        "type": "whereabouts",
        "range": "10.10.10.0/16",
        "range_start": "10.10.10.5",
        "range_end": "bogus",
        "gateway": "10.10.10.1",
        "exclude": ["10.10.10.0/30"],
        "enable_overlapping_ranges": False,
        "sleep_for_race": 2,
        "leader_lease_duration": 1500,
        "kubernetes": {"kubeconfig": "/etc/kubeconfig"},
        "ipRanges": [{"range": "fd00::/64", "range_start": "fd00::10"}],
        "PodName": "pod1",
        "podnamespace": "default",
    }
    config = parse_ipam_config(json.dumps(raw))
    assert config.type == "whereabouts"
    assert config.range == "10.10.10.0/16"
    assert config.range_start == ipaddress.ip_address("10.10.10.5")
    assert config.range_end is None
    assert config.gateway_str == "10.10.10.1"
    assert config.gateway is None
    assert config.omit_ranges == ["10.10.10.0/30"]
    assert config.overlapping_ranges is False
    assert config.sleep_for_race == 2
    assert config.leader_lease_duration == 1500
    assert config.kubernetes.kubeconfig_path == "/etc/kubeconfig"
    assert config.ip_ranges == [
        RangeConfiguration(range="fd00::/64", range_start=ipaddress.ip_address("fd00::10"))
    ]
    assert config.pod_ref() == "default/pod1"


def test_parse_keys_are_case_insensitive():
    config = parse_ipam_config({"RANGE": "10.10.10.0/24", "Type": "whereabouts"})
    assert config.range == "10.10.10.0/24"
    assert config.type == "whereabouts"


def test_parse_untagged_gateway_field():
    config = parse_ipam_config(b'{"Gateway": "10.10.10.1"}')
    assert config.gateway == ipaddress.ip_address("10.10.10.1")
    assert config.gateway_str == ""


def test_parse_wrong_type_raises():
    with pytest.raises(ValueError, match="sleep_for_race"):
        parse_ipam_config({"sleep_for_race": "2"})


def test_parse_invalid_range_start_in_ip_ranges_raises():
    with pytest.raises(ValueError, match="invalid IP address"):
        parse_ipam_config({"ipRanges": [{"range_start": "nope"}]})


def test_parse_invalid_json_raises():
    with pytest.raises(ValueError):
        parse_ipam_config("{not json")


def test_parse_non_object_raises():
    with pytest.raises(ValueError):
        parse_ipam_config("[]")