"""Configuration and reservation types for the IPAM plugin."""

from __future__ import annotations

import base64
import binascii
import ipaddress
import json
from dataclasses import dataclass, field
from datetime import timedelta
from enum import IntEnum
from typing import Any, Callable, Optional, Union

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]

DEFAULT_LEADER_LEASE_DURATION = 1500
DEFAULT_LEADER_RENEW_DEADLINE = 1000
DEFAULT_LEADER_RETRY_PERIOD = 500
ADD_TIME_LIMIT = timedelta(minutes=2)
DEL_TIME_LIMIT = timedelta(minutes=1)
DEFAULT_OVERLAPPING_IPS_FEATURES = True
DEFAULT_SLEEP_FOR_RACE = 0


class Operation(IntEnum):
    """The kind of change made to a pool."""

    ALLOCATE = 0
    DEALLOCATE = 1


def _parse_ipv4_sloppy(text: str) -> Optional[ipaddress.IPv4Address]:
    parts = text.split(".")
    if len(parts) != 4:
        return None
    octets = []
    for part in parts:
        if not part or not part.isascii() or not part.isdigit():
            return None
        value = int(part)
        if value > 0xFF:
            return None
        octets.append(value)
    return ipaddress.IPv4Address(bytes(octets))


def _parse_ip(text: str, sloppy: bool) -> Optional[IPAddress]:
    if ":" in text:
        if "%" in text:
            return None
        try:
            ip6 = ipaddress.IPv6Address(text)
        except ValueError:
            return None
        mapped = ip6.ipv4_mapped
        return mapped if mapped is not None else ip6
    if sloppy:
        return _parse_ipv4_sloppy(text)
    try:
        return ipaddress.IPv4Address(text)
    except ValueError:
        return None


def sanitize_ip(address: str) -> IPAddress:
    """Parse an address, accepting IPv4 octets with leading zeros."""
    ip = _parse_ip(address, sloppy=True) if isinstance(address, str) else None
    if ip is None:
        raise ValueError(f"{address} is not a valid IP address")
    return ip


def _backwards_compatible_ip(text: str) -> Optional[IPAddress]:
    try:
        return sanitize_ip(text)
    except ValueError:
        return None


@dataclass
class KubernetesConfig:
    """Kubernetes connection details."""

    kubeconfig_path: str = ""
    k8s_api_root: str = ""


@dataclass
class RangeConfiguration:
    """One range of addresses to allocate from."""

    range: str = ""
    omit_ranges: list[str] = field(default_factory=list)
    range_start: Optional[IPAddress] = None
    range_end: Optional[IPAddress] = None


@dataclass
class Address:
    """A static address with its optional gateway."""

    address_str: str = ""
    gateway: Optional[IPAddress] = None
    address: Optional[IPNetwork] = None
    version: str = ""


@dataclass
class IPReservation:
    """An address reserved by the plugin."""

    ip: Optional[IPAddress] = None
    container_id: str = ""
    pod_ref: str = ""
    is_allocated: bool = False

    def __str__(self) -> str:
        ip = "<nil>" if self.ip is None else str(self.ip)
        return f"IP: {ip} is reserved for pod: {self.pod_ref}"


@dataclass
class IPAMConfig:
    """The IPAM section of a network configuration."""

    name: str = ""
    type: str = ""
    routes: list[Optional[dict]] = field(default_factory=list)
    addresses: list[Address] = field(default_factory=list)
    ip_ranges: list[RangeConfiguration] = field(default_factory=list)
    omit_ranges: list[str] = field(default_factory=list)
    dns: dict = field(default_factory=dict)
    range: str = ""
    range_start: Optional[IPAddress] = None
    range_end: Optional[IPAddress] = None
    gateway_str: str = ""
    leader_lease_duration: int = 0
    leader_renew_deadline: int = 0
    leader_retry_period: int = 0
    log_file: str = ""
    log_level: str = ""
    reconciler_cron_expression: str = ""
    overlapping_ranges: bool = DEFAULT_OVERLAPPING_IPS_FEATURES
    sleep_for_race: int = DEFAULT_SLEEP_FOR_RACE
    gateway: Optional[IPAddress] = None
    kubernetes: KubernetesConfig = field(default_factory=KubernetesConfig)
    configuration_path: str = ""
    pod_name: str = ""
    pod_namespace: str = ""

    def pod_ref(self) -> str:
        """Return the "namespace/name" reference of the pod."""
        return f"{self.pod_namespace}/{self.pod_name}"


@dataclass
class Net:
    """A network configuration holding an IPAM section."""

    name: str = ""
    cni_version: str = ""
    ipam: Optional[IPAMConfig] = None


@dataclass
class NetConfList:
    """An ordered list of networks."""

    cni_version: str = ""
    name: str = ""
    disable_check: bool = False
    plugins: list[Net] = field(default_factory=list)


# Decoding: keys match exactly first, then case-insensitively in field order.

_KEEP = object()
_Converter = Callable[[Any, str], Any]


def _json_kind(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    return "object"


def _type_error(value: Any, key: str, expected: str) -> ValueError:
    return ValueError(f"cannot unmarshal {_json_kind(value)} into field {key} of type {expected}")


def _string(value: Any, key: str) -> Any:
    if value is None:
        return _KEEP
    if not isinstance(value, str):
        raise _type_error(value, key, "string")
    return value


def _integer(value: Any, key: str) -> Any:
    if value is None:
        return _KEEP
    if isinstance(value, bool) or not isinstance(value, int):
        raise _type_error(value, key, "int")
    return value


def _boolean(value: Any, key: str) -> Any:
    if value is None:
        return _KEEP
    if not isinstance(value, bool):
        raise _type_error(value, key, "bool")
    return value


def _raw_object(value: Any, key: str) -> Any:
    if value is None:
        return _KEEP
    if not isinstance(value, dict):
        raise _type_error(value, key, "object")
    return dict(value)


def _route(value: Any, key: str) -> Any:
    if value is None:
        return None
    if not isinstance(value, dict):
        raise _type_error(value, key, "Route")
    return dict(value)


def _strict_ip(value: Any, key: str) -> Any:
    if value is None:
        return None
    if not isinstance(value, str):
        raise _type_error(value, key, "IP")
    if not value:
        return None
    ip = _parse_ip(value, sloppy=False)
    if ip is None:
        raise ValueError(f"invalid IP address: {value}")
    return ip


def _mask(value: Any, key: str) -> Any:
    if value is None:
        return _KEEP
    if not isinstance(value, str):
        raise _type_error(value, key, "IPMask")
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as error:
        raise ValueError(f"illegal base64 data in field {key}") from error


def _prefix_length(mask: bytes) -> Optional[int]:
    total = len(mask) * 8
    bits = int.from_bytes(mask, "big")
    prefix = bin(bits).count("1")
    if bits != ((1 << prefix) - 1) << (total - prefix):
        return None
    return prefix


_IPNET_FIELDS: list = []


def _ip_net(value: Any, key: str) -> Any:
    if value is None:
        return _KEEP
    values = _decode_fields(value, _IPNET_FIELDS, "IPNet")
    ip = values.get("ip")
    mask = values.get("mask")
    if ip is None or mask is None:
        return _KEEP
    if ip.version == 4 and len(mask) == 16:
        mask = mask[12:]
    expected = 4 if ip.version == 4 else 16
    if len(mask) != expected:
        return _KEEP
    prefix = _prefix_length(mask)
    if prefix is None:
        return _KEEP
    return ipaddress.ip_network((ip, prefix), strict=False)


def _list_of(item: _Converter) -> _Converter:
    def convert(value: Any, key: str) -> Any:
        if value is None:
            return []
        if not isinstance(value, list):
            raise _type_error(value, key, "array")
        return [item(element, key) for element in value]

    return convert


def _string_item(value: Any, key: str) -> str:
    converted = _string(value, key)
    return "" if converted is _KEEP else converted


def _decode_fields(raw: Any, specs: list[tuple[str, Optional[str], _Converter]], what: str) -> dict:
    if not isinstance(raw, dict):
        raise ValueError(f"cannot unmarshal {_json_kind(raw)} into {what}")
    exact: dict[str, tuple] = {}
    folded: dict[str, tuple] = {}
    for spec in specs:
        exact.setdefault(spec[0], spec)
        folded.setdefault(spec[0].casefold(), spec)
    values: dict[str, Any] = {}
    for key, value in raw.items():
        spec = exact.get(key) or folded.get(key.casefold())
        if spec is None:
            continue
        json_name, attr, convert = spec
        converted = convert(value, json_name)
        if converted is not _KEEP and attr is not None:
            values[attr] = converted
    return values


_IPNET_FIELDS.extend([
    ("IP", "ip", _strict_ip),
    ("Mask", "mask", _mask),
])

_RANGE_FIELDS = [
    ("exclude", "omit_ranges", _list_of(_string_item)),
    ("range", "range", _string),
    ("range_start", "range_start", _strict_ip),
    ("range_end", "range_end", _strict_ip),
]

_ADDRESS_FIELDS = [
    ("address", "address_str", _string),
    ("gateway", "gateway", _strict_ip),
    ("Address", "address", _ip_net),
    ("Version", "version", _string),
]

_KUBERNETES_FIELDS = [
    ("kubeconfig", "kubeconfig_path", _string),
    ("k8s_api_root", "k8s_api_root", _string),
]


def _decode_range(value: Any, key: str) -> RangeConfiguration:
    if value is None:
        return RangeConfiguration()
    return RangeConfiguration(**_decode_fields(value, _RANGE_FIELDS, "RangeConfiguration"))


def _decode_address(value: Any, key: str) -> Address:
    if value is None:
        return Address()
    return Address(**_decode_fields(value, _ADDRESS_FIELDS, "Address"))


def _decode_kubernetes(value: Any, key: str) -> Any:
    if value is None:
        return _KEEP
    return KubernetesConfig(**_decode_fields(value, _KUBERNETES_FIELDS, "KubernetesConfig"))


_IPAM_FIELDS = [
    ("Name", "name", _string),
    ("type", "type", _string),
    ("routes", "routes", _list_of(_route)),
    ("datastore", None, _string),
    ("addresses", "addresses", _list_of(_decode_address)),
    ("ipRanges", "ip_ranges", _list_of(_decode_range)),
    ("exclude", "omit_ranges", _list_of(_string_item)),
    ("dns", "dns", _raw_object),
    ("range", "range", _string),
    ("range_start", "range_start", _string),
    ("range_end", "range_end", _string),
    ("gateway", "gateway_str", _string),
    ("etcd_host", None, _string),
    ("etcd_username", None, _string),
    ("etcd_password", None, _string),
    ("etcd_key_file", None, _string),
    ("etcd_cert_file", None, _string),
    ("etcd_ca_cert_file", None, _string),
    ("leader_lease_duration", "leader_lease_duration", _integer),
    ("leader_renew_deadline", "leader_renew_deadline", _integer),
    ("leader_retry_period", "leader_retry_period", _integer),
    ("log_file", "log_file", _string),
    ("log_level", "log_level", _string),
    ("reconciler_cron_expression", "reconciler_cron_expression", _string),
    ("enable_overlapping_ranges", "overlapping_ranges", _boolean),
    ("sleep_for_race", "sleep_for_race", _integer),
    ("Gateway", "gateway", _string),
    ("kubernetes", "kubernetes", _decode_kubernetes),
    ("configuration_path", "configuration_path", _string),
    ("PodName", "pod_name", _string),
    ("PodNamespace", "pod_namespace", _string),
]


def parse_ipam_config(data: Union[str, bytes, bytearray, dict]) -> IPAMConfig:
    """Decode an IPAM section from JSON text or an already decoded mapping.

    Unparseable start, end and gateway addresses become None; values of the
    wrong JSON type raise ValueError.
    """
    raw = json.loads(data) if isinstance(data, (str, bytes, bytearray)) else data
    values = _decode_fields(raw, _IPAM_FIELDS, "IPAMConfig")
    range_start = _backwards_compatible_ip(values.pop("range_start", ""))
    range_end = _backwards_compatible_ip(values.pop("range_end", ""))
    gateway = _backwards_compatible_ip(values.pop("gateway", ""))
    return IPAMConfig(range_start=range_start, range_end=range_end, gateway=gateway, **values)