"""IP pools kept as cluster resources."""

from __future__ import annotations

import copy
import ipaddress
import logging
import re
from dataclasses import dataclass
from typing import Any

from whereabouts.kubernetes.api import InvalidError, JSONPatch, WhereaboutsAPI
from whereabouts.storage import IPPool, TemporaryError
from whereabouts.types import IPAddress, IPNetwork, IPReservation

logger = logging.getLogger(__name__)

_OFFSET = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


def ip_add_offset(ip: IPAddress, offset: int) -> IPAddress:
    """Return the address ``offset`` places after ``ip``."""
    if offset < 0:
        raise ValueError(f"negative offset: {offset}")
    return type(ip)(int(ip) + offset)


def ip_get_offset(ip: IPAddress, first_ip: IPAddress) -> int:
    """Return how many places ``ip`` lies after ``first_ip``."""
    if ip.version != first_ip.version:
        raise ValueError(f"{ip} and {first_ip} are of different address families")
    offset = int(ip) - int(first_ip)
    if offset < 0:
        raise ValueError(f"{ip} lies before {first_ip}")
    return offset


def parse_pool_cidr(pool: dict[str, Any]) -> tuple[IPAddress, IPNetwork]:
    """Return the address written in the pool's range and its network."""
    text = pool.get("spec", {}).get("range", "")
    if not isinstance(text, str) or "/" not in text:
        raise ValueError(f"invalid CIDR address: {text}")
    try:
        interface = ipaddress.ip_interface(text)
    except ValueError:
        raise ValueError(f"invalid CIDR address: {text}") from None
    return interface.ip, interface.network


def normalize_range(ip_range: str) -> str:
    """Turn a range into a valid resource name."""
    return ip_range.replace(":", "-").replace("/", "-")


def _parse_offset(text: str) -> int:
    if not _OFFSET.fullmatch(text):
        raise ValueError(f'parsing "{text}": invalid syntax')
    value = int(text)
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise ValueError(f'parsing "{text}": value out of range')
    if value < 0:
        raise ValueError(f'parsing "{text}": negative offset')
    return value


def to_ip_reservation_list(allocations: dict[str, Any], first_ip: IPAddress) -> list[IPReservation]:
    """Decode a pool's allocations, skipping offsets that are not integers."""
    entries = []
    for key, allocation in allocations.items():
        try:
            offset = _parse_offset(key)
        except ValueError as error:
            logger.error("Error decoding ip offset (backend: kubernetes): %s", error)
            continue
        entries.append((offset, allocation or {}))
    entries.sort(key=lambda entry: entry[0])
    return [
        IPReservation(
            ip=ip_add_offset(first_ip, offset),
            container_id=allocation.get("id", ""),
            pod_ref=allocation.get("podref", ""),
        )
        for offset, allocation in entries
    ]


def to_allocation_map(reservations: list[IPReservation], first_ip: IPAddress) -> dict[str, dict[str, str]]:
    """Encode reservations as a pool's allocations, keyed by offset."""
    allocations: dict[str, dict[str, str]] = {}
    for reservation in reservations:
        if reservation.ip is None:
            raise ValueError(f"reservation without an address: {reservation}")
        allocation = {"id": reservation.container_id}
        if reservation.pod_ref:
            allocation["podref"] = reservation.pod_ref
        allocations[str(ip_get_offset(reservation.ip, first_ip))] = allocation
    return allocations


def _escape(token: str) -> str:
    return token.replace("~", "~0").replace("/", "~1")


def _diff(original: Any, modified: Any, path: str, operations: JSONPatch) -> None:
    if isinstance(original, dict) and isinstance(modified, dict):
        for key in sorted(original):
            child = f"{path}/{_escape(key)}"
            if key not in modified:
                operations.append({"op": "remove", "path": child})
            else:
                _diff(original[key], modified[key], child, operations)
        for key in sorted(modified.keys() - original.keys()):
            operations.append({"op": "add", "path": f"{path}/{_escape(key)}", "value": copy.deepcopy(modified[key])})
    elif type(original) is not type(modified) or original != modified:
        operations.append({"op": "replace", "path": path, "value": copy.deepcopy(modified)})


def create_allocations_patch(original: dict[str, Any], modified: dict[str, Any]) -> JSONPatch:
    """Return the JSON patch that turns ``original`` into ``modified``."""
    operations: JSONPatch = []
    _diff(original, modified, "", operations)
    return operations


@dataclass
class KubernetesIPPool(IPPool):
    """A pool resource together with its parsed first address."""

    api: WhereaboutsAPI
    container_id: str
    first_ip: IPAddress
    pool: dict[str, Any]

    def allocations(self) -> list[IPReservation]:
        """Return the allocations as they were when the pool was read."""
        return to_ip_reservation_list(self.pool.get("spec", {}).get("allocations") or {}, self.first_ip)

    def update(self, reservations: list[IPReservation]) -> None:
        """Replace the allocations, failing temporarily if the pool changed meanwhile."""
        original = copy.deepcopy(self.pool)
        self.pool.setdefault("spec", {})["allocations"] = to_allocation_map(reservations, self.first_ip)
        patch = create_allocations_patch(original, self.pool)

        metadata = original.get("metadata", {})
        operations: JSONPatch = [
            {"op": "test", "path": "/metadata/resourceVersion", "value": metadata.get("resourceVersion", "")}
        ]
        # "add" would overwrite an entry written concurrently; require the path to be empty.
        operations += [{"op": "test", "path": op["path"], "value": None} for op in patch if op["op"] == "add"]
        operations += patch

        try:
            self.api.patch_ip_pool(metadata.get("namespace", ""), metadata.get("name", ""), operations)
        except InvalidError as error:
            raise TemporaryError(error) from error