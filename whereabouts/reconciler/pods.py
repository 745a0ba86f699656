"""Pods as the reconciler sees them: a reference and their secondary addresses."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from whereabouts.storage import IPPool

logger = logging.getLogger(__name__)

MULTUS_INTERFACE_NAME_PREFIX = "net"
MULTUS_NETWORK_ANNOTATION = "k8s.v1.cni.cncf.io/networks"
MULTUS_NETWORK_STATUS_ANNOTATION = "k8s.v1.cni.cncf.io/networks-status"

POD_PENDING = "Pending"


@dataclass(frozen=True)
class PodWrapper:
    """The secondary addresses of a live pod and its phase."""

    ips: frozenset[str] = field(default_factory=frozenset)
    phase: str = ""


def _metadata(pod: dict[str, Any]) -> dict[str, Any]:
    return pod.get("metadata") or {}


def compose_pod_ref(pod: dict[str, Any]) -> str:
    """Return the "namespace/name" reference of a pod."""
    metadata = _metadata(pod)
    return f"{metadata.get('namespace', '')}/{metadata.get('name', '')}"


def network_status_from_pod(pod: dict[str, Any]) -> str:
    """Return the pod's network-status annotation, or an empty JSON list."""
    annotations = _metadata(pod).get("annotations") or {}
    value = annotations.get(MULTUS_NETWORK_STATUS_ANNOTATION)
    if not value:
        return "[]"
    return value


def get_flat_ip_set(pod: dict[str, Any]) -> set[str]:
    """Return the addresses of the pod's secondary interfaces.

    Raises ValueError if the network-status annotation cannot be parsed.
    """
    annotation = network_status_from_pod(pod)
    try:
        statuses = json.loads(annotation)
    except ValueError as error:
        raise ValueError(
            f"could not parse network annotation {annotation} for pod: {compose_pod_ref(pod)}; error: {error}"
        ) from error
    if statuses is None:
        statuses = []
    if not isinstance(statuses, list) or not all(isinstance(s, dict) or s is None for s in statuses):
        raise ValueError(
            f"could not parse network annotation {annotation} for pod: {compose_pod_ref(pod)}; "
            "error: not a list of network statuses"
        )

    ip_set: set[str] = set()
    for status in statuses:
        # Only the secondary interfaces are of interest.
        if not status or status.get("default"):
            continue
        ips = status.get("ips") or []
        if not isinstance(ips, list) or not all(isinstance(ip, str) for ip in ips):
            raise ValueError(
                f"could not parse network annotation {annotation} for pod: {compose_pod_ref(pod)}; "
                "error: ips must be a list of strings"
            )
        for ip in ips:
            ip_set.add(ip)
            logger.debug("Added IP %s for pod %s", ip, compose_pod_ref(pod))
    return ip_set


def wrap_pod(pod: dict[str, Any]) -> PodWrapper:
    """Wrap a pod; an unparseable annotation gives no addresses."""
    try:
        ips = get_flat_ip_set(pod)
    except ValueError as error:
        logger.error("%s", error)
        ips = set()
    phase = (pod.get("status") or {}).get("phase", "")
    return PodWrapper(ips=frozenset(ips), phase=phase)


def get_pod_refs_served_by_whereabouts(ip_pools: Iterable[IPPool]) -> set[str]:
    """Return the references of every pod holding an address in the pools."""
    return {reservation.pod_ref for pool in ip_pools for reservation in pool.allocations()}


def index_pods(pods: Iterable[dict[str, Any]], whereabouts_pod_refs: set[str]) -> dict[str, PodWrapper]:
    """Index the pods served by the plugin by their reference."""
    return {
        compose_pod_ref(pod): wrap_pod(pod)
        for pod in pods
        if compose_pod_ref(pod) in whereabouts_pod_refs
    }