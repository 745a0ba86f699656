"""Finds and releases addresses held by pods that no longer exist."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from whereabouts.kubernetes.client import KubernetesClient
from whereabouts.reconciler.pods import (
    POD_PENDING,
    PodWrapper,
    get_pod_refs_served_by_whereabouts,
    index_pods,
)
from whereabouts.storage import IPPool
from whereabouts.types import IPAddress, IPReservation

logger = logging.getLogger(__name__)

DEFAULT_RECONCILER_TIMEOUT = 30


@dataclass
class OrphanedIPReservations:
    """The reservations of a pool whose pods are gone."""

    pool: IPPool
    allocations: list[IPReservation] = field(default_factory=list)


def _match_by_pod_ref(reservations: list[IPReservation], pod_ref: str) -> int:
    return next((index for index, r in enumerate(reservations) if r.pod_ref == pod_ref), -1)


def _iterate_for_deallocation(
    reservations: list[IPReservation],
    pod_ref: str,
    match: Callable[[list[IPReservation], str], int],
) -> tuple[list[IPReservation], Optional[IPAddress]]:
    index = match(reservations, pod_ref)
    if index < 0:
        raise ValueError(f"did not find reserved IP for container {pod_ref}")
    remaining = reservations[:index] + reservations[index + 1:]
    return remaining, reservations[index].ip


@dataclass
class ReconcileLooper:
    """The orphaned reservations found in one look at the cluster."""

    client: Optional[KubernetesClient] = None
    live_whereabouts_pods: dict[str, PodWrapper] = field(default_factory=dict)
    orphaned_ips: list[OrphanedIPReservations] = field(default_factory=list)
    orphaned_cluster_wide_ips: list[dict[str, Any]] = field(default_factory=list)
    request_timeout: float = DEFAULT_RECONCILER_TIMEOUT

    def is_pod_alive(self, pod_ref: str, ip: str) -> bool:
        """Tell whether the pod exists and holds the address, or is still pending."""
        live_pod = self.live_whereabouts_pods.get(pod_ref)
        if live_pod is None:
            return False
        logger.debug(
            "pod reference %s matches allocation; Allocation IP: %s; PodIPs: %s",
            pod_ref,
            ip,
            sorted(live_pod.ips),
        )
        return ip in live_pod.ips or live_pod.phase == POD_PENDING

    def _find_orphaned_ips_per_pool(self, ip_pools: list[IPPool]) -> None:
        for pool in ip_pools:
            orphaned = OrphanedIPReservations(pool=pool)
            for reservation in pool.allocations():
                logger.debug("the IP reservation: %s", reservation)
                if not reservation.pod_ref:
                    logger.error("pod ref missing for Allocations: %s", reservation)
                    continue
                if not self.is_pod_alive(reservation.pod_ref, str(reservation.ip)):
                    logger.debug("pod ref %s is not listed in the live pods list", reservation.pod_ref)
                    orphaned.allocations.append(reservation)
            if orphaned.allocations:
                self.orphaned_ips.append(orphaned)

    def _find_cluster_wide_ip_reservations(self) -> None:
        if self.client is None:
            raise RuntimeError("no cluster client to list cluster wide reservations with")
        for reservation in self.client.list_overlapping_ips():
            ip = (reservation.get("metadata") or {}).get("name", "")
            pod_ref = (reservation.get("spec") or {}).get("podref", "")
            if not self.is_pod_alive(pod_ref, ip):
                logger.debug("pod ref %s is not listed in the live pods list", pod_ref)
                self.orphaned_cluster_wide_ips.append(reservation)

    def reconcile_ip_pools(self) -> list[Optional[IPAddress]]:
        """Remove the orphaned reservations from their pools; return the freed addresses."""
        cleaned_up: list[Optional[IPAddress]] = []
        for orphaned in self.orphaned_ips:
            current = orphaned.pool.allocations()
            deallocated: Optional[IPAddress] = None
            for allocation in orphaned.allocations:
                current, deallocated = _iterate_for_deallocation(current, allocation.pod_ref, _match_by_pod_ref)

            logger.debug("Going to update the reserve list to: %s", current)
            try:
                orphaned.pool.update(current)
            except Exception as error:
                logger.error("failed to update the reservation list: %s", error)
                raise
            cleaned_up.append(deallocated)
        return cleaned_up

    def reconcile_overlapping_ip_addresses(self) -> None:
        """Delete the orphaned cluster-wide reservations, raising if any remain."""
        failed: list[str] = []
        for reservation in self.orphaned_cluster_wide_ips:
            name = (reservation.get("metadata") or {}).get("name", "")
            try:
                if self.client is None:
                    raise RuntimeError("no cluster client")
                self.client.delete_overlapping_ip(reservation)
            except Exception as error:
                logger.error("failed to remove cluster wide IP: %s (%s)", name, error)
                failed.append(name)
                continue
            logger.info("removed stale overlappingIP allocation [%s]", name)
        if failed:
            raise RuntimeError(f"could not reconcile cluster wide IPs: [{' '.join(failed)}]")


def new_reconcile_looper(client: KubernetesClient, timeout: float = DEFAULT_RECONCILER_TIMEOUT) -> ReconcileLooper:
    """Look at the cluster and collect the reservations of pods that are gone."""
    try:
        ip_pools = client.list_ip_pools()
    except Exception as error:
        logger.error("failed to retrieve all IP pools: %s", error)
        raise
    pods = client.list_pods()

    looper = ReconcileLooper(
        client=client,
        live_whereabouts_pods=index_pods(pods, get_pod_refs_served_by_whereabouts(ip_pools)),
        request_timeout=timeout,
    )
    looper._find_orphaned_ips_per_pool(ip_pools)
    looper._find_cluster_wide_ip_reservations()
    return looper


def reconcile_ips(client: KubernetesClient, timeout: float = DEFAULT_RECONCILER_TIMEOUT) -> list[Optional[IPAddress]]:
    """Run one reconciliation; return the addresses freed from the pools."""
    logger.info("starting reconciler run")
    try:
        looper = new_reconcile_looper(client, timeout)
    except Exception as error:
        logger.error("failed to create the reconcile looper: %s", error)
        raise
    try:
        cleaned_up = looper.reconcile_ip_pools()
    except Exception as error:
        logger.error("failed to clean up IP for allocations: %s", error)
        raise
    if cleaned_up:
        logger.debug("successfully cleanup IPs: %s", cleaned_up)
    else:
        logger.debug("no IP addresses to cleanup")
    looper.reconcile_overlapping_ip_addresses()
    return cleaned_up