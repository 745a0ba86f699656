"""The cluster-resource backend of the IPAM store."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from whereabouts.kubernetes.api import AlreadyExistsError, ApiError, WhereaboutsAPI, is_not_found
from whereabouts.kubernetes.client import KubernetesClient
from whereabouts.kubernetes.pool import KubernetesIPPool, normalize_range, parse_pool_cidr
from whereabouts.storage import OverlappingRangeStore, Store, TemporaryError
from whereabouts.types import IPAddress, IPAMConfig, Operation

logger = logging.getLogger(__name__)

NAMESPACE_SYSTEM = "kube-system"


def normalize_ip(ip: Optional[IPAddress]) -> str:
    """Turn an address into a valid resource name."""
    text = "<nil>" if ip is None else str(ip)
    return text.replace(":", "-")


def namespace_from_context(context: dict[str, Any]) -> str:
    """Return the namespace of a kubeconfig context, defaulting to the system one."""
    return context.get("namespace") or NAMESPACE_SYSTEM


@dataclass
class KubernetesOverlappingRangeStore(OverlappingRangeStore):
    """Cluster-wide reservations kept as resources named after the address."""

    api: WhereaboutsAPI
    container_id: str
    namespace: str

    def is_allocated_in_overlapping_range(self, ip: IPAddress) -> bool:
        name = normalize_ip(ip)
        logger.debug("OverlappingRangewide allocation check for IP: %s", name)
        try:
            self.api.get_overlapping_reservation(self.namespace, name)
        except ApiError as error:
            if is_not_found(error):
                return False
            logger.error("k8s get OverlappingRangeIPReservation error: %s", error)
            raise ApiError(f"k8s get OverlappingRangeIPReservation error: {error}") from error
        logger.debug("IP %s is reserved cluster wide.", ip)
        return True

    def update_overlapping_range_allocation(
        self, mode: Operation, ip: IPAddress, container_id: str, pod_ref: str
    ) -> None:
        name = normalize_ip(ip)
        if mode == Operation.ALLOCATE:
            reservation = {
                "metadata": {"name": name, "namespace": self.namespace},
                "spec": {"containerid": container_id, "podref": pod_ref},
            }
            self.api.create_overlapping_reservation(self.namespace, reservation)
        elif mode == Operation.DEALLOCATE:
            self.api.delete_overlapping_reservation(self.namespace, name)
        logger.debug("K8s UpdateOverlappingRangeAllocation success on %s: %s", mode, name)


@dataclass
class KubernetesIPAM(Store):
    """Manages IP pools held as cluster resources."""

    client: KubernetesClient
    config: IPAMConfig
    container_id: str
    namespace: str

    def _get_pool(self, name: str, ip_range: str) -> dict[str, Any]:
        api = self.client.whereabouts
        try:
            return api.get_ip_pool(self.namespace, name)
        except ApiError as error:
            if not is_not_found(error):
                raise ApiError(f"k8s get error: {error}") from error
        new_pool = {
            "metadata": {"name": name, "namespace": self.namespace},
            "spec": {"range": ip_range, "allocations": {}},
        }
        try:
            api.create_ip_pool(self.namespace, new_pool)
        except AlreadyExistsError as error:
            raise TemporaryError(error) from error
        except ApiError as error:
            raise ApiError(f"k8s create error: {error}") from error
        # A fresh pool is read again on the next attempt, with its metadata filled in.
        raise TemporaryError("k8s pool initialized")

    def get_ip_pool(self, ip_range: str) -> KubernetesIPPool:
        """Return the pool for a range, creating it (and failing temporarily) if missing."""
        pool = self._get_pool(normalize_range(ip_range), ip_range)
        first_ip, _ = parse_pool_cidr(pool)
        return KubernetesIPPool(self.client.whereabouts, self.container_id, first_ip, pool)

    def status(self) -> None:
        """Raise if the pools cannot be listed."""
        self.client.whereabouts.list_ip_pools(self.namespace)

    def close(self) -> None:
        """Nothing to release."""

    def get_overlapping_range_store(self) -> KubernetesOverlappingRangeStore:
        return KubernetesOverlappingRangeStore(self.client.whereabouts, self.container_id, self.namespace)