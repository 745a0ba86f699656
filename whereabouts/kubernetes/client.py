"""A client for the cluster resources the reconciler reads and cleans."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from whereabouts.kubernetes.api import CoreAPI, WhereaboutsAPI
from whereabouts.kubernetes.pool import KubernetesIPPool, parse_pool_cidr
from whereabouts.storage import DATASTORE_RETRIES, REQUEST_TIMEOUT

logger = logging.getLogger(__name__)


@dataclass
class KubernetesClient:
    """Reads pools, pods and cluster-wide reservations; a zero timeout means the default."""

    whereabouts: WhereaboutsAPI
    core: CoreAPI
    timeout: float = 0.0
    retries: int = field(default=DATASTORE_RETRIES, init=False)

    def __post_init__(self) -> None:
        if not self.timeout:
            self.timeout = REQUEST_TIMEOUT

    def list_ip_pools(self) -> list[KubernetesIPPool]:
        """Return the pools of every namespace."""
        logger.debug("listing IP pools")
        pools = []
        for pool in self.whereabouts.list_ip_pools(""):
            first_ip, _ = parse_pool_cidr(pool)
            pools.append(KubernetesIPPool(self.whereabouts, "", first_ip, pool))
        return pools

    def list_pods(self) -> list[dict[str, Any]]:
        """Return the pods of every namespace."""
        return self.core.list_pods("")

    def list_overlapping_ips(self) -> list[dict[str, Any]]:
        """Return the cluster-wide reservations of every namespace."""
        return self.whereabouts.list_overlapping_reservations("")

    def delete_overlapping_ip(self, reservation: dict[str, Any]) -> None:
        """Delete a cluster-wide reservation."""
        metadata = reservation.get("metadata", {})
        self.whereabouts.delete_overlapping_reservation(metadata.get("namespace", ""), metadata.get("name", ""))