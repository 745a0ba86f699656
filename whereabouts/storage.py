"""Storage abstractions shared by the datastore backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Union

from whereabouts.types import IPAddress, IPReservation, Operation

# How long, in seconds, a single request to the datastore may take.
REQUEST_TIMEOUT = 10.0

# How many times updating a pool is attempted.
DATASTORE_RETRIES = 100


class TemporaryError(Exception):
    """An error after which the operation may be retried."""

    def __init__(self, error: Union[BaseException, str]) -> None:
        super().__init__(str(error))
        self.error = error

    @property
    def temporary(self) -> bool:
        return True


def is_temporary(error: BaseException) -> bool:
    """Tell whether an error declares itself temporary."""
    flag = getattr(error, "temporary", False)
    if callable(flag):
        flag = flag()
    return bool(flag)


class IPPool(ABC):
    """A manageable pool of allocated addresses."""

    @abstractmethod
    def allocations(self) -> list[IPReservation]:
        """Return the reservations held in the pool."""

    @abstractmethod
    def update(self, reservations: list[IPReservation]) -> None:
        """Replace the pool's reservations."""


class OverlappingRangeStore(ABC):
    """Cluster-wide reservations shared by overlapping ranges."""

    @abstractmethod
    def is_allocated_in_overlapping_range(self, ip: IPAddress) -> bool:
        """Tell whether the address is reserved cluster-wide."""

    @abstractmethod
    def update_overlapping_range_allocation(
        self, mode: Operation, ip: IPAddress, container_id: str, pod_ref: str
    ) -> None:
        """Record or remove a cluster-wide reservation."""


class Store(ABC):
    """The basic allocation operations of a storage backend."""

    @abstractmethod
    def get_ip_pool(self, ip_range: str) -> IPPool:
        """Return the pool for a range."""

    @abstractmethod
    def get_overlapping_range_store(self) -> OverlappingRangeStore:
        """Return the cluster-wide reservation store."""

    @abstractmethod
    def status(self) -> None:
        """Raise if the backend cannot be reached."""

    @abstractmethod
    def close(self) -> None:
        """Release the backend's resources."""

    def __enter__(self) -> "Store":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()