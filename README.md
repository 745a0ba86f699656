# whereabouts

Building blocks for IP address management on Kubernetes secondary networks:
the IPAM configuration model, IP pools stored as cluster resources,
cluster-wide reservations for overlapping ranges, and a reconciler that
releases addresses still held by pods that no longer exist.

## What is in the package

- `whereabouts.types` – the configuration model (`IPAMConfig`,
  `RangeConfiguration`, `Address`, `KubernetesConfig`, `Net`, `NetConfList`),
  `IPReservation`, the `Operation` enum (`ALLOCATE`, `DEALLOCATE`),
  `parse_ipam_config` and `sanitize_ip`.
- `whereabouts.version` – version strings built from release metadata.
- `whereabouts.storage` – the storage interfaces (`IPPool`, `Store`,
  `OverlappingRangeStore`), `TemporaryError` for retryable failures and
  `is_temporary`.
- `whereabouts.kubernetes.api` – `WhereaboutsAPI` (IP pools and
  cluster-wide reservations) and `CoreAPI` (pods), holding resources as
  JSON-shaped dictionaries, with `ApiError`, `NotFoundError`,
  `AlreadyExistsError` and `InvalidError`.
- `whereabouts.kubernetes.pool` – `KubernetesIPPool` and the helpers that
  convert between offsets and addresses (`ip_add_offset`, `ip_get_offset`,
  `to_ip_reservation_list`, `to_allocation_map`, `normalize_range`,
  `parse_pool_cidr`, `create_allocations_patch`).
- `whereabouts.kubernetes.client` – `KubernetesClient`, which lists pools,
  pods and cluster-wide reservations and deletes reservations.
- `whereabouts.kubernetes.ipam` – `KubernetesIPAM` (a `Store`) and
  `KubernetesOverlappingRangeStore`, with `normalize_ip` and
  `namespace_from_context`.
- `whereabouts.reconciler.pods` – `PodWrapper` and the functions that read a
  pod's secondary addresses from its network-status annotation.
- `whereabouts.reconciler.looper` – `ReconcileLooper`,
  `OrphanedIPReservations`, `new_reconcile_looper` and `reconcile_ips`.

## Reading a configuration

```python
from whereabouts.types import parse_ipam_config

config = parse_ipam_config("""
{
  "type": "whereabouts",
  "range": "192.168.2.225/28",
  "exclude": ["192.168.2.229/30"],
  "PodName": "pod1",
  "PodNamespace": "default"
}
""")
print(config.pod_ref())             # default/pod1
print(config.overlapping_ranges)    # True (the default)
```

`parse_ipam_config` takes JSON text or an already decoded mapping. Keys match
exactly first, then case-insensitively. Addresses in `range_start`,
`range_end` and `gateway` that cannot be parsed become `None`; values of the
wrong JSON type raise `ValueError`.

`sanitize_ip` parses a single address, accepting IPv4 octets with leading
zeros, and raises `ValueError` on anything it cannot parse.

## Pools and resource names

A pool resource keeps its allocations keyed by the offset from the address
written in its range:

```python
from whereabouts.kubernetes.api import WhereaboutsAPI
from whereabouts.kubernetes.pool import KubernetesIPPool, parse_pool_cidr

pool = {
    "metadata": {"name": "pool1", "namespace": "default"},
    "spec": {
        "range": "10.10.10.0/16",
        "allocations": {"1": {"id": "", "podref": "default/pod1"}},
    },
}
api = WhereaboutsAPI(ip_pools=[pool])
stored = api.get_ip_pool("default", "pool1")
first_ip, _ = parse_pool_cidr(stored)
ip_pool = KubernetesIPPool(api, "", first_ip, stored)
print(ip_pool.allocations()[0].ip)   # 10.10.10.1
ip_pool.update([])                   # removes the allocation
```

`KubernetesIPPool.update` sends a JSON patch guarded by a test of the
resource version (and by tests that every added path is empty). If the pool
changed in the meantime the patch fails and `update` raises
`TemporaryError`, so the caller can read the pool again and retry.

Names are derived from ranges and addresses so that they are valid resource
names:

```python
import ipaddress
from whereabouts.kubernetes.pool import normalize_range
from whereabouts.kubernetes.ipam import normalize_ip

normalize_range("10.10.10.0/16")                  # "10.10.10.0-16"
normalize_ip(ipaddress.ip_address("fd00::1"))     # "fd00--1"
```

`KubernetesIPAM.get_ip_pool` creates a missing pool and raises
`TemporaryError`; the next call returns it.

## Reconciling stale addresses

The reconciler lists the pools, the pods and the cluster-wide reservations,
and releases every address whose owning pod no longer exists. A pod that
still exists keeps its address if that address is among the secondary
addresses in its network-status annotation, or if it is still `Pending`.

```python
from whereabouts.kubernetes.api import CoreAPI, WhereaboutsAPI
from whereabouts.kubernetes.client import KubernetesClient
from whereabouts.reconciler.looper import new_reconcile_looper

client = KubernetesClient(WhereaboutsAPI(ip_pools=[pool]), CoreAPI(pods=[]), 10)
looper = new_reconcile_looper(client, 30)
released = looper.reconcile_ip_pools()       # [IPv4Address('10.10.10.1')]
looper.reconcile_overlapping_ip_addresses()
```

`reconcile_ips(client, timeout)` runs the whole pass in one call and returns
the released addresses. `reconcile_overlapping_ip_addresses` raises
`RuntimeError` naming any reservations it could not delete.

## Versions

```python
from whereabouts.version import get_full_version, get_version

get_full_version("v0.5.4", "abc123", "dirty", "unreleased")
# "v0.5.4-abc123.dirty"
get_version("v0.5.4")   # Version(major=0, minor=5, patch=4, ...)
```

Released builds report the bare version; an empty version reports
`UNKNOWN`. `get_full_version_with_runtime_info` appends `<os>/<arch>`.

## What the package does not do

- It does not talk to a real cluster. `WhereaboutsAPI` and `CoreAPI` keep
  resources in memory; there is no kubeconfig loading and no HTTP access to
  an API server. `KubernetesClient` works with whatever API objects it is
  given.
- It does not choose addresses. There is no allocation algorithm that picks
  a free address from a range, no allocation retry loop and no leader
  election; `KubernetesIPAM` and `KubernetesOverlappingRangeStore` provide
  the storage operations such a loop would use.
- It has no command-line program and no scheduled reconciler; the
  reconciler runs when `reconcile_ips` is called.

## Running the tests

Install the `test` extra and run `pytest` from the project root.