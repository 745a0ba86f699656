import ipaddress
import json

import pytest

from whereabouts.kubernetes.api import CoreAPI, WhereaboutsAPI
from whereabouts.kubernetes.client import KubernetesClient
from whereabouts.reconciler.looper import (
    OrphanedIPReservations,
    ReconcileLooper,
    new_reconcile_looper,
    reconcile_ips,
)
from whereabouts.reconciler.pods import (
    MULTUS_NETWORK_ANNOTATION,
    MULTUS_NETWORK_STATUS_ANNOTATION,
    PodWrapper,
)
from whereabouts.storage import IPPool
from whereabouts.types import IPReservation

FIRST_IP = "10.10.10.1"
SECOND_IP = "10.10.10.2"
THIRD_IP = "10.10.10.3"
IP_RANGE = "10.10.10.0/16"
NAMESPACE = "default"
NETWORK = "net1"
TIMEOUT = 10


def ip(text):
    return ipaddress.ip_address(text)


def generate_pod(namespace, name, *ip_networks, phase="Running"):
    statuses = [
        {"name": network, "interface": f"net{i + 1}", "ips": [address]}
        for i, (address, network) in enumerate(ip_networks)
    ]
    return {
        "metadata": {
            "name": name,
            "namespace": namespace,
            "annotations": {
                MULTUS_NETWORK_ANNOTATION: ",".join(network for _, network in ip_networks),
                MULTUS_NETWORK_STATUS_ANNOTATION: json.dumps(statuses or None),
            },
        },
        "status": {"phase": phase},
    }


def generate_ip_pool_spec(ip_range, namespace, pool_name, *pod_names):
    allocations = {str(i + 1): {"podref": f"{namespace}/{name}"} for i, name in enumerate(pod_names)}
    return {
        "metadata": {"namespace": namespace, "name": pool_name, "resourceVersion": "1"},
        "spec": {"range": ip_range, "allocations": allocations},
    }


def generate_cluster_wide_reservation(namespace, address, owner_pod_ref):
    return {"metadata": {"namespace": namespace, "name": address}, "spec": {"podref": owner_pod_ref}}


def make_client(wb_api, core_api):
    return KubernetesClient(wb_api, core_api, TIMEOUT)


def test_single_pod_dies_reports_deleted_ip():
    pod = generate_pod(NAMESPACE, "pod1", (FIRST_IP, NETWORK))
    core = CoreAPI([pod])
    wb = WhereaboutsAPI([generate_ip_pool_spec(IP_RANGE, NAMESPACE, "pool1", "pod1")])
    core.delete_pod(NAMESPACE, "pod1")
    looper = new_reconcile_looper(make_client(wb, core), TIMEOUT)
    assert looper.reconcile_ip_pools() == [ip("10.10.10.1")]


def test_single_pod_dies_pool_is_emptied():
    pod = generate_pod(NAMESPACE, "pod1", (FIRST_IP, NETWORK))
    core = CoreAPI([pod])
    wb = WhereaboutsAPI([generate_ip_pool_spec(IP_RANGE, NAMESPACE, "pool1", "pod1")])
    core.delete_pod(NAMESPACE, "pod1")
    looper = new_reconcile_looper(make_client(wb, core), TIMEOUT)
    looper.reconcile_ip_pools()
    assert wb.get_ip_pool(NAMESPACE, "pool1")["spec"]["allocations"] == {}


def _multiple_pods_setup():
    pods = [
        generate_pod(NAMESPACE, "pod1", (FIRST_IP, NETWORK)),
        generate_pod(NAMESPACE, "pod2", (SECOND_IP, NETWORK)),
    ]
    core = CoreAPI([pods[1]])
    wb = WhereaboutsAPI([generate_ip_pool_spec(IP_RANGE, NAMESPACE, "pool1", "pod1", "pod2")])
    return wb, core


def test_multiple_pods_reports_dead_pod_ip():
    wb, core = _multiple_pods_setup()
    looper = new_reconcile_looper(make_client(wb, core), TIMEOUT)
    assert looper.reconcile_ip_pools() == [ip("10.10.10.1")]


def test_multiple_pods_pool_keeps_live_reservation():
    wb, core = _multiple_pods_setup()
    looper = new_reconcile_looper(make_client(wb, core), TIMEOUT)
    assert looper.reconcile_ip_pools()
    allocations = wb.get_ip_pool(NAMESPACE, "pool1")["spec"]["allocations"]
    assert allocations == {"2": {"id": "", "podref": f"{NAMESPACE}/pod2"}}


def _overlapping_setup():
    ips = [FIRST_IP, SECOND_IP, THIRD_IP]
    networks = ["network1", "network2"]
    pods = [generate_pod(NAMESPACE, f"pod{i + 1}", (ips[i], networks[i % 2])) for i in range(3)]
    core = CoreAPI(pods)
    wb = WhereaboutsAPI(
        [
            generate_ip_pool_spec("10.10.10.0/16", NAMESPACE, "pool1", "pod1", "pod3"),
            generate_ip_pool_spec("10.10.10.0/24", NAMESPACE, "pool2", "pod2"),
        ]
    )
    for i in range(3):
        wb.create_overlapping_reservation(
            NAMESPACE, generate_cluster_wide_reservation(NAMESPACE, ips[i], f"{NAMESPACE}/pod{i + 1}")
        )
    return wb, core


def test_overlapping_orphaned_ip_is_deleted():
    wb, core = _overlapping_setup()
    core.delete_pod(NAMESPACE, "pod1")
    looper = new_reconcile_looper(make_client(wb, core), TIMEOUT)
    looper.reconcile_overlapping_ip_addresses()
    remaining = wb.list_overlapping_reservations(NAMESPACE)
    assert len(remaining) == 2
    assert {r["metadata"]["name"] for r in remaining} == {SECOND_IP, THIRD_IP}


def test_overlapping_delete_failure_raises():
    looper = ReconcileLooper(
        client=make_client(WhereaboutsAPI(), CoreAPI()),
        orphaned_cluster_wide_ips=[generate_cluster_wide_reservation(NAMESPACE, "10.1.1.1", "default/x")],
    )
    with pytest.raises(RuntimeError, match=r"could not reconcile cluster wide IPs: \[10.1.1.1\]"):
        looper.reconcile_overlapping_ip_addresses()


def test_pending_pod_cannot_be_reconciled():
    core = CoreAPI()
    core.create_pod(NAMESPACE, generate_pod(NAMESPACE, "pod1", phase="Pending"))
    wb = WhereaboutsAPI([generate_ip_pool_spec(IP_RANGE, NAMESPACE, "pool1", "pod1")])
    looper = new_reconcile_looper(make_client(wb, core), TIMEOUT)
    assert looper.reconcile_ip_pools() == []


def test_reconcile_ips_end_to_end():
    wb, core = _overlapping_setup()
    core.delete_pod(NAMESPACE, "pod1")
    assert reconcile_ips(make_client(wb, core), TIMEOUT) == [ip("10.10.10.1")]
    assert wb.get_ip_pool(NAMESPACE, "pool1")["spec"]["allocations"] == {"2": {"podref": f"{NAMESPACE}/pod3"}}
    assert len(wb.list_overlapping_reservations(NAMESPACE)) == 2


def test_is_pod_alive():
    looper = ReconcileLooper(
        live_whereabouts_pods={
            "ns/running": PodWrapper(ips=frozenset({"10.0.0.1"}), phase="Running"),
            "ns/pending": PodWrapper(ips=frozenset(), phase="Pending"),
        }
    )
    assert looper.is_pod_alive("ns/running", "10.0.0.1") is True
    assert looper.is_pod_alive("ns/running", "10.0.0.2") is False
    assert looper.is_pod_alive("ns/pending", "10.0.0.9") is True
    assert looper.is_pod_alive("ns/missing", "10.0.0.1") is False


class DummyPool(IPPool):
    def __init__(self, orphans):
        self.orphans = orphans
        self.updated = None

    def allocations(self):
        return list(self.orphans)

    def update(self, reservations):
        self.updated = list(reservations)


def reservation(address, pod_ref):
    return [IPReservation(ip=ip(address), pod_ref=pod_ref)]


def test_no_ips_to_reconcile():
    assert ReconcileLooper().reconcile_ip_pools() == []


def test_deletes_orphaned_ip():
    reservations = reservation("192.168.14.1", "default/pod1")
    pool = DummyPool(reservations)
    looper = ReconcileLooper(orphaned_ips=[OrphanedIPReservations(pool=pool, allocations=reservations)])
    assert looper.reconcile_ip_pools() == [ip("192.168.14.1")]
    assert pool.updated == []


def test_deletes_only_orphaned_ip():
    reservations = reservation("192.168.14.2", "default/pod2")
    looper = ReconcileLooper(
        orphaned_ips=[OrphanedIPReservations(pool=DummyPool(reservations), allocations=reservations)]
    )
    assert looper.reconcile_ip_pools() == [ip("192.168.14.2")]


def test_owner_mismatch_raises():
    pool_reservations = reservation("192.168.14.1", "default/pod1")
    errored = reservation("192.168.14.1", "default/pod2")
    looper = ReconcileLooper(
        orphaned_ips=[OrphanedIPReservations(pool=DummyPool(pool_reservations), allocations=errored)]
    )
    with pytest.raises(ValueError, match="did not find reserved IP for container default/pod2"):
        looper.reconcile_ip_pools()