# tests/k8s/test_network.py
import pytest

from rookcsi.k8s.client import ClusterAPIError
from rookcsi.k8s.network import CephClusterNetworkInventory, NetworkDeclaration


def test_declarations_from_ceph_clusters(cluster):
    cluster.add({
        "apiVersion": "ceph.rook.io/v1", "kind": "CephCluster",
        "metadata": {"name": "a", "namespace": "rook-ceph"},
        "spec": {"network": {"provider": "multus", "selectors": {"public": "pub"}}},
    })
    cluster.add({
        "apiVersion": "ceph.rook.io/v1", "kind": "CephCluster",
        "metadata": {"name": "b", "namespace": "rook-ceph"},
        "spec": {},
    })
    cluster.add({
        "apiVersion": "ceph.rook.io/v1", "kind": "CephCluster",
        "metadata": {"name": "elsewhere", "namespace": "other"},
        "spec": {"network": {"provider": "multus"}},
    })

    decls = CephClusterNetworkInventory(cluster).list_network_configs("rook-ceph")

    assert decls == [
        NetworkDeclaration(name="a", provider="multus", selectors={"public": "pub"}),
        NetworkDeclaration(name="b"),
    ]
    assert decls[0].uses_secondary_attachment
    assert not decls[1].uses_secondary_attachment


class _Failing:
    def __init__(self, error):
        self.error = error

    def list(self, api_version, kind, namespace=None):
        raise self.error


def test_missing_crd_means_no_declarations():
    inventory = CephClusterNetworkInventory(_Failing(ClusterAPIError("not served", status=404)))
    assert inventory.list_network_configs("rook-ceph") == []


def test_other_errors_propagate():
    inventory = CephClusterNetworkInventory(_Failing(ClusterAPIError("forbidden", status=403)))
    with pytest.raises(ClusterAPIError):
        inventory.list_network_configs("rook-ceph")
