# tests/csi/test_registration.py
import pytest

from rookcsi.csi.errors import ApplyError
from rookcsi.csi.registration import (
    CURRENT_API_VERSION,
    LEGACY_API_VERSION,
    CurrentVariant,
    LegacyVariant,
    migrate_legacy_registrations,
    select_variant,
)
from rookcsi.csi.version import ClusterVersion
from rookcsi.k8s.client import ClusterAPIError

NAME = "rook-ceph.rbd.csi.ceph.com"


def _driver(api_version, policy=None):
    spec = {"attachRequired": True, "podInfoOnMount": False}
    if policy:
        spec["fsGroupPolicy"] = policy
    return {"apiVersion": api_version, "kind": "CSIDriver", "metadata": {"name": NAME}, "spec": spec}


@pytest.mark.parametrize("version,expected", [
    ((1, 17), LegacyVariant),
    ((1, 18), CurrentVariant),
    ((1, 25), CurrentVariant),
])
def test_select_variant(version, expected):
    assert isinstance(select_variant(ClusterVersion(*version)), expected)


def test_current_create(cluster):
    CurrentVariant().create(cluster, NAME, "File", attach_required=False)
    obj = cluster.find(CURRENT_API_VERSION, "CSIDriver", NAME)
    assert obj["spec"] == {"attachRequired": False, "podInfoOnMount": False, "fsGroupPolicy": "File"}


def test_current_update_replaces_in_place(cluster):
    cluster.add(_driver(CURRENT_API_VERSION, "File"))

    CurrentVariant().create(cluster, NAME, "File", attach_required=False)

    assert ("replace", "CSIDriver", NAME) in cluster.calls
    assert ("delete", "CSIDriver", NAME) not in cluster.calls
    assert cluster.find(CURRENT_API_VERSION, "CSIDriver", NAME)["spec"]["attachRequired"] is False


def test_current_policy_change_recreates(cluster):
    cluster.add(_driver(CURRENT_API_VERSION, "File"))

    CurrentVariant().create(cluster, NAME, "ReadWriteOnceWithFSType", attach_required=True)

    assert cluster.mutations() == [
        ("delete", "CSIDriver", NAME),
        ("create", "CSIDriver", NAME),
    ]
    assert cluster.find(CURRENT_API_VERSION, "CSIDriver", NAME)["spec"]["fsGroupPolicy"] == "ReadWriteOnceWithFSType"


def test_legacy_create_drops_policy(cluster):
    LegacyVariant().create(cluster, NAME, "File", attach_required=True)
    obj = cluster.find(LEGACY_API_VERSION, "CSIDriver", NAME)
    assert "fsGroupPolicy" not in obj["spec"]


def test_api_failure_is_apply_error(cluster):
    cluster.fail[("create", "CSIDriver", NAME)] = ClusterAPIError("denied", status=403)
    with pytest.raises(ApplyError) as ei:
        CurrentVariant().create(cluster, NAME, "File", attach_required=True)
    assert ei.value.action == "create"
    assert ei.value.name == NAME


def test_delete_missing_is_not_an_error(cluster):
    assert CurrentVariant().delete(cluster, NAME) is False
    cluster.add(_driver(CURRENT_API_VERSION))
    assert CurrentVariant().delete(cluster, NAME) is True


@pytest.mark.parametrize("version,removed", [
    ((1, 17), False),
    ((1, 18), True),
    ((1, 21), True),
    ((1, 22), False),
])
def test_migrate_window(cluster, version, removed):
    cluster.add(_driver(LEGACY_API_VERSION))
    migrate_legacy_registrations(cluster, ClusterVersion(*version), [NAME])
    assert (cluster.find(LEGACY_API_VERSION, "CSIDriver", NAME) is None) is removed


def test_migrate_failure_is_logged_and_skipped(cluster, caplog):
    other = "rook-ceph.cephfs.csi.ceph.com"
    cluster.add(_driver(LEGACY_API_VERSION))
    cluster.add({"apiVersion": LEGACY_API_VERSION, "kind": "CSIDriver", "metadata": {"name": other}})
    cluster.fail[("delete", "CSIDriver", NAME)] = ClusterAPIError("boom", status=500)

    migrate_legacy_registrations(cluster, ClusterVersion(1, 20), [NAME, other])

    assert cluster.find(LEGACY_API_VERSION, "CSIDriver", other) is None
    assert cluster.find(LEGACY_API_VERSION, "CSIDriver", NAME) is not None
    assert "failed to remove legacy CSIDriver" in caplog.text
