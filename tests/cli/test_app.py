# tests/cli/test_app.py
from pathlib import Path

import pytest
import typer
import yaml
from typer.testing import CliRunner

from conftest import FakeCluster, FakeRunner

import rookcsi.cli.app as cli
from rookcsi.config.loader import load_config as cli_load_config
from rookcsi.csi.components import DriverComponent
from rookcsi.logging.log import init_logging

runner = CliRunner()


@pytest.fixture(autouse=True)
def _no_env_parameters(monkeypatch):
    # keep the caller's CSI_* environment out of the config
    monkeypatch.setattr(cli, "load_config", lambda path=None: cli_load_config(path, environ={}))


def _write(tmp_path: Path, text: str) -> Path:
    f = tmp_path / "operator.yaml"
    f.write_text(text)
    return f


def test_parse_components():
    assert cli.parse_components("all") == list(DriverComponent)
    assert cli.parse_components("rbd, nfs") == [DriverComponent.RBD, DriverComponent.NFS]
    with pytest.raises(typer.BadParameter, match="Unknown component 'iscsi'"):
        cli.parse_components("iscsi")


def test_render_writes_manifests(tmp_path: Path):
    out = tmp_path / "csi.yaml"
    result = runner.invoke(cli.app, ["render", "--out", str(out)])

    assert result.exit_code == 0, result.output
    docs = list(yaml.safe_load_all(out.read_text()))
    assert [(d["kind"], d["metadata"]["name"]) for d in docs] == [
        ("DaemonSet", "csi-rbdplugin"),
        ("Deployment", "csi-rbdplugin-provisioner"),
        ("Service", "csi-rbdplugin-metrics"),
        ("DaemonSet", "csi-cephfsplugin"),
        ("Deployment", "csi-cephfsplugin-provisioner"),
        ("Service", "csi-cephfsplugin-metrics"),
    ]
    assert "wrote 6 objects" in result.output
    dep = docs[1]
    assert dep["spec"]["strategy"] == {"type": "Recreate"}
    assert "podAntiAffinity" in dep["spec"]["template"]["spec"]["affinity"]


def test_render_single_component_from_config(tmp_path: Path):
    cfg = _write(tmp_path, "namespace: storage\nparameters:\n  ROOK_CSI_ENABLE_NFS: true\n")
    out = tmp_path / "nfs.yaml"
    result = runner.invoke(cli.app, [
        "render", "--config", str(cfg), "--component", "nfs", "--nodes", "1", "--out", str(out),
    ])

    assert result.exit_code == 0, result.output
    docs = list(yaml.safe_load_all(out.read_text()))
    assert [d["kind"] for d in docs] == ["DaemonSet", "Deployment"]
    assert docs[0]["metadata"]["namespace"] == "storage"
    assert docs[1]["spec"]["replicas"] == 1


def test_render_old_cluster_has_no_snapshotter(tmp_path: Path):
    out = tmp_path / "csi.yaml"
    result = runner.invoke(cli.app, ["render", "--component", "rbd", "--kube-version", "1.16", "--out", str(out)])
    assert result.exit_code == 0, result.output
    dep = list(yaml.safe_load_all(out.read_text()))[1]
    names = [c["name"] for c in dep["spec"]["template"]["spec"]["containers"]]
    assert "csi-snapshotter" not in names


def test_render_bad_port_exits_1(tmp_path: Path):
    cfg = _write(tmp_path, "parameters:\n  CSI_RBD_GRPC_METRICS_PORT: web\n")
    result = runner.invoke(cli.app, ["render", "--config", str(cfg)])
    assert result.exit_code == 1
    assert "CSI_RBD_GRPC_METRICS_PORT" in result.output


def test_render_bad_kube_version():
    result = runner.invoke(cli.app, ["render", "--kube-version", "latest"])
    assert result.exit_code != 0


# ----------------------------------------------------------------------
# Commands that talk to a cluster
# ----------------------------------------------------------------------

def _operator_deployment():
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {"name": "rook-ceph-operator", "namespace": "rook-ceph", "uid": "op-uid"},
    }


@pytest.fixture
def fake_cluster(monkeypatch, tmp_path: Path):
    cluster = FakeCluster()
    probe = FakeRunner()
    monkeypatch.setattr(cli, "load_api_client", lambda context=None: object())
    monkeypatch.setattr(cli, "ClusterClient", lambda api_client: cluster)
    monkeypatch.setattr(cli, "JobVersionRunner", lambda *a, **kw: probe)
    monkeypatch.setattr(
        cli, "init_logging",
        lambda **kw: init_logging(base_dir=tmp_path / "logs", **kw),
    )
    cluster.probe = probe
    return cluster


def test_reconcile_once(fake_cluster):
    fake_cluster.add(_operator_deployment())

    result = runner.invoke(cli.app, ["reconcile"])

    assert result.exit_code == 0, result.output
    assert "OK=5 FAILED=0" in result.output
    ds = fake_cluster.find("apps/v1", "DaemonSet", "csi-rbdplugin", "rook-ceph")
    assert ds["metadata"]["ownerReferences"][0]["uid"] == "op-uid"
    assert len(fake_cluster.probe.calls) == 1


def test_reconcile_uses_configured_owner_uid(fake_cluster, tmp_path: Path):
    cfg = _write(tmp_path, "owner:\n  uid: given-uid\n")
    result = runner.invoke(cli.app, ["reconcile", "--config", str(cfg)])

    assert result.exit_code == 0, result.output
    ds = fake_cluster.find("apps/v1", "DaemonSet", "csi-cephfsplugin", "rook-ceph")
    assert ds["metadata"]["ownerReferences"][0]["uid"] == "given-uid"


def test_reconcile_without_owner_exits_1(fake_cluster):
    result = runner.invoke(cli.app, ["reconcile"])
    assert result.exit_code == 1
    assert "not found" in result.output
    assert fake_cluster.mutations() == []


def test_reconcile_probe_failure_exits_1(fake_cluster):
    fake_cluster.add(_operator_deployment())
    fake_cluster.probe.exit_code = 1

    result = runner.invoke(cli.app, ["reconcile"])

    assert result.exit_code == 1
    assert "reconcile failed" in result.output


def test_detect_version(fake_cluster):
    fake_cluster.add(_operator_deployment())
    result = runner.invoke(cli.app, ["detect-version"])
    assert result.exit_code == 0, result.output
    assert "quay.io/cephcsi/cephcsi:v3.6.0: v3.6.0" in result.output


def test_detect_version_unsupported(fake_cluster):
    fake_cluster.add(_operator_deployment())
    fake_cluster.probe.output = "Cephcsi Version: v3.2.0"
    result = runner.invoke(cli.app, ["detect-version"])
    assert result.exit_code == 1
    assert "at least version" in result.output
