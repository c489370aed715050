# tests/conftest.py
from __future__ import annotations

import copy
import logging
from typing import Dict, List, Optional, Tuple

import pytest

from rookcsi.csi.params import resolve_params
from rookcsi.csi.version import ClusterVersion
from rookcsi.k8s.client import ClusterAPIError
from rookcsi.k8s.owner import OwnerInfo


class FakeCluster:
    """
    In-memory stand-in for ClusterClient. Objects are keyed by
    (apiVersion, kind, namespace, name); every call is recorded.
    """

    def __init__(self, version=(1, 24), nodes: Optional[int] = 3):
        self.objects: Dict[Tuple, dict] = {}
        self.calls: List[Tuple[str, str, str]] = []
        self.version = version
        self.nodes = nodes
        self.fail: Dict[Tuple[str, str, str], Exception] = {}
        self._rv = 0

    @staticmethod
    def _key(api_version, kind, name, namespace):
        return (api_version, kind, namespace, name)

    def _obj_key(self, obj):
        meta = obj.get("metadata", {})
        return self._key(obj["apiVersion"], obj["kind"], meta["name"], meta.get("namespace"))

    def _record(self, verb, kind, name):
        self.calls.append((verb, kind, name))
        exc = self.fail.get((verb, kind, name))
        if exc is not None:
            raise exc

    def _store(self, obj):
        self._rv += 1
        obj = copy.deepcopy(obj)
        obj.setdefault("metadata", {})["resourceVersion"] = str(self._rv)
        self.objects[self._obj_key(obj)] = obj
        return copy.deepcopy(obj)

    # seeding / inspection
    def add(self, obj: dict) -> None:
        self._store(obj)

    def find(self, api_version, kind, name, namespace=None) -> Optional[dict]:
        return self.objects.get(self._key(api_version, kind, name, namespace))

    def mutations(self):
        return [c for c in self.calls if c[0] in ("create", "replace", "delete")]

    # ClusterClient surface
    def get(self, api_version, kind, name, namespace=None):
        self._record("get", kind, name)
        obj = self.find(api_version, kind, name, namespace)
        return copy.deepcopy(obj) if obj is not None else None

    def list(self, api_version, kind, namespace=None):
        self._record("list", kind, "")
        return [
            copy.deepcopy(o) for (a, k, ns, _), o in self.objects.items()
            if a == api_version and k == kind and (namespace is None or ns == namespace)
        ]

    def create(self, obj):
        self._record("create", obj["kind"], obj["metadata"]["name"])
        if self._obj_key(obj) in self.objects:
            raise ClusterAPIError("already exists", status=409)
        return self._store(obj)

    def replace(self, obj):
        self._record("replace", obj["kind"], obj["metadata"]["name"])
        if self._obj_key(obj) not in self.objects:
            raise ClusterAPIError("not found", status=404)
        return self._store(obj)

    def create_or_update(self, obj):
        meta = obj["metadata"]
        existing = self.get(obj["apiVersion"], obj["kind"], meta["name"], meta.get("namespace"))
        if existing is None:
            return self.create(obj)
        return self.replace(obj)

    def delete(self, api_version, kind, name, namespace=None):
        self._record("delete", kind, name)
        return self.objects.pop(self._key(api_version, kind, name, namespace), None) is not None

    def server_version(self):
        if isinstance(self.version, Exception):
            raise self.version
        return ClusterVersion(*self.version)

    def count_nodes(self):
        if self.nodes is None:
            raise ClusterAPIError("forbidden", status=403)
        return self.nodes


class FakeRunner:
    def __init__(self, output="Cephcsi Version: v3.6.0\nGit Commit: abc\n", exit_code=0, error=None):
        self.output = output
        self.exit_code = exit_code
        self.error = error
        self.calls: List[dict] = []

    def schedule(self, image, args, timeout, *, tolerations=(), node_affinity=None):
        self.calls.append({
            "image": image,
            "args": list(args),
            "timeout": timeout,
            "tolerations": list(tolerations),
            "node_affinity": node_affinity,
        })
        if self.error is not None:
            raise self.error
        return self.output, self.exit_code


class FakeInventory:
    def __init__(self, decls=(), error=None):
        self.decls = list(decls)
        self.error = error

    def list_network_configs(self, namespace):
        if self.error is not None:
            raise self.error
        return list(self.decls)


class Capture:
    def __init__(self): self.events = []
    def notify(self, ev): self.events.append(ev)

    def of(self, cls):
        return [e for e in self.events if isinstance(e, cls)]


@pytest.fixture
def cluster():
    return FakeCluster()


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def owner():
    return OwnerInfo(api_version="apps/v1", kind="Deployment", name="rook-ceph-operator", uid="uid-1")


@pytest.fixture
def capture():
    return Capture()


@pytest.fixture
def default_config():
    return resolve_params({}, namespace="rook-ceph", version=ClusterVersion(1, 24), node_count=3)


@pytest.fixture(autouse=True)
def _reset_rookcsi_logger():
    # init_logging() detaches the logger from the root handlers caplog uses
    yield
    logger = logging.getLogger("rookcsi")
    for h in list(logger.handlers):
        h.close()
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
