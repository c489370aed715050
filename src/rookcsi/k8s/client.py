# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/rookcsi/k8s/client.py
from __future__ import annotations

import logging
from typing import List, Optional

from kubernetes import client, config, dynamic
from kubernetes.client.exceptions import ApiException
from kubernetes.dynamic.exceptions import ResourceNotFoundError

from rookcsi.csi.version import ClusterVersion

log = logging.getLogger("rookcsi")


class ClusterAPIError(RuntimeError):
    """A request against the Kubernetes API failed."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status

    @property
    def not_found(self) -> bool:
        return self.status == 404


def load_api_client(kube_context: Optional[str] = None) -> client.ApiClient:
    """
    In-cluster config when running as a pod, kubeconfig otherwise.
    """
    if kube_context is None:
        try:
            config.load_incluster_config()
            return client.ApiClient()
        except config.ConfigException:
            log.debug("not running in a cluster, falling back to kubeconfig")
    config.load_kube_config(context=kube_context)
    return client.ApiClient()


def _meta(obj: dict) -> dict:
    return obj.setdefault("metadata", {})


def _describe(api_version: str, kind: str, name: str, namespace: Optional[str]) -> str:
    where = f" in {namespace}" if namespace else ""
    return f"{kind} {name!r} ({api_version}){where}"


class ClusterClient:
    """
    Thin create/get/update/delete wrapper over the dynamic client.

    Objects go in and come out as plain dicts. "Not found" is reported
    as None/False rather than an exception; every other API failure
    becomes a ClusterAPIError.
    """

    def __init__(self, api_client: Optional[client.ApiClient] = None, *, dynamic_client=None):
        self.api_client = api_client or client.ApiClient()
        self._dynamic = dynamic_client

    @property
    def dynamic(self):
        if self._dynamic is None:
            self._dynamic = dynamic.DynamicClient(self.api_client)
        return self._dynamic

    # ------------------------------------------------------------------
    def _resource(self, api_version: str, kind: str):
        try:
            return self.dynamic.resources.get(api_version=api_version, kind=kind)
        except ResourceNotFoundError as e:
            raise ClusterAPIError(
                f"{kind} is not served by {api_version}: {e}", status=404
            ) from e

    @staticmethod
    def _wrap(e: ApiException, action: str, what: str) -> ClusterAPIError:
        return ClusterAPIError(
            f"{action} {what} failed: {e.status} {e.reason}", status=e.status
        )

    # ------------------------------------------------------------------
    def get(
        self, api_version: str, kind: str, name: str, namespace: Optional[str] = None
    ) -> Optional[dict]:
        what = _describe(api_version, kind, name, namespace)
        try:
            res = self._resource(api_version, kind)
        except ClusterAPIError as e:
            if e.not_found:
                return None
            raise
        try:
            return res.get(name=name, namespace=namespace).to_dict()
        except ApiException as e:
            if e.status == 404:
                return None
            raise self._wrap(e, "get", what) from e

    def list(self, api_version: str, kind: str, namespace: Optional[str] = None) -> List[dict]:
        res = self._resource(api_version, kind)
        try:
            return res.get(namespace=namespace).to_dict().get("items", [])
        except ApiException as e:
            raise self._wrap(e, "list", f"{kind} ({api_version})") from e

    def create(self, obj: dict) -> dict:
        meta = _meta(obj)
        what = _describe(obj["apiVersion"], obj["kind"], meta.get("name"), meta.get("namespace"))
        res = self._resource(obj["apiVersion"], obj["kind"])
        try:
            created = res.create(body=obj, namespace=meta.get("namespace")).to_dict()
        except ApiException as e:
            raise self._wrap(e, "create", what) from e
        log.debug("[k8s] created %s", what)
        return created

    def replace(self, obj: dict) -> dict:
        meta = _meta(obj)
        what = _describe(obj["apiVersion"], obj["kind"], meta.get("name"), meta.get("namespace"))
        res = self._resource(obj["apiVersion"], obj["kind"])
        try:
            replaced = res.replace(
                body=obj, name=meta["name"], namespace=meta.get("namespace")
            ).to_dict()
        except ApiException as e:
            raise self._wrap(e, "update", what) from e
        log.debug("[k8s] updated %s", what)
        return replaced

    def create_or_update(self, obj: dict) -> dict:
        meta = _meta(obj)
        existing = self.get(obj["apiVersion"], obj["kind"], meta["name"], meta.get("namespace"))
        if existing is None:
            return self.create(obj)

        existing_meta = existing.get("metadata", {})
        if existing_meta.get("resourceVersion"):
            meta["resourceVersion"] = existing_meta["resourceVersion"]

        # clusterIP is immutable once allocated
        if obj["kind"] == "Service":
            spec = obj.setdefault("spec", {})
            existing_spec = existing.get("spec", {})
            for key in ("clusterIP", "clusterIPs"):
                if key in existing_spec and key not in spec:
                    spec[key] = existing_spec[key]

        return self.replace(obj)

    def delete(
        self, api_version: str, kind: str, name: str, namespace: Optional[str] = None
    ) -> bool:
        """Delete an object. Returns False when it was already gone."""
        what = _describe(api_version, kind, name, namespace)
        try:
            res = self._resource(api_version, kind)
        except ClusterAPIError as e:
            if e.not_found:
                return False
            raise
        try:
            res.delete(
                name=name,
                namespace=namespace,
                body={"propagationPolicy": "Foreground"},
            )
        except ApiException as e:
            if e.status == 404:
                log.debug("[k8s] %s already absent", what)
                return False
            raise self._wrap(e, "delete", what) from e
        log.debug("[k8s] deleted %s", what)
        return True

    # ------------------------------------------------------------------
    def server_version(self) -> ClusterVersion:
        try:
            info = client.VersionApi(self.api_client).get_code()
        except ApiException as e:
            raise self._wrap(e, "get", "server version") from e
        return ClusterVersion.parse(info.major, info.minor)

    def count_nodes(self) -> int:
        try:
            nodes = client.CoreV1Api(self.api_client).list_node()
        except ApiException as e:
            raise self._wrap(e, "list", "nodes") from e
        return len(nodes.items)
