# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/rookcsi/csi/registration.py
"""
CSIDriver registration objects.

Clusters before 1.18 only serve storage.k8s.io/v1beta1 CSIDriver, which
has no fsGroupPolicy. From 1.18 the v1 API is used; clusters up to 1.21
may still hold v1beta1 objects from an earlier operator release and
those are removed before the v1 objects are written.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol, Union

from rookcsi.csi.constants import KUBE_MAX_MINOR_BETA1_CSIDRIVER, KUBE_MIN_VERSION_V1_CSIDRIVER
from rookcsi.csi.errors import ApplyError
from rookcsi.csi.version import ClusterVersion
from rookcsi.k8s.client import ClusterAPIError

log = logging.getLogger("rookcsi")

KIND = "CSIDriver"
LEGACY_API_VERSION = "storage.k8s.io/v1beta1"
CURRENT_API_VERSION = "storage.k8s.io/v1"


class RegistrationClient(Protocol):
    def get(self, api_version: str, kind: str, name: str, namespace: Optional[str] = None) -> Optional[dict]: ...
    def create(self, obj: dict) -> dict: ...
    def replace(self, obj: dict) -> dict: ...
    def delete(self, api_version: str, kind: str, name: str, namespace: Optional[str] = None) -> bool: ...


def _body(api_version: str, name: str, attach_required: bool, fs_group_policy: Optional[str]) -> dict:
    spec: dict = {
        "attachRequired": attach_required,
        "podInfoOnMount": False,
    }
    if fs_group_policy:
        spec["fsGroupPolicy"] = fs_group_policy
    return {
        "apiVersion": api_version,
        "kind": KIND,
        "metadata": {"name": name},
        "spec": spec,
    }


class _Variant:
    api_version: str

    def delete(self, client: RegistrationClient, name: str) -> bool:
        try:
            deleted = client.delete(self.api_version, KIND, name)
        except ClusterAPIError as e:
            raise ApplyError("delete", KIND, name, e) from e
        if deleted:
            log.info("deleted CSIDriver %s (%s)", name, self.api_version)
        return deleted

    def _write(self, client: RegistrationClient, body: dict, existing: Optional[dict]) -> None:
        name = body["metadata"]["name"]
        try:
            if existing is None:
                client.create(body)
                log.info("created CSIDriver %s (%s)", name, self.api_version)
                return
            rv = existing.get("metadata", {}).get("resourceVersion")
            if rv:
                body["metadata"]["resourceVersion"] = rv
            client.replace(body)
            log.debug("updated CSIDriver %s (%s)", name, self.api_version)
        except ClusterAPIError as e:
            action = "create" if existing is None else "update"
            raise ApplyError(action, KIND, name, e) from e

    def _get(self, client: RegistrationClient, name: str) -> Optional[dict]:
        try:
            return client.get(self.api_version, KIND, name)
        except ClusterAPIError as e:
            raise ApplyError("get", KIND, name, e) from e


@dataclass(frozen=True)
class LegacyVariant(_Variant):
    api_version: str = LEGACY_API_VERSION

    def create(
        self,
        client: RegistrationClient,
        name: str,
        fs_group_policy: str,
        attach_required: bool,
    ) -> None:
        # v1beta1 has no fsGroupPolicy
        body = _body(self.api_version, name, attach_required, None)
        self._write(client, body, self._get(client, name))


@dataclass(frozen=True)
class CurrentVariant(_Variant):
    api_version: str = CURRENT_API_VERSION

    def create(
        self,
        client: RegistrationClient,
        name: str,
        fs_group_policy: str,
        attach_required: bool,
    ) -> None:
        body = _body(self.api_version, name, attach_required, fs_group_policy)
        existing = self._get(client, name)

        if existing is not None:
            current = (existing.get("spec") or {}).get("fsGroupPolicy")
            if current != fs_group_policy:
                # fsGroupPolicy is immutable, the object has to be recreated
                log.info(
                    "CSIDriver %s fsGroupPolicy changes from %s to %s, recreating",
                    name, current, fs_group_policy,
                )
                self.delete(client, name)
                existing = None

        self._write(client, body, existing)


RegistrationHandle = Union[LegacyVariant, CurrentVariant]


def select_variant(version: ClusterVersion) -> RegistrationHandle:
    if version.at_least(KUBE_MIN_VERSION_V1_CSIDRIVER):
        return CurrentVariant()
    return LegacyVariant()


def migrate_legacy_registrations(
    client: RegistrationClient,
    version: ClusterVersion,
    driver_names: Iterable[str],
) -> None:
    """
    Remove v1beta1 CSIDriver objects left behind by older releases.

    Only runs while the cluster can still serve v1beta1 (1.18 to 1.21).
    Failures are logged and the pass carries on.
    """
    if not version.at_least(KUBE_MIN_VERSION_V1_CSIDRIVER):
        return
    if (version.major, version.minor) > (1, KUBE_MAX_MINOR_BETA1_CSIDRIVER):
        return

    legacy = LegacyVariant()
    for name in driver_names:
        try:
            legacy.delete(client, name)
        except ApplyError as e:
            log.error("failed to remove legacy CSIDriver %s: %s", name, e)
