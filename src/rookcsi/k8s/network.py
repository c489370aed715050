# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/rookcsi/k8s/network.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List

from rookcsi.k8s.client import ClusterAPIError, ClusterClient

CEPH_CLUSTER_API_VERSION = "ceph.rook.io/v1"
SECONDARY_ATTACHMENT_PROVIDER = "multus"


@dataclass(frozen=True)
class NetworkDeclaration:
    name: str
    provider: str = ""
    selectors: Dict[str, str] = field(default_factory=dict)

    @property
    def uses_secondary_attachment(self) -> bool:
        return self.provider == SECONDARY_ATTACHMENT_PROVIDER


class CephClusterNetworkInventory:
    """Network declarations of the CephClusters in a namespace."""

    def __init__(self, client: ClusterClient):
        self.client = client

    def list_network_configs(self, namespace: str) -> List[NetworkDeclaration]:
        try:
            clusters = self.client.list(CEPH_CLUSTER_API_VERSION, "CephCluster", namespace)
        except ClusterAPIError as e:
            # CRD not installed yet
            if e.not_found:
                return []
            raise

        out = []
        for cluster in clusters:
            network = (cluster.get("spec") or {}).get("network") or {}
            out.append(NetworkDeclaration(
                name=cluster.get("metadata", {}).get("name", "<unknown>"),
                provider=network.get("provider") or "",
                selectors=dict(network.get("selectors") or {}),
            ))
        return out
