# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/rookcsi/csi/components.py

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Mapping, Optional

from rookcsi.csi.constants import DEFAULT_FS_GROUP_POLICY, DRIVER_NAME_DOMAIN


class DriverComponent(str, Enum):
    RBD = "rbd"
    CEPHFS = "cephfs"
    NFS = "nfs"


@dataclass(frozen=True)
class DriverDescriptor:
    """
    Everything that differs between the RBD, CephFS and NFS drivers.
    """
    component: DriverComponent
    label: str                  # human readable, used in logs
    enable_key: str
    enabled_by_default: bool
    key_prefix: str             # CSI_RBD, CSI_CEPHFS, CSI_NFS

    plugin_name: str            # DaemonSet
    provisioner_name: str       # Deployment
    service_name: str           # metrics Service, deleted even if never created

    plugin_template: str
    provisioner_template: str
    service_template: Optional[str]

    fs_group_policy_key: str
    attach_required: bool

    def key(self, role: str, setting: str) -> str:
        """CSI_RBD + plugin + tolerations -> CSI_RBD_PLUGIN_TOLERATIONS"""
        return f"{self.key_prefix}_{role.upper()}_{setting.upper()}"

    def driver_name(self, prefix: str) -> str:
        return f"{prefix}{self.component.value}.{DRIVER_NAME_DOMAIN}"

    def fs_group_policy(self, params: Mapping[str, str]) -> str:
        return params.get(self.fs_group_policy_key, DEFAULT_FS_GROUP_POLICY)


DESCRIPTORS: Dict[DriverComponent, DriverDescriptor] = {
    DriverComponent.RBD: DriverDescriptor(
        component=DriverComponent.RBD,
        label="Ceph RBD",
        enable_key="ROOK_CSI_ENABLE_RBD",
        enabled_by_default=True,
        key_prefix="CSI_RBD",
        plugin_name="csi-rbdplugin",
        provisioner_name="csi-rbdplugin-provisioner",
        service_name="csi-rbdplugin-metrics",
        plugin_template="rbd/csi-rbdplugin.yaml.j2",
        provisioner_template="rbd/csi-rbdplugin-provisioner-dep.yaml.j2",
        service_template="rbd/csi-rbdplugin-svc.yaml.j2",
        fs_group_policy_key="CSI_RBD_FSGROUPPOLICY",
        attach_required=True,
    ),
    DriverComponent.CEPHFS: DriverDescriptor(
        component=DriverComponent.CEPHFS,
        label="CephFS",
        enable_key="ROOK_CSI_ENABLE_CEPHFS",
        enabled_by_default=True,
        key_prefix="CSI_CEPHFS",
        plugin_name="csi-cephfsplugin",
        provisioner_name="csi-cephfsplugin-provisioner",
        service_name="csi-cephfsplugin-metrics",
        plugin_template="cephfs/csi-cephfsplugin.yaml.j2",
        provisioner_template="cephfs/csi-cephfsplugin-provisioner-dep.yaml.j2",
        service_template="cephfs/csi-cephfsplugin-svc.yaml.j2",
        fs_group_policy_key="CSI_CEPHFS_FSGROUPPOLICY",
        attach_required=True,
    ),
    DriverComponent.NFS: DriverDescriptor(
        component=DriverComponent.NFS,
        label="NFS",
        enable_key="ROOK_CSI_ENABLE_NFS",
        enabled_by_default=False,
        key_prefix="CSI_NFS",
        plugin_name="csi-nfsplugin",
        provisioner_name="csi-nfsplugin-provisioner",
        service_name="csi-nfsplugin-metrics",
        plugin_template="nfs/csi-nfsplugin.yaml.j2",
        provisioner_template="nfs/csi-nfsplugin-provisioner-dep.yaml.j2",
        service_template=None,
        fs_group_policy_key="CSI_NFS_FSGROUPPOLICY",
        attach_required=False,
    ),
}
