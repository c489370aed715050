# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/rookcsi/csi/params.py
"""
Turn the flat operator parameter map plus cluster facts into the
EffectiveConfig handed to the manifest templates.

Every setting is described by one rule in an ordered table. A rule reads
its key from the parameter map and falls back to its default; only port
rules treat a malformed value as fatal.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Literal, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from rookcsi.csi import constants as c
from rookcsi.csi.components import DESCRIPTORS, DriverComponent
from rookcsi.csi.errors import ConfigValidationError, SetupError
from rookcsi.csi.version import ClusterVersion

log = logging.getLogger("rookcsi")

UpdateStrategy = Literal["RollingUpdate", "OnDelete"]


class EffectiveConfig(BaseModel):
    """Resolved settings for one reconciliation pass."""

    model_config = ConfigDict(frozen=True)

    namespace: str
    driver_name_prefix: str

    # images
    csi_plugin_image: str
    nfs_plugin_image: str
    registrar_image: str
    provisioner_image: str
    attacher_image: str
    snapshotter_image: str
    resizer_image: str
    volume_replication_image: str
    csi_addons_image: str

    kubelet_dir_path: str

    # toggles
    enable_grpc_metrics: bool
    force_cephfs_kernel_client: bool
    enable_host_network: bool
    enable_omap_generator: bool
    enable_rbd_snapshotter: bool
    enable_cephfs_snapshotter: bool
    enable_volume_replication_sidecar: bool
    enable_csi_addons_sidecar: bool
    enable_plugin_selinux_host_mount: bool
    enable_oidc_token_projection: bool
    mount_custom_ceph_conf: bool = False

    log_level: int = Field(ge=0, le=255)
    grpc_timeout_seconds: int

    # ports
    cephfs_grpc_metrics_port: int = Field(ge=0, le=65535)
    cephfs_liveness_metrics_port: int = Field(ge=0, le=65535)
    rbd_grpc_metrics_port: int = Field(ge=0, le=65535)
    rbd_liveness_metrics_port: int = Field(ge=0, le=65535)
    csi_addons_port: int = Field(ge=0, le=65535)

    provisioner_replicas: int = Field(ge=1)

    plugin_priority_class_name: str
    provisioner_priority_class_name: str

    rbd_plugin_update_strategy: UpdateStrategy
    cephfs_plugin_update_strategy: UpdateStrategy
    nfs_plugin_update_strategy: UpdateStrategy

    rbd_pod_labels: Dict[str, str]
    cephfs_pod_labels: Dict[str, str]
    nfs_pod_labels: Dict[str, str]

    def template_params(self) -> dict:
        return self.model_dump()

    def driver_name(self, component: DriverComponent) -> str:
        return DESCRIPTORS[component].driver_name(self.driver_name_prefix)


# ----------------------------------------------------------------------
# Rule tables
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class BoolRule:
    field: str
    key: str
    default: bool


@dataclass(frozen=True)
class GatedRule:
    """On by default from *minimum* onwards; *disable_key*=false turns it off."""
    field: str
    minimum: Tuple[int, int]
    disable_key: Optional[str] = None


@dataclass(frozen=True)
class PortRule:
    field: str
    key: str
    default: int


@dataclass(frozen=True)
class StrRule:
    field: str
    key: str
    default: str


@dataclass(frozen=True)
class StrategyRule:
    field: str
    key: str


@dataclass(frozen=True)
class LabelsRule:
    field: str
    key: str


BOOL_RULES = (
    BoolRule("force_cephfs_kernel_client", "CSI_FORCE_CEPHFS_KERNEL_CLIENT", True),
    BoolRule("enable_omap_generator", "CSI_ENABLE_OMAP_GENERATOR", False),
    BoolRule("enable_volume_replication_sidecar", "CSI_ENABLE_VOLUME_REPLICATION", False),
    BoolRule("enable_csi_addons_sidecar", "CSI_ENABLE_CSIADDONS", False),
    BoolRule("enable_plugin_selinux_host_mount", "CSI_PLUGIN_ENABLE_SELINUX_HOST_MOUNT", False),
    BoolRule("enable_host_network", "CSI_ENABLE_HOST_NETWORK", True),
    BoolRule("enable_grpc_metrics", "CSI_ENABLE_GRPC_METRICS", False),
)

GATED_RULES = (
    GatedRule("enable_rbd_snapshotter", c.KUBE_MIN_VERSION_SNAPSHOT, "CSI_ENABLE_RBD_SNAPSHOTTER"),
    GatedRule("enable_cephfs_snapshotter", c.KUBE_MIN_VERSION_SNAPSHOT, "CSI_ENABLE_CEPHFS_SNAPSHOTTER"),
    GatedRule("enable_oidc_token_projection", c.KUBE_MIN_VERSION_OIDC_TOKEN_PROJECTION),
)

PORT_RULES = (
    PortRule("cephfs_grpc_metrics_port", "CSI_CEPHFS_GRPC_METRICS_PORT", c.DEFAULT_CEPHFS_GRPC_METRICS_PORT),
    PortRule("cephfs_liveness_metrics_port", "CSI_CEPHFS_LIVENESS_METRICS_PORT", c.DEFAULT_CEPHFS_LIVENESS_METRICS_PORT),
    PortRule("rbd_grpc_metrics_port", "CSI_RBD_GRPC_METRICS_PORT", c.DEFAULT_RBD_GRPC_METRICS_PORT),
    PortRule("csi_addons_port", "CSIADDONS_PORT", c.DEFAULT_CSIADDONS_PORT),
    PortRule("rbd_liveness_metrics_port", "CSI_RBD_LIVENESS_METRICS_PORT", c.DEFAULT_RBD_LIVENESS_METRICS_PORT),
)

STR_RULES = (
    StrRule("csi_plugin_image", "ROOK_CSI_CEPH_IMAGE", c.DEFAULT_CSI_PLUGIN_IMAGE),
    StrRule("nfs_plugin_image", "ROOK_CSI_NFS_IMAGE", c.DEFAULT_NFS_PLUGIN_IMAGE),
    StrRule("registrar_image", "ROOK_CSI_REGISTRAR_IMAGE", c.DEFAULT_REGISTRAR_IMAGE),
    StrRule("provisioner_image", "ROOK_CSI_PROVISIONER_IMAGE", c.DEFAULT_PROVISIONER_IMAGE),
    StrRule("attacher_image", "ROOK_CSI_ATTACHER_IMAGE", c.DEFAULT_ATTACHER_IMAGE),
    StrRule("snapshotter_image", "ROOK_CSI_SNAPSHOTTER_IMAGE", c.DEFAULT_SNAPSHOTTER_IMAGE),
    StrRule("resizer_image", "ROOK_CSI_RESIZER_IMAGE", c.DEFAULT_RESIZER_IMAGE),
    StrRule("volume_replication_image", "CSI_VOLUME_REPLICATION_IMAGE", c.DEFAULT_VOLUME_REPLICATION_IMAGE),
    StrRule("csi_addons_image", "ROOK_CSIADDONS_IMAGE", c.DEFAULT_CSIADDONS_IMAGE),
    StrRule("kubelet_dir_path", "ROOK_CSI_KUBELET_DIR_PATH", c.DEFAULT_KUBELET_DIR_PATH),
    # system-node-critical / system-cluster-critical are the usual choices
    StrRule("plugin_priority_class_name", "CSI_PLUGIN_PRIORITY_CLASSNAME", ""),
    StrRule("provisioner_priority_class_name", "CSI_PROVISIONER_PRIORITY_CLASSNAME", ""),
)

STRATEGY_RULES = (
    StrategyRule("rbd_plugin_update_strategy", "CSI_RBD_PLUGIN_UPDATE_STRATEGY"),
    StrategyRule("cephfs_plugin_update_strategy", "CSI_CEPHFS_PLUGIN_UPDATE_STRATEGY"),
    StrategyRule("nfs_plugin_update_strategy", "CSI_NFS_PLUGIN_UPDATE_STRATEGY"),
)

LABELS_RULES = (
    LabelsRule("rbd_pod_labels", "ROOK_CSI_RBD_POD_LABELS"),
    LabelsRule("cephfs_pod_labels", "ROOK_CSI_CEPHFS_POD_LABELS"),
    LabelsRule("nfs_pod_labels", "ROOK_CSI_NFS_POD_LABELS"),
)

REQUIRED_IMAGES = (
    ("csi_plugin_image", "csi rbd plugin image"),
    ("registrar_image", "csi registrar image"),
    ("provisioner_image", "csi provisioner image"),
    ("attacher_image", "csi attacher image"),
)


# ----------------------------------------------------------------------
# Single-setting resolvers
# ----------------------------------------------------------------------

def get_value(params: Mapping[str, str], key: str, default: str) -> str:
    value = params.get(key)
    return default if value is None else str(value)


def parse_bool(params: Mapping[str, str], key: str, default: bool) -> bool:
    value = get_value(params, key, "").strip().lower()
    if value == "true":
        return True
    if value == "false":
        return False
    return default


def parse_port(params: Mapping[str, str], key: str, default: int) -> int:
    value = params.get(key)
    if value is None:
        return default
    try:
        port = int(str(value).strip())
    except ValueError as e:
        raise ConfigValidationError(f"error getting {key}: {value!r} is not a port") from e
    if not 0 <= port <= 65535:
        raise ConfigValidationError(f"error getting {key}: {port} is out of range")
    return port


def parse_grpc_timeout(params: Mapping[str, str]) -> int:
    value = get_value(params, c.GRPC_TIMEOUT_KEY, str(c.DEFAULT_GRPC_TIMEOUT_SECONDS))
    try:
        seconds = int(value.strip())
    except ValueError:
        log.error(
            "failed to parse %s=%r, defaulting to %d",
            c.GRPC_TIMEOUT_KEY, value, c.DEFAULT_GRPC_TIMEOUT_SECONDS,
        )
        return c.DEFAULT_GRPC_TIMEOUT_SECONDS

    if seconds < c.MIN_GRPC_TIMEOUT_SECONDS:
        log.warning(
            "%s is %r but it should be >= %d, using the default %d",
            c.GRPC_TIMEOUT_KEY, value, c.MIN_GRPC_TIMEOUT_SECONDS,
            c.DEFAULT_GRPC_TIMEOUT_SECONDS,
        )
        return c.DEFAULT_GRPC_TIMEOUT_SECONDS
    return seconds


def parse_log_level(params: Mapping[str, str]) -> int:
    value = get_value(params, c.LOG_LEVEL_KEY, "").strip()
    if not value:
        return c.DEFAULT_LOG_LEVEL
    try:
        level = int(value)
        if not 0 <= level <= 255:
            raise ValueError("out of range")
    except ValueError as e:
        log.error(
            "failed to parse %s=%r, defaulting to %d: %s",
            c.LOG_LEVEL_KEY, value, c.DEFAULT_LOG_LEVEL, e,
        )
        return c.DEFAULT_LOG_LEVEL
    return level


def parse_replicas(params: Mapping[str, str], node_count: Optional[int]) -> int:
    """
    Single node clusters always get one provisioner; two replicas with
    hard anti-affinity would leave one pending forever.
    """
    if node_count is None:
        log.error(
            "node count unknown, defaulting the provisioner replicas to %d",
            c.DEFAULT_PROVISIONER_REPLICAS,
        )
        return c.DEFAULT_PROVISIONER_REPLICAS
    if node_count == 1:
        return 1

    value = get_value(params, c.PROVISIONER_REPLICAS_KEY, str(c.DEFAULT_PROVISIONER_REPLICAS))
    try:
        replicas = int(value.strip())
        if replicas < 1:
            raise ValueError("must be at least 1")
    except ValueError as e:
        log.error(
            "failed to parse %s=%r, defaulting to %d: %s",
            c.PROVISIONER_REPLICAS_KEY, value, c.DEFAULT_PROVISIONER_REPLICAS, e,
        )
        return c.DEFAULT_PROVISIONER_REPLICAS
    return replicas


def parse_update_strategy(params: Mapping[str, str], key: str) -> str:
    value = get_value(params, key, c.ROLLING_UPDATE).strip()
    if value.lower() == c.ON_DELETE.lower():
        return c.ON_DELETE
    return c.ROLLING_UPDATE


def parse_labels(params: Mapping[str, str], key: str) -> Dict[str, str]:
    """`team=foo,tier=csi` -> {"team": "foo", "tier": "csi"}. `app` and `contains` are reserved."""
    labels: Dict[str, str] = {}
    for part in get_value(params, key, "").split(","):
        part = part.strip()
        if not part:
            continue
        name, sep, value = part.partition("=")
        if not sep or not name.strip():
            log.warning("ignoring malformed label %r in %s", part, key)
            continue
        name = name.strip()
        if name in c.RESERVED_POD_LABELS:
            log.warning("ignoring reserved label %r in %s", name, key)
            continue
        labels[name] = value.strip()
    return labels


def resolve_enablement(params: Mapping[str, str]) -> Dict[DriverComponent, bool]:
    return {
        comp: parse_bool(params, desc.enable_key, desc.enabled_by_default)
        for comp, desc in DESCRIPTORS.items()
    }


def allow_unsupported_version(params: Mapping[str, str]) -> bool:
    return parse_bool(params, c.ALLOW_UNSUPPORTED_VERSION_KEY, False)


def driver_name_prefix(namespace: str) -> str:
    return f"{namespace}."


# ----------------------------------------------------------------------
# Entry point
# ----------------------------------------------------------------------

def resolve_params(
    params: Mapping[str, str],
    *,
    namespace: str,
    version: ClusterVersion,
    node_count: Optional[int],
    custom_ceph_conf: bool = False,
) -> EffectiveConfig:
    """
    Build the EffectiveConfig for one pass.

    Raises SetupError when a required image resolves to an empty string
    and ConfigValidationError for a malformed port. Everything else falls
    back to its default.
    """
    values: dict = {
        "namespace": namespace,
        "driver_name_prefix": driver_name_prefix(namespace),
    }

    for rule in STR_RULES:
        values[rule.field] = get_value(params, rule.key, rule.default).strip()

    for field_name, what in REQUIRED_IMAGES:
        if not values[field_name]:
            raise SetupError(f"missing {what}")

    for rule in BOOL_RULES:
        values[rule.field] = parse_bool(params, rule.key, rule.default)

    for rule in GATED_RULES:
        enabled = version.at_least(rule.minimum)
        if rule.disable_key and get_value(params, rule.disable_key, "").strip().lower() == "false":
            enabled = False
        values[rule.field] = enabled

    for rule in PORT_RULES:
        values[rule.field] = parse_port(params, rule.key, rule.default)

    for rule in STRATEGY_RULES:
        values[rule.field] = parse_update_strategy(params, rule.key)

    for rule in LABELS_RULES:
        values[rule.field] = parse_labels(params, rule.key)

    values["grpc_timeout_seconds"] = parse_grpc_timeout(params)
    values["log_level"] = parse_log_level(params)
    values["provisioner_replicas"] = parse_replicas(params, node_count)
    values["mount_custom_ceph_conf"] = custom_ceph_conf

    log.info("Kubernetes version is %s", version)
    return EffectiveConfig(**values)
