# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/rookcsi/csi/constants.py
"""
Constants for the Ceph CSI drivers: default images, parameter keys,
ports and Kubernetes version thresholds.
"""

# Default images (overridable through ROOK_CSI_*_IMAGE parameters)
DEFAULT_CSI_PLUGIN_IMAGE = "quay.io/cephcsi/cephcsi:v3.6.0"
DEFAULT_NFS_PLUGIN_IMAGE = "mcr.microsoft.com/k8s/csi/nfs-csi:v3.1.0"
DEFAULT_REGISTRAR_IMAGE = "k8s.gcr.io/sig-storage/csi-node-driver-registrar:v2.5.0"
DEFAULT_PROVISIONER_IMAGE = "k8s.gcr.io/sig-storage/csi-provisioner:v3.1.0"
DEFAULT_ATTACHER_IMAGE = "k8s.gcr.io/sig-storage/csi-attacher:v3.4.0"
DEFAULT_SNAPSHOTTER_IMAGE = "k8s.gcr.io/sig-storage/csi-snapshotter:v5.0.1"
DEFAULT_RESIZER_IMAGE = "k8s.gcr.io/sig-storage/csi-resizer:v1.4.0"
DEFAULT_VOLUME_REPLICATION_IMAGE = "quay.io/csiaddons/volumereplication-operator:v0.3.0"
DEFAULT_CSIADDONS_IMAGE = "quay.io/csiaddons/k8s-sidecar:v0.2.1"

DEFAULT_KUBELET_DIR_PATH = "/var/lib/kubelet"

# Kubernetes version thresholds, (major, minor)
KUBE_MIN_VERSION_SNAPSHOT = (1, 17)
KUBE_MIN_VERSION_V1_CSIDRIVER = (1, 18)
KUBE_MIN_VERSION_OIDC_TOKEN_PROJECTION = (1, 20)
# last minor release still serving storage.k8s.io/v1beta1 CSIDriver
KUBE_MAX_MINOR_BETA1_CSIDRIVER = 21

# Shared tolerations and node affinity
PROVISIONER_TOLERATIONS_KEY = "CSI_PROVISIONER_TOLERATIONS"
PROVISIONER_NODE_AFFINITY_KEY = "CSI_PROVISIONER_NODE_AFFINITY"
PLUGIN_TOLERATIONS_KEY = "CSI_PLUGIN_TOLERATIONS"
PLUGIN_NODE_AFFINITY_KEY = "CSI_PLUGIN_NODE_AFFINITY"

# GRPC metrics and liveness ports
DEFAULT_CEPHFS_GRPC_METRICS_PORT = 9091
DEFAULT_CEPHFS_LIVENESS_METRICS_PORT = 9081
DEFAULT_RBD_GRPC_METRICS_PORT = 9090
DEFAULT_RBD_LIVENESS_METRICS_PORT = 9080
DEFAULT_CSIADDONS_PORT = 9070

GRPC_TIMEOUT_KEY = "CSI_GRPC_TIMEOUT_SECONDS"
DEFAULT_GRPC_TIMEOUT_SECONDS = 150
MIN_GRPC_TIMEOUT_SECONDS = 120

PROVISIONER_REPLICAS_KEY = "CSI_PROVISIONER_REPLICAS"
DEFAULT_PROVISIONER_REPLICAS = 2

LOG_LEVEL_KEY = "CSI_LOG_LEVEL"
DEFAULT_LOG_LEVEL = 0

ALLOW_UNSUPPORTED_VERSION_KEY = "ROOK_CSI_ALLOW_UNSUPPORTED_VERSION"

# Pod labels the selectors and anti-affinity rely on
RESERVED_POD_LABELS = ("app", "contains")

# Update strategies
ROLLING_UPDATE = "RollingUpdate"
ON_DELETE = "OnDelete"

DEFAULT_FS_GROUP_POLICY = "ReadWriteOnceWithFSType"
DRIVER_NAME_DOMAIN = "csi.ceph.com"

# Version probe
DETECT_VERSION_JOB_NAME = "rook-ceph-csi-detect-version"
DETECT_VERSION_TIMEOUT_SECONDS = 15 * 60

# ConfigMap users create to override ceph.conf inside the CSI pods
CUSTOM_CEPH_CONF_CONFIGMAP = "csi-ceph-conf-override"

# Annotation recording the rendered spec of create-only objects
SPEC_HASH_ANNOTATION = "rookcsi.io/spec-hash"

MULTUS_NETWORKS_ANNOTATION = "k8s.v1.cni.cncf.io/networks"
