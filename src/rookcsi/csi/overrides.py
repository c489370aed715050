# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/rookcsi/csi/overrides.py
"""
Per-component scheduling and resource overrides.

Tolerations and node affinity resolve through a two level chain:

    CSI_<COMPONENT>_<ROLE>_<SETTING>  ->  CSI_<ROLE>_<SETTING>  ->  empty

Resources have no shared level:

    CSI_<COMPONENT>_<ROLE>_RESOURCE  ->  none
"""

from __future__ import annotations

import copy
import json
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Protocol

import yaml

from rookcsi.csi.components import DriverDescriptor
from rookcsi.csi.constants import MULTUS_NETWORKS_ANNOTATION
from rookcsi.csi.errors import NetworkConfigError

log = logging.getLogger("rookcsi")

PLUGIN = "plugin"
PROVISIONER = "provisioner"


@dataclass
class OverrideSpec:
    tolerations: List[dict] = field(default_factory=list)
    node_affinity: Optional[dict] = None
    resources: Dict[str, dict] = field(default_factory=dict)


def _raw(params: Mapping[str, str], key: str) -> Optional[str]:
    value = params.get(key)
    if value is None or not str(value).strip():
        return None
    return str(value)


def get_tolerations(
    params: Mapping[str, str], key: str, default: List[dict]
) -> List[dict]:
    """YAML list of tolerations under *key*, or *default*."""
    raw = _raw(params, key)
    if raw is None:
        return default

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        log.warning("failed to parse %s, using fallback tolerations: %s", key, e)
        return default

    if not isinstance(data, list) or not all(isinstance(t, dict) for t in data):
        log.warning("%s must be a list of tolerations, using fallback", key)
        return default
    return data


def _short_node_affinity(raw: str) -> dict:
    """
    key1=value1,value2; key2   ->   key1 In [value1, value2], key2 Exists
    """
    expressions = []
    for part in raw.split(";"):
        part = part.strip()
        if not part:
            continue
        if "=" in part:
            key, values = part.split("=", 1)
            expressions.append({
                "key": key.strip(),
                "operator": "In",
                "values": [v.strip() for v in values.split(",") if v.strip()],
            })
        else:
            expressions.append({"key": part, "operator": "Exists"})

    if not expressions:
        raise ValueError(f"no node selector requirements in {raw!r}")

    return {
        "requiredDuringSchedulingIgnoredDuringExecution": {
            "nodeSelectorTerms": [{"matchExpressions": expressions}],
        }
    }


def get_node_affinity(
    params: Mapping[str, str], key: str, default: Optional[dict]
) -> Optional[dict]:
    """
    Node affinity under *key*: either a YAML NodeAffinity mapping or the
    short `key=v1,v2;key2` form. Falls back to *default*.
    """
    raw = _raw(params, key)
    if raw is None:
        return default

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError:
        data = raw

    if isinstance(data, dict):
        return data

    try:
        return _short_node_affinity(raw)
    except ValueError as e:
        log.warning("failed to parse %s, using fallback node affinity: %s", key, e)
        return default


def get_resources(params: Mapping[str, str], key: str) -> Dict[str, dict]:
    """
    Container resources under *key*:

        - name: csi-rbdplugin
          resource:
            requests: {cpu: 100m, memory: 128Mi}
            limits: {memory: 256Mi}
    """
    raw = _raw(params, key)
    if raw is None:
        return {}

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        log.warning("failed to parse %s, no resources applied: %s", key, e)
        return {}

    if not isinstance(data, list):
        log.warning("%s must be a list of container resources", key)
        return {}

    out: Dict[str, dict] = {}
    for entry in data:
        if not isinstance(entry, dict) or "name" not in entry:
            log.warning("skipping malformed entry in %s: %r", key, entry)
            continue
        out[str(entry["name"])] = entry.get("resource") or {}
    return out


def resolve_overrides(
    params: Mapping[str, str], desc: DriverDescriptor, role: str
) -> OverrideSpec:
    shared_tolerations = get_tolerations(params, f"CSI_{role.upper()}_TOLERATIONS", [])
    shared_affinity = get_node_affinity(params, f"CSI_{role.upper()}_NODE_AFFINITY", None)

    return OverrideSpec(
        tolerations=get_tolerations(params, desc.key(role, "tolerations"), shared_tolerations),
        node_affinity=get_node_affinity(params, desc.key(role, "node_affinity"), shared_affinity),
        resources=get_resources(params, desc.key(role, "resource")),
    )


def apply_to_pod_spec(pod_spec: dict, overrides: OverrideSpec) -> None:
    pod_spec["tolerations"] = copy.deepcopy(overrides.tolerations)
    affinity: dict = {}
    if overrides.node_affinity:
        affinity["nodeAffinity"] = copy.deepcopy(overrides.node_affinity)
    pod_spec["affinity"] = affinity


def apply_resources_to_containers(pod_spec: dict, resources: Mapping[str, dict]) -> None:
    for container in pod_spec.get("containers", []):
        if container.get("name") in resources:
            container["resources"] = copy.deepcopy(resources[container["name"]])


def pod_anti_affinity(key: str, value: str) -> dict:
    """No two pods carrying key=value on the same node."""
    return {
        "requiredDuringSchedulingIgnoredDuringExecution": [
            {
                "labelSelector": {
                    "matchExpressions": [
                        {"key": key, "operator": "In", "values": [value]},
                    ]
                },
                "topologyKey": "kubernetes.io/hostname",
            }
        ]
    }


# ----------------------------------------------------------------------
# Secondary network attachment
# ----------------------------------------------------------------------

class NetworkInventory(Protocol):
    def list_network_configs(self, namespace: str) -> Iterable: ...


def _is_json(selector: str) -> bool:
    try:
        return isinstance(json.loads(selector), dict)
    except ValueError:
        return False


def apply_network_config(
    inventory: NetworkInventory, namespace: str, template_meta: dict
) -> bool:
    """
    Attach the public network of every cluster declaring a secondary
    attachment to the pod template. Returns True when any cluster declares
    one, in which case host networking must be turned off, even if no
    public selector was found to annotate.
    """
    attached = False
    networks: List[str] = []
    for decl in inventory.list_network_configs(namespace):
        if not decl.uses_secondary_attachment:
            continue
        attached = True
        selector = decl.selectors.get("public")
        if not selector:
            log.debug("network config %s has no public selector", decl.name)
            continue
        if selector not in networks:
            networks.append(selector)

    if not networks:
        return attached

    json_syntax = [_is_json(n) for n in networks]
    if any(json_syntax) and not all(json_syntax):
        raise NetworkConfigError(
            "mixing JSON and short network selector syntax is not supported"
        )

    value = ", ".join(networks)
    if all(json_syntax):
        value = f"[{value}]"

    annotations = template_meta.setdefault("annotations", {}) or {}
    annotations[MULTUS_NETWORKS_ANNOTATION] = value
    template_meta["annotations"] = annotations
    return True
