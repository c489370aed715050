# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/rookcsi/csi/reconciler.py
"""
One reconciliation pass over the Ceph CSI drivers.

    facts -> config -> version probe -> registration variant
          -> start enabled drivers -> register them -> stop disabled drivers

Setup, validation and probe failures abort the pass. A failure while
applying one driver is recorded in the report and the pass moves on to
the next driver.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from rookcsi.csi.components import DESCRIPTORS, DriverDescriptor
from rookcsi.csi.constants import CUSTOM_CEPH_CONF_CONFIGMAP, DETECT_VERSION_TIMEOUT_SECONDS, SPEC_HASH_ANNOTATION
from rookcsi.csi.errors import (
    ApplyError,
    CSIError,
    NetworkConfigError,
    OwnerReferenceError,
    PassAborted,
    SetupError,
)
from rookcsi.csi.events import (
    CSIFailed,
    CSIProgress,
    CSIStarted,
    CSISucceeded,
    DriverRemoved,
    ReconcileSummary,
)
from rookcsi.csi.overrides import (
    PLUGIN,
    PROVISIONER,
    NetworkInventory,
    apply_network_config,
    apply_resources_to_containers,
    apply_to_pod_spec,
    pod_anti_affinity,
    resolve_overrides,
)
from rookcsi.csi.params import (
    EffectiveConfig,
    allow_unsupported_version,
    driver_name_prefix,
    resolve_enablement,
    resolve_params,
)
from rookcsi.csi.registration import (
    CurrentVariant,
    RegistrationHandle,
    migrate_legacy_registrations,
    select_variant,
)
from rookcsi.csi.version import ClusterVersion, VersionRunner, validate_csi_version
from rookcsi.k8s.client import ClusterAPIError, ClusterClient
from rookcsi.k8s.network import CephClusterNetworkInventory
from rookcsi.k8s.owner import OwnerInfo
from rookcsi.observers.dispatcher import EventBus
from rookcsi.observers.events import new_ctx
from rookcsi.templates.renderer import TemplateRenderer

log = logging.getLogger("rookcsi")


@dataclass
class ReconcileContext:
    """Cancellation and deadline for one pass."""
    cancelled: threading.Event = field(default_factory=threading.Event)
    deadline: Optional[float] = None       # time.monotonic() based

    @classmethod
    def with_timeout(cls, seconds: Optional[float]) -> "ReconcileContext":
        if not seconds:
            return cls()
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self) -> None:
        self.cancelled.set()

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def check(self, step: str) -> None:
        if self.cancelled.is_set():
            raise PassAborted(f"reconcile cancelled before {step}")
        if self.deadline is not None and time.monotonic() >= self.deadline:
            raise PassAborted(f"reconcile deadline exceeded before {step}")


@dataclass
class ComponentOutcome:
    component: str
    action: str                 # "start" | "register" | "remove"
    status: str                 # "OK" | "FAILED"
    error: Optional[str] = None


@dataclass
class ReconcileReport:
    outcomes: List[ComponentOutcome] = field(default_factory=list)

    def add(self, outcome: ComponentOutcome) -> None:
        self.outcomes.append(outcome)

    @property
    def failed(self) -> List[ComponentOutcome]:
        return [o for o in self.outcomes if o.status == "FAILED"]

    @property
    def ok(self) -> bool:
        return not self.failed

    def summary(self) -> str:
        ok = sum(1 for o in self.outcomes if o.status == "OK")
        return f"OK={ok} FAILED={len(self.failed)}"


def spec_hash(obj: dict) -> str:
    return hashlib.sha256(
        json.dumps(obj.get("spec", {}), sort_keys=True).encode()
    ).hexdigest()


def _name(obj: dict) -> str:
    return obj.get("metadata", {}).get("name", "")


@dataclass
class ComponentManifests:
    plugin: dict
    provisioner: dict
    service: Optional[dict] = None

    def objects(self) -> List[dict]:
        return [o for o in (self.plugin, self.provisioner, self.service) if o is not None]


def _customize(
    obj: dict, params: Mapping[str, str], desc: DriverDescriptor, role: str
) -> dict:
    overrides = resolve_overrides(params, desc, role)
    pod_spec = obj["spec"]["template"]["spec"]
    apply_to_pod_spec(pod_spec, overrides)
    apply_resources_to_containers(pod_spec, overrides.resources)
    return pod_spec


def build_manifests(
    renderer: TemplateRenderer,
    desc: DriverDescriptor,
    cfg: EffectiveConfig,
    params: Mapping[str, str],
) -> ComponentManifests:
    """
    Render one driver's objects with scheduling and resource overrides
    applied. Ownership and network attachments need the cluster and are
    added when the objects are applied.
    """
    tp = cfg.template_params()

    plugin = renderer.render(desc.plugin_template, tp, kind="DaemonSet")
    _customize(plugin, params, desc, PLUGIN)

    dep = renderer.render(desc.provisioner_template, tp, kind="Deployment")
    pod_spec = _customize(dep, params, desc, PROVISIONER)
    pod_spec["affinity"]["podAntiAffinity"] = pod_anti_affinity("app", desc.provisioner_name)
    dep["spec"]["strategy"] = {"type": "Recreate"}

    svc = None
    if desc.service_template:
        svc = renderer.render(desc.service_template, tp, kind="Service")

    return ComponentManifests(plugin=plugin, provisioner=dep, service=svc)


class CSIReconciler:
    def __init__(
        self,
        client: ClusterClient,
        runner: VersionRunner,
        *,
        namespace: str,
        owner: OwnerInfo,
        renderer: Optional[TemplateRenderer] = None,
        network: Optional[NetworkInventory] = None,
        bus: Optional[EventBus] = None,
        kube_context: Optional[str] = None,
    ):
        self.client = client
        self.runner = runner
        self.namespace = namespace
        self.owner = owner
        self.renderer = renderer or TemplateRenderer()
        self.network = network or CephClusterNetworkInventory(client)
        self.bus = bus or EventBus()
        self.kube_context = kube_context
        self._run_ctx = new_ctx(env=namespace, context=kube_context)

    # ------------------------------------------------------------------
    # Cluster facts
    # ------------------------------------------------------------------
    def server_version(self) -> ClusterVersion:
        try:
            return self.client.server_version()
        except (ClusterAPIError, ValueError) as e:
            raise SetupError(f"failed to get kubernetes server version: {e}") from e

    def node_count(self) -> Optional[int]:
        try:
            return self.client.count_nodes()
        except ClusterAPIError as e:
            log.error("failed to list nodes: %s", e)
            return None

    def custom_ceph_conf_exists(self) -> bool:
        try:
            cm = self.client.get("v1", "ConfigMap", CUSTOM_CEPH_CONF_CONFIGMAP, self.namespace)
        except ClusterAPIError as e:
            log.warning("failed to look up configmap %s: %s", CUSTOM_CEPH_CONF_CONFIGMAP, e)
            return False
        return cm is not None

    def resolve_config(
        self, params: Mapping[str, str], version: ClusterVersion, ctx: ReconcileContext
    ) -> EffectiveConfig:
        """Resolve the pass config and probe the cephcsi image it names."""
        cfg = resolve_params(
            params,
            namespace=self.namespace,
            version=version,
            node_count=self.node_count(),
        )

        ctx.check("detecting the ceph csi image version")
        timeout: float = DETECT_VERSION_TIMEOUT_SECONDS
        remaining = ctx.remaining()
        if remaining is not None:
            timeout = min(timeout, remaining)

        csi_version = validate_csi_version(
            self.runner,
            cfg.csi_plugin_image,
            params,
            allow_unsupported=allow_unsupported_version(params),
            timeout=timeout,
        )

        if self.custom_ceph_conf_exists():
            if csi_version.supports_custom_ceph_conf():
                log.info("mounting custom ceph.conf from configmap %s", CUSTOM_CEPH_CONF_CONFIGMAP)
                cfg = cfg.model_copy(update={"mount_custom_ceph_conf": True})
            else:
                log.warning(
                    "configmap %s exists but ceph CSI %s cannot use it, ignoring",
                    CUSTOM_CEPH_CONF_CONFIGMAP, csi_version,
                )
        return cfg

    # ------------------------------------------------------------------
    # The pass
    # ------------------------------------------------------------------
    def reconcile(
        self, params: Mapping[str, str], ctx: Optional[ReconcileContext] = None
    ) -> ReconcileReport:
        ctx = ctx or ReconcileContext()
        report = ReconcileReport()
        self._run_ctx = new_ctx(env=self.namespace, context=self.kube_context)

        enablement = resolve_enablement(params)
        enabled = [DESCRIPTORS[c] for c, on in enablement.items() if on]
        disabled = [DESCRIPTORS[c] for c, on in enablement.items() if not on]

        try:
            ctx.check("reading the kubernetes version")
            version = self.server_version()
            self.bus.emit(CSIStarted(
                stage="reconcile",
                message=f"kubernetes {version}, enabled: "
                        + (", ".join(d.component.value for d in enabled) or "none"),
                **self._run_ctx,
            ))

            handle = select_variant(version)

            if enabled:
                cfg = self.resolve_config(params, version, ctx)
                if isinstance(handle, CurrentVariant):
                    ctx.check("removing legacy CSIDriver objects")
                    migrate_legacy_registrations(
                        self.client, version, [cfg.driver_name(d.component) for d in enabled]
                    )
                started = self._start_drivers(enabled, cfg, params, ctx, report)
                self._register_drivers(started, handle, cfg, params, ctx, report)
            else:
                log.info("no ceph csi driver is enabled, skipping the version probe")

            self._stop_drivers(disabled, handle, ctx, report)

        except CSIError as e:
            log.error("reconcile failed: %s", e)
            self.bus.emit(CSIFailed(stage="reconcile", error=str(e), **self._run_ctx))
            self._emit_summary(report, error=str(e))
            raise

        self._emit_summary(report)
        log.info("ceph csi reconcile finished: %s", report.summary())
        return report

    def _emit_summary(self, report: ReconcileReport, error: Optional[str] = None) -> None:
        ok = sum(1 for o in report.outcomes if o.status == "OK")
        status = "OK" if report.ok and error is None else "FAILED"
        self.bus.emit(ReconcileSummary(
            ok=ok, failed=len(report.failed), status=status, error=error, **self._run_ctx
        ))

    def _start_drivers(
        self,
        enabled: List[DriverDescriptor],
        cfg: EffectiveConfig,
        params: Mapping[str, str],
        ctx: ReconcileContext,
        report: ReconcileReport,
    ) -> List[DriverDescriptor]:
        started = []
        for desc in enabled:
            comp = desc.component.value
            try:
                self.start_component(desc, cfg, params, ctx)
            except PassAborted:
                raise
            except CSIError as e:
                log.error("failed to start %s driver: %s", desc.label, e)
                report.add(ComponentOutcome(comp, "start", "FAILED", str(e)))
                self.bus.emit(CSIFailed(stage=comp, error=str(e), **self._run_ctx))
                continue
            started.append(desc)
            report.add(ComponentOutcome(comp, "start", "OK"))
            self.bus.emit(CSISucceeded(stage=comp, message="driver workloads applied", **self._run_ctx))
        return started

    def _register_drivers(
        self,
        started: List[DriverDescriptor],
        handle: RegistrationHandle,
        cfg: EffectiveConfig,
        params: Mapping[str, str],
        ctx: ReconcileContext,
        report: ReconcileReport,
    ) -> None:
        for desc in started:
            comp = desc.component.value
            name = cfg.driver_name(desc.component)
            ctx.check(f"registering {name}")
            try:
                handle.create(self.client, name, desc.fs_group_policy(params), desc.attach_required)
            except ApplyError as e:
                log.error("failed to register %s driver: %s", desc.label, e)
                report.add(ComponentOutcome(comp, "register", "FAILED", str(e)))
                self.bus.emit(CSIFailed(stage=comp, error=str(e), **self._run_ctx))
                continue
            report.add(ComponentOutcome(comp, "register", "OK"))

    def _stop_drivers(
        self,
        disabled: List[DriverDescriptor],
        handle: RegistrationHandle,
        ctx: ReconcileContext,
        report: ReconcileReport,
    ) -> None:
        for desc in disabled:
            comp = desc.component.value
            try:
                self.stop_component(desc, handle, ctx)
            except PassAborted:
                raise
            except CSIError as e:
                log.error("failed to remove %s driver: %s", desc.label, e)
                report.add(ComponentOutcome(comp, "remove", "FAILED", str(e)))
                self.bus.emit(CSIFailed(stage=comp, error=str(e), **self._run_ctx))
                continue
            report.add(ComponentOutcome(comp, "remove", "OK"))
            self.bus.emit(DriverRemoved(
                component=comp,
                driver_name=desc.driver_name(driver_name_prefix(self.namespace)),
                **self._run_ctx,
            ))

    # ------------------------------------------------------------------
    # One driver
    # ------------------------------------------------------------------
    def start_component(
        self,
        desc: DriverDescriptor,
        cfg: EffectiveConfig,
        params: Mapping[str, str],
        ctx: ReconcileContext,
    ) -> None:
        comp = desc.component.value
        manifests = build_manifests(self.renderer, desc, cfg, params)

        # node plugin
        plugin = manifests.plugin
        self._set_owner(plugin)
        if self._apply_network(plugin):
            plugin["spec"]["template"]["spec"]["hostNetwork"] = False
        ctx.check(f"creating daemonset {desc.plugin_name}")
        self._create_once(plugin)
        self.bus.emit(CSIProgress(stage=comp, message=f"daemonset {desc.plugin_name} ready", **self._run_ctx))

        # provisioner
        dep = manifests.provisioner
        self._set_owner(dep)
        self._apply_network(dep)
        ctx.check(f"applying deployment {desc.provisioner_name}")
        self._apply(dep)
        self.bus.emit(CSIProgress(stage=comp, message=f"deployment {desc.provisioner_name} applied", **self._run_ctx))

        # metrics service
        if manifests.service is not None:
            svc = manifests.service
            self._set_owner(svc)
            ctx.check(f"applying service {desc.service_name}")
            self._apply(svc)

    def stop_component(
        self, desc: DriverDescriptor, handle: RegistrationHandle, ctx: ReconcileContext
    ) -> None:
        steps = (
            ("apps/v1", "DaemonSet", desc.plugin_name),
            ("apps/v1", "Deployment", desc.provisioner_name),
            ("v1", "Service", desc.service_name),
        )
        for api_version, kind, name in steps:
            ctx.check(f"deleting {kind} {name}")
            try:
                deleted = self.client.delete(api_version, kind, name, self.namespace)
            except ClusterAPIError as e:
                raise ApplyError("delete", kind, name, e) from e
            if deleted:
                log.info("deleted %s %s", kind, name)

        driver_name = desc.driver_name(driver_name_prefix(self.namespace))
        ctx.check(f"deleting CSIDriver {driver_name}")
        handle.delete(self.client, driver_name)

    # ------------------------------------------------------------------
    def _set_owner(self, obj: dict) -> None:
        try:
            self.owner.set_controller_reference(obj)
        except OwnerReferenceError as e:
            raise ApplyError("set owner reference on", obj["kind"], _name(obj), e) from e

    def _apply_network(self, obj: dict) -> bool:
        template_meta = obj["spec"]["template"].setdefault("metadata", {})
        try:
            return apply_network_config(self.network, self.namespace, template_meta)
        except (ClusterAPIError, NetworkConfigError) as e:
            raise ApplyError("apply network config to", obj["kind"], _name(obj), e) from e

    def _apply(self, obj: dict) -> None:
        try:
            self.client.create_or_update(obj)
        except ClusterAPIError as e:
            raise ApplyError("apply", obj["kind"], _name(obj), e) from e
        log.info("applied %s %s", obj["kind"], _name(obj))

    def _create_once(self, obj: dict) -> None:
        """
        Create *obj* unless it exists. An existing object must carry the
        same spec hash; anything else is left alone and reported.
        """
        kind, name = obj["kind"], _name(obj)
        digest = spec_hash(obj)
        obj["metadata"].setdefault("annotations", {})[SPEC_HASH_ANNOTATION] = digest

        try:
            existing = self.client.get(obj["apiVersion"], kind, name, self.namespace)
            if existing is None:
                self.client.create(obj)
                log.info("created %s %s", kind, name)
                return
        except ClusterAPIError as e:
            raise ApplyError("create", kind, name, e) from e

        current = (existing.get("metadata", {}).get("annotations") or {}).get(SPEC_HASH_ANNOTATION)
        if current != digest:
            raise ApplyError(
                "create", kind, name,
                "an object with a different spec already exists, delete it to roll out the new one",
            )
        log.debug("%s %s is unchanged", kind, name)
