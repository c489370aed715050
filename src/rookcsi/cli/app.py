# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/rookcsi/cli/app.py
from __future__ import annotations

import time
from pathlib import Path
from typing import List, Optional

import typer
import yaml

from rookcsi.config.loader import load_config
from rookcsi.config.models import OperatorConfig
from rookcsi.csi.components import DESCRIPTORS, DriverComponent
from rookcsi.csi.errors import CSIError, SetupError
from rookcsi.csi.constants import DEFAULT_CSI_PLUGIN_IMAGE
from rookcsi.csi.params import allow_unsupported_version, get_value, resolve_enablement, resolve_params
from rookcsi.csi.reconciler import CSIReconciler, ReconcileContext, build_manifests
from rookcsi.csi.version import ClusterVersion, validate_csi_version
from rookcsi.k8s.client import ClusterAPIError, ClusterClient, load_api_client
from rookcsi.k8s.jobs import JobVersionRunner
from rookcsi.k8s.owner import OwnerInfo
from rookcsi.logging.log import init_logging
from rookcsi.observers.console import ConsoleObserver
from rookcsi.observers.dispatcher import EventBus
from rookcsi.observers.logger import LoggerObserver
from rookcsi.templates.renderer import TemplateRenderer


# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="Ceph CSI driver reconciler")

CONFIG_OPTION = typer.Option(None, "--config", "-c", help="Operator config YAML")


# ------------------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------------------

def resolve_owner(client: ClusterClient, cfg: OperatorConfig) -> OwnerInfo:
    """Owner from the config, looking up its uid in the cluster when missing."""
    ref = cfg.owner
    uid = ref.uid
    if not uid:
        obj = client.get(ref.api_version, ref.kind, ref.name, cfg.namespace)
        if obj is None:
            raise SetupError(f"owner {ref.kind} {ref.name!r} not found in {cfg.namespace}")
        uid = obj.get("metadata", {}).get("uid", "")
    return OwnerInfo(api_version=ref.api_version, kind=ref.kind, name=ref.name, uid=uid)


def parse_components(value: str) -> List[DriverComponent]:
    if value == "all":
        return list(DriverComponent)
    out = []
    for item in (i.strip() for i in value.split(",") if i.strip()):
        try:
            out.append(DriverComponent(item))
        except ValueError:
            raise typer.BadParameter(
                f"Unknown component {item!r}. "
                f"Valid: {', '.join(c.value for c in DriverComponent)} or all"
            ) from None
    return out


# ------------------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------------------

@app.command()
def reconcile(
    config: Optional[Path] = CONFIG_OPTION,
    context: Optional[str] = typer.Option(None, "--context", help="kube-context"),
    interval: int = typer.Option(0, "--interval", help="Seconds between passes, 0 runs once"),
    deadline: int = typer.Option(0, "--deadline", help="Per-pass deadline in seconds, 0 for none"),
    debug: bool = typer.Option(False, "--debug"),
):
    """Run reconciliation passes against the cluster."""
    logger, run_id, log_path = init_logging(verbose=debug)

    typer.echo("")
    typer.secho("Ceph CSI reconcile started", bold=True)
    typer.echo(f"  Run ID   : {run_id}")
    typer.echo(f"  Logs     : {log_path}")
    typer.echo("")

    cfg = load_config(config)
    kube_context = context or cfg.kube_context

    api_client = load_api_client(kube_context)
    client = ClusterClient(api_client)

    try:
        owner = resolve_owner(client, cfg)
    except (SetupError, ClusterAPIError) as e:
        typer.secho(f"[rookcsi] {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    runner = JobVersionRunner(
        api_client,
        namespace=cfg.namespace,
        service_account=cfg.service_account,
        owner=owner,
    )
    bus = EventBus(observers=[ConsoleObserver(), LoggerObserver(logger)])
    reconciler = CSIReconciler(
        client,
        runner,
        namespace=cfg.namespace,
        owner=owner,
        bus=bus,
        kube_context=kube_context,
    )

    while True:
        ctx = ReconcileContext.with_timeout(deadline)
        exit_code = 0
        try:
            report = reconciler.reconcile(cfg.parameters, ctx)
            if not report.ok:
                exit_code = 1
            typer.echo(f"[rookcsi] {report.summary()}")
        except CSIError as e:
            typer.secho(f"[rookcsi] reconcile failed: {e}", fg=typer.colors.RED)
            exit_code = 1
        except KeyboardInterrupt:
            ctx.cancel()
            typer.echo("[rookcsi] interrupted")
            raise typer.Exit(code=130)

        if interval <= 0:
            raise typer.Exit(code=exit_code)

        logger.debug("next pass in %ds", interval)
        try:
            time.sleep(interval)
        except KeyboardInterrupt:
            raise typer.Exit(code=exit_code)


@app.command()
def render(
    config: Optional[Path] = CONFIG_OPTION,
    component: str = typer.Option("all", "--component", help="rbd,cephfs,nfs or all"),
    kube_version: str = typer.Option("1.24", "--kube-version", help="Assumed kubernetes version"),
    nodes: int = typer.Option(3, "--nodes", help="Assumed node count"),
    out: Optional[Path] = typer.Option(None, "--out", help="Write manifests to this file"),
):
    """Render the driver manifests offline, without touching a cluster."""
    cfg = load_config(config)
    major, _, minor = kube_version.partition(".")
    try:
        version = ClusterVersion.parse(major, minor)
    except ValueError as e:
        raise typer.BadParameter(str(e)) from None

    try:
        eff = resolve_params(cfg.parameters, namespace=cfg.namespace, version=version, node_count=nodes)
    except CSIError as e:
        typer.secho(f"[rookcsi] {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    enablement = resolve_enablement(cfg.parameters)
    renderer = TemplateRenderer()
    docs = []
    for comp in parse_components(component):
        if not enablement[comp]:
            typer.echo(f"# {comp.value} is disabled, skipped", err=True)
            continue
        try:
            manifests = build_manifests(renderer, DESCRIPTORS[comp], eff, cfg.parameters)
        except CSIError as e:
            typer.secho(f"[rookcsi] {e}", fg=typer.colors.RED)
            raise typer.Exit(code=1)
        docs.extend(manifests.objects())

    text = yaml.safe_dump_all(docs, sort_keys=False)
    if out:
        out.write_text(text)
        typer.echo(f"wrote {len(docs)} objects to {out}")
    else:
        typer.echo(text)


@app.command("detect-version")
def detect_version(
    config: Optional[Path] = CONFIG_OPTION,
    context: Optional[str] = typer.Option(None, "--context", help="kube-context"),
    debug: bool = typer.Option(False, "--debug"),
):
    """Run the cephcsi version probe Job and print the detected version."""
    init_logging(verbose=debug)
    cfg = load_config(config)

    api_client = load_api_client(context or cfg.kube_context)
    client = ClusterClient(api_client)
    image = get_value(cfg.parameters, "ROOK_CSI_CEPH_IMAGE", DEFAULT_CSI_PLUGIN_IMAGE).strip()
    try:
        owner = resolve_owner(client, cfg)
        runner = JobVersionRunner(
            api_client,
            namespace=cfg.namespace,
            service_account=cfg.service_account,
            owner=owner,
        )
        csi_version = validate_csi_version(
            runner,
            image,
            cfg.parameters,
            allow_unsupported=allow_unsupported_version(cfg.parameters),
        )
    except (CSIError, ClusterAPIError) as e:
        typer.secho(f"[rookcsi] {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    typer.echo(f"{image}: {csi_version}")


if __name__ == "__main__":
    app()
