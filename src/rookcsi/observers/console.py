# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/rookcsi/observers/console.py
import typer

from .events import BaseEvent

_CONTEXT_FIELDS = ("ts", "run_id", "env", "context")


class ConsoleObserver:
    def notify(self, event: BaseEvent) -> None:
        d = event.dict()
        k = event.__class__.__name__
        data = ", ".join(f"{x}={y}" for x, y in d.items() if x not in _CONTEXT_FIELDS)
        color = typer.colors.RED if k.endswith("Failed") else None
        typer.secho(f"[{d['ts']}] {k} ns={d['env']} ctx={d['context']} {{{data}}}", fg=color)
