# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/rookcsi/csi/events.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from rookcsi.observers.events import BaseEvent


@dataclass(frozen=True)
class CSIStarted(BaseEvent):
    stage: str
    message: str


@dataclass(frozen=True)
class CSIProgress(BaseEvent):
    stage: str
    message: str


@dataclass(frozen=True)
class CSIFailed(BaseEvent):
    stage: str
    error: str


@dataclass(frozen=True)
class CSISucceeded(BaseEvent):
    stage: str
    message: str


@dataclass(frozen=True)
class DriverRemoved(BaseEvent):
    component: str
    driver_name: str


@dataclass(frozen=True)
class ReconcileSummary(BaseEvent):
    ok: int
    failed: int
    status: str          # "OK" or "FAILED"
    error: Optional[str] = None
