# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/rookcsi/config/models.py

from __future__ import annotations

from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator


class OwnerRef(BaseModel):
    """Object owning the CSI workloads. The uid is looked up when omitted."""
    api_version: str = "apps/v1"
    kind: str = "Deployment"
    name: str = "rook-ceph-operator"
    uid: Optional[str] = None


class OperatorConfig(BaseModel):
    namespace: str = "rook-ceph"
    service_account: str = "rook-ceph-system"
    kube_context: Optional[str] = None
    owner: OwnerRef = Field(default_factory=OwnerRef)

    # flat CSI parameter map, e.g. ROOK_CSI_ENABLE_RBD: "true"
    parameters: Dict[str, str] = Field(default_factory=dict)

    @field_validator("parameters", mode="before")
    @classmethod
    def _stringify(cls, v):
        if v is None:
            return {}
        if not isinstance(v, dict):
            raise ValueError("parameters must be a mapping")
        out = {}
        for key, value in v.items():
            if value is None:
                continue
            if isinstance(value, bool):
                value = "true" if value else "false"
            out[str(key)] = str(value)
        return out
