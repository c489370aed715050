# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/rookcsi/k8s/owner.py

from __future__ import annotations

from dataclasses import dataclass

from rookcsi.csi.errors import OwnerReferenceError


@dataclass(frozen=True)
class OwnerInfo:
    """
    The object that owns every CSI workload object (usually the operator
    Deployment). Deleting it garbage-collects the drivers.
    """
    api_version: str
    kind: str
    name: str
    uid: str
    block_owner_deletion: bool = True

    def reference(self) -> dict:
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "name": self.name,
            "uid": self.uid,
            "controller": True,
            "blockOwnerDeletion": self.block_owner_deletion,
        }

    def set_controller_reference(self, obj: dict) -> None:
        """
        Make this owner the controller of *obj*. Re-applying the same
        owner is a no-op; an object controlled by someone else is an error.
        """
        if not self.uid or not self.name:
            raise OwnerReferenceError(
                f"owner {self.kind} {self.name!r} has no uid, cannot own objects"
            )

        meta = obj.setdefault("metadata", {})
        refs = [r for r in (meta.get("ownerReferences") or []) if r.get("uid") != self.uid]

        for ref in refs:
            if ref.get("controller"):
                raise OwnerReferenceError(
                    f"{obj.get('kind')} {meta.get('name')!r} is already controlled by "
                    f"{ref.get('kind')} {ref.get('name')!r}"
                )

        refs.append(self.reference())
        meta["ownerReferences"] = refs
