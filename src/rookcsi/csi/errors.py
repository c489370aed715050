# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/rookcsi/csi/errors.py


class CSIError(RuntimeError):
    """Base class for CSI reconciliation failures."""


class SetupError(CSIError):
    """Raised when a required setting (e.g. an image) is missing."""


class ConfigValidationError(CSIError):
    """Raised when a numeric override cannot be used (ports)."""


class ProbeError(CSIError):
    """Raised when the cephcsi image version cannot be verified."""


class ProbeJobFailed(ProbeError):
    def __init__(self, exit_code: int):
        super().__init__(f"ceph CSI version job returned {exit_code}")
        self.exit_code = exit_code


class ProbeParseError(ProbeError):
    """Raised when the version job output holds no cephcsi version."""


class UnsupportedVersionError(ProbeError):
    """Raised when the cephcsi image is older than the minimum version."""


class RenderError(CSIError):
    """Raised when a manifest template cannot be rendered."""


class OwnerReferenceError(CSIError):
    """Raised when a controller reference cannot be set on an object."""


class PassAborted(CSIError):
    """Raised when a pass is cancelled or runs past its deadline."""


class ApplyError(CSIError):
    """
    A create/update/delete/owner-reference failure for one object.
    Carries the object kind, name and the action that failed.
    """

    def __init__(self, action: str, kind: str, name: str, cause: Exception | str):
        super().__init__(f"failed to {action} {kind} {name!r}: {cause}")
        self.action = action
        self.kind = kind
        self.name = name


class NetworkConfigError(CSIError):
    """Raised when a cluster network declaration cannot be applied."""
