# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/rookcsi/csi/version.py

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Mapping, Optional, Protocol, Sequence, Tuple

from rookcsi.csi.constants import (
    DETECT_VERSION_TIMEOUT_SECONDS,
    PROVISIONER_NODE_AFFINITY_KEY,
    PROVISIONER_TOLERATIONS_KEY,
)
from rookcsi.csi.errors import (
    ProbeError,
    ProbeJobFailed,
    ProbeParseError,
    UnsupportedVersionError,
)
from rookcsi.csi.overrides import get_node_affinity, get_tolerations

log = logging.getLogger("rookcsi")

_DIGITS = re.compile(r"\d+")
_CEPHCSI_VERSION = re.compile(r"v(\d+)\.(\d+)\.(\d+)")


@dataclass(frozen=True, order=True)
class ClusterVersion:
    major: int
    minor: int

    @classmethod
    def parse(cls, major: str, minor: str) -> "ClusterVersion":
        """
        Parse the strings reported by the /version endpoint.
        Managed distributions report minors like "21+".
        """
        def _num(value: str, field: str) -> int:
            m = _DIGITS.search(str(value))
            if not m:
                raise ValueError(f"invalid kubernetes {field} version {value!r}")
            return int(m.group(0))

        return cls(major=_num(major, "major"), minor=_num(minor, "minor"))

    def at_least(self, minimum: Tuple[int, int]) -> bool:
        return (self.major, self.minor) >= minimum

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}"


@dataclass(frozen=True, order=True)
class CephCSIVersion:
    major: int
    minor: int
    bugfix: int

    def __str__(self) -> str:
        return f"v{self.major}.{self.minor}.{self.bugfix}"

    def supported(self) -> bool:
        return self >= MINIMUM_CEPHCSI_VERSION

    def supports_custom_ceph_conf(self) -> bool:
        return self >= CUSTOM_CEPH_CONF_CEPHCSI_VERSION


MINIMUM_CEPHCSI_VERSION = CephCSIVersion(3, 4, 0)
CUSTOM_CEPH_CONF_CEPHCSI_VERSION = CephCSIVersion(3, 5, 0)


def extract_cephcsi_version(output: str) -> CephCSIVersion:
    """
    Pull the version out of `cephcsi --version`, e.g.

        Cephcsi Version: v3.6.0
        Git Commit: ...
    """
    m = _CEPHCSI_VERSION.search(output or "")
    if not m:
        raise ProbeParseError(f"failed to parse ceph CSI version from {output!r}")
    return CephCSIVersion(*(int(x) for x in m.groups()))


class VersionRunner(Protocol):
    def schedule(
        self,
        image: str,
        args: Sequence[str],
        timeout: float,
        *,
        tolerations: Sequence[dict] = (),
        node_affinity: Optional[dict] = None,
    ) -> Tuple[str, int]: ...


def validate_csi_version(
    runner: VersionRunner,
    image: str,
    params: Mapping[str, str],
    *,
    allow_unsupported: bool = False,
    timeout: float = DETECT_VERSION_TIMEOUT_SECONDS,
) -> CephCSIVersion:
    """
    Run `cephcsi --version` against the configured image and check the
    result against the minimum supported version.

    The job is scheduled with the shared provisioner tolerations and node
    affinity so it lands where the provisioners are allowed to run.
    """
    log.info("detecting the ceph csi image version for image %r", image)

    tolerations = get_tolerations(params, PROVISIONER_TOLERATIONS_KEY, [])
    node_affinity = get_node_affinity(params, PROVISIONER_NODE_AFFINITY_KEY, None)

    try:
        stdout, exit_code = runner.schedule(
            image,
            ["--version"],
            timeout,
            tolerations=tolerations,
            node_affinity=node_affinity,
        )
    except (RuntimeError, TimeoutError, OSError) as e:
        raise ProbeError(f"failed to complete ceph CSI version job: {e}") from e

    if exit_code != 0:
        raise ProbeJobFailed(exit_code)

    version = extract_cephcsi_version(stdout)
    log.info("Detected ceph CSI image version: %s", version)

    if not version.supported():
        if allow_unsupported:
            log.warning(
                "ceph CSI image %s is older than %s; continuing because "
                "unsupported versions are allowed",
                version, MINIMUM_CEPHCSI_VERSION,
            )
            return version
        raise UnsupportedVersionError(
            f"ceph CSI image needs to be at least version {MINIMUM_CEPHCSI_VERSION}, "
            f"found {version}"
        )
    return version
