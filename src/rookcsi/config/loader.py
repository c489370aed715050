# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/rookcsi/config/loader.py

import logging
import os
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml

from .models import OperatorConfig

log = logging.getLogger("rookcsi")

# environment variables with these prefixes override config file parameters
PARAMETER_PREFIXES = ("ROOK_CSI_", "CSI_", "ROOK_CSIADDONS_", "CSIADDONS_")


def _load_yaml(path: Path) -> dict:
    """Load a YAML file, expanding ${ENV_VAR} references."""
    raw = path.read_text()
    expanded = os.path.expandvars(raw)
    return yaml.safe_load(expanded) or {}


def env_parameters(environ: Mapping[str, str]) -> Dict[str, str]:
    return {k: v for k, v in environ.items() if k.startswith(PARAMETER_PREFIXES)}


def load_config(
    path: Optional[str | Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> OperatorConfig:
    """
    Load and validate the operator config.

    Parameters are layered, later wins:

      1. built-in defaults (applied when a key is absent)
      2. ``parameters`` from the YAML file, if one is given
      3. process environment variables starting with one of
         ``ROOK_CSI_``, ``CSI_``, ``ROOK_CSIADDONS_``, ``CSIADDONS_``

    ``${ENV_VAR}`` placeholders in the YAML are expanded at load time.
    """
    data: dict = {}
    if path is not None:
        path = Path(path)
        data = _load_yaml(path)
        log.debug("loaded config from %s", path)

    cfg = OperatorConfig.model_validate(data)

    overrides = env_parameters(os.environ if environ is None else environ)
    if overrides:
        log.debug("environment overrides: %s", ", ".join(sorted(overrides)))
        cfg = cfg.model_copy(update={"parameters": {**cfg.parameters, **overrides}})
    return cfg
