# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/rookcsi/templates/renderer.py

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import yaml
from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateError

from rookcsi.csi.errors import RenderError

TEMPLATES_DIR = Path(__file__).resolve().parent / "csi"


class TemplateRenderer:
    """
    Renders the CSI manifest templates into Kubernetes objects.

    Every referenced parameter must exist; a typo in a template fails
    the render instead of producing an empty field.
    """

    def __init__(self, templates_dir: Optional[Path] = None):
        self.templates_dir = Path(templates_dir or TEMPLATES_DIR)
        self.env = Environment(
            loader=FileSystemLoader(str(self.templates_dir)),
            autoescape=False,
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
        )
        self.env.filters["to_json"] = _to_json

    def render_text(self, template_name: str, context: dict) -> str:
        try:
            tmpl = self.env.get_template(template_name)
            return tmpl.render(**context)
        except TemplateError as e:
            raise RenderError(f"failed to render {template_name}: {e}") from e

    def render(self, template_name: str, context: dict, kind: Optional[str] = None) -> dict:
        text = self.render_text(template_name, context)
        try:
            obj = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise RenderError(f"{template_name} is not valid YAML: {e}") from e

        if not isinstance(obj, dict) or "kind" not in obj:
            raise RenderError(f"{template_name} did not render a Kubernetes object")
        if kind and obj["kind"] != kind:
            raise RenderError(f"{template_name} rendered a {obj['kind']}, expected {kind}")

        meta = obj.setdefault("metadata", {})
        if "namespace" in context:
            meta.setdefault("namespace", context["namespace"])
        return obj


def _to_json(value) -> str:
    # JSON is valid YAML, label values stay strings
    return json.dumps(value)
