"""Builders for the kubeconfig handed out to a claim."""

from __future__ import annotations

import copy
from typing import Any

import yaml

from ..constants import CONTROLLER_NAME, KIND_SECRET, KUBECONFIG_KEY, LABEL_MANAGED_BY
from ..models import Claim
from ..registry import KindRegistry
from ..utils.secrets import encode_secret_data


def load_base_kubeconfig(path: str) -> dict[str, Any]:
    """Parse the kubeconfig used as template for every synthesized kubeconfig.

    Args:
        path: Path to the target cluster kubeconfig file

    Returns:
        Parsed kubeconfig document

    Raises:
        ValueError: If the file is not a kubeconfig document
    """
    with open(path, encoding="utf-8") as f:
        kubeconfig = yaml.safe_load(f)
    return parse_base_kubeconfig(kubeconfig, source=path)


def parse_base_kubeconfig(kubeconfig: Any, source: str = "<inline>") -> dict[str, Any]:
    """Validate an already loaded kubeconfig document."""
    if not isinstance(kubeconfig, dict):
        raise ValueError(f"{source}: kubeconfig must be a mapping")
    if not kubeconfig.get("clusters"):
        raise ValueError(f"{source}: kubeconfig has no clusters")
    return kubeconfig


def synthesize_kubeconfig(base: dict[str, Any], token: str) -> dict[str, Any]:
    """Copy ``base`` with every user's authentication replaced by ``token``.

    Clusters, contexts and the current context are kept as they are.
    """
    kubeconfig = copy.deepcopy(base)
    for user in kubeconfig.get("users") or []:
        user["user"] = {"token": token}
    return kubeconfig


def render_kubeconfig(kubeconfig: dict[str, Any]) -> str:
    """Serialize a kubeconfig document to YAML."""
    return yaml.safe_dump(kubeconfig, default_flow_style=False, sort_keys=False)


def build_kubeconfig_secret(claim: Claim, registry: KindRegistry, kubeconfig_yaml: str) -> dict[str, Any]:
    """Secret in the claim's own namespace holding the kubeconfig.

    The managed-by label lets the control cluster Secret watch select it.
    """
    return registry.stamp(KIND_SECRET, {
        "metadata": {
            "name": claim.spec.secret_name,
            "namespace": claim.namespace,
            "labels": {LABEL_MANAGED_BY: CONTROLLER_NAME},
        },
        "type": "Opaque",
        "data": encode_secret_data({KUBECONFIG_KEY: kubeconfig_yaml}),
    })
