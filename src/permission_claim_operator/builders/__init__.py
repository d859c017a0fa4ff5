"""Builders for the Kubernetes objects derived from a PermissionClaim."""

from .kubeconfig import (
    build_kubeconfig_secret,
    load_base_kubeconfig,
    render_kubeconfig,
    synthesize_kubeconfig,
)
from .rbac import (
    ObjectRef,
    build_cluster_role,
    build_cluster_role_binding,
    build_role,
    build_role_binding,
    build_service_account,
    target_object_refs,
)

__all__ = [
    "ObjectRef",
    "build_service_account",
    "build_role",
    "build_cluster_role",
    "build_role_binding",
    "build_cluster_role_binding",
    "build_kubeconfig_secret",
    "load_base_kubeconfig",
    "render_kubeconfig",
    "synthesize_kubeconfig",
    "target_object_refs",
]
