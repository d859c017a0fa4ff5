"""Kind-keyed access to one Kubernetes cluster."""

from __future__ import annotations

import re
import time
from typing import Any, Callable

from kubernetes import client, config
from kubernetes.client.exceptions import ApiException

from . import metrics
from .registry import KindInfo, KindRegistry
from .utils.errors import is_conflict, is_not_found
from .utils.rate_limit import RateLimiter, record_rate_limit_error

MERGE_PATCH = "application/merge-patch+json"


def _snake(kind: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", kind).lower()


class ClusterClient:
    """Read and write objects of registered kinds in one cluster.

    Built-in kinds go through the typed ``CoreV1Api`` / ``RbacAuthorizationV1Api``
    methods, custom kinds through ``CustomObjectsApi``. Objects are returned as
    plain camelCase dicts, the same shape kopf hands to handlers.
    """

    def __init__(
        self,
        name: str,
        api_client: client.ApiClient,
        registry: KindRegistry,
        request_timeout: float | None = None,
        rate_limiter: RateLimiter | None = None,
    ):
        self.name = name
        self.registry = registry
        self.api_client = api_client
        self.request_timeout = request_timeout
        self.rate_limiter = rate_limiter or RateLimiter()
        self._typed_apis = {
            "": client.CoreV1Api(api_client),
            "rbac.authorization.k8s.io": client.RbacAuthorizationV1Api(api_client),
        }
        self._custom = client.CustomObjectsApi(api_client)

    # Conversion

    def to_dict(self, obj: Any) -> dict[str, Any]:
        """Convert a typed model (or dict) into a camelCase dict."""
        if obj is None:
            return {}
        if isinstance(obj, dict):
            return obj
        return self.api_client.sanitize_for_serialization(obj)

    # Operations

    def get(self, kind: str, name: str, namespace: str | None = None) -> dict[str, Any] | None:
        """Read an object; returns None when it does not exist."""
        info = self.registry.lookup(kind)
        try:
            if info.custom:
                return self._call("get", info, self._custom_method("get", info), **self._custom_args(info, namespace), name=name)
            return self._call("get", info, self._typed_method("read", info), **self._scope(info, namespace), name=name)
        except ApiException as e:
            if is_not_found(e):
                return None
            raise

    def list(
        self,
        kind: str,
        namespace: str | None = None,
        label_selector: str | None = None,
        field_selector: str | None = None,
    ) -> list[dict[str, Any]]:
        """List objects of a kind, in one namespace or across the cluster."""
        info = self.registry.lookup(kind)
        fn, args = self.list_function(kind, namespace)
        if label_selector:
            args["label_selector"] = label_selector
        if field_selector:
            args["field_selector"] = field_selector
        result = self._call("list", info, fn, **args)
        return [self.to_dict(item) for item in (result.get("items") or [])]

    def create(self, kind: str, body: dict[str, Any]) -> dict[str, Any]:
        """Create an object; a 409 AlreadyExists is raised to the caller."""
        info = self.registry.lookup(kind)
        namespace = body.get("metadata", {}).get("namespace")
        if info.custom:
            return self._call("create", info, self._custom_method("create", info), **self._custom_args(info, namespace), body=body)
        return self._call("create", info, self._typed_method("create", info), **self._scope(info, namespace), body=body)

    def replace(self, kind: str, body: dict[str, Any]) -> dict[str, Any]:
        """Replace an object. ``metadata.resourceVersion`` in ``body`` guards against stale writes."""
        info = self.registry.lookup(kind)
        meta = body.get("metadata", {})
        scope = self._custom_args(info, meta.get("namespace")) if info.custom else self._scope(info, meta.get("namespace"))
        method = self._custom_method("replace", info) if info.custom else self._typed_method("replace", info)
        return self._call("replace", info, method, **scope, name=meta["name"], body=body)

    def patch(self, kind: str, name: str, namespace: str | None, body: dict[str, Any]) -> dict[str, Any]:
        """Apply a JSON merge patch."""
        info = self.registry.lookup(kind)
        if info.custom:
            return self._call(
                "patch", info, self._custom_method("patch", info),
                **self._custom_args(info, namespace), name=name, body=body, _content_type=MERGE_PATCH,
            )
        return self._call(
            "patch", info, self._typed_method("patch", info),
            **self._scope(info, namespace), name=name, body=body, _content_type=MERGE_PATCH,
        )

    def patch_status(self, kind: str, name: str, namespace: str | None, body: dict[str, Any]) -> dict[str, Any]:
        """Apply a JSON merge patch to the status subresource of a custom object."""
        info = self.registry.lookup(kind)
        if not info.custom:
            raise ValueError(f"status patches are only supported for custom kinds, not {kind}")
        method = getattr(self._custom, f"patch_{self._custom_scope(info)}_custom_object_status")
        return self._call(
            "patch_status", info, method,
            **self._custom_args(info, namespace), name=name, body=body, _content_type=MERGE_PATCH,
        )

    def delete(self, kind: str, name: str, namespace: str | None = None) -> bool:
        """Delete an object; returns False if it was already gone."""
        info = self.registry.lookup(kind)
        try:
            if info.custom:
                self._call("delete", info, self._custom_method("delete", info), **self._custom_args(info, namespace), name=name)
            else:
                self._call("delete", info, self._typed_method("delete", info), **self._scope(info, namespace), name=name)
        except ApiException as e:
            if is_not_found(e):
                return False
            raise
        return True

    def list_function(self, kind: str, namespace: str | None = None) -> tuple[Callable[..., Any], dict[str, Any]]:
        """Return the list callable and its arguments, suitable for ``kubernetes.watch.Watch.stream``."""
        info = self.registry.lookup(kind)
        if info.custom:
            if namespace:
                return self._custom.list_namespaced_custom_object, self._custom_args(info, namespace)
            return self._custom.list_cluster_custom_object, {"group": info.group, "version": info.version, "plural": info.plural}
        api = self._typed_api(info)
        snake = _snake(info.kind)
        if not info.namespaced:
            return getattr(api, f"list_{snake}"), {}
        if namespace:
            return getattr(api, f"list_namespaced_{snake}"), {"namespace": namespace}
        return getattr(api, f"list_{snake}_for_all_namespaces"), {}

    # Internals

    def _typed_api(self, info: KindInfo) -> Any:
        try:
            return self._typed_apis[info.group]
        except KeyError:
            raise ValueError(f"no typed API for group {info.group!r} (kind {info.kind})") from None

    def _typed_method(self, verb: str, info: KindInfo) -> Callable[..., Any]:
        prefix = "namespaced_" if info.namespaced else ""
        return getattr(self._typed_api(info), f"{verb}_{prefix}{_snake(info.kind)}")

    def _custom_scope(self, info: KindInfo) -> str:
        return "namespaced" if info.namespaced else "cluster"

    def _custom_method(self, verb: str, info: KindInfo) -> Callable[..., Any]:
        return getattr(self._custom, f"{verb}_{self._custom_scope(info)}_custom_object")

    def _custom_args(self, info: KindInfo, namespace: str | None) -> dict[str, Any]:
        args: dict[str, Any] = {"group": info.group, "version": info.version, "plural": info.plural}
        args.update(self._scope(info, namespace))
        return args

    def _scope(self, info: KindInfo, namespace: str | None) -> dict[str, Any]:
        if not info.namespaced:
            return {}
        if not namespace:
            raise ValueError(f"namespace is required for namespaced kind {info.kind}")
        return {"namespace": namespace}

    def _call(self, operation: str, info: KindInfo, fn: Callable[..., Any], **kwargs: Any) -> dict[str, Any]:
        op_label = f"{operation}_{_snake(info.kind)}"
        if self.request_timeout:
            kwargs.setdefault("_request_timeout", self.request_timeout)
        self.rate_limiter.wait()
        start_time = time.time()
        try:
            result = fn(**kwargs)
            metrics.api_call_total.labels(cluster=self.name, operation=op_label, result="success").inc()
            return self.to_dict(result)
        except ApiException as e:
            record_rate_limit_error(e, self.name)
            result_label = "not_found" if is_not_found(e) else "conflict" if is_conflict(e) else "error"
            metrics.api_call_total.labels(cluster=self.name, operation=op_label, result=result_label).inc()
            raise
        finally:
            duration = time.time() - start_time
            metrics.api_call_duration_seconds.labels(cluster=self.name, operation=op_label).observe(duration)


def load_control_api_client() -> client.ApiClient:
    """API client for the control cluster: in-cluster config, falling back to the local kubeconfig."""
    try:
        config.load_incluster_config()
    except config.ConfigException:
        config.load_kube_config()
    return client.ApiClient()


def load_target_api_client(kubeconfig_path: str) -> client.ApiClient:
    """API client for the target cluster, built from its kubeconfig file."""
    return config.new_client_from_config(config_file=kubeconfig_path)
