"""Tests for the kind-keyed cluster client."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from kubernetes.client.exceptions import ApiException
from prometheus_client import REGISTRY

from permission_claim_operator.clients import (
    MERGE_PATCH,
    ClusterClient,
    _snake,
    load_control_api_client,
)
from permission_claim_operator.constants import (
    KIND_CLUSTER_ROLE,
    KIND_PERMISSION_CLAIM,
    KIND_ROLE,
    KIND_SERVICE_ACCOUNT,
)
from permission_claim_operator.utils.rate_limit import RateLimiter


@pytest.fixture
def cluster(registry):
    cluster = ClusterClient("test", MagicMock(), registry, request_timeout=5.0, rate_limiter=RateLimiter(0))
    cluster._typed_apis = {"": MagicMock(), "rbac.authorization.k8s.io": MagicMock()}
    cluster._custom = MagicMock()
    return cluster


def rbac(cluster):
    return cluster._typed_apis["rbac.authorization.k8s.io"]


class TestSnake:
    @pytest.mark.parametrize("kind,expected", [
        ("Role", "role"),
        ("ClusterRoleBinding", "cluster_role_binding"),
        ("ServiceAccount", "service_account"),
    ])
    def test_snake(self, kind, expected):
        assert _snake(kind) == expected


class TestClusterClient:
    """Test cases for ClusterClient."""

    def test_get_namespaced_typed(self, cluster):
        rbac(cluster).read_namespaced_role.return_value = {"kind": "Role"}

        assert cluster.get(KIND_ROLE, "demo", "team-a") == {"kind": "Role"}
        rbac(cluster).read_namespaced_role.assert_called_once_with(
            namespace="team-a", name="demo", _request_timeout=5.0,
        )

    def test_get_cluster_scoped_typed(self, cluster):
        rbac(cluster).read_cluster_role.return_value = {"kind": "ClusterRole"}

        cluster.get(KIND_CLUSTER_ROLE, "demo")

        rbac(cluster).read_cluster_role.assert_called_once_with(name="demo", _request_timeout=5.0)

    def test_get_not_found(self, cluster):
        cluster._typed_apis[""].read_namespaced_service_account.side_effect = ApiException(status=404)

        assert cluster.get(KIND_SERVICE_ACCOUNT, "demo", "team-a") is None

    def test_get_other_errors_propagate(self, cluster):
        cluster._typed_apis[""].read_namespaced_service_account.side_effect = ApiException(status=403)

        with pytest.raises(ApiException):
            cluster.get(KIND_SERVICE_ACCOUNT, "demo", "team-a")

    def test_get_custom(self, cluster):
        cluster._custom.get_namespaced_custom_object.return_value = {"kind": KIND_PERMISSION_CLAIM}

        cluster.get(KIND_PERMISSION_CLAIM, "demo", "team-a")

        cluster._custom.get_namespaced_custom_object.assert_called_once_with(
            group="permissions.thetechnick.ninja",
            version="v1alpha1",
            plural="permissionclaims",
            namespace="team-a",
            name="demo",
            _request_timeout=5.0,
        )

    def test_namespace_required(self, cluster):
        with pytest.raises(ValueError):
            cluster.get(KIND_ROLE, "demo")

    def test_create_uses_body_namespace(self, cluster):
        body = {"metadata": {"name": "demo", "namespace": "team-a"}}

        cluster.create(KIND_ROLE, body)

        rbac(cluster).create_namespaced_role.assert_called_once_with(
            namespace="team-a", body=body, _request_timeout=5.0,
        )

    def test_replace(self, cluster):
        body = {"metadata": {"name": "demo", "resourceVersion": "3"}}

        cluster.replace(KIND_CLUSTER_ROLE, body)

        rbac(cluster).replace_cluster_role.assert_called_once_with(name="demo", body=body, _request_timeout=5.0)

    def test_patch_is_merge_patch(self, cluster):
        cluster.patch(KIND_PERMISSION_CLAIM, "demo", "team-a", {"metadata": {}})

        kwargs = cluster._custom.patch_namespaced_custom_object.call_args.kwargs
        assert kwargs["_content_type"] == MERGE_PATCH

    def test_patch_status(self, cluster):
        cluster.patch_status(KIND_PERMISSION_CLAIM, "demo", "team-a", {"status": {}})

        assert cluster._custom.patch_namespaced_custom_object_status.called

    def test_patch_status_requires_custom_kind(self, cluster):
        with pytest.raises(ValueError):
            cluster.patch_status(KIND_ROLE, "demo", "team-a", {})

    def test_delete(self, cluster):
        assert cluster.delete(KIND_ROLE, "demo", "team-a") is True

    def test_delete_not_found(self, cluster):
        rbac(cluster).delete_namespaced_role.side_effect = ApiException(status=404)

        assert cluster.delete(KIND_ROLE, "demo", "team-a") is False

    def test_list_with_selectors(self, cluster):
        cluster._typed_apis[""].list_namespaced_secret.return_value = {"items": [{"metadata": {"name": "a"}}]}

        items = cluster.list("Secret", "team-a", label_selector="a=b", field_selector="type=x")

        assert items == [{"metadata": {"name": "a"}}]
        cluster._typed_apis[""].list_namespaced_secret.assert_called_once_with(
            namespace="team-a", label_selector="a=b", field_selector="type=x", _request_timeout=5.0,
        )

    def test_list_function(self, cluster):
        fn, args = cluster.list_function(KIND_ROLE)
        assert fn is rbac(cluster).list_role_for_all_namespaces
        assert args == {}

        fn, args = cluster.list_function(KIND_CLUSTER_ROLE)
        assert fn is rbac(cluster).list_cluster_role

    def test_api_calls_are_counted(self, cluster):
        labels = {"cluster": "test", "operation": "get_role", "result": "not_found"}
        before = REGISTRY.get_sample_value("permission_claim_operator_api_call_total", labels) or 0.0
        rbac(cluster).read_namespaced_role.side_effect = ApiException(status=404)

        cluster.get(KIND_ROLE, "demo", "team-a")

        assert REGISTRY.get_sample_value("permission_claim_operator_api_call_total", labels) == before + 1

    def test_to_dict(self, cluster):
        cluster.api_client.sanitize_for_serialization.return_value = {"kind": "Role"}

        assert cluster.to_dict(object()) == {"kind": "Role"}
        assert cluster.to_dict(None) == {}


class TestLoadClients:
    @patch("permission_claim_operator.clients.config")
    def test_control_falls_back_to_kubeconfig(self, mock_config):
        mock_config.ConfigException = Exception
        mock_config.load_incluster_config.side_effect = Exception("not in cluster")

        load_control_api_client()

        mock_config.load_kube_config.assert_called_once()
