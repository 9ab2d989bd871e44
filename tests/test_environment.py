"""ClusterEnvironment — environment snapshot and derived names/URLs."""

import pytest

from peerrelay.config import Settings
from peerrelay.discovery.environment import (
    ClusterEnvironment,
    build_api_base_url,
    derive_workload_name,
)


@pytest.mark.parametrize(
    "pod_name, workload",
    [
        ("myapp-7f8c9-abcde", "myapp-7f8c9"),
        ("myapp-0", "myapp"),
        ("standalone", "standalone"),
    ],
)
def test_derive_workload_name(pod_name, workload):
    assert derive_workload_name(pod_name) == workload


@pytest.mark.parametrize(
    "port, url",
    [
        (443, "https://10.0.0.1"),
        (80, "http://10.0.0.1"),
        (6443, "https://10.0.0.1:6443"),
    ],
)
def test_api_base_url(port, url):
    assert build_api_base_url("10.0.0.1", port) == url


def _settings(tmp_path, **overrides):
    return Settings(namespace_path=str(tmp_path / "namespace"), **overrides)


def test_from_environ_outside_cluster(tmp_path):
    cluster = ClusterEnvironment.from_environ(_settings(tmp_path), environ={})

    assert cluster.in_cluster is False
    assert cluster.api_base_url is None
    assert cluster.workload_name is None
    assert cluster.namespace == "default"


def test_from_environ_inside_cluster(tmp_path):
    (tmp_path / "namespace").write_text("payments\n")
    environ = {
        "KUBERNETES_SERVICE_HOST": "10.0.0.1",
        "KUBERNETES_SERVICE_PORT": "443",
        "HOSTNAME": "myapp-7f8c9-abcde",
    }

    cluster = ClusterEnvironment.from_environ(_settings(tmp_path), environ=environ)

    assert cluster.in_cluster is True
    assert cluster.api_base_url == "https://10.0.0.1"
    assert cluster.namespace == "payments"
    assert cluster.workload_name == "myapp-7f8c9"
    assert cluster.resource_path() == "/api/v1/namespaces/payments/endpoints/myapp-7f8c9"


def test_pod_namespace_env_wins_over_file(tmp_path):
    (tmp_path / "namespace").write_text("from-file")
    environ = {"POD_NAMESPACE": "from-env", "POD_NAME": "web-1"}

    cluster = ClusterEnvironment.from_environ(_settings(tmp_path), environ=environ)

    assert cluster.namespace == "from-env"
    assert cluster.pod_name == "web-1"


def test_fixed_service_name_overrides_derivation(tmp_path):
    environ = {"HOSTNAME": "myapp-7f8c9-abcde"}
    cluster = ClusterEnvironment.from_environ(
        _settings(tmp_path, service_name="myapp"), environ=environ
    )
    assert cluster.resource_path() == "/api/v1/namespaces/default/endpoints/myapp"


def test_pods_resource_uses_own_pod_name(tmp_path):
    environ = {"HOSTNAME": "myapp-7f8c9-abcde"}
    cluster = ClusterEnvironment.from_environ(
        _settings(tmp_path, discovery_resource="pods"), environ=environ
    )
    assert cluster.resource_path() == "/api/v1/namespaces/default/pods/myapp-7f8c9-abcde"


def test_unparseable_port_is_ignored(tmp_path):
    environ = {"KUBERNETES_SERVICE_HOST": "10.0.0.1", "KUBERNETES_SERVICE_PORT": "https"}
    cluster = ClusterEnvironment.from_environ(_settings(tmp_path), environ=environ)

    assert cluster.in_cluster is True
    assert cluster.has_api_address is False


def test_settings_reject_unknown_policy():
    with pytest.raises(ValueError):
        Settings(session_overflow_policy="block")
