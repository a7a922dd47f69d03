"""
Unit tests for the kubectl-backed Kubernetes connector.

kubectl is replaced by a runner that records every command and answers from
a routing function.
"""

import json
import os
import stat
import subprocess

import pytest

from ops_bridge.config import KubernetesConfig
from ops_bridge.connectors.base import MigrationUnit, UnitDefinition, WriteOptions
from ops_bridge.connectors.kubernetes import (
    CRONJOB_FALLBACK,
    LAST_APPLIED_ANNOTATION,
    CommandResult,
    KubernetesConnector,
    clean_manifest,
)
from ops_bridge.exceptions import ConnectionFailedError, DiscoveryError, NotFoundError, WriteError
from tests.fakes import KUBECONFIG, FakeKubectl, items

NOT_FOUND = CommandResult(1, stderr='Error from server (NotFound): deployments.apps "web" not found')


@pytest.fixture
def kubectl() -> FakeKubectl:
    return FakeKubectl()


@pytest.fixture
def connector(kubectl) -> KubernetesConnector:
    return KubernetesConnector(runner=kubectl, retry_attempts=2, retry_backoff_min=0, retry_backoff_max=0)


@pytest.fixture
def conn(connector, kubernetes_config):
    connection = connector.connect(kubernetes_config)
    yield connection
    connector.close(connection)


class TestCleanManifest:
    def test_strips_cluster_fields(self):
        manifest = {
            "apiVersion": "apps/v1",
            "kind": "Deployment",
            "metadata": {
                "name": "web",
                "namespace": "prod",
                "uid": "abc",
                "resourceVersion": "42",
                "creationTimestamp": "2024-01-01T00:00:00Z",
                "managedFields": [{}],
                "annotations": {LAST_APPLIED_ANNOTATION: "{}"},
                "labels": {"app": "web"},
            },
            "spec": {"replicas": 2},
            "status": {"readyReplicas": 2},
        }

        cleaned = clean_manifest(manifest, "deployments")

        assert "status" not in cleaned
        assert cleaned["metadata"] == {"name": "web", "namespace": "prod", "labels": {"app": "web"}}
        assert cleaned["spec"] == {"replicas": 2}
        assert manifest["metadata"]["uid"] == "abc"

    def test_service_addresses_removed(self):
        manifest = {
            "metadata": {"name": "web"},
            "spec": {
                "clusterIP": "10.0.0.1",
                "clusterIPs": ["10.0.0.1"],
                "ports": [{"port": 80, "nodePort": 30080}],
                "selector": {"app": "web"},
            },
        }

        cleaned = clean_manifest(manifest, "services")

        assert cleaned["spec"] == {"ports": [{"port": 80}], "selector": {"app": "web"}}

    def test_volume_claim_reference_unbound(self):
        manifest = {
            "metadata": {"name": "pv-1"},
            "spec": {"claimRef": {"name": "data", "namespace": "prod", "uid": "u", "resourceVersion": "1"}},
        }

        cleaned = clean_manifest(manifest, "pvs")

        assert cleaned["spec"]["claimRef"] == {"name": "data", "namespace": "prod"}


class TestConnect:
    def test_kubeconfig_written_privately_and_removed(self, connector, kubectl, kubernetes_config):
        conn = connector.connect(kubernetes_config)
        path = conn.metadata["kubeconfig_path"]

        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
        with open(path) as f:
            assert f.read() == kubernetes_config.kubeconfig

        connector.close(conn)
        assert not os.path.exists(path)

    def test_unreachable_cluster(self, kubernetes_config):
        paths = []

        def runner(cmd, input_text, timeout):
            paths.append(cmd[2])
            return CommandResult(1, stderr="Unable to connect to the server")

        connector = KubernetesConnector(runner=runner, retry_attempts=1)

        with pytest.raises(ConnectionFailedError, match="Unable to connect"):
            connector.connect(kubernetes_config)

        assert not os.path.exists(paths[0])

    def test_timeouts_retried(self, kubernetes_config):
        attempts = []

        def runner(cmd, input_text, timeout):
            attempts.append(cmd)
            raise subprocess.TimeoutExpired(cmd, timeout)

        connector = KubernetesConnector(
            runner=runner, retry_attempts=3, retry_backoff_min=0, retry_backoff_max=0
        )

        with pytest.raises(ConnectionFailedError):
            connector.connect(kubernetes_config)

        assert len(attempts) == 3

    def test_context_passed(self):
        seen = []

        def runner(cmd, input_text, timeout):
            seen.append(cmd)
            return CommandResult(0, stdout="{}")

        connector = KubernetesConnector(runner=runner)
        connector.close(connector.connect(KubernetesConfig(kubeconfig=KUBECONFIG, context="staging")))

        assert seen[0][3:5] == ["--context", "staging"]


class TestDiscovery:
    def test_list_collections(self, connector, kubectl, conn):
        kubectl.route = lambda args, text: items("default", "web")

        assert connector.list_collections(conn) == ["default", "web"]

    def test_list_units_in_type_order(self, connector, kubectl, conn):
        def route(args, text):
            return {"deployments.apps": items("api", "web"), "services": items("web")}[args[1]]

        kubectl.route = route

        units = connector.list_units(conn, "prod", ["deployments", "services"])

        assert [u.key for u in units] == [
            "prod/deployments/api",
            "prod/deployments/web",
            "prod/services/web",
        ]
        assert all(args[-2:] == ["-n", "prod"] for args, _ in kubectl.calls[1:])

    def test_persistent_volumes_are_cluster_scoped(self, connector, kubectl, conn):
        kubectl.route = lambda args, text: items("pv-1")

        connector.list_units(conn, "prod", ["pvs"])

        args, _ = kubectl.calls[-1]
        assert args == ["get", "persistentvolumes", "-o", "json"]

    def test_cronjob_fallback(self, connector, kubectl, conn):
        def route(args, text):
            if args[1] == "cronjobs.v1.batch":
                return CommandResult(1, stderr='error: the server doesn\'t have a resource type "cronjobs"')
            return items("nightly")

        kubectl.route = route

        units = connector.list_units(conn, "prod", ["cronjobs"])

        assert [u.name for u in units] == ["nightly"]
        assert kubectl.calls[-1][0][1] == CRONJOB_FALLBACK

    def test_list_failure(self, connector, kubectl, conn):
        kubectl.route = lambda args, text: CommandResult(1, stderr="forbidden")

        with pytest.raises(DiscoveryError, match="forbidden"):
            connector.list_units(conn, "prod", ["secrets"])

    def test_unsupported_unit_type(self, connector, conn):
        with pytest.raises(DiscoveryError, match="Unsupported"):
            connector.list_units(conn, "prod", ["gateways"])

    def test_refused_connection_while_listing(self, connector, kubectl, conn):
        kubectl.route = lambda args, text: CommandResult(
            1, stderr="The connection to the server 10.0.0.1:6443 was refused"
        )

        with pytest.raises(ConnectionFailedError):
            connector.list_units(conn, "prod", ["deployments"])

    def test_timeout_becomes_discovery_error(self, connector, kubectl, conn):
        def route(args, text):
            raise subprocess.TimeoutExpired(args, 60)

        kubectl.route = route

        with pytest.raises(DiscoveryError, match="timed out"):
            connector.list_collections(conn)

    def test_fetch_definition_cleans_manifest(self, connector, kubectl, conn):
        manifest = {"kind": "ConfigMap", "metadata": {"name": "settings", "uid": "x"}, "data": {"a": "1"}}
        kubectl.route = lambda args, text: CommandResult(0, stdout=json.dumps(manifest))

        definition = connector.fetch_definition(conn, MigrationUnit("prod", "configmaps", "settings"))

        assert definition.body == {"kind": "ConfigMap", "metadata": {"name": "settings"}, "data": {"a": "1"}}
        assert definition.row_count == 0

    def test_fetch_missing(self, connector, kubectl, conn):
        kubectl.route = lambda args, text: NOT_FOUND

        with pytest.raises(NotFoundError):
            connector.fetch_definition(conn, MigrationUnit("prod", "deployments", "web"))

    def test_count_units(self, connector, kubectl, conn):
        unit = MigrationUnit("prod", "deployments", "web")

        kubectl.route = lambda args, text: CommandResult(0, stdout="{}")
        assert connector.count_units(conn, unit).count == 1

        kubectl.route = lambda args, text: NOT_FOUND
        count = connector.count_units(conn, unit)
        assert (count.exists, count.count) == (False, 0)


class TestWriteDefinition:
    unit = MigrationUnit("prod", "deployments", "web")
    definition = UnitDefinition(
        unit=unit, body={"kind": "Deployment", "metadata": {"name": "web", "namespace": "prod"}}
    )

    def test_applies_into_destination_namespace(self, connector, kubectl, conn):
        options = WriteOptions(target_collection="staging")

        connector.write_definition(conn, self.unit, self.definition, options)
        connector.write_definition(conn, self.unit, self.definition, options)

        namespaces = [m for m in kubectl.applied() if m["kind"] == "Namespace"]
        deployments = [m for m in kubectl.applied() if m["kind"] == "Deployment"]
        assert [m["metadata"]["name"] for m in namespaces] == ["staging"]
        assert [m["metadata"]["namespace"] for m in deployments] == ["staging", "staging"]
        assert self.definition.body["metadata"]["namespace"] == "prod"

    def test_no_namespace_creation_when_disabled(self, connector, kubectl, conn):
        connector.write_definition(conn, self.unit, self.definition, WriteOptions(create_schema=False))

        assert [m["kind"] for m in kubectl.applied()] == ["Deployment"]

    def test_apply_failure(self, connector, kubectl, conn):
        def route(args, text):
            if text and json.loads(text)["kind"] == "Deployment":
                return CommandResult(1, stderr="admission webhook denied the request")
            return CommandResult(0, stdout="namespace/prod configured")

        kubectl.route = route

        with pytest.raises(WriteError, match="admission webhook"):
            connector.write_definition(conn, self.unit, self.definition, WriteOptions())

    def test_api_server_unreachable(self, connector, kubectl, conn):
        kubectl.route = lambda args, text: CommandResult(
            1, stderr="Unable to connect to the server: dial tcp 10.0.0.1:6443: connect: connection refused"
        )

        with pytest.raises(ConnectionFailedError, match="Lost connection to cluster"):
            connector.write_definition(conn, self.unit, self.definition, WriteOptions(create_schema=False))
