"""Kubernetes connector backed by kubectl.

Every call shells out to ``kubectl`` with the connection's kubeconfig written
to a private temporary file. Manifests are read with ``get -o json`` and
written with ``apply -f -``, so re-applying the same manifest is a no-op.
"""

import copy
import json
import os
import subprocess
import tempfile
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from ops_bridge.config import KubernetesConfig, SystemType
from ops_bridge.connectors.base import (
    Connection,
    Connector,
    MigrationUnit,
    UnitCount,
    UnitDefinition,
    WriteOptions,
)
from ops_bridge.exceptions import (
    ConnectionFailedError,
    DiscoveryError,
    NotFoundError,
    WriteError,
)
from ops_bridge.utils.logging import get_logger
from ops_bridge.utils.retry import call_with_retry

logger = get_logger(__name__)

# Unit type -> kubectl resource name, in default migration order
RESOURCE_TYPES: dict[str, str] = {
    "deployments": "deployments.apps",
    "statefulsets": "statefulsets.apps",
    "services": "services",
    "configmaps": "configmaps",
    "secrets": "secrets",
    "pvcs": "persistentvolumeclaims",
    "pvs": "persistentvolumes",
    "cronjobs": "cronjobs.v1.batch",
    "jobs": "jobs.batch",
}

CLUSTER_SCOPED_TYPES = frozenset({"pvs"})

# Older clusters only serve CronJobs from batch/v1beta1
CRONJOB_FALLBACK = "cronjobs.v1beta1.batch"

METADATA_STRIP_FIELDS = (
    "uid",
    "resourceVersion",
    "creationTimestamp",
    "managedFields",
    "selfLink",
    "generation",
    "ownerReferences",
)

SERVICE_STRIP_FIELDS = (
    "clusterIP",
    "clusterIPs",
    "externalIPs",
    "healthCheckNodePort",
    "loadBalancerIP",
)

LAST_APPLIED_ANNOTATION = "kubectl.kubernetes.io/last-applied-configuration"

# kubectl stderr when the API server cannot be reached
UNREACHABLE_MARKERS = ("Unable to connect to the server", "The connection to the server")


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one kubectl invocation."""

    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def not_found(self) -> bool:
        return "NotFound" in self.stderr or "not found" in self.stderr.lower()

    @property
    def unreachable(self) -> bool:
        return any(marker in self.stderr for marker in UNREACHABLE_MARKERS)


Runner = Callable[[list[str], str | None, int], CommandResult]


def run_subprocess(cmd: list[str], input_text: str | None, timeout: int) -> CommandResult:
    """Run a command and capture its output.

    Raises:
        subprocess.TimeoutExpired: If the command exceeds the timeout
        FileNotFoundError: If the executable is missing
    """
    result = subprocess.run(
        cmd, input=input_text, capture_output=True, text=True, timeout=timeout
    )
    return CommandResult(result.returncode, result.stdout, result.stderr)


def clean_manifest(manifest: dict[str, Any], unit_type: str) -> dict[str, Any]:
    """Return a copy of a manifest without cluster-specific fields."""
    cleaned = copy.deepcopy(manifest)
    cleaned.pop("status", None)

    metadata = cleaned.setdefault("metadata", {})
    for key in METADATA_STRIP_FIELDS:
        metadata.pop(key, None)
    annotations = metadata.get("annotations")
    if annotations:
        annotations.pop(LAST_APPLIED_ANNOTATION, None)
        if not annotations:
            metadata.pop("annotations")

    spec = cleaned.get("spec") or {}
    if unit_type == "services":
        for key in SERVICE_STRIP_FIELDS:
            spec.pop(key, None)
        for port in spec.get("ports") or []:
            port.pop("nodePort", None)
    elif unit_type == "pvs":
        claim_ref = spec.get("claimRef")
        if claim_ref:
            claim_ref.pop("uid", None)
            claim_ref.pop("resourceVersion", None)

    return cleaned


class KubernetesConnector(Connector):
    """Connector for Kubernetes namespaces and their workload objects."""

    system_type = SystemType.KUBERNETES

    def __init__(
        self,
        runner: Runner | None = None,
        kubectl: str = "kubectl",
        timeout: int = 60,
        retry_attempts: int = 3,
        retry_backoff_min: float = 1.0,
        retry_backoff_max: float = 10.0,
    ):
        """Initialize Kubernetes connector.

        Args:
            runner: Callable executing a command (defaults to subprocess)
            kubectl: kubectl executable
            timeout: Per-call timeout in seconds
            retry_attempts: Attempts for the connectivity check
            retry_backoff_min: Minimum retry wait in seconds
            retry_backoff_max: Maximum retry wait in seconds
        """
        self.runner = runner or run_subprocess
        self.kubectl = kubectl
        self.timeout = timeout
        self.retry_attempts = retry_attempts
        self.retry_backoff_min = retry_backoff_min
        self.retry_backoff_max = retry_backoff_max

    # Connection lifecycle

    def connect(self, config: KubernetesConfig) -> Connection:
        fd, path = tempfile.mkstemp(prefix="ops-bridge-kubeconfig-", suffix=".yaml")
        with os.fdopen(fd, "w") as f:
            f.write(config.kubeconfig)
        os.chmod(path, 0o600)

        conn = Connection(config=config, metadata={"kubeconfig_path": path, "namespaces": set()})
        try:
            result = call_with_retry(
                self._invoke,
                conn,
                ["version", "-o", "json"],
                max_attempts=self.retry_attempts,
                min_wait=self.retry_backoff_min,
                max_wait=self.retry_backoff_max,
                retry_on_exceptions=(subprocess.TimeoutExpired,),
            )
        except (subprocess.TimeoutExpired, OSError) as e:
            self.close(conn)
            raise ConnectionFailedError(
                f"Cannot reach cluster {config.display_name}", system="kubernetes", detail=str(e)
            ) from e

        if not result.ok:
            self.close(conn)
            raise ConnectionFailedError(
                f"Cannot reach cluster {config.display_name}",
                system="kubernetes",
                detail=result.stderr.strip(),
            )

        logger.debug("kubernetes_connected", cluster=config.display_name)
        return conn

    def close(self, conn: Connection) -> None:
        path = conn.metadata.pop("kubeconfig_path", None)
        if path and os.path.exists(path):
            os.unlink(path)

    # Discovery

    def list_unit_types(self) -> list[str]:
        return list(RESOURCE_TYPES)

    def list_collections(self, conn: Connection) -> list[str]:
        result = self._run(conn, ["get", "namespaces", "-o", "json"])
        if not result.ok:
            raise DiscoveryError(
                "Failed to list namespaces", system="kubernetes", detail=result.stderr.strip()
            )
        return [item["metadata"]["name"] for item in self._parse(result)["items"]]

    def list_units(
        self, conn: Connection, collection: str, unit_types: list[str] | None = None
    ) -> list[MigrationUnit]:
        units: list[MigrationUnit] = []
        for unit_type in unit_types or list(RESOURCE_TYPES):
            for item in self._list_items(conn, collection, unit_type):
                units.append(MigrationUnit(collection, unit_type, item["metadata"]["name"]))
        return units

    def fetch_definition(self, conn: Connection, unit: MigrationUnit) -> UnitDefinition:
        result = self._get_object(conn, unit)
        if not result.ok:
            if result.not_found:
                raise NotFoundError(
                    f"{unit.unit_type} '{unit.name}' not found in '{unit.collection}'",
                    system="kubernetes",
                )
            raise DiscoveryError(
                f"Failed to fetch {unit.key}", system="kubernetes", detail=result.stderr.strip()
            )
        manifest = clean_manifest(self._parse(result), unit.unit_type)
        return UnitDefinition(unit=unit, body=manifest)

    def count_units(self, conn: Connection, unit: MigrationUnit) -> UnitCount:
        result = self._get_object(conn, unit)
        if result.ok:
            return UnitCount(exists=True, count=1)
        if result.not_found:
            return UnitCount(exists=False, count=0)
        raise DiscoveryError(
            f"Failed to look up {unit.key}", system="kubernetes", detail=result.stderr.strip()
        )

    # Writes

    def write_definition(
        self,
        conn: Connection,
        unit: MigrationUnit,
        definition: UnitDefinition,
        options: WriteOptions,
    ) -> None:
        manifest = copy.deepcopy(definition.body)
        args = ["apply", "-f", "-"]
        if unit.unit_type not in CLUSTER_SCOPED_TYPES:
            namespace = options.destination(unit)
            if options.create_schema:
                self.ensure_namespace(conn, namespace)
            manifest.setdefault("metadata", {})["namespace"] = namespace
            args += ["-n", namespace]

        result = self._run(conn, args, input_text=json.dumps(manifest))
        if not result.ok:
            raise WriteError(
                f"Failed to apply {unit.unit_type} '{unit.name}'",
                system="kubernetes",
                detail=result.stderr.strip(),
            )
        logger.debug("manifest_applied", unit=unit.key, output=result.stdout.strip())

    def ensure_namespace(self, conn: Connection, namespace: str) -> None:
        """Create the namespace on the cluster if it does not exist yet."""
        known: set[str] = conn.metadata.setdefault("namespaces", set())
        if namespace in known:
            return
        manifest = {"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": namespace}}
        result = self._run(conn, ["apply", "-f", "-"], input_text=json.dumps(manifest))
        if not result.ok:
            raise WriteError(
                f"Failed to create namespace '{namespace}'",
                system="kubernetes",
                detail=result.stderr.strip(),
            )
        known.add(namespace)

    # Helpers

    def _list_items(self, conn: Connection, namespace: str, unit_type: str) -> list[dict[str, Any]]:
        resource = self._resource(unit_type)
        result = self._run(conn, ["get", resource, "-o", "json", *self._scope(namespace, unit_type)])
        if not result.ok and unit_type == "cronjobs":
            logger.debug("cronjob_v1_unavailable", namespace=namespace)
            result = self._run(
                conn, ["get", CRONJOB_FALLBACK, "-o", "json", *self._scope(namespace, unit_type)]
            )
        if not result.ok:
            raise DiscoveryError(
                f"Failed to list {unit_type} in '{namespace}'",
                system="kubernetes",
                detail=result.stderr.strip(),
            )
        return self._parse(result).get("items", [])

    def _get_object(self, conn: Connection, unit: MigrationUnit) -> CommandResult:
        scope = self._scope(unit.collection, unit.unit_type)
        result = self._run(conn, ["get", self._resource(unit.unit_type), unit.name, "-o", "json", *scope])
        if not result.ok and unit.unit_type == "cronjobs":
            result = self._run(conn, ["get", CRONJOB_FALLBACK, unit.name, "-o", "json", *scope])
        return result

    def _resource(self, unit_type: str) -> str:
        try:
            return RESOURCE_TYPES[unit_type]
        except KeyError:
            raise DiscoveryError(
                f"Unsupported unit type '{unit_type}'", system="kubernetes"
            ) from None

    @staticmethod
    def _scope(namespace: str, unit_type: str) -> list[str]:
        if unit_type in CLUSTER_SCOPED_TYPES:
            return []
        return ["-n", namespace]

    def _invoke(
        self, conn: Connection, args: list[str], input_text: str | None = None
    ) -> CommandResult:
        cmd = [self.kubectl, "--kubeconfig", conn.metadata["kubeconfig_path"]]
        if conn.config.context:
            cmd += ["--context", conn.config.context]
        return self.runner(cmd + args, input_text, self.timeout)

    def _run(
        self, conn: Connection, args: list[str], input_text: str | None = None
    ) -> CommandResult:
        """Invoke kubectl, turning launch failures and timeouts into a failed result.

        Raises:
            ConnectionFailedError: If kubectl cannot reach the API server
        """
        try:
            result = self._invoke(conn, args, input_text)
        except subprocess.TimeoutExpired:
            return CommandResult(-1, stderr=f"kubectl timed out after {self.timeout}s")
        except OSError as e:
            return CommandResult(-1, stderr=str(e))
        if not result.ok and result.unreachable:
            raise ConnectionFailedError(
                f"Lost connection to cluster {conn.config.display_name}",
                system="kubernetes",
                detail=result.stderr.strip(),
            )
        return result

    @staticmethod
    def _parse(result: CommandResult) -> dict[str, Any]:
        try:
            return json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise DiscoveryError(
                "kubectl returned invalid JSON", system="kubernetes", detail=str(e)
            ) from e
