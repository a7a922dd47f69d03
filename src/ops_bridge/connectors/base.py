"""Connector abstraction.

A connector translates generic migration operations (list, fetch, write,
count) into calls against one system family. The executor, selector
resolution, and comparison engine only ever talk to this interface.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, ClassVar

from ops_bridge.config import KubernetesConfig, MySQLConfig, SystemType
from ops_bridge.exceptions import ConnectionFailedError


@dataclass(frozen=True)
class MigrationUnit:
    """The atomic thing being moved: one Kubernetes object or one table.

    Identity is the (collection, unit_type, name) tuple.
    """

    collection: str
    unit_type: str
    name: str

    @property
    def key(self) -> str:
        """Stable string identity, e.g. ``shop/table/users``."""
        return f"{self.collection}/{self.unit_type}/{self.name}"

    def to_dict(self) -> dict[str, str]:
        return {"collection": self.collection, "unit_type": self.unit_type, "name": self.name}


@dataclass
class UnitDefinition:
    """Full definition of a unit as fetched from the source.

    Attributes:
        unit: The unit this definition belongs to
        body: Kubernetes manifest dict, or table DDL string
        columns: Column names in table order (tabular units only)
        row_count: Number of data rows at fetch time (tabular units only)
    """

    unit: MigrationUnit
    body: Any
    columns: list[str] = field(default_factory=list)
    row_count: int = 0

    @property
    def has_rows(self) -> bool:
        return self.row_count > 0


@dataclass(frozen=True)
class WriteOptions:
    """Options for writing a unit to the target."""

    create_schema: bool = True
    truncate_target: bool = False
    only_sync_schema: bool = False
    target_collection: str | None = None

    def destination(self, unit: MigrationUnit) -> str:
        """Collection the unit is written into on the target."""
        return self.target_collection or unit.collection


@dataclass(frozen=True)
class UnitCount:
    """Existence flag and row/object count of a unit in one system."""

    exists: bool
    count: int = 0


@dataclass
class Connection:
    """Transient handle returned by ``Connector.connect``.

    Attributes:
        config: The config the handle was opened with
        handle: Driver-specific object (e.g. a PyMySQL connection)
        metadata: Connector-private state (e.g. temp kubeconfig path)
    """

    config: KubernetesConfig | MySQLConfig
    handle: Any = None
    metadata: dict[str, Any] = field(default_factory=dict)


class Connector(ABC):
    """Uniform access to one source/target system family."""

    system_type: ClassVar[SystemType]

    @abstractmethod
    def connect(self, config: KubernetesConfig | MySQLConfig) -> Connection:
        """Validate reachability and credentials and open a transient handle.

        Safe to call repeatedly.

        Raises:
            ConnectionFailedError: If the system is unreachable or rejects credentials
        """

    @abstractmethod
    def close(self, conn: Connection) -> None:
        """Release the handle opened by ``connect``."""

    @abstractmethod
    def list_unit_types(self) -> list[str]:
        """Return the unit types this connector can migrate."""

    @abstractmethod
    def list_collections(self, conn: Connection) -> list[str]:
        """List namespaces or databases.

        Raises:
            DiscoveryError: If the system cannot be queried
        """

    @abstractmethod
    def list_units(
        self, conn: Connection, collection: str, unit_types: list[str] | None = None
    ) -> list[MigrationUnit]:
        """List units in a collection, in the system's natural order.

        Returns an empty list when the collection has no matching units.

        Raises:
            DiscoveryError: If the system cannot be queried
        """

    @abstractmethod
    def fetch_definition(self, conn: Connection, unit: MigrationUnit) -> UnitDefinition:
        """Fetch the full definition of a unit.

        Raises:
            NotFoundError: If the unit no longer exists
        """

    @abstractmethod
    def write_definition(
        self,
        conn: Connection,
        unit: MigrationUnit,
        definition: UnitDefinition,
        options: WriteOptions,
    ) -> None:
        """Write a unit's definition to this system.

        Re-applying an already written definition is a no-op success.

        Raises:
            WriteError: If the write fails
        """

    @abstractmethod
    def count_units(self, conn: Connection, unit: MigrationUnit) -> UnitCount:
        """Count rows/objects of a unit; ``exists=False, count=0`` if absent.

        Raises:
            DiscoveryError: If the system cannot be queried
        """

    def read_rows(
        self, conn: Connection, unit: MigrationUnit, offset: int, limit: int
    ) -> list[dict[str, Any]]:
        """Read one batch of data rows. Non-tabular systems have none."""
        return []

    def write_rows(
        self,
        conn: Connection,
        unit: MigrationUnit,
        rows: list[dict[str, Any]],
        options: WriteOptions,
    ) -> int:
        """Write one batch of data rows and return how many were written."""
        return 0

    def test_connection(self, config: KubernetesConfig | MySQLConfig) -> tuple[bool, str]:
        """Connect and immediately close, reporting the outcome as text."""
        try:
            conn = self.connect(config)
        except ConnectionFailedError as e:
            return False, str(e)
        self.close(conn)
        return True, f"Connected to {config.display_name}"
