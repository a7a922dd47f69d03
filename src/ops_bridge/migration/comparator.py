"""Comparison of units between a source and a target system.

Comparison is independent of the task lifecycle and never writes to either
side: it only checks existence and row/object counts.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from ops_bridge.config import KubernetesConfig, MySQLConfig
from ops_bridge.connectors.base import Connection, Connector, MigrationUnit
from ops_bridge.connectors.factory import create_connector
from ops_bridge.exceptions import ComparisonError, ConnectorError, ConnectionFailedError
from ops_bridge.utils.logging import get_logger

logger = get_logger(__name__)

ConnectorFactory = Callable[[KubernetesConfig | MySQLConfig], Connector]


@dataclass
class UnitComparison:
    """Existence and counts of one unit on both sides."""

    unit: MigrationUnit
    exists_in_source: bool
    exists_in_target: bool
    row_count_source: int = 0
    row_count_target: int = 0

    @property
    def divergent(self) -> bool:
        """True when the unit is missing on either side or the counts differ."""
        return (
            not self.exists_in_source
            or not self.exists_in_target
            or self.row_count_source != self.row_count_target
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "table_name": self.unit.name,
            "unit_type": self.unit.unit_type,
            "exists_in_source": self.exists_in_source,
            "exists_in_target": self.exists_in_target,
            "row_count_source": self.row_count_source,
            "row_count_target": self.row_count_target,
            "divergent": self.divergent,
        }


@dataclass
class ComparisonResult:
    """Comparison of one collection; divergent units are listed first."""

    collection: str
    units: list[UnitComparison] = field(default_factory=list)

    @property
    def source_count(self) -> int:
        return sum(1 for c in self.units if c.exists_in_source)

    @property
    def target_count(self) -> int:
        return sum(1 for c in self.units if c.exists_in_target)

    @property
    def counts_equal(self) -> bool:
        return self.source_count == self.target_count

    @property
    def divergent(self) -> list[UnitComparison]:
        return [c for c in self.units if c.divergent]

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire format (``table_count_*`` / ``tables``)."""
        return {
            "collection": self.collection,
            "table_count_source": self.source_count,
            "table_count_target": self.target_count,
            "table_count_equal": self.counts_equal,
            "tables": [c.to_dict() for c in self.units],
        }


class ComparisonEngine:
    """Compare units between a source and a target system."""

    def __init__(self, connector_factory: ConnectorFactory = create_connector):
        """Initialize comparison engine.

        Args:
            connector_factory: Builds a connector for a connection config
        """
        self.connector_factory = connector_factory

    def compare(
        self,
        source: KubernetesConfig | MySQLConfig,
        target: KubernetesConfig | MySQLConfig,
        collection: str,
        unit_names: list[str] | None = None,
        unit_type: str = "table",
    ) -> ComparisonResult:
        """Compare the named units of one collection.

        When no unit names are given, every unit of ``unit_type`` the source
        lists in the collection is compared.

        Raises:
            ConnectionFailedError: If either side is unreachable
            ComparisonError: If counting fails for the collection
        """
        results = self.compare_collections(
            source, target, {collection: unit_names or []}, unit_type=unit_type
        )
        return results[collection]

    def compare_collections(
        self,
        source: KubernetesConfig | MySQLConfig,
        target: KubernetesConfig | MySQLConfig,
        collections: dict[str, list[str]],
        unit_type: str = "table",
    ) -> dict[str, ComparisonResult]:
        """Compare several collections in order.

        The first collection that fails raises ``ComparisonError`` carrying
        the results of the collections compared before it.

        Raises:
            ConnectionFailedError: If either side is unreachable
            ComparisonError: If a collection cannot be compared
        """
        source_connector = self.connector_factory(source)
        target_connector = self.connector_factory(target)
        source_conn = source_connector.connect(source)
        try:
            target_conn = target_connector.connect(target)
        except ConnectionFailedError:
            source_connector.close(source_conn)
            raise

        results: dict[str, ComparisonResult] = {}
        try:
            for collection, unit_names in collections.items():
                try:
                    results[collection] = self._compare_collection(
                        source_connector,
                        source_conn,
                        target_connector,
                        target_conn,
                        collection,
                        unit_names,
                        unit_type,
                    )
                except ConnectorError as e:
                    logger.error("comparison_failed", collection=collection, error=str(e))
                    raise ComparisonError(str(e), collection=collection, partial=results) from e
        finally:
            source_connector.close(source_conn)
            target_connector.close(target_conn)

        return results

    def _compare_collection(
        self,
        source_connector: Connector,
        source_conn: Connection,
        target_connector: Connector,
        target_conn: Connection,
        collection: str,
        unit_names: list[str],
        unit_type: str,
    ) -> ComparisonResult:
        if unit_names:
            units = [MigrationUnit(collection, unit_type, name) for name in dict.fromkeys(unit_names)]
        else:
            units = source_connector.list_units(source_conn, collection, [unit_type])

        comparisons = []
        for unit in units:
            source_count = source_connector.count_units(source_conn, unit)
            target_count = target_connector.count_units(target_conn, unit)
            comparisons.append(
                UnitComparison(
                    unit=unit,
                    exists_in_source=source_count.exists,
                    exists_in_target=target_count.exists,
                    row_count_source=source_count.count,
                    row_count_target=target_count.count,
                )
            )

        # Divergent units first, requested order kept within each group
        comparisons.sort(key=lambda c: not c.divergent)
        result = ComparisonResult(collection=collection, units=comparisons)
        logger.info(
            "collection_compared",
            collection=collection,
            source_count=result.source_count,
            target_count=result.target_count,
            divergent=len(result.divergent),
        )
        return result
