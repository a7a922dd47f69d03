"""Expand resource selectors into an ordered list of migration units."""

from collections.abc import Iterable

from ops_bridge.config import ResourceSelector
from ops_bridge.connectors.base import Connection, Connector, MigrationUnit
from ops_bridge.exceptions import EmptySelectionError
from ops_bridge.utils.logging import get_logger

logger = get_logger(__name__)


def resolve_selector(
    connector: Connector, conn: Connection, selector: ResourceSelector
) -> list[MigrationUnit]:
    """Resolve one selector against the source, in the connector's listing order.

    Explicit unit names keep the order they were given in; names the source
    does not list are skipped with a warning.

    Raises:
        DiscoveryError: If the source cannot be listed
    """
    if selector.is_empty:
        return []

    unit_types = list(selector.unit_types) or None
    listed = connector.list_units(conn, selector.collection, unit_types)
    if selector.all_units or not selector.units:
        return listed

    by_name: dict[str, list[MigrationUnit]] = {}
    for unit in listed:
        by_name.setdefault(unit.name, []).append(unit)

    units: list[MigrationUnit] = []
    for name in selector.units:
        matches = by_name.get(name)
        if not matches:
            logger.warning("unit_not_found", collection=selector.collection, unit=name)
            continue
        units.extend(matches)
    return units


def resolve_selectors(
    connector: Connector, conn: Connection, selectors: Iterable[ResourceSelector]
) -> list[MigrationUnit]:
    """Resolve selectors into a deduplicated, ordered unit list.

    Order is selector order, then the connector's listing order within each
    selector. The first occurrence of a unit wins.

    Raises:
        EmptySelectionError: If no unit matches
        DiscoveryError: If the source cannot be listed
    """
    selectors = list(selectors)
    seen: set[MigrationUnit] = set()
    units: list[MigrationUnit] = []
    for selector in selectors:
        for unit in resolve_selector(connector, conn, selector):
            if unit not in seen:
                seen.add(unit)
                units.append(unit)

    if not units:
        collections = ", ".join(s.collection for s in selectors) or "none"
        raise EmptySelectionError(f"Selection matched no units (collections: {collections})")

    logger.debug("selectors_resolved", selectors=len(selectors), units=len(units))
    return units
