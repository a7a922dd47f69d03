"""Connectors for the systems Ops Bridge migrates between."""

from ops_bridge.connectors.base import (
    Connection,
    Connector,
    MigrationUnit,
    UnitCount,
    UnitDefinition,
    WriteOptions,
)
from ops_bridge.connectors.factory import create_connector

__all__ = [
    "Connection",
    "Connector",
    "MigrationUnit",
    "UnitCount",
    "UnitDefinition",
    "WriteOptions",
    "create_connector",
]
