"""Custom exceptions for Ops Bridge.

This module defines exception classes for the error conditions that can occur
while talking to source/target systems, resolving selectors, executing
migrations, and comparing results.
"""

from typing import Any


class OpsBridgeError(Exception):
    """Base exception for all Ops Bridge errors."""

    pass


class ConnectorError(OpsBridgeError):
    """Base class for errors raised by a connector."""

    def __init__(self, message: str, system: str | None = None, detail: str | None = None):
        """Initialize connector error.

        Args:
            message: Error message
            system: System type that raised the error (e.g. 'mysql', 'kubernetes')
            detail: Underlying driver/tool error text
        """
        self.message = message
        self.system = system
        self.detail = detail
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format error message with system and detail."""
        msg = self.message
        if self.system:
            msg = f"[{self.system}] {msg}"
        if self.detail:
            msg = f"{msg}: {self.detail}"
        return msg


class ConnectionFailedError(ConnectorError):
    """Raised when a system is unreachable or rejects the credentials.

    Fatal to task start, and to a running task when the connection is lost.
    """

    pass


class DiscoveryError(ConnectorError):
    """Raised when listing collections, units, or counts fails."""

    pass


class NotFoundError(ConnectorError):
    """Raised when a unit vanished between listing and fetch.

    Recoverable: recorded as a unit failure, never a task failure.
    """

    pass


class WriteError(ConnectorError):
    """Raised when writing a unit to the target fails.

    Recoverable: recorded as a unit failure.
    """

    pass


class EmptySelectionError(OpsBridgeError):
    """Raised when a selection resolves to zero units."""

    pass


class ComparisonError(OpsBridgeError):
    """Raised when comparing a specific collection fails.

    Attributes:
        collection: The collection whose comparison failed
        partial: Results gathered before the failure (collection -> result)
    """

    def __init__(self, message: str, collection: str, partial: dict[str, Any] | None = None):
        """Initialize comparison error.

        Args:
            message: Error message
            collection: Failing collection name
            partial: Comparison results completed before the failure
        """
        self.collection = collection
        self.partial = partial or {}
        super().__init__(f"Comparison failed for '{collection}': {message}")


class InvalidStateError(OpsBridgeError):
    """Raised on an illegal task transition (e.g. starting a running task)."""

    pass


class TaskNotFoundError(OpsBridgeError):
    """Raised when a task identifier is unknown."""

    pass


class ConfigurationError(OpsBridgeError):
    """Raised when configuration is invalid or missing."""

    pass


class StateError(OpsBridgeError):
    """Raised when state persistence errors occur."""

    pass
