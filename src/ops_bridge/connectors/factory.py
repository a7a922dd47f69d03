"""Connector factory keyed by system type."""

from ops_bridge.config import KubernetesConfig, MySQLConfig, PerformanceConfig, SystemType
from ops_bridge.connectors.base import Connector
from ops_bridge.connectors.kubernetes import KubernetesConnector
from ops_bridge.connectors.mysql import MySQLConnector
from ops_bridge.exceptions import ConfigurationError

CONNECTOR_CLASSES: dict[SystemType, type[Connector]] = {
    SystemType.KUBERNETES: KubernetesConnector,
    SystemType.MYSQL: MySQLConnector,
}


def create_connector(
    config: KubernetesConfig | MySQLConfig,
    performance: PerformanceConfig | None = None,
) -> Connector:
    """Build the connector for a connection config.

    Args:
        config: Source or target connection config
        performance: Retry and timeout tuning (defaults apply when omitted)

    Returns:
        Connector instance for the config's system type

    Raises:
        ConfigurationError: If no connector handles the system type
    """
    performance = performance or PerformanceConfig()
    system_type = config.system_type
    try:
        connector_class = CONNECTOR_CLASSES[system_type]
    except KeyError:
        raise ConfigurationError(f"No connector for system type '{system_type}'") from None

    retry = {
        "retry_attempts": performance.retry_attempts,
        "retry_backoff_min": performance.retry_backoff_min,
        "retry_backoff_max": performance.retry_backoff_max,
    }
    if connector_class is KubernetesConnector:
        return KubernetesConnector(timeout=performance.kubectl_timeout, **retry)
    return connector_class(**retry)
