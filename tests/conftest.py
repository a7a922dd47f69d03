"""
Shared pytest fixtures for the Ops Bridge tests.

This module provides:
- Connection configs for a source and a target system
- A task store on a throwaway SQLite database
- Fake connectors and a factory resolving them by connection name
- A helper for persisting pending tasks
"""

import uuid
from collections.abc import Callable, Generator
from datetime import datetime, timezone

import pytest

from ops_bridge.config import (
    CopyOptions,
    KubernetesConfig,
    MySQLConfig,
    ResourceSelector,
    StateConfig,
)
from ops_bridge.migration.database import dispose_database
from ops_bridge.migration.service import MigrationService
from ops_bridge.migration.state import TaskStore
from ops_bridge.migration.task import MigrationTask
from tests.fakes import KUBECONFIG, ConnectorRegistry, FakeConnector, make_rows


@pytest.fixture
def source_config() -> MySQLConfig:
    return MySQLConfig(name="source", host="source.db", user="migrator", password="s3cret")


@pytest.fixture
def target_config() -> MySQLConfig:
    return MySQLConfig(name="target", host="target.db", user="migrator", password="s3cret")


@pytest.fixture
def kubernetes_config() -> KubernetesConfig:
    return KubernetesConfig(name="cluster", kubeconfig=KUBECONFIG)


@pytest.fixture
def store(tmp_path) -> Generator[TaskStore, None, None]:
    """Task store backed by a SQLite file in the test's temp directory."""
    task_store = TaskStore(StateConfig(db_path=str(tmp_path / "state.db")))
    yield task_store
    dispose_database(task_store.database_url)


@pytest.fixture
def source() -> FakeConnector:
    """Source holding shop.users (100 rows) and shop.orders (50 rows)."""
    return FakeConnector({"shop": {"users": make_rows(100), "orders": make_rows(50)}})


@pytest.fixture
def target() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def registry(source: FakeConnector, target: FakeConnector) -> ConnectorRegistry:
    return ConnectorRegistry(source=source, target=target)


@pytest.fixture
def service(store: TaskStore, registry: ConnectorRegistry) -> Generator[MigrationService, None, None]:
    migration_service = MigrationService(store, connector_factory=registry)
    yield migration_service
    migration_service.shutdown(timeout=5)


@pytest.fixture
def make_task(
    store: TaskStore, source_config: MySQLConfig, target_config: MySQLConfig
) -> Callable[..., str]:
    """Persist a pending task directly, bypassing the service's preflight."""

    def _make_task(*selectors: ResourceSelector, options: CopyOptions | None = None) -> str:
        task = MigrationTask(
            task_id=str(uuid.uuid4()),
            source=source_config,
            target=target_config,
            selectors=list(selectors) or [ResourceSelector(collection="shop", all_units=True)],
            options=options or CopyOptions(batch_size=10),
            created_at=datetime.now(timezone.utc),
        )
        store.create(task)
        return task.task_id

    return _make_task
