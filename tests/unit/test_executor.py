"""
Unit tests for the migration executor.

Tests cover:
- Batched row copies and final task totals
- Monotonic progress reaching 100 on completion
- Per-unit failure isolation and the all-failed rule
- Task-level failures (connection, discovery, connection lost mid-run)
- Cooperative cancellation between units and batches
- Schema-only copies, disabled schema creation and renamed targets
- A Kubernetes namespace copy through the kubectl connector
"""

import json
import threading
import uuid
from datetime import datetime, timezone

import pytest

from ops_bridge.config import CopyOptions, KubernetesConfig, ResourceSelector
from ops_bridge.connectors.base import MigrationUnit
from ops_bridge.connectors.kubernetes import CommandResult, KubernetesConnector
from ops_bridge.exceptions import ConnectionFailedError, InvalidStateError
from ops_bridge.migration.comparator import ComparisonEngine
from ops_bridge.migration.executor import MigrationExecutor, write_options_for
from ops_bridge.migration.task import MigrationTask, TaskStatus
from tests.fakes import KUBECONFIG, FakeConnector, FakeKubectl, items, make_rows


@pytest.fixture
def executor(source, target, store) -> MigrationExecutor:
    return MigrationExecutor(source, target, store)


class TestSuccessfulRun:
    def test_copies_all_rows_in_batches(self, executor, make_task, target, store):
        task_id = make_task(
            ResourceSelector(collection="shop", units=["users", "orders"]),
            options=CopyOptions(batch_size=10),
        )

        task = executor.run(task_id)

        assert task.status == TaskStatus.COMPLETED
        assert task.progress == 100.0
        assert [o.unit.name for o in task.outcomes] == ["users", "orders"]
        assert all(o.success for o in task.outcomes)
        assert (task.total_rows, task.migrated_rows, task.failed_rows) == (150, 150, 0)
        assert len(target.tables["shop"]["users"]) == 100
        assert len(target.tables["shop"]["orders"]) == 50
        assert target.batches_written == 15
        assert task.started_at is not None and task.finished_at is not None

    def test_comparison_after_migration(self, executor, make_task, registry, source_config, target_config):
        task_id = make_task(
            ResourceSelector(collection="shop", units=["users", "orders"]),
            options=CopyOptions(batch_size=10),
        )
        executor.run(task_id)

        result = ComparisonEngine(registry).compare(
            source_config, target_config, "shop", ["users", "orders"]
        )

        assert result.to_dict()["table_count_source"] == 2
        assert result.to_dict()["table_count_target"] == 2
        assert result.counts_equal
        assert result.divergent == []
        assert [(u.row_count_source, u.row_count_target) for u in result.units] == [
            (100, 100),
            (50, 50),
        ]

    def test_progress_never_decreases(self, executor, make_task, store, monkeypatch):
        seen: list[float] = []
        record_outcome = store.record_outcome

        def spy(task_id, position, outcome, progress):
            record_outcome(task_id, position, outcome, progress)
            seen.append(store.get(task_id).progress)

        monkeypatch.setattr(store, "record_outcome", spy)
        task_id = make_task(ResourceSelector(collection="shop", all_units=True))

        task = executor.run(task_id)

        assert seen == sorted(seen)
        assert seen[-1] == 100.0
        assert task.progress == 100.0

    def test_connections_closed(self, executor, make_task, source, target):
        executor.run(make_task())

        assert source.closes == source.connects == 1
        assert target.closes == target.connects == 1

    def test_rerun_is_an_upsert(self, executor, make_task, target):
        executor.run(make_task(ResourceSelector(collection="shop", units=["orders"])))
        executor.run(make_task(ResourceSelector(collection="shop", units=["orders"])))

        assert len(target.tables["shop"]["orders"]) == 50

    def test_run_requires_pending(self, executor, make_task):
        task_id = make_task()
        executor.run(task_id)

        with pytest.raises(InvalidStateError):
            executor.run(task_id)


class TestUnitFailures:
    def test_failed_unit_does_not_stop_task(self, store, make_task, target):
        source = FakeConnector(
            {"shop": {"users": make_rows(5), "orders": make_rows(5)}}, missing={"users"}
        )
        task_id = make_task(ResourceSelector(collection="shop", units=["users", "orders"]))

        task = MigrationExecutor(source, target, store).run(task_id)

        assert task.status == TaskStatus.COMPLETED
        assert len(task.outcomes) == len(task.units) == 2
        failed, succeeded = task.outcomes
        assert not failed.success and "not found" in failed.error_message
        assert succeeded.success and succeeded.rows_migrated == 5

    def test_all_units_failed(self, store, make_task, source):
        target = FakeConnector(fail_definition_writes={"users", "orders"})
        task_id = make_task(ResourceSelector(collection="shop", units=["users", "orders"]))

        task = MigrationExecutor(source, target, store).run(task_id)

        assert task.status == TaskStatus.FAILED
        assert task.error_message == "all 2 units failed"
        assert len(task.outcomes) == 2

    def test_row_write_failure_marks_unit_failed(self, store, make_task, source):
        target = FakeConnector(fail_row_writes={"orders"})
        task_id = make_task(
            ResourceSelector(collection="shop", units=["users", "orders"]),
            options=CopyOptions(batch_size=20),
        )

        task = MigrationExecutor(source, target, store).run(task_id)

        users, orders = task.outcomes
        assert users.success
        assert not orders.success
        assert orders.rows_failed == 50 and orders.rows_migrated == 0
        assert task.status == TaskStatus.COMPLETED
        assert task.failed_rows == 50

    def test_missing_table_without_schema_creation(self, store, make_task, source):
        target = FakeConnector({"shop": {}})
        task_id = make_task(
            ResourceSelector(collection="shop", units=["users"]),
            options=CopyOptions(create_schema=False),
        )

        task = MigrationExecutor(source, target, store).run(task_id)

        assert task.status == TaskStatus.FAILED
        assert "does not exist" in task.outcomes[0].error_message


class TestTaskFailures:
    def test_unreachable_target(self, store, make_task, source):
        task = MigrationExecutor(source, FakeConnector(fail_connect=True), store).run(make_task())

        assert task.status == TaskStatus.FAILED
        assert "Connection refused" in task.error_message
        assert task.outcomes == []
        assert source.closes == 1

    def test_discovery_failure(self, store, make_task, target):
        task = MigrationExecutor(FakeConnector(fail_list=True), target, store).run(make_task())

        assert task.status == TaskStatus.FAILED
        assert "Failed to list" in task.error_message

    def test_selection_empty_at_start(self, store, make_task, target):
        source = FakeConnector({"shop": {}})

        task = MigrationExecutor(source, target, store).run(make_task())

        assert task.status == TaskStatus.FAILED
        assert "matched no units" in task.error_message

    def test_connection_lost_mid_run(self, store, make_task):
        source = FakeConnector({"shop": {name: make_rows(3) for name in ("t1", "t2", "t3")}})
        writes: list[str] = []

        def drop_after_first_table(unit):
            writes.append(unit.name)
            if len(writes) > 1:
                raise ConnectionFailedError(
                    "Lost connection to MySQL server during query", system="mysql"
                )

        target = FakeConnector(on_write=drop_after_first_table)

        task = MigrationExecutor(source, target, store).run(make_task())

        assert task.status == TaskStatus.FAILED
        assert "Lost connection" in task.error_message
        assert [o.unit.name for o in task.outcomes] == ["t1"]
        assert writes == ["t1", "t2"]
        assert target.closes == 1

    def test_task_no_longer_running_is_left_alone(self, executor, make_task, store, source, target):
        task_id = make_task()
        store.transition(task_id, TaskStatus.RUNNING, allowed_from={TaskStatus.PENDING})
        store.transition(task_id, TaskStatus.CANCELLED, allowed_from={TaskStatus.RUNNING})

        task = executor.execute(task_id)

        assert task.status == TaskStatus.CANCELLED
        assert source.connects == 0
        assert target.tables == {}


class TestCancellation:
    def test_cancel_before_first_unit(self, executor, make_task):
        cancel = threading.Event()
        cancel.set()

        task = executor.run(make_task(), cancel)

        assert task.status == TaskStatus.CANCELLED
        assert task.outcomes == []

    def test_cancel_between_batches(self, store, make_task, target):
        cancel = threading.Event()

        def cancel_after_first_batch(unit, offset):
            if offset > 0:
                cancel.set()

        source = FakeConnector(
            {"shop": {"users": make_rows(30), "orders": make_rows(5)}},
            on_read=cancel_after_first_batch,
        )
        task_id = make_task(
            ResourceSelector(collection="shop", units=["users", "orders"]),
            options=CopyOptions(batch_size=10),
        )

        task = MigrationExecutor(source, target, store).run(task_id, cancel)

        assert task.status == TaskStatus.CANCELLED
        assert task.outcomes == []
        assert task.migrated_rows == 20
        assert "orders" not in target.tables["shop"]

    def test_cancel_after_second_of_five_units(self, store, make_task, target, monkeypatch):
        source = FakeConnector({"shop": {f"t{i}": make_rows(3) for i in range(1, 6)}})
        cancel = threading.Event()
        record_outcome = store.record_outcome

        def cancel_after_second(task_id, position, outcome, progress):
            record_outcome(task_id, position, outcome, progress)
            if position == 1:
                cancel.set()

        monkeypatch.setattr(store, "record_outcome", cancel_after_second)

        task = MigrationExecutor(source, target, store).run(make_task(), cancel)

        assert task.status == TaskStatus.CANCELLED
        assert len(task.units) == 5
        assert [o.unit.name for o in task.outcomes] == ["t1", "t2"]
        assert sorted(target.tables["shop"]) == ["t1", "t2"]
        assert task.migrated_rows == 6


class TestWriteOptions:
    def test_schema_only(self, executor, make_task, target):
        task_id = make_task(
            ResourceSelector(collection="shop", units=["users"]),
            options=CopyOptions(only_sync_schema=True),
        )

        task = executor.run(task_id)

        assert task.status == TaskStatus.COMPLETED
        assert target.tables["shop"]["users"] == []
        assert task.migrated_rows == 0

    def test_renamed_target_collection(self, executor, make_task, target):
        task_id = make_task(
            ResourceSelector(collection="shop", units=["orders"], target_collection="shop_copy")
        )

        executor.run(task_id)

        assert len(target.tables["shop_copy"]["orders"]) == 50
        assert "shop" not in target.tables

    def test_truncate_replaces_rows(self, store, make_task, source):
        target = FakeConnector({"shop": {"orders": make_rows(5, start=1000)}})
        task_id = make_task(
            ResourceSelector(collection="shop", units=["orders"]),
            options=CopyOptions(truncate_target=True),
        )

        MigrationExecutor(source, target, store).run(task_id)

        assert [row["id"] for row in target.tables["shop"]["orders"]] == list(range(1, 51))

    def test_write_options_take_selector_destination(self):
        selectors = [ResourceSelector(collection="shop", all_units=True, target_collection="dest")]
        options = CopyOptions(create_schema=False)

        write = write_options_for(MigrationUnit("shop", "table", "users"), selectors, options)

        assert write.target_collection == "dest"
        assert write.create_schema is False



class TestKubernetesRun:
    KINDS = {"deployments.apps": "Deployment", "services": "Service", "secrets": "Secret"}
    NAMES = {"deployments.apps": "web", "services": "web", "secrets": "creds"}

    def route(self, args: list[str], text: str | None) -> CommandResult:
        if args[0] == "get" and args[2] == "-o":
            return items(self.NAMES[args[1]])
        if args[0] == "get":
            manifest = {
                "apiVersion": "v1",
                "kind": self.KINDS[args[1]],
                "metadata": {"name": args[2], "namespace": "prod", "uid": "1234"},
            }
            return CommandResult(0, stdout=json.dumps(manifest))
        if json.loads(text)["kind"] == "Secret":
            return CommandResult(
                1,
                stderr='Error from server (Forbidden): secrets "creds" is forbidden: '
                'User "migrator" cannot create resource "secrets" in namespace "prod"',
            )
        return CommandResult(0, stdout="configured")

    def test_forbidden_secret_fails_only_its_unit(self, store):
        kubectl = FakeKubectl(self.route)
        connector = KubernetesConnector(runner=kubectl, retry_attempts=1)
        task = MigrationTask(
            task_id=str(uuid.uuid4()),
            source=KubernetesConfig(name="old", kubeconfig=KUBECONFIG),
            target=KubernetesConfig(name="new", kubeconfig=KUBECONFIG),
            selectors=[
                ResourceSelector(collection="prod", unit_types=["deployments", "services", "secrets"])
            ],
            options=CopyOptions(),
            created_at=datetime.now(timezone.utc),
        )
        store.create(task)

        final = MigrationExecutor(connector, connector, store).run(task.task_id)

        assert final.status == TaskStatus.COMPLETED
        assert [o.unit.name for o in final.outcomes] == ["web", "web", "creds"]
        (failed,) = [o for o in final.outcomes if not o.success]
        assert failed.unit.unit_type == "secrets"
        assert "Forbidden" in failed.error_message
        applied = [m["kind"] for m in kubectl.applied() if m["kind"] != "Namespace"]
        assert applied == ["Deployment", "Service", "Secret"]
