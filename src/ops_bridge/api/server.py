"""HTTP API for Ops Bridge.

``create_app`` builds a FastAPI application around a ``MigrationService``.
Endpoints are plain (non-async) functions so blocking connector I/O runs in
FastAPI's thread pool.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ops_bridge import __version__
from ops_bridge.config import (
    BridgeConfig,
    ConnectionConfig,
    CopyOptions,
    ResourceSelector,
    SystemType,
)
from ops_bridge.connectors.factory import CONNECTOR_CLASSES
from ops_bridge.exceptions import (
    ComparisonError,
    ConfigurationError,
    ConnectorError,
    EmptySelectionError,
    InvalidStateError,
    OpsBridgeError,
    StateError,
    TaskNotFoundError,
)
from ops_bridge.migration.comparator import ComparisonEngine
from ops_bridge.migration.service import MigrationService
from ops_bridge.migration.state import TaskStore
from ops_bridge.utils.logging import get_logger

logger = get_logger(__name__)

# First match wins, so subclasses come before their bases
ERROR_STATUS_CODES: list[tuple[type[OpsBridgeError], int]] = [
    (EmptySelectionError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ConfigurationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (TaskNotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidStateError, status.HTTP_409_CONFLICT),
    (ComparisonError, status.HTTP_502_BAD_GATEWAY),
    (ConnectorError, status.HTTP_502_BAD_GATEWAY),
    (StateError, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


class CreateTaskRequest(BaseModel):
    source: ConnectionConfig
    target: ConnectionConfig
    selectors: list[ResourceSelector] = Field(default_factory=list)
    options: CopyOptions | None = None


class CompareRequest(BaseModel):
    """Compare one collection (``collection`` + ``tables``) or several (``collections``)."""

    source: ConnectionConfig
    target: ConnectionConfig
    collection: str | None = None
    tables: list[str] = Field(default_factory=list)
    collections: dict[str, list[str]] | None = None
    unit_type: str = "table"


class ConnectionRequest(BaseModel):
    config: ConnectionConfig


class ListUnitsRequest(BaseModel):
    config: ConnectionConfig
    unit_types: list[str] | None = None


def _status_code_for(error: OpsBridgeError) -> int:
    for error_type, code in ERROR_STATUS_CODES:
        if isinstance(error, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def handle_ops_bridge_error(request: Request, exc: OpsBridgeError) -> JSONResponse:
    """Map domain errors to ``{"detail", "error"}`` JSON responses."""
    body: dict[str, Any] = {"detail": str(exc), "error": type(exc).__name__}
    if isinstance(exc, ComparisonError):
        body["collection"] = exc.collection
        body["partial"] = {name: result.to_dict() for name, result in exc.partial.items()}

    code = _status_code_for(exc)
    log = logger.error if code >= 500 else logger.info
    log("request_failed", path=request.url.path, status=code, error=str(exc))
    return JSONResponse(status_code=code, content=body)


async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": jsonable_encoder(exc.errors()), "error": "ValidationError"},
    )


def create_app(
    config: BridgeConfig | None = None,
    service: MigrationService | None = None,
    comparison_engine: ComparisonEngine | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        config: Application configuration (defaults and environment when omitted)
        service: Migration service (built from ``config.state`` when omitted)
        comparison_engine: Comparison engine (default connector factory when omitted)

    Returns:
        Configured FastAPI application
    """
    config = config or BridgeConfig()
    if service is None:
        service = MigrationService(TaskStore(config.state), performance=config.performance)
    connector_factory = service.connector_factory
    if comparison_engine is None:
        comparison_engine = ComparisonEngine(connector_factory)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("api_started", version=__version__)
        yield
        service.shutdown(timeout=5)
        logger.info("api_stopped")

    app = FastAPI(
        title="Ops Bridge",
        description="Migrate Kubernetes namespaces and MySQL tables between systems",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.service = service
    app.add_exception_handler(OpsBridgeError, handle_ops_bridge_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "version": __version__}

    # Migration tasks

    @app.post("/migrate/tasks", status_code=status.HTTP_201_CREATED)
    def create_task(request: CreateTaskRequest) -> dict[str, str]:
        task_id = service.create_task(
            request.source, request.target, request.selectors, request.options
        )
        return {"task_id": task_id}

    @app.post("/migrate/tasks/{task_id}/start")
    def start_task(task_id: str) -> dict[str, str]:
        return {"task_id": task_id, "status": service.start_task(task_id).value}

    @app.post("/migrate/tasks/{task_id}/cancel")
    def cancel_task(task_id: str) -> dict[str, str]:
        return {"task_id": task_id, "status": service.cancel_task(task_id).value}

    @app.get("/migrate/tasks/{task_id}/progress")
    def get_progress(task_id: str) -> dict[str, Any]:
        return service.get_progress(task_id)

    @app.get("/migrate/tasks/{task_id}/outcomes")
    def get_outcomes(task_id: str) -> list[dict[str, Any]]:
        return [outcome.to_dict() for outcome in service.get_outcomes(task_id)]

    @app.get("/migrate/tasks")
    def list_tasks() -> list[dict[str, Any]]:
        return [task.summary() for task in service.list_tasks()]

    @app.post("/migrate/compare")
    def compare(request: CompareRequest) -> dict[str, Any]:
        if request.collections:
            results = comparison_engine.compare_collections(
                request.source, request.target, request.collections, unit_type=request.unit_type
            )
            return {"collections": {name: result.to_dict() for name, result in results.items()}}
        if not request.collection:
            raise ConfigurationError("Either 'collection' or 'collections' is required")
        result = comparison_engine.compare(
            request.source,
            request.target,
            request.collection,
            request.tables,
            unit_type=request.unit_type,
        )
        return result.to_dict()

    # Connections

    @app.post("/connections/test")
    def test_connection(request: ConnectionRequest) -> dict[str, Any]:
        ok, message = connector_factory(request.config).test_connection(request.config)
        return {"ok": ok, "message": message}

    @app.post("/connections/collections")
    def list_collections(request: ConnectionRequest) -> list[str]:
        connector = connector_factory(request.config)
        conn = connector.connect(request.config)
        try:
            return connector.list_collections(conn)
        finally:
            connector.close(conn)

    @app.post("/connections/collections/{name}/units")
    def list_units(name: str, request: ListUnitsRequest) -> list[dict[str, str]]:
        connector = connector_factory(request.config)
        conn = connector.connect(request.config)
        try:
            units = connector.list_units(conn, name, request.unit_types)
        finally:
            connector.close(conn)
        return [unit.to_dict() for unit in units]

    @app.get("/connections/unit-types/{system_type}")
    def list_unit_types(system_type: SystemType) -> list[str]:
        return CONNECTOR_CLASSES[system_type]().list_unit_types()

    return app
