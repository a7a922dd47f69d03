"""
HTTP API server command.
"""

import click
import uvicorn

from ops_bridge.api.server import create_app
from ops_bridge.cli.context import BridgeContext
from ops_bridge.cli.decorators import handle_errors, pass_context
from ops_bridge.cli.utils import echo_info
from ops_bridge.utils.logging import get_logger

logger = get_logger(__name__)


@click.command(name="serve")
@click.option("--host", help="Bind address (defaults to server.host)")
@click.option("--port", type=int, help="Bind port (defaults to server.port)")
@pass_context
@handle_errors
def serve(ctx: BridgeContext, host: str | None, port: int | None) -> None:
    """Serve the HTTP API.

    Tasks created through the API run on worker threads of this process
    and are persisted to the configured state database.

    Examples:

        ops-bridge --config config.yaml serve --port 9000
    """
    config = ctx.config
    host = host or config.server.host
    port = port or config.server.port

    app = create_app(config, service=ctx.service, comparison_engine=ctx.comparison_engine)

    echo_info(f"Serving Ops Bridge API on http://{host}:{port}")
    logger.info("server_starting", host=host, port=port)
    uvicorn.run(app, host=host, port=port, log_level=ctx.log_level.lower())
