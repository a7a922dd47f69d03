"""HTTP API for Ops Bridge."""

from ops_bridge.api.server import create_app

__all__ = ["create_app"]
