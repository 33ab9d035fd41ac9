"""HTTP API for documents and runs."""

from flow_engine.api.app import create_app

__all__ = ["create_app"]
