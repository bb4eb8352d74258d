"""HTTP surface - FastAPI application factory."""

from token_metrics_tracker.api.app import create_app

__all__ = ["create_app"]
