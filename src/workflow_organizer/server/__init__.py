"""HTTP API for the workflow organizer."""

from .api import create_app

__all__ = ["create_app"]
