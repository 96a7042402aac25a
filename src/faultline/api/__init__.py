"""HTTP API for faultline."""

from faultline.api.app import create_app

__all__ = ["create_app"]
