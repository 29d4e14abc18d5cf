"""Configuration for the REST API client."""

from .settings import ClientSettings

__all__ = ["ClientSettings"]
