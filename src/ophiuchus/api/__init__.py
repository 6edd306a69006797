"""FastAPI application exposing the quest endpoints."""

from .app import create_app, create_service, create_store_handle
from .settings import OphiuchusSettings

__all__ = ["create_app", "create_service", "create_store_handle", "OphiuchusSettings"]
