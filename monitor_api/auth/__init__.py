"""Autenticación de la API de gestión."""

from .api_key import require_api_key

__all__ = ["require_api_key"]
