"""Errores de dominio de la API de gestión."""

from __future__ import annotations


class MonitorError(Exception):
    """Base de los errores de negocio."""


class NotFoundError(MonitorError):
    """El broker o tópico referenciado no existe (HTTP 404)."""


class ConflictError(MonitorError):
    """El recurso ya existe (HTTP 409)."""
