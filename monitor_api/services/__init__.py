"""Operaciones de gestión: brokers, tópicos y status del sistema."""
