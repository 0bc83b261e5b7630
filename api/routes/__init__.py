"""API Routes Package."""

from api.routes import health, documents, templates, connections

__all__ = [
    "health",
    "documents",
    "templates",
    "connections",
]
