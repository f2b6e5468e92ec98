"""SQLAlchemy ORM models for PanelHub."""

from panelhub.models.base import Base
from panelhub.models.cached_panel import CachedPanel

__all__ = [
    "Base",
    "CachedPanel",
]
