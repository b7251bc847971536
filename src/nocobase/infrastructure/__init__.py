"""Infrastructure layer - SQLAlchemy-backed persistence.

This layer contains everything that talks to the database:
- Collection, field and model descriptors
- Repositories and the filter compiler
- Physical schema sync (alembic operations)
- The Database registry and connection manager
"""

from nocobase.infrastructure.persistence.collection import Collection
from nocobase.infrastructure.persistence.database import Database
from nocobase.infrastructure.persistence.inherited_collection import InheritedCollection
from nocobase.infrastructure.persistence.repositories import FilterParser, Repository

__all__ = [
    "Collection",
    "Database",
    "FilterParser",
    "InheritedCollection",
    "Repository",
]
