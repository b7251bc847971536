"""NocoBase database - dynamic collections over SQL.

Named collections of typed fields mapped to live, alterable tables, with
associations, field inheritance and an adjacency-list tree extension.
"""

__version__ = "0.1.0"

from nocobase.infrastructure.persistence.collection import Collection
from nocobase.infrastructure.persistence.database import Database
from nocobase.infrastructure.persistence.model import Record

__all__ = ["Collection", "Database", "Record", "__version__"]
