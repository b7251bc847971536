"""Repositories for collection records."""

from nocobase.infrastructure.persistence.repositories.filter_parser import FilterParser
from nocobase.infrastructure.persistence.repositories.repository import Repository

__all__ = ["FilterParser", "Repository"]
