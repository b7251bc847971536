"""Domain entities.

Plain dataclasses shared by the persistence layer and hooks.
"""

from nocobase.domain.entities.operation_options import OperationOptions, SqlLogger

__all__ = [
    "OperationOptions",
    "SqlLogger",
]
