"""Domain services.

Pure helpers with no dependency on the database engine.
"""

from nocobase.domain.services.identifier_validator import (
    DEFAULT_MAX_IDENTIFIER_LENGTH,
    IdentifierValidationError,
    IdentifierValidator,
    check_identifier,
)
from nocobase.domain.services.naming import (
    camelize,
    md5,
    pluralize,
    singularize,
    underscore,
)

__all__ = [
    "DEFAULT_MAX_IDENTIFIER_LENGTH",
    "IdentifierValidationError",
    "IdentifierValidator",
    "camelize",
    "check_identifier",
    "md5",
    "pluralize",
    "singularize",
    "underscore",
]
