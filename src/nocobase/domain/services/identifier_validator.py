"""Identifier validation for collection, table and field names.

Names become unquoted SQL identifiers, so they are checked before any
collection or field object is constructed.
"""

import re
from dataclasses import dataclass

from nocobase.core.exceptions import IdentifierError

# Unquoted-safe SQL identifier
IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# PostgreSQL truncates identifiers past 63 bytes
DEFAULT_MAX_IDENTIFIER_LENGTH = 63


@dataclass
class IdentifierValidationError:
    """A single identifier validation error."""

    message: str
    code: str


class IdentifierValidator:
    """Validator for names that end up as SQL identifiers."""

    @classmethod
    def validate(
        cls, name: str, max_length: int = DEFAULT_MAX_IDENTIFIER_LENGTH
    ) -> list[IdentifierValidationError]:
        """Validate an identifier.

        Args:
            name: The identifier to validate.
            max_length: Longest identifier the target database accepts.

        Returns:
            List of validation errors (empty if valid).
        """
        errors = []

        if not name or not isinstance(name, str):
            errors.append(
                IdentifierValidationError(
                    message="Identifier is required",
                    code="identifier_required",
                )
            )
            return errors

        if len(name) > max_length:
            errors.append(
                IdentifierValidationError(
                    message=f"Identifier must be at most {max_length} characters",
                    code="identifier_too_long",
                )
            )

        if not IDENTIFIER_PATTERN.match(name):
            errors.append(
                IdentifierValidationError(
                    message="Identifier must start with a letter or underscore and contain only alphanumeric characters and underscores",
                    code="identifier_invalid_format",
                )
            )

        return errors


def check_identifier(name: str, max_length: int = DEFAULT_MAX_IDENTIFIER_LENGTH) -> str:
    """Return the name unchanged, or raise IdentifierError.

    Args:
        name: The identifier to check.
        max_length: Longest identifier the target database accepts.

    Raises:
        IdentifierError: If the name is empty, too long or has unsafe characters.
    """
    errors = IdentifierValidator.validate(name, max_length)
    if errors:
        raise IdentifierError(str(name), [e.message for e in errors])
    return name
