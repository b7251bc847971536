"""Exceptions raised by the collection metadata engine."""


class DatabaseError(Exception):
    """Base class for all collection/field engine errors."""
    pass


class IdentifierError(DatabaseError):
    """Raised when a collection, table or field name is not a safe SQL identifier."""

    def __init__(self, identifier: str, reasons: list[str] | None = None):
        self.identifier = identifier
        self.reasons = reasons or []
        detail = "; ".join(self.reasons) if self.reasons else "invalid identifier"
        super().__init__(f'Identifier "{identifier}" is invalid: {detail}')


class FieldTypeConflictError(DatabaseError):
    """Raised when an inherited field is redefined with a different type."""

    def __init__(self, collection: str, field: str, new_type: str, parent_type: str):
        self.collection = collection
        self.field = field
        self.new_type = new_type
        self.parent_type = parent_type
        super().__init__(
            f'Field type conflict: cannot set "{field}" on "{collection}" to {new_type}, '
            f'parent "{field}" type is {parent_type}'
        )


class FieldNotFoundError(DatabaseError):
    """Raised when an operation targets a field the collection does not have."""

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"field {field} not exists")


class UnknownFieldTypeError(DatabaseError):
    """Raised when a field declares a type nobody registered."""
    pass


class CollectionNotFoundError(DatabaseError):
    """Raised when a collection name does not resolve."""
    pass


class AssociationNotFoundError(DatabaseError):
    """Raised when an append or nested value names an unknown association."""
    pass


class FilterError(DatabaseError):
    """Raised when a filter, sort or attribute list cannot be compiled."""
    pass


class TreeIntegrityError(DatabaseError):
    """Raised when a tree update would break the path/level invariants."""
    pass
