"""Filter compiler for repository queries.

Compiles filter mappings to SQLAlchemy WHERE clauses against a table.

Grammar:
    {"name": "a"}                         equality (None means IS NULL)
    {"id": [1, 2]}                        IN
    {"path": {"$startsWith": "1."}}       operator mapping
    {"$and": [...]} / {"$or": [...]}      boolean groups
"""

from typing import Any, Callable, Optional

from sqlalchemy import Table, and_, not_, or_
from sqlalchemy.sql.elements import ColumnElement

from nocobase.core.exceptions import FilterError

OperatorFn = Callable[[ColumnElement, Any], ColumnElement]


def _eq(column: ColumnElement, value: Any) -> ColumnElement:
    return column.is_(None) if value is None else column == value


def _ne(column: ColumnElement, value: Any) -> ColumnElement:
    return column.is_not(None) if value is None else column != value


def _in(column: ColumnElement, value: Any) -> ColumnElement:
    return column.in_(list(value))


def _not_in(column: ColumnElement, value: Any) -> ColumnElement:
    return column.not_in(list(value))


OPERATORS: dict[str, OperatorFn] = {
    "$eq": _eq,
    "$ne": _ne,
    "$gt": lambda column, value: column > value,
    "$gte": lambda column, value: column >= value,
    "$lt": lambda column, value: column < value,
    "$lte": lambda column, value: column <= value,
    "$in": _in,
    "$notIn": _not_in,
    # LIKE wildcards in the value are matched literally
    "$startsWith": lambda column, value: column.startswith(value, autoescape=True),
    "$endsWith": lambda column, value: column.endswith(value, autoescape=True),
    "$includes": lambda column, value: column.contains(value, autoescape=True),
    "$notIncludes": lambda column, value: not_(column.contains(value, autoescape=True)),
    "$null": lambda column, value: column.is_(None) if value else column.is_not(None),
    "$notNull": lambda column, value: column.is_not(None) if value else column.is_(None),
}


class FilterParser:
    """Compiles filter mappings to SQLAlchemy clauses for one table."""

    def __init__(self, table: Table) -> None:
        self.table = table

    def compile(self, filter: Optional[dict[str, Any]]) -> Optional[ColumnElement]:
        """Compile a filter mapping.

        Args:
            filter: Filter mapping, or None.

        Returns:
            A WHERE clause, or None when the filter is empty.

        Raises:
            FilterError: If the filter names an unknown column or operator.
        """
        if not filter:
            return None
        if not isinstance(filter, dict):
            raise FilterError(f"filter must be a mapping, got {type(filter).__name__}")

        clauses = [self._compile_item(key, value) for key, value in filter.items()]
        return self._join(and_, clauses)

    def column(self, name: str) -> ColumnElement:
        try:
            return self.table.c[name]
        except KeyError:
            raise FilterError(f'unknown column "{name}" on "{self.table.name}"') from None

    def _compile_item(self, key: str, value: Any) -> Optional[ColumnElement]:
        if key == "$and":
            return self._join(and_, [self.compile(item) for item in value])
        if key == "$or":
            return self._join(or_, [self.compile(item) for item in value])
        if key.startswith("$"):
            raise FilterError(f"unknown operator {key}")

        column = self.column(key)

        if isinstance(value, dict):
            return self._join(
                and_,
                [self._operator(op)(column, operand) for op, operand in value.items()],
            )
        if isinstance(value, (list, tuple, set)):
            return _in(column, value)
        return _eq(column, value)

    def _operator(self, name: str) -> OperatorFn:
        operator = OPERATORS.get(name)
        if operator is None:
            raise FilterError(f"unknown operator {name}")
        return operator

    @staticmethod
    def _join(
        combine: Callable[..., ColumnElement], clauses: list[Optional[ColumnElement]]
    ) -> Optional[ColumnElement]:
        clauses = [clause for clause in clauses if clause is not None]
        if not clauses:
            return None
        if len(clauses) == 1:
            return clauses[0]
        return combine(*clauses)
