"""Field types.

FIELD_TYPES maps declared type names to field classes; a Database starts
from a copy of it and can be extended with register_field_types().
"""

from nocobase.infrastructure.persistence.fields.field import Field
from nocobase.infrastructure.persistence.fields.relation import (
    BelongsToField,
    BelongsToManyField,
    HasManyField,
    HasOneField,
    RelationField,
)
from nocobase.infrastructure.persistence.fields.scalar import (
    BigIntField,
    BooleanField,
    DateField,
    DoubleField,
    FloatField,
    IntegerField,
    JsonField,
    StringField,
    TextField,
    UuidField,
)
from nocobase.infrastructure.persistence.fields.sort_field import SortField

FIELD_TYPES: dict[str, type[Field]] = {
    "string": StringField,
    "text": TextField,
    "integer": IntegerField,
    "bigInt": BigIntField,
    "float": FloatField,
    "double": DoubleField,
    "boolean": BooleanField,
    "date": DateField,
    "json": JsonField,
    "uuid": UuidField,
    "sort": SortField,
    "belongsTo": BelongsToField,
    "hasOne": HasOneField,
    "hasMany": HasManyField,
    "belongsToMany": BelongsToManyField,
}

__all__ = [
    "FIELD_TYPES",
    "BelongsToField",
    "BelongsToManyField",
    "BigIntField",
    "BooleanField",
    "DateField",
    "DoubleField",
    "Field",
    "FloatField",
    "HasManyField",
    "HasOneField",
    "IntegerField",
    "JsonField",
    "RelationField",
    "SortField",
    "StringField",
    "TextField",
    "UuidField",
]
