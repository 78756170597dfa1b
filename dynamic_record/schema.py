"""
Table schema types for dynamic-record.

This module defines the structural description of a table:
- ColumnType: Tag for the declared type of a column
- Column: A single column (JSON schema property) of a table
- TableDescriptor: A table's slug, name, columns and raw JSON schema

Tables are described by JSON schema documents. The document's "$id" is the
table slug, "title" the display name and "properties" the columns. A column
marked with "isAutoIncrement": true is backed by a sequence in the
"_counters" collection.

Invariants:
    - table_slug is lowercase, whitespace free and unique per table
    - An empty table_slug denotes "table does not exist"
    - Stored schema documents never carry "$"-prefixed keys; they are
      escaped to "_$..." on write and restored on read

Example:
    >>> descriptor = TableDescriptor.from_json_schema({
    ...     "$id": "random_table",
    ...     "title": "Random Table",
    ...     "type": "object",
    ...     "properties": {"int": {"type": "integer"}},
    ... })
    >>> descriptor.column("int").type
    <ColumnType.INT: 'int'>
"""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from .errors import SchemaError

RESERVED_KEY_REGEX = re.compile(r"^_(\$.+?)$")
JSON_SCHEMA_DRAFT = "http://json-schema.org/draft-07/schema#"


class ColumnType(Enum):
    """Supported column types.

    These map to JSON schema property types and to the checks run by
    Column.validate_value().
    """

    STRING = "string"
    INT = "int"
    FLOAT = "float"
    BOOLEAN = "boolean"
    INCREMENT = "increment"  # Auto-incrementing integer
    OBJECT = "object"  # Nested object or $ref to another table's schema
    ARRAY = "array"

    @classmethod
    def from_str(cls, value: str) -> ColumnType:
        """Convert string representation to ColumnType.

        Raises:
            ValueError: If value is not a valid column type
        """
        for kind in cls:
            if kind.value == value:
                return kind
        valid = [k.value for k in cls]
        raise ValueError(f"Invalid column type '{value}'. Valid types: {valid}")


_JSON_TYPES = {
    "string": ColumnType.STRING,
    "integer": ColumnType.INT,
    "number": ColumnType.FLOAT,
    "boolean": ColumnType.BOOLEAN,
    "object": ColumnType.OBJECT,
    "array": ColumnType.ARRAY,
}

_VALUE_CHECKS: Dict[ColumnType, Callable[[Any], bool]] = {
    ColumnType.STRING: lambda v: isinstance(v, str),
    ColumnType.INT: lambda v: isinstance(v, int) and not isinstance(v, bool),
    ColumnType.INCREMENT: lambda v: isinstance(v, int) and not isinstance(v, bool) and v >= 0,
    ColumnType.FLOAT: lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
    ColumnType.BOOLEAN: lambda v: isinstance(v, bool),
    ColumnType.OBJECT: lambda v: isinstance(v, dict),
    ColumnType.ARRAY: lambda v: isinstance(v, list),
}


@dataclass(frozen=True)
class Column:
    """A single column of a table.

    Attributes:
        label: Property name in the record data
        type: Declared column type
        description: Human-readable description
        required: Whether the property is listed in the schema's "required"
        ref: Table slug of a referenced sub-schema (OBJECT columns only)
    """

    label: str
    type: ColumnType
    description: str = ""
    required: bool = False
    ref: Optional[str] = None

    @property
    def auto_increment(self) -> bool:
        return self.type == ColumnType.INCREMENT

    def validate_value(self, value: Any) -> bool:
        """Whether value fits the declared column type."""
        if value is None:
            return not self.required
        return _VALUE_CHECKS[self.type](value)

    @classmethod
    def from_property(cls, label: str, prop: Dict[str, Any], required: bool = False) -> Column:
        """Build a column from a JSON schema property.

        Raises:
            SchemaError: If the property type is unsupported
        """
        if "$ref" in prop:
            return cls(
                label=label,
                type=ColumnType.OBJECT,
                description=prop.get("description", ""),
                required=required,
                ref=prop["$ref"],
            )

        json_type = prop.get("type")
        if json_type not in _JSON_TYPES:
            raise SchemaError(f"Unsupported type {json_type!r} for column '{label}'")

        column_type = _JSON_TYPES[json_type]
        if column_type == ColumnType.INT and prop.get("isAutoIncrement"):
            column_type = ColumnType.INCREMENT

        return cls(
            label=label,
            type=column_type,
            description=prop.get("description", ""),
            required=required,
        )

    def to_property(self) -> Dict[str, Any]:
        """Convert to a JSON schema property."""
        if self.ref:
            prop: Dict[str, Any] = {"$ref": self.ref}
        elif self.type == ColumnType.INCREMENT:
            prop = {"type": "integer", "isAutoIncrement": True}
        else:
            json_type = next(k for k, v in _JSON_TYPES.items() if v == self.type)
            prop = {"type": json_type}
        if self.description:
            prop["description"] = self.description
        return prop


@dataclass(frozen=True)
class TableDescriptor:
    """Structural description of a table.

    Attributes:
        table_slug: Table identifier, the schema "$id" ("" if the table does not exist)
        table_name: Display name, the schema "title"
        columns: Columns in declaration order
        schema_uri: The schema "$schema" dialect URI
        json_schema: The restored JSON schema document
    """

    table_slug: str = ""
    table_name: str = ""
    columns: Tuple[Column, ...] = ()
    schema_uri: Optional[str] = None
    json_schema: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def exists(self) -> bool:
        return self.table_slug != ""

    @property
    def required(self) -> Tuple[str, ...]:
        return tuple(c.label for c in self.columns if c.required)

    @property
    def auto_increment_columns(self) -> Tuple[Column, ...]:
        return tuple(c for c in self.columns if c.auto_increment)

    def column(self, label: str) -> Optional[Column]:
        """Get a column by label."""
        for column in self.columns:
            if column.label == label:
                return column
        return None

    @classmethod
    def empty(cls) -> TableDescriptor:
        return cls()

    @classmethod
    def from_json_schema(cls, document: Dict[str, Any]) -> TableDescriptor:
        """Build a descriptor from a restored JSON schema document."""
        required = set(document.get("required", []))
        columns = tuple(
            Column.from_property(label, prop, required=label in required)
            for label, prop in document.get("properties", {}).items()
        )
        return cls(
            table_slug=document.get("$id", ""),
            table_name=document.get("title", ""),
            columns=columns,
            schema_uri=document.get("$schema"),
            json_schema=copy.deepcopy(document),
        )

    def to_json_schema(self) -> Dict[str, Any]:
        """Convert to a JSON schema document."""
        document: Dict[str, Any] = {
            "$id": self.table_slug,
            "$schema": self.schema_uri or JSON_SCHEMA_DRAFT,
            "title": self.table_name,
            "type": "object",
            "properties": {c.label: c.to_property() for c in self.columns},
        }
        if self.required:
            document["required"] = list(self.required)
        return document


def validate_table_slug(table_slug: str) -> None:
    """Check the table slug invariant.

    Raises:
        SchemaError: If the slug is empty, has uppercase letters or whitespace
    """
    if not table_slug:
        raise SchemaError("Table slug cannot be empty")
    if table_slug != table_slug.lower():
        raise SchemaError(f"Table slug '{table_slug}' must be lowercase", table_slug)
    if any(c.isspace() for c in table_slug):
        raise SchemaError(f"Table slug '{table_slug}' cannot contain whitespace", table_slug)


def escape_reserved_keys(document: Dict[str, Any]) -> Dict[str, Any]:
    """Rename top-level "$..." keys to "_$..." for storage."""
    return {(f"_{key}" if key.startswith("$") else key): value for key, value in document.items()}


def restore_reserved_keys(document: Dict[str, Any]) -> Dict[str, Any]:
    """Rename stored "_$..." keys back to "$..." and drop the store "_id"."""
    restored: Dict[str, Any] = {}
    for key, value in document.items():
        if key == "_id":
            continue
        restored[RESERVED_KEY_REGEX.sub(r"\1", key)] = value
    return restored


def columns_of(schema: TableDescriptor | Iterable[Column]) -> Tuple[Column, ...]:
    """Columns of a descriptor, or the given columns as a tuple."""
    if isinstance(schema, TableDescriptor):
        return schema.columns
    return tuple(schema)
