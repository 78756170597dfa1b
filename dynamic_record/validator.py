"""
Schema validation for dynamic-record.

SchemaValidator turns a schema reference (a table slug) into a validation
function. Schemas are loaded asynchronously from the schema registry, then
compiled into a strict pydantic model. A property of the form
{"$ref": "<table slug>"} embeds another table's schema, which is loaded and
compiled the same way.

Supported JSON schema keywords:
    type (string, integer, number, boolean, object, array, null, or a list of these),
    properties, required, additionalProperties (false only), items, enum,
    minLength, maxLength, minimum, maximum, pattern, $ref

Invariants:
    - Compiled schemas are cached per validator instance, keyed by reference
    - The cache is never invalidated; a validator lives as long as its gateway
    - Concurrent compile_async() calls for one reference share one load
    - Validation errors are deterministic and name the failing field

Example:
    >>> validator = SchemaValidator(registry.load_json_schema)
    >>> validate = await validator.compile_async("random_table")
    >>> validate({"string": 42})
    [FieldError(field='string', message='Input should be a valid string', type='string_type')]
"""

from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import asdict, dataclass
from typing import Annotated, Any, Awaitable, Callable, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictFloat, StrictInt, StrictStr
from pydantic import ValidationError as PydanticValidationError
from pydantic import create_model

from .errors import SchemaLoadError

logger = logging.getLogger(__name__)

SchemaLoader = Callable[[str], Awaitable[Optional[Dict[str, Any]]]]

_SCALARS: Dict[str, Any] = {
    "string": StrictStr,
    "integer": StrictInt,
    "number": Union[StrictInt, StrictFloat],
    "boolean": StrictBool,
    "null": None,
}

_CONSTRAINTS = {
    "minLength": "min_length",
    "maxLength": "max_length",
    "minimum": "ge",
    "maximum": "le",
    "pattern": "pattern",
}


@dataclass(frozen=True)
class FieldError:
    """A single validation failure.

    Attributes:
        field: Dotted path of the failing field ("" for the record itself)
        message: Human-readable description
        type: Machine-readable failure type
    """

    field: str
    message: str
    type: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


class CompiledSchema:
    """Validation function compiled from a JSON schema.

    Calling the instance with a data mapping returns the list of failures,
    empty when the data is valid.
    """

    def __init__(self, schema_ref: str, model: type[BaseModel]) -> None:
        self.schema_ref = schema_ref
        self.model = model

    def __call__(self, data: Dict[str, Any]) -> List[FieldError]:
        try:
            self.model.model_validate(data)
        except PydanticValidationError as e:
            return [
                FieldError(
                    field=".".join(str(part) for part in error["loc"]),
                    message=error["msg"],
                    type=error["type"],
                )
                for error in e.errors()
            ]
        return []

    def __repr__(self) -> str:
        return f"CompiledSchema({self.schema_ref!r})"


class SchemaValidator:
    """Compiles and caches validation functions by schema reference.

    Attributes:
        loader: Coroutine function returning a schema document by reference,
            or None when no such schema exists
    """

    def __init__(self, loader: SchemaLoader) -> None:
        self.loader = loader
        self._schemas: Dict[str, Dict[str, Any]] = {}
        self._compiled: Dict[str, CompiledSchema] = {}
        self._pending: Dict[str, asyncio.Future] = {}

    def add_schema(self, schema_ref: str, json_schema: Dict[str, Any]) -> None:
        """Register an in-process schema under a reference.

        Registered schemas take precedence over the loader.
        """
        self._schemas[schema_ref] = copy.deepcopy(json_schema)

    def is_compiled(self, schema_ref: str) -> bool:
        return schema_ref in self._compiled

    async def compile_async(self, schema_ref: str) -> CompiledSchema:
        """Get the validation function for a schema reference.

        Args:
            schema_ref: Schema reference (table slug)

        Returns:
            CompiledSchema callable

        Raises:
            SchemaLoadError: If the schema, or a schema it references, cannot be found
        """
        compiled = self._compiled.get(schema_ref)
        if compiled is not None:
            return compiled

        pending = self._pending.get(schema_ref)
        if pending is None:
            pending = asyncio.ensure_future(self._compile(schema_ref, ()))
            self._pending[schema_ref] = pending
            pending.add_done_callback(lambda _: self._pending.pop(schema_ref, None))

        return await asyncio.shield(pending)

    async def _compile(self, schema_ref: str, stack: Tuple[str, ...]) -> CompiledSchema:
        compiled = self._compiled.get(schema_ref)
        if compiled is not None:
            return compiled

        if schema_ref in stack:
            raise SchemaLoadError(schema_ref, f"circular reference via {' -> '.join(stack)}")

        document = await self._load(schema_ref)
        model = await self._build_model(_model_name(schema_ref), document, stack + (schema_ref,))
        compiled = CompiledSchema(schema_ref, model)
        self._compiled[schema_ref] = compiled
        logger.debug(f"Compiled schema '{schema_ref}'")
        return compiled

    async def _load(self, schema_ref: str) -> Dict[str, Any]:
        if schema_ref in self._schemas:
            return self._schemas[schema_ref]
        document = await self.loader(schema_ref)
        if document is None:
            raise SchemaLoadError(schema_ref, "schema not found")
        return document

    async def _build_model(
        self,
        name: str,
        document: Dict[str, Any],
        stack: Tuple[str, ...],
    ) -> type[BaseModel]:
        required = set(document.get("required", []))
        fields: Dict[str, Any] = {}

        # Properties become aliased fields so any label is accepted as a key
        for index, (label, prop) in enumerate(document.get("properties", {}).items()):
            annotation = await self._annotation(f"{name}_{index}", prop, stack)
            default = ... if label in required else None
            fields[f"field_{index}"] = (annotation, Field(default, alias=label))

        extra = "forbid" if document.get("additionalProperties") is False else "allow"
        return create_model(name, __config__=ConfigDict(extra=extra, strict=True), **fields)

    async def _annotation(self, name: str, prop: Dict[str, Any], stack: Tuple[str, ...]) -> Any:
        if "$ref" in prop:
            compiled = await self._compile(prop["$ref"], stack)
            return compiled.model

        if "enum" in prop:
            return Literal[tuple(prop["enum"])]

        json_type = prop.get("type")
        if isinstance(json_type, list):
            members = [await self._annotation(name, {**prop, "type": t}, stack) for t in json_type]
            return Union[tuple(members)]

        if json_type in _SCALARS:
            return _constrained(json_type, prop)

        if json_type == "array":
            items = prop.get("items")
            if items is None:
                return List[Any]
            return List[await self._annotation(f"{name}_item", items, stack)]

        if json_type == "object":
            if "properties" in prop:
                return await self._build_model(name, prop, stack)
            return Dict[str, Any]

        return Any


def _constrained(json_type: str, prop: Dict[str, Any]) -> Any:
    """Scalar annotation with its JSON schema constraints attached to each member."""
    constraints = {keyword: prop[key] for key, keyword in _CONSTRAINTS.items() if key in prop}
    if json_type == "number":
        if not constraints:
            return Union[StrictInt, StrictFloat]
        return Union[
            Annotated[StrictInt, Field(**constraints)],
            Annotated[StrictFloat, Field(**constraints)],
        ]

    annotation = _SCALARS[json_type]
    if constraints and annotation is not None:
        return Annotated[annotation, Field(**constraints)]
    return annotation


def _model_name(schema_ref: str) -> str:
    return "".join(part.capitalize() for part in schema_ref.replace("-", "_").split("_")) or "Schema"
