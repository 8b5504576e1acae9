"""Schema-gated data store.

Merges patches into a partial data record one field at a time. Each value
is checked against its field constraint; a violating value is dropped for
that field only and the field keeps its previous value (or absence).
Nested objects and arrays are replaced wholesale.

A patch value of None removes the field, unless the field is nullable.
"""

import inspect
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import BaseModel, Field

from parley.dialogue.models.schema import DataSchema, FieldSchema
from parley.observability.logging import get_logger

logger = get_logger(__name__)

DataHook = Callable[
    [dict[str, Any], dict[str, Any]],
    dict[str, Any] | Awaitable[dict[str, Any]],
]

_MISSING = object()


class DataPatchResult(BaseModel):
    """Outcome of applying one patch."""

    data: dict[str, Any] = Field(default_factory=dict, description="Merged record")
    applied: list[str] = Field(default_factory=list, description="Fields written")
    rejected: dict[str, str] = Field(
        default_factory=dict, description="Dropped fields and why"
    )

    @property
    def changed(self) -> bool:
        return bool(self.applied)


def is_route_complete(data: dict[str, Any], required_fields: list[str]) -> bool:
    """True iff every required field is present. Optional fields never block."""
    return all(name in data for name in required_fields)


class FieldViolation(ValueError):
    """A value does not satisfy its field constraint."""


class DataStore:
    """Applies validated patches and runs the ordered data hook pipeline."""

    def __init__(self, hooks: list[DataHook] | None = None) -> None:
        self._hooks: list[DataHook] = list(hooks or [])

    def add_hook(self, hook: DataHook) -> None:
        self._hooks.append(hook)

    def apply(
        self,
        current: dict[str, Any],
        patch: dict[str, Any],
        schema: DataSchema | None = None,
    ) -> dict[str, Any]:
        """Merge `patch` into a copy of `current` and return the new record."""
        return self.merge(current, patch, schema).data

    def is_route_complete(self, data: dict[str, Any], required_fields: list[str]) -> bool:
        return is_route_complete(data, required_fields)

    def merge(
        self,
        current: dict[str, Any],
        patch: dict[str, Any],
        schema: DataSchema | None = None,
    ) -> DataPatchResult:
        """Merge with a report of applied and rejected fields."""
        result = DataPatchResult(data=dict(current))

        for name, value in patch.items():
            try:
                coerced = self._check(name, value, schema)
            except FieldViolation as exc:
                result.rejected[name] = str(exc)
                continue

            if coerced is _MISSING:
                if name in result.data:
                    del result.data[name]
                    result.applied.append(name)
                continue
            result.data[name] = coerced
            result.applied.append(name)

        if result.rejected:
            logger.warning(
                "data_fields_rejected",
                fields=sorted(result.rejected),
                reasons=result.rejected,
            )
        return result

    async def commit(
        self,
        current: dict[str, Any],
        patch: dict[str, Any],
        schema: DataSchema | None = None,
    ) -> DataPatchResult:
        """Merge, then pass the record through the data hooks in order.

        Hooks receive (new_data, previous_data) and return the data to keep.
        """
        result = self.merge(current, patch, schema)
        if not result.changed:
            return result

        data = result.data
        for hook in self._hooks:
            transformed = hook(dict(data), dict(current))
            if inspect.isawaitable(transformed):
                transformed = await transformed
            if transformed is not None:
                data = dict(transformed)
        result.data = data
        return result

    def _check(self, name: str, value: Any, schema: DataSchema | None) -> Any:
        if schema is None:
            return _MISSING if value is None else value

        field = schema.properties.get(name)
        if field is None:
            if not schema.additional_properties:
                raise FieldViolation("field is not declared in the schema")
            return _MISSING if value is None else value

        if value is None:
            return None if field.nullable else _MISSING

        try:
            value = self._coerce(value, field)
            self._check_constraints(value, field)
        except FieldViolation:
            if field.enum is not None and field.has_default:
                return field.default
            raise
        return value

    def _coerce(self, value: Any, field: FieldSchema) -> Any:
        expected = field.type
        if expected is None:
            return value

        if expected == "string":
            if isinstance(value, str):
                return value
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                return str(value)
        elif expected == "boolean":
            if isinstance(value, bool):
                return value
            if isinstance(value, str) and value.strip().lower() in ("true", "false"):
                return value.strip().lower() == "true"
        elif expected in ("number", "integer"):
            number = value
            if isinstance(value, str):
                try:
                    number = float(value.strip())
                except ValueError:
                    number = None
            if isinstance(number, (int, float)) and not isinstance(number, bool):
                if expected == "number":
                    return number
                if float(number).is_integer():
                    return int(number)
        elif expected == "array":
            if isinstance(value, (list, tuple)):
                return list(value)
        elif expected == "object":
            if isinstance(value, dict):
                return dict(value)

        raise FieldViolation(f"expected {expected}, got {type(value).__name__}")

    def _check_constraints(self, value: Any, field: FieldSchema) -> None:
        if field.enum is not None and value not in field.enum:
            raise FieldViolation(f"{value!r} is not one of {field.enum}")
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            if field.minimum is not None and value < field.minimum:
                raise FieldViolation(f"{value} is below minimum {field.minimum}")
            if field.maximum is not None and value > field.maximum:
                raise FieldViolation(f"{value} is above maximum {field.maximum}")
        if isinstance(value, (str, list)):
            if field.min_length is not None and len(value) < field.min_length:
                raise FieldViolation(f"length {len(value)} is below {field.min_length}")
            if field.max_length is not None and len(value) > field.max_length:
                raise FieldViolation(f"length {len(value)} is above {field.max_length}")
