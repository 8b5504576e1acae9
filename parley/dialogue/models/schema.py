"""Data schema models for collected route data.

A deliberately small subset of JSON Schema: flat objects whose properties
are typed scalars, arrays or nested objects with enum, range and length
constraints.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

FieldType = Literal["string", "number", "integer", "boolean", "object", "array"]


class FieldSchema(BaseModel):
    """Constraint for one collected field."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: FieldType | None = Field(default=None, description="Expected JSON type")
    description: str | None = Field(default=None, description="Shown to the model")
    enum: list[Any] | None = Field(default=None, description="Allowed values")
    default: Any = Field(default=None, description="Fallback for enum violations")
    minimum: float | None = Field(default=None, description="Inclusive lower bound")
    maximum: float | None = Field(default=None, description="Inclusive upper bound")
    min_length: int | None = Field(default=None, alias="minLength")
    max_length: int | None = Field(default=None, alias="maxLength")
    nullable: bool = Field(default=False, description="Whether null is a legal value")
    items: dict[str, Any] | None = Field(default=None, description="Array item schema")

    @property
    def has_default(self) -> bool:
        return "default" in self.model_fields_set

    def to_json_schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {}
        if self.type is not None:
            schema["type"] = [self.type, "null"] if self.nullable else self.type
        for key, value in (
            ("description", self.description),
            ("enum", self.enum),
            ("minimum", self.minimum),
            ("maximum", self.maximum),
            ("minLength", self.min_length),
            ("maxLength", self.max_length),
            ("items", self.items),
        ):
            if value is not None:
                schema[key] = value
        return schema


class DataSchema(BaseModel):
    """Schema for a route's (or agent's) collected data record."""

    model_config = ConfigDict(frozen=True)

    properties: dict[str, FieldSchema] = Field(default_factory=dict)
    required: list[str] = Field(default_factory=list)
    additional_properties: bool = Field(
        default=True, description="Accept fields not declared in the schema"
    )

    @classmethod
    def from_json_schema(cls, schema: dict[str, Any]) -> "DataSchema":
        """Build from a JSON-Schema-like object definition."""
        properties = schema.get("properties", {})
        return cls(
            properties={
                name: FieldSchema.model_validate(definition)
                for name, definition in properties.items()
            },
            required=list(schema.get("required", [])),
            additional_properties=bool(schema.get("additionalProperties", True)),
        )

    def field_names(self) -> list[str]:
        return list(self.properties)

    def to_json_schema(self, only: list[str] | None = None) -> dict[str, Any]:
        """Render as a JSON Schema object, optionally restricted to `only`.

        Every property is optional: partial records are always legal.
        """
        candidates = only if only is not None else list(self.properties)
        names = [n for n in candidates if n in self.properties]
        return {
            "type": "object",
            "properties": {name: self.properties[name].to_json_schema() for name in names},
            "additionalProperties": False,
        }
