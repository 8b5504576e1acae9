"""Extraction of route fields from the latest user message.

Runs before the step machine advances so that an answer to the previous
question can unlock the next step in the same turn.
"""

from typing import Any

from parley.conversation.models import Session
from parley.dialogue.generation import PromptBuilder
from parley.dialogue.models import DataSchema, Route
from parley.observability.logging import get_logger
from parley.providers.llm import LLMProvider

logger = get_logger(__name__)

EXTRACTION_SCHEMA_NAME = "data_extraction"


class DataExtractor:
    """Structured-output call returning values for a route's collectable fields."""

    def __init__(self, llm_provider: LLMProvider, prompt_builder: PromptBuilder) -> None:
        self._llm_provider = llm_provider
        self._prompt_builder = prompt_builder

    async def extract(
        self,
        route: Route,
        session: Session,
        schema: DataSchema | None = None,
    ) -> dict[str, Any]:
        """Return a patch for the route's collectable fields (empty on failure)."""
        fields = route.collectable_fields
        if not fields or session.last_user_message is None:
            return {}

        if schema is not None:
            fields_schema = schema.to_json_schema(only=fields)
            for name in fields:
                fields_schema["properties"].setdefault(name, {})
        else:
            fields_schema = {
                "type": "object",
                "properties": {name: {} for name in fields},
                "additionalProperties": False,
            }

        try:
            response = await self._llm_provider.generate(
                self._prompt_builder.build_extraction_messages(session, route, fields_schema),
                response_schema=fields_schema,
                schema_name=EXTRACTION_SCHEMA_NAME,
                temperature=0.0,
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "pre_extraction_failed",
                route_id=route.id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return {}

        extracted = {
            name: value
            for name, value in (response.structured or {}).items()
            if name in fields and value is not None
        }
        if extracted:
            logger.debug("pre_extraction_fields", route_id=route.id, fields=sorted(extracted))
        return extracted
