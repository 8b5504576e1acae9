"""Tests for response generation and pre-extraction."""

import pytest

from parley.config.models.pipeline import GenerationConfig
from parley.dialogue.data.extractor import EXTRACTION_SCHEMA_NAME, DataExtractor
from parley.dialogue.generation import (
    RESPONSE_SCHEMA_NAME,
    PromptBuilder,
    ResponseGenerator,
    build_response_schema,
    split_structured,
)
from parley.dialogue.models import AgentProfile, DataSchema
from parley.providers.llm import (
    LLMMessage,
    MockLLMProvider,
    ModelError,
    ToolCall,
    ToolDefinition,
)
from tests.factories import RouteFactory, SessionFactory, StepFactory

NAME_SCHEMA = {"type": "object", "properties": {"name": {"type": "string"}}}


class TestResponseSchema:
    """Tests for build_response_schema and split_structured."""

    def test_message_plus_collect_fields(self) -> None:
        schema = build_response_schema(NAME_SCHEMA)
        assert set(schema["properties"]) == {"message", "name"}
        assert schema["required"] == ["message"]

    def test_split_keeps_allowed_fields(self) -> None:
        message, extracted = split_structured(
            {"message": "Hi Lin", "name": "Lin", "age": 30, "city": None},
            "raw",
            ["name", "city"],
        )
        assert message == "Hi Lin"
        assert extracted == {"name": "Lin"}

    def test_split_falls_back_to_content(self) -> None:
        assert split_structured(None, "raw text", []) == ("raw text", {})
        assert split_structured({"message": ""}, "raw text", []) == ("raw text", {})


class TestResponseGenerator:
    """Tests for ResponseGenerator."""

    @pytest.mark.asyncio
    async def test_generate_structured(self) -> None:
        llm = MockLLMProvider(
            structured_responses={RESPONSE_SCHEMA_NAME: {"message": "Thanks Lin", "name": "Lin"}}
        )
        generator = ResponseGenerator(llm, GenerationConfig(temperature=0.2, max_tokens=50))

        result = await generator.generate([LLMMessage(role="user", content="Lin")], NAME_SCHEMA)

        assert result.message == "Thanks Lin"
        assert result.extracted == {"name": "Lin"}
        assert result.model == "mock-model"
        call = llm.calls_for(RESPONSE_SCHEMA_NAME)[0]
        assert call["temperature"] == 0.2
        assert call["max_tokens"] == 50

    @pytest.mark.asyncio
    async def test_generate_propagates_provider_errors(self) -> None:
        llm = MockLLMProvider()
        llm.fail_with(ModelError("down"))
        with pytest.raises(ModelError):
            await ResponseGenerator(llm).generate([], NAME_SCHEMA)

    @pytest.mark.asyncio
    async def test_stream_fragments(self) -> None:
        llm = MockLLMProvider(default_response="abcdef", stream_chunk_size=2)
        chunks = [
            chunk
            async for chunk in ResponseGenerator(llm).stream(
                [LLMMessage(role="user", content="go")], NAME_SCHEMA
            )
        ]
        assert [c.delta for c in chunks if not c.done] == ["ab", "cd", "ef"]
        assert chunks[-1].done is True
        assert chunks[-1].accumulated == "abcdef"


ADD_TOOL = ToolDefinition(name="add", parameters={"type": "object", "properties": {}})


class TestToolCallLoop:
    """Model-requested tool calls are run and fed back before the reply."""

    @staticmethod
    def _recorder(calls: list[ToolCall]):
        async def call_tool(call: ToolCall) -> str:
            calls.append(call)
            return '{"success": true, "output": 5}'

        return call_tool

    @pytest.mark.asyncio
    async def test_tool_results_fed_back_to_model(self) -> None:
        llm = MockLLMProvider(
            default_response="The total is 5",
            tool_call_rounds=[[ToolCall(id="c1", name="add", arguments={"a": 2, "b": 3})]],
        )
        calls: list[ToolCall] = []

        result = await ResponseGenerator(llm).generate(
            [LLMMessage(role="user", content="2 + 3?")],
            NAME_SCHEMA,
            tools=[ADD_TOOL],
            call_tool=self._recorder(calls),
        )

        assert result.message == "The total is 5"
        assert [c.id for c in calls] == ["c1"]
        assert [c.id for c in result.tool_calls] == ["c1"]
        follow_up = llm.calls_for(RESPONSE_SCHEMA_NAME)[1]["messages"]
        assert [m.role for m in follow_up] == ["user", "assistant", "tool"]
        assert follow_up[1].tool_calls[0].name == "add"
        assert follow_up[2].tool_call_id == "c1"
        assert follow_up[2].content == '{"success": true, "output": 5}'

    @pytest.mark.asyncio
    async def test_rounds_are_bounded(self) -> None:
        llm = MockLLMProvider(
            tool_call_rounds=[[ToolCall(name="add")] for _ in range(5)]
        )
        calls: list[ToolCall] = []
        generator = ResponseGenerator(llm, GenerationConfig(max_tool_iterations=2))

        result = await generator.generate(
            [LLMMessage(role="user", content="go")],
            NAME_SCHEMA,
            tools=[ADD_TOOL],
            call_tool=self._recorder(calls),
        )

        assert len(calls) == 2
        assert len(llm.calls_for(RESPONSE_SCHEMA_NAME)) == 3
        assert result.message == ""

    @pytest.mark.asyncio
    async def test_no_tools_offered_without_callback(self) -> None:
        llm = MockLLMProvider(tool_call_rounds=[[ToolCall(name="add")]])

        result = await ResponseGenerator(llm).generate(
            [LLMMessage(role="user", content="go")], NAME_SCHEMA, tools=[ADD_TOOL]
        )

        assert result.tool_calls == []
        assert llm.calls_for(RESPONSE_SCHEMA_NAME)[0]["tools"] is None

    @pytest.mark.asyncio
    async def test_stream_continues_after_tool_round(self) -> None:
        llm = MockLLMProvider(
            default_response="abcd",
            stream_chunk_size=2,
            tool_call_rounds=[[ToolCall(id="c1", name="add")]],
        )
        calls: list[ToolCall] = []

        chunks = [
            chunk
            async for chunk in ResponseGenerator(llm).stream(
                [LLMMessage(role="user", content="go")],
                NAME_SCHEMA,
                tools=[ADD_TOOL],
                call_tool=self._recorder(calls),
            )
        ]

        assert [c.id for c in calls] == ["c1"]
        assert [c.delta for c in chunks if not c.done] == ["ab", "cd"]
        assert [c.done for c in chunks].count(True) == 1
        assert chunks[-1].accumulated == "abcd"
        assert chunks[-1].tool_calls == []


class TestDataExtractor:
    """Tests for DataExtractor."""

    @pytest.fixture
    def route(self):
        return RouteFactory.create(
            steps=[
                StepFactory.prompt("ask_name", ["name"]),
                StepFactory.prompt("ask_email", ["email"]),
            ]
        )

    def _extractor(self, llm) -> DataExtractor:
        return DataExtractor(llm, PromptBuilder(AgentProfile(name="Tester")))

    @pytest.mark.asyncio
    async def test_filters_to_collectable_fields(self, route) -> None:
        llm = MockLLMProvider(
            structured_responses={
                EXTRACTION_SCHEMA_NAME: {"name": "Lin", "email": None, "ssn": "123"}
            }
        )
        session = SessionFactory.create(messages=["I'm Lin"])

        patch = await self._extractor(llm).extract(route, session)

        assert patch == {"name": "Lin"}
        schema = llm.calls_for(EXTRACTION_SCHEMA_NAME)[0]["response_schema"]
        assert list(schema["properties"]) == ["name", "email"]

    @pytest.mark.asyncio
    async def test_schema_types_offered(self, route) -> None:
        llm = MockLLMProvider(structured_responses={EXTRACTION_SCHEMA_NAME: {}})
        schema = DataSchema.from_json_schema(
            {"type": "object", "properties": {"email": {"type": "string"}}}
        )

        await self._extractor(llm).extract(route, SessionFactory.create(messages=["hi"]), schema)

        offered = llm.calls_for(EXTRACTION_SCHEMA_NAME)[0]["response_schema"]["properties"]
        assert offered["email"] == {"type": "string"}
        assert offered["name"] == {}

    @pytest.mark.asyncio
    async def test_no_user_message_skips_call(self, route) -> None:
        llm = MockLLMProvider()
        assert await self._extractor(llm).extract(route, SessionFactory.create()) == {}
        assert llm.call_history == []

    @pytest.mark.asyncio
    async def test_failure_returns_empty_patch(self, route) -> None:
        llm = MockLLMProvider()
        llm.fail_with(ModelError("down"), schema_name=EXTRACTION_SCHEMA_NAME)
        session = SessionFactory.create(messages=["I'm Lin"])
        assert await self._extractor(llm).extract(route, session) == {}
