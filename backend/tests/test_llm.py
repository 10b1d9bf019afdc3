"""
Unit tests for the LLM module.
Tests the provider adapters at the wire level and the factory.
"""

import json

import httpx
import pytest

from parley.core.errors import ProviderError
from parley.llm.base import Content, ContentDelta, ToolCallsRequested, extract_diagnostic
from parley.llm.anthropic_provider import AnthropicProvider
from parley.llm.google_provider import GoogleProvider
from parley.llm.openai_provider import OpenAIProvider
from parley.llm.factory import create_llm_provider, refresh_provider_models
from parley.models.config import SessionConfig
from parley.models.conversation import (
    Conversation, ConversationRole, ToolCall, ToolResponse, TypedData,
)
from parley.models.provider import AIModel, Provider, ProviderType
from parley.tools.base import ChatTool, ToolOutput
from parley.tools.registry import ToolRegistry


class LookupTool(ChatTool):
    name = "lookup"
    description = "Look something up"
    parameters = {"type": "object", "properties": {"x": {"type": "string"}}}

    async def process(self, arguments):
        return ToolOutput(string="42")


def sse(*events) -> str:
    lines = [f"data: {json.dumps(e) if not isinstance(e, str) else e}" for e in events]
    return "\n\n".join(lines) + "\n\n"


class Recorder:
    """MockTransport handler that records requests and replays one response."""

    def __init__(self, status_code=200, body="", json_body=None):
        self.status_code = status_code
        self.body = body
        self.json_body = json_body
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.json_body is not None:
            return httpx.Response(self.status_code, json=self.json_body)
        return httpx.Response(self.status_code, text=self.body)

    @property
    def payload(self):
        return json.loads(self.requests[-1].content)


def make_adapter(cls, provider_type, recorder, tools=()):
    provider = Provider.factory(provider_type, api_key="secret-key")
    return cls(
        provider,
        transport=httpx.MockTransport(recorder),
        tool_registry=ToolRegistry(tools),
    )


def user(text="Hello", data_files=None):
    return Conversation(role=ConversationRole.USER, content=text, data_files=data_files or [])


async def collect(iterator):
    return [event async for event in iterator]


def generated_image_result():
    return Conversation(
        role=ConversationRole.TOOL,
        tool_response=ToolResponse(
            tool_call_id="call_img",
            tool="image_generator",
            processed_content="Generated 1 image(s)",
            processed_data=[
                TypedData.image(b"img"),
                TypedData(data=b"caption", file_name="c.txt", mime_type="text/plain"),
            ],
        ),
    )


class TestOpenAIProvider:
    """Tests for the chat-completions adapter."""

    def test_headers(self):
        adapter = make_adapter(OpenAIProvider, ProviderType.OPENAI, Recorder())
        headers = adapter._get_headers()
        assert headers["Authorization"] == "Bearer secret-key"
        assert headers["Content-Type"] == "application/json"

    def test_convert_plain_message(self):
        adapter = make_adapter(OpenAIProvider, ProviderType.OPENAI, Recorder())
        assert adapter.convert(user("hi")) == {"role": "user", "content": "hi"}

    def test_convert_attachments(self):
        adapter = make_adapter(OpenAIProvider, ProviderType.OPENAI, Recorder())
        files = [
            TypedData.image(b"img"),
            TypedData(data=b"notes", file_name="a.txt", mime_type="text/plain"),
            TypedData(data=b"%PDF", file_name="paper.pdf", mime_type="application/pdf"),
        ]
        message = adapter.convert(user("look", files))
        parts = message["content"]
        assert parts[0]["type"] == "image_url"
        assert parts[0]["image_url"]["url"] == "data:image/png;base64,aW1n"
        assert parts[1] == {"type": "text", "text": "notes"}
        assert parts[2] == {"type": "text", "text": "PDF files are not supported yet. Notify the user."}
        assert parts[3] == {"type": "text", "text": "look"}

    def test_convert_tool_messages(self):
        adapter = make_adapter(OpenAIProvider, ProviderType.OPENAI, Recorder())
        assistant = Conversation(
            role=ConversationRole.ASSISTANT,
            tool_calls=[ToolCall(tool_call_id="call_1", tool="lookup", arguments='{"x": "y"}')],
        )
        tool = Conversation(
            role=ConversationRole.TOOL,
            tool_response=ToolResponse(tool_call_id="call_1", tool="lookup", processed_content="42"),
        )
        converted = adapter.convert(assistant)
        assert converted["content"] is None
        assert converted["tool_calls"][0]["function"] == {"name": "lookup", "arguments": '{"x": "y"}'}
        assert adapter.convert(tool) == {"role": "tool", "tool_call_id": "call_1", "content": "42"}

    def test_convert_tool_result_attachments_as_text(self):
        adapter = make_adapter(OpenAIProvider, ProviderType.OPENAI, Recorder())
        converted = adapter.convert(generated_image_result())
        assert converted["content"] == (
            "Generated 1 image(s)\n\nPNG files are not supported yet. Notify the user.\n\ncaption"
        )

    @pytest.mark.asyncio
    async def test_stream_content_and_tool_calls(self):
        recorder = Recorder(body=sse(
            {"choices": [{"delta": {"content": "Hi"}}]},
            {"choices": [{"delta": {"content": " there"}}]},
            {"choices": [{"delta": {"tool_calls": [
                {"index": 0, "id": "call_1", "function": {"name": "lookup", "arguments": '{"x":'}},
            ]}}]},
            {"choices": [{"delta": {"tool_calls": [
                {"index": 0, "function": {"arguments": ' "y"}'}},
            ]}}]},
            "[DONE]",
        ))
        adapter = make_adapter(OpenAIProvider, ProviderType.OPENAI, recorder, tools=[LookupTool()])
        config = SessionConfig.for_provider(adapter.provider, tools=("lookup",), temperature=0.5)

        events = await collect(adapter.stream_response([user()], config))

        assert events[:2] == [ContentDelta("Hi"), ContentDelta(" there")]
        assert isinstance(events[2], ToolCallsRequested)
        assert events[2].calls == [ToolCall(tool_call_id="call_1", tool="lookup", arguments='{"x": "y"}')]

        request = recorder.requests[0]
        assert request.url == "https://api.openai.com/v1/chat/completions"
        payload = recorder.payload
        assert payload["stream"] is True
        assert payload["messages"][0] == {"role": "system", "content": config.system_prompt}
        assert payload["temperature"] == 0.5
        assert "top_p" not in payload
        assert payload["tools"][0]["function"]["name"] == "lookup"

    @pytest.mark.asyncio
    async def test_stream_http_error_carries_diagnostic(self):
        recorder = Recorder(status_code=401, json_body={"error": {"message": "Invalid API key"}})
        adapter = make_adapter(OpenAIProvider, ProviderType.OPENAI, recorder)
        config = SessionConfig.for_provider(adapter.provider)

        with pytest.raises(ProviderError) as exc_info:
            await collect(adapter.stream_response([user()], config))
        assert exc_info.value.status_code == 401
        assert exc_info.value.message == "Invalid API key"

    @pytest.mark.asyncio
    async def test_stream_error_chunk(self):
        recorder = Recorder(body=sse(
            {"choices": [{"delta": {"content": "partial"}}]},
            {"error": {"message": "overloaded"}},
        ))
        adapter = make_adapter(OpenAIProvider, ProviderType.OPENAI, recorder)
        config = SessionConfig.for_provider(adapter.provider)

        events = []
        with pytest.raises(ProviderError, match="overloaded"):
            async for event in adapter.stream_response([user()], config):
                events.append(event)
        assert events == [ContentDelta("partial")]

    @pytest.mark.asyncio
    async def test_truncated_stream_ends_quietly(self):
        recorder = Recorder(body='data: {"choices": [{"delta": {"content": "cut"}}]}\n\ndata: {"choi')
        adapter = make_adapter(OpenAIProvider, ProviderType.OPENAI, recorder)
        config = SessionConfig.for_provider(adapter.provider)

        events = await collect(adapter.stream_response([user()], config))
        assert events == [ContentDelta("cut")]

    @pytest.mark.asyncio
    async def test_non_streaming_content(self):
        recorder = Recorder(json_body={
            "choices": [{"message": {"role": "assistant", "content": "Test"}}],
            "usage": {"prompt_tokens": 5, "completion_tokens": 1},
        })
        adapter = make_adapter(OpenAIProvider, ProviderType.OPENAI, recorder)
        config = SessionConfig.for_provider(adapter.provider, stream=False)

        response = await adapter.non_streaming_response([user()], config)
        assert response == Content("Test")
        assert recorder.payload["stream"] is False

    @pytest.mark.asyncio
    async def test_non_streaming_malformed(self):
        recorder = Recorder(body="<html>gateway</html>")
        adapter = make_adapter(OpenAIProvider, ProviderType.OPENAI, recorder)
        config = SessionConfig.for_provider(adapter.provider, stream=False)

        with pytest.raises(ProviderError, match="malformed"):
            await adapter.non_streaming_response([user()], config)

    @pytest.mark.asyncio
    async def test_refresh_models(self):
        recorder = Recorder(json_body={"data": [{"id": "gpt-4o"}, {"id": "o1-mini"}]})
        adapter = make_adapter(OpenAIProvider, ProviderType.OPENAI, recorder)

        models = await adapter.refresh_models()
        assert [m.code for m in models] == ["gpt-4o", "o1-mini"]
        assert recorder.requests[0].url == "https://api.openai.com/v1/models"

    @pytest.mark.asyncio
    async def test_refresh_models_failure_returns_empty(self):
        adapter = make_adapter(OpenAIProvider, ProviderType.OPENAI, Recorder(status_code=500, body="boom"))
        assert await adapter.refresh_models() == []

    @pytest.mark.asyncio
    async def test_test_model(self):
        ok = make_adapter(OpenAIProvider, ProviderType.OPENAI, Recorder(json_body={
            "choices": [{"message": {"content": "Test"}}],
        }))
        failing = make_adapter(OpenAIProvider, ProviderType.OPENAI, Recorder(status_code=404, body="no"))
        model = ok.provider.chat_model

        assert await ok.test_model(model) is True
        assert await failing.test_model(model) is False


class TestAnthropicProvider:
    """Tests for the messages-API adapter."""

    def test_headers(self):
        adapter = make_adapter(AnthropicProvider, ProviderType.ANTHROPIC, Recorder())
        headers = adapter._get_headers()
        assert headers["x-api-key"] == "secret-key"
        assert headers["anthropic-version"] == "2023-06-01"

    def test_convert_tool_result_and_image(self):
        adapter = make_adapter(AnthropicProvider, ProviderType.ANTHROPIC, Recorder())
        tool = Conversation(
            role=ConversationRole.TOOL,
            tool_response=ToolResponse(tool_call_id="toolu_1", tool="lookup", processed_content="42"),
        )
        converted = adapter.convert(tool)
        assert converted["role"] == "user"
        assert converted["content"][0]["type"] == "tool_result"
        assert converted["content"][0]["tool_use_id"] == "toolu_1"

        image_message = adapter.convert(user("what is this", [TypedData.image(b"img", mime_type="image/jpeg")]))
        assert image_message["content"][0]["source"] == {
            "type": "base64", "media_type": "image/jpeg", "data": "aW1n",
        }
        assert image_message["content"][1] == {"type": "text", "text": "what is this"}

    def test_convert_tool_result_keeps_images(self):
        adapter = make_adapter(AnthropicProvider, ProviderType.ANTHROPIC, Recorder())
        result = adapter.convert(generated_image_result())["content"][0]
        assert result["content"][0] == {"type": "text", "text": "Generated 1 image(s)"}
        assert result["content"][1]["source"] == {"type": "base64", "media_type": "image/png", "data": "aW1n"}
        assert result["content"][2] == {"type": "text", "text": "caption"}

    @pytest.mark.asyncio
    async def test_stream_text_and_tool_use(self):
        recorder = Recorder(body=sse(
            {"type": "message_start", "message": {"usage": {"input_tokens": 3}}},
            {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
            {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Let me check"}},
            {"type": "content_block_start", "index": 1,
             "content_block": {"type": "tool_use", "id": "toolu_1", "name": "lookup", "input": {}}},
            {"type": "content_block_delta", "index": 1,
             "delta": {"type": "input_json_delta", "partial_json": '{"x": "y"}'}},
            {"type": "message_stop"},
        ))
        adapter = make_adapter(AnthropicProvider, ProviderType.ANTHROPIC, recorder, tools=[LookupTool()])
        config = SessionConfig.for_provider(adapter.provider, tools=("lookup",))

        events = await collect(adapter.stream_response([user()], config))

        assert events[0] == ContentDelta("Let me check")
        assert events[1].calls == [ToolCall(tool_call_id="toolu_1", tool="lookup", arguments='{"x": "y"}')]
        payload = recorder.payload
        assert payload["system"] == config.system_prompt
        assert payload["max_tokens"] == 4096
        assert payload["tools"][0]["input_schema"] == LookupTool.parameters
        assert recorder.requests[0].url == "https://api.anthropic.com/v1/messages"

    @pytest.mark.asyncio
    async def test_stream_error_event(self):
        recorder = Recorder(body=sse({"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}}))
        adapter = make_adapter(AnthropicProvider, ProviderType.ANTHROPIC, recorder)
        config = SessionConfig.for_provider(adapter.provider)

        with pytest.raises(ProviderError, match="Overloaded"):
            await collect(adapter.stream_response([user()], config))

    @pytest.mark.asyncio
    async def test_non_streaming_tool_use(self):
        recorder = Recorder(json_body={"content": [
            {"type": "tool_use", "id": "toolu_2", "name": "lookup", "input": {"x": "z"}},
        ]})
        adapter = make_adapter(AnthropicProvider, ProviderType.ANTHROPIC, recorder)
        config = SessionConfig.for_provider(adapter.provider, stream=False)

        response = await adapter.non_streaming_response([user()], config)
        assert isinstance(response, ToolCallsRequested)
        assert json.loads(response.calls[0].arguments) == {"x": "z"}


class TestGoogleProvider:
    """Tests for the Gemini adapter."""

    def test_convert_roles_and_inline_data(self):
        adapter = make_adapter(GoogleProvider, ProviderType.GOOGLE, Recorder())
        pdf = TypedData(data=b"%PDF", file_name="paper.pdf", mime_type="application/pdf")
        archive = TypedData(data=b"PK", file_name="bundle.zip", mime_type="application/zip")

        converted = adapter.convert(user("summarize", [pdf, archive]))
        assert converted["role"] == "user"
        assert converted["parts"][0]["inline_data"]["mime_type"] == "application/pdf"
        assert converted["parts"][1] == {"text": "ZIP files are not supported yet. Notify the user."}
        assert converted["parts"][2] == {"text": "summarize"}

        reply = adapter.convert(Conversation(role=ConversationRole.ASSISTANT, content="ok"))
        assert reply == {"role": "model", "parts": [{"text": "ok"}]}

    def test_convert_tool_result_attachments_as_text(self):
        adapter = make_adapter(GoogleProvider, ProviderType.GOOGLE, Recorder())
        part = adapter.convert(generated_image_result())["parts"][0]["functionResponse"]
        assert part["name"] == "image_generator"
        assert "PNG files are not supported yet" in part["response"]["content"]
        assert part["response"]["content"].startswith("Generated 1 image(s)")

    @pytest.mark.asyncio
    async def test_stream_with_function_call(self):
        recorder = Recorder(body=sse(
            {"candidates": [{"content": {"parts": [{"text": "Checking"}]}}]},
            {"candidates": [{"content": {"parts": [{"functionCall": {"name": "lookup", "args": {"x": "y"}}}]}}],
             "usageMetadata": {"promptTokenCount": 4, "candidatesTokenCount": 2}},
        ))
        adapter = make_adapter(GoogleProvider, ProviderType.GOOGLE, recorder, tools=[LookupTool()])
        config = SessionConfig.for_provider(adapter.provider, tools=("lookup",))

        events = await collect(adapter.stream_response([user()], config))

        assert events[0] == ContentDelta("Checking")
        call = events[1].calls[0]
        assert call.tool == "lookup"
        assert call.tool_call_id.startswith("call_")
        assert json.loads(call.arguments) == {"x": "y"}

        request = recorder.requests[0]
        assert request.url.path.endswith("/models/gemini-1.5-flash:streamGenerateContent")
        assert request.url.params["alt"] == "sse"
        assert request.headers["x-goog-api-key"] == "secret-key"
        payload = recorder.payload
        assert payload["systemInstruction"]["parts"][0]["text"] == config.system_prompt
        assert payload["tools"] == [{"functionDeclarations": [LookupTool().definition()]}]

    @pytest.mark.asyncio
    async def test_refresh_models_strips_prefix(self):
        recorder = Recorder(json_body={"models": [
            {"name": "models/gemini-2.0-flash", "displayName": "Gemini 2.0 Flash"},
        ]})
        adapter = make_adapter(GoogleProvider, ProviderType.GOOGLE, recorder)

        models = await adapter.refresh_models()
        assert models == [AIModel(code="gemini-2.0-flash", name="Gemini 2.0 Flash")]


ADAPTERS = [
    (OpenAIProvider, ProviderType.OPENAI, "data"),
    (AnthropicProvider, ProviderType.ANTHROPIC, "data"),
    (GoogleProvider, ProviderType.GOOGLE, "models"),
]


class TestModelCatalog:
    """Malformed catalogs come back as an empty model list."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("cls,provider_type,key", ADAPTERS)
    @pytest.mark.parametrize("listing", [None, {"id": "x"}, "gpt-4o", 3])
    async def test_wrong_listing_shape(self, cls, provider_type, key, listing):
        adapter = make_adapter(cls, provider_type, Recorder(json_body={key: listing}))
        assert await adapter.refresh_models() == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("cls,provider_type,key", ADAPTERS)
    async def test_top_level_array(self, cls, provider_type, key):
        adapter = make_adapter(cls, provider_type, Recorder(json_body=[{"id": "a"}]))
        assert await adapter.refresh_models() == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("cls,provider_type,key", ADAPTERS)
    async def test_bad_entries_skipped(self, cls, provider_type, key):
        field = "name" if key == "models" else "id"
        good = {"display_name": 5, "displayName": [], "name": {"nested": True}}
        good[field] = "good-model"
        recorder = Recorder(json_body={key: ["stray", {field: None}, {field: 7}, good]})
        adapter = make_adapter(cls, provider_type, recorder)

        models = await adapter.refresh_models()

        assert models == [AIModel(code="good-model", name="good-model")]


class TestDiagnostics:

    def test_extract_from_json_and_text(self):
        assert extract_diagnostic(httpx.Response(400, json={"error": {"message": "bad"}})) == "bad"
        assert extract_diagnostic(httpx.Response(400, json={"detail": "nope"})) == "nope"
        assert extract_diagnostic(httpx.Response(502, text="Bad Gateway upstream")) == "Bad Gateway upstream"
        assert extract_diagnostic(httpx.Response(503)) == "Service Unavailable"


class TestFactory:
    """Tests for create_llm_provider and model refresh."""

    def test_dispatch_by_type(self):
        assert isinstance(create_llm_provider(Provider.factory(ProviderType.OPENAI)), OpenAIProvider)
        assert isinstance(create_llm_provider(Provider.factory(ProviderType.ANTHROPIC)), AnthropicProvider)
        assert isinstance(create_llm_provider(Provider.factory(ProviderType.GOOGLE)), GoogleProvider)

    def test_custom_host_used(self):
        provider = Provider.factory(ProviderType.OPENAI, host="http://localhost:11434/v1/")
        assert create_llm_provider(provider).base_url == "http://localhost:11434/v1"

    @pytest.mark.asyncio
    async def test_refresh_provider_models_merges(self):
        provider = Provider.factory(ProviderType.OPENAI)
        recorder = Recorder(json_body={"data": [{"id": "gpt-4o"}, {"id": "gpt-4.1"}]})

        added = await refresh_provider_models(provider, transport=httpx.MockTransport(recorder))

        assert added == 1
        assert provider.find_model("gpt-4.1") is not None
        assert len([m for m in provider.models if m.code == "gpt-4o"]) == 1
