"""
Anthropic LLM Provider.
Messages API with server-sent events; tool use arrives as content blocks.
"""

import base64
import json
import logging
import time
from typing import Optional, List, Dict, Any, AsyncIterator, Sequence

from ..core.errors import ProviderError
from ..models.config import SessionConfig
from ..models.conversation import Conversation, ConversationRole, ToolCall, TypedData
from ..models.provider import AIModel
from .base import LLMProvider, Content, ContentDelta, ToolCallsRequested, StreamEvent, Response

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_MAX_TOKENS = 4096


class AnthropicProvider(LLMProvider):
    """
    Provider for the Anthropic Messages API.
    """

    name = "anthropic"

    def _get_headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        }

    def convert(self, conversation: Conversation) -> Dict[str, Any]:
        if conversation.role == ConversationRole.TOOL and conversation.tool_response:
            response = conversation.tool_response
            result: Dict[str, Any] = {
                "type": "tool_result",
                "tool_use_id": response.tool_call_id,
                "content": response.processed_content,
                "is_error": response.is_error,
            }
            if response.processed_data:
                content = [{"type": "text", "text": response.processed_content}] if response.processed_content else []
                content.extend(self._attachment_block(d) for d in response.processed_data)
                result["content"] = content
            return {"role": "user", "content": [result]}

        blocks: List[Dict[str, Any]] = [self._attachment_block(d) for d in conversation.data_files]

        if conversation.content:
            blocks.append({"type": "text", "text": conversation.content})

        if conversation.role == ConversationRole.ASSISTANT:
            for call in conversation.tool_calls:
                blocks.append({
                    "type": "tool_use",
                    "id": call.tool_call_id,
                    "name": call.tool,
                    "input": self._decode_arguments(call.arguments),
                })

        role = "assistant" if conversation.role == ConversationRole.ASSISTANT else "user"
        if not blocks:
            blocks.append({"type": "text", "text": ""})
        return {"role": role, "content": blocks}

    def _attachment_block(self, data_file: TypedData) -> Dict[str, Any]:
        if data_file.is_image:
            return {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": data_file.mime_type,
                    "data": base64.b64encode(data_file.data).decode("ascii"),
                },
            }
        if data_file.is_text:
            return {"type": "text", "text": data_file.text()}
        return {"type": "text", "text": self._unsupported_placeholder(data_file)}

    def _build_payload(self, conversations: Sequence[Conversation], config: SessionConfig,
                       stream: bool) -> Dict[str, Any]:
        system_parts = [config.system_prompt] if config.system_prompt else []
        messages = []
        for conversation in conversations:
            if conversation.role == ConversationRole.SYSTEM:
                system_parts.append(conversation.content)
            else:
                messages.append(self.convert(conversation))

        payload: Dict[str, Any] = {
            "model": config.model.code,
            "messages": messages,
            "max_tokens": config.max_tokens or DEFAULT_MAX_TOKENS,
            "stream": stream,
        }
        if system_parts:
            payload["system"] = "\n\n".join(system_parts)
        if config.temperature is not None:
            payload["temperature"] = min(config.temperature, 1.0)
        if config.top_p is not None:
            payload["top_p"] = config.top_p

        tools = self._tool_definitions(config)
        if tools:
            payload["tools"] = [
                {"name": t["name"], "description": t["description"], "input_schema": t["parameters"]}
                for t in tools
            ]
        return payload

    async def stream_response(
        self, conversations: Sequence[Conversation], config: SessionConfig
    ) -> AsyncIterator[StreamEvent]:
        start_time = time.time()
        url = f"{self.base_url}/messages"
        payload = self._build_payload(conversations, config, stream=True)
        self._log_request("stream", url, payload)

        content_length = 0
        usage: Dict[str, Any] = {}
        # block index -> {"id", "name", "arguments"}
        tool_blocks: Dict[int, Dict[str, str]] = {}

        try:
            async for event in self._stream_sse(url, payload):
                event_type = event.get("type")

                if event_type == "error":
                    error = event.get("error") or {}
                    raise ProviderError(self.name, error.get("message") or "stream error")

                if event_type == "message_start":
                    usage.update((event.get("message") or {}).get("usage") or {})
                elif event_type == "content_block_start":
                    block = event.get("content_block") or {}
                    if block.get("type") == "tool_use":
                        tool_blocks[event.get("index", 0)] = {
                            "id": block.get("id", ""),
                            "name": block.get("name", ""),
                            "arguments": "",
                        }
                elif event_type == "content_block_delta":
                    delta = event.get("delta") or {}
                    if delta.get("type") == "text_delta" and delta.get("text"):
                        content_length += len(delta["text"])
                        yield ContentDelta(delta["text"])
                    elif delta.get("type") == "input_json_delta":
                        slot = tool_blocks.get(event.get("index", 0))
                        if slot is not None:
                            slot["arguments"] += delta.get("partial_json", "")
                elif event_type == "message_delta":
                    usage.update(event.get("usage") or {})
                elif event_type == "message_stop":
                    break

            if tool_blocks:
                yield ToolCallsRequested([
                    ToolCall(tool_call_id=slot["id"], tool=slot["name"], arguments=slot["arguments"] or "{}")
                    for _, slot in sorted(tool_blocks.items())
                ])

            self._log_completed("stream", config.model.code, start_time, content_length, usage)
        except ProviderError as e:
            self._log_failed("stream", config.model.code, start_time, e)
            raise

    async def non_streaming_response(
        self, conversations: Sequence[Conversation], config: SessionConfig
    ) -> Response:
        start_time = time.time()
        url = f"{self.base_url}/messages"
        payload = self._build_payload(conversations, config, stream=False)
        self._log_request("call", url, payload)

        try:
            data = await self._post_json(url, payload)
        except ProviderError as e:
            self._log_failed("call", config.model.code, start_time, e)
            raise

        text = ""
        calls: List[ToolCall] = []
        for block in data.get("content") or []:
            if block.get("type") == "text":
                text += block.get("text", "")
            elif block.get("type") == "tool_use":
                calls.append(ToolCall(
                    tool_call_id=block.get("id", ""),
                    tool=block.get("name", ""),
                    arguments=json.dumps(block.get("input") or {}),
                ))

        self._log_completed("call", config.model.code, start_time, len(text), data.get("usage"))
        if calls:
            return ToolCallsRequested(calls)
        return Content(text)

    async def refresh_models(self) -> List[AIModel]:
        catalog = await self._fetch_catalog(f"{self.base_url}/models", "data")
        models = [
            AIModel(code=item["id"], name=self._display_name(item, "display_name", item["id"]))
            for item in catalog
            if isinstance(item.get("id"), str) and item["id"]
        ]
        logger.debug(f"Model catalog for {self.provider.name or self.name}: {len(models)} entries")
        return models
