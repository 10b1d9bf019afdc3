"""
OpenAI-compatible LLM Provider.
Token-by-token Chat Completions API over server-sent events; works with any
host that speaks the same protocol.
"""

import base64
import logging
import time
from typing import Optional, List, Dict, Any, AsyncIterator, Sequence

from ..core.errors import ProviderError
from ..models.config import SessionConfig
from ..models.conversation import Conversation, ConversationRole, ToolCall
from ..models.provider import AIModel
from .base import LLMProvider, Content, ContentDelta, ToolCallsRequested, StreamEvent, Response

logger = logging.getLogger(__name__)


class OpenAIProvider(LLMProvider):
    """
    Provider for OpenAI and OpenAI-compatible chat/completions endpoints.
    """

    name = "openai"

    def _get_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def convert(self, conversation: Conversation) -> Dict[str, Any]:
        if conversation.role == ConversationRole.TOOL and conversation.tool_response:
            return {
                "role": "tool",
                "tool_call_id": conversation.tool_response.tool_call_id,
                "content": self._tool_result_text(conversation.tool_response),
            }

        message: Dict[str, Any] = {"role": conversation.role.value}

        if conversation.data_files:
            parts: List[Dict[str, Any]] = []
            for data_file in conversation.data_files:
                if data_file.is_image:
                    encoded = base64.b64encode(data_file.data).decode("ascii")
                    parts.append({
                        "type": "image_url",
                        "image_url": {"url": f"data:{data_file.mime_type};base64,{encoded}", "detail": "auto"},
                    })
                elif data_file.is_text:
                    parts.append({"type": "text", "text": data_file.text()})
                else:
                    parts.append({"type": "text", "text": self._unsupported_placeholder(data_file)})
            parts.append({"type": "text", "text": conversation.content})
            message["content"] = parts
        else:
            message["content"] = conversation.content

        if conversation.role == ConversationRole.ASSISTANT and conversation.tool_calls:
            message["content"] = conversation.content or None
            message["tool_calls"] = [
                {
                    "id": call.tool_call_id,
                    "type": "function",
                    "function": {"name": call.tool, "arguments": call.arguments or "{}"},
                }
                for call in conversation.tool_calls
            ]
        return message

    def _build_payload(self, conversations: Sequence[Conversation], config: SessionConfig,
                       stream: bool) -> Dict[str, Any]:
        messages = [self.convert(c) for c in conversations]
        if config.system_prompt:
            messages.insert(0, {"role": "system", "content": config.system_prompt})

        payload: Dict[str, Any] = {
            "model": config.model.code,
            "messages": messages,
            "stream": stream,
        }
        optional = {
            "temperature": config.temperature,
            "top_p": config.top_p,
            "frequency_penalty": config.frequency_penalty,
            "presence_penalty": config.presence_penalty,
            "max_tokens": config.max_tokens,
        }
        payload.update({k: v for k, v in optional.items() if v is not None})

        tools = self._tool_definitions(config)
        if tools:
            payload["tools"] = [{"type": "function", "function": t} for t in tools]
        return payload

    async def stream_response(
        self, conversations: Sequence[Conversation], config: SessionConfig
    ) -> AsyncIterator[StreamEvent]:
        """Stream content deltas; tool-call fragments are assembled and emitted at the end."""
        start_time = time.time()
        url = f"{self.base_url}/chat/completions"
        payload = self._build_payload(conversations, config, stream=True)
        self._log_request("stream", url, payload)

        content_length = 0
        usage: Dict[str, Any] = {}
        # index -> {"id", "name", "arguments"}
        pending: Dict[int, Dict[str, str]] = {}

        try:
            async for chunk in self._stream_sse(url, payload):
                if chunk.get("error"):
                    error = chunk["error"]
                    message = error.get("message") if isinstance(error, dict) else str(error)
                    raise ProviderError(self.name, message or "stream error")

                if chunk.get("usage"):
                    usage = chunk["usage"]

                choices = chunk.get("choices") or []
                if not choices:
                    continue
                delta = choices[0].get("delta") or {}

                text = delta.get("content")
                if text:
                    content_length += len(text)
                    yield ContentDelta(text)

                for fragment in delta.get("tool_calls") or []:
                    slot = pending.setdefault(fragment.get("index", 0), {"id": "", "name": "", "arguments": ""})
                    if fragment.get("id"):
                        slot["id"] = fragment["id"]
                    function = fragment.get("function") or {}
                    if function.get("name"):
                        slot["name"] += function["name"]
                    if function.get("arguments"):
                        slot["arguments"] += function["arguments"]

            if pending:
                yield ToolCallsRequested([
                    ToolCall(tool_call_id=slot["id"], tool=slot["name"], arguments=slot["arguments"] or "{}")
                    for _, slot in sorted(pending.items())
                ])

            self._log_completed("stream", config.model.code, start_time, content_length, usage)
        except ProviderError as e:
            self._log_failed("stream", config.model.code, start_time, e)
            raise

    async def non_streaming_response(
        self, conversations: Sequence[Conversation], config: SessionConfig
    ) -> Response:
        start_time = time.time()
        url = f"{self.base_url}/chat/completions"
        payload = self._build_payload(conversations, config, stream=False)
        self._log_request("call", url, payload)

        try:
            data = await self._post_json(url, payload)
            choices = data.get("choices") or []
            if not choices:
                raise ProviderError(self.name, "malformed response: no choices")
            message = choices[0].get("message") or {}
        except ProviderError as e:
            self._log_failed("call", config.model.code, start_time, e)
            raise

        tool_calls = message.get("tool_calls") or []
        if tool_calls:
            calls = [
                ToolCall(
                    tool_call_id=call.get("id", ""),
                    tool=(call.get("function") or {}).get("name", ""),
                    arguments=(call.get("function") or {}).get("arguments") or "{}",
                )
                for call in tool_calls
            ]
            self._log_completed("call", config.model.code, start_time, 0, data.get("usage"))
            return ToolCallsRequested(calls)

        content = message.get("content") or ""
        self._log_completed("call", config.model.code, start_time, len(content), data.get("usage"))
        return Content(content)

    async def refresh_models(self) -> List[AIModel]:
        catalog = await self._fetch_catalog(f"{self.base_url}/models", "data")
        models = [
            AIModel(code=item["id"], name=self._display_name(item, "name", item["id"]))
            for item in catalog
            if isinstance(item.get("id"), str) and item["id"]
        ]
        logger.debug(f"Model catalog for {self.provider.name or self.name}: {len(models)} entries")
        return models
