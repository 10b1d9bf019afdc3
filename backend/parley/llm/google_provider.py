"""
Google Gemini LLM Provider.
generateContent / streamGenerateContent with alt=sse. Gemini carries no
tool-call ids, so ids are synthesized per response.
"""

import base64
import json
import logging
import time
import uuid
from typing import Optional, List, Dict, Any, AsyncIterator, Sequence

from ..core.errors import ProviderError
from ..models.config import SessionConfig
from ..models.conversation import Conversation, ConversationRole, ToolCall, TypedData
from ..models.provider import AIModel
from .base import LLMProvider, Content, ContentDelta, ToolCallsRequested, StreamEvent, Response

logger = logging.getLogger(__name__)

INLINE_MIME_PREFIXES = ("image/", "audio/", "video/", "text/")
INLINE_MIME_TYPES = ("application/pdf",)


def _new_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:24]}"


class GoogleProvider(LLMProvider):
    """
    Provider for the Gemini generative language API.
    """

    name = "google"

    def _get_headers(self) -> Dict[str, str]:
        return {
            "x-goog-api-key": self.api_key,
            "Content-Type": "application/json",
        }

    @staticmethod
    def _inlinable(data_file: TypedData) -> bool:
        return data_file.mime_type.startswith(INLINE_MIME_PREFIXES) or data_file.mime_type in INLINE_MIME_TYPES

    def convert(self, conversation: Conversation) -> Dict[str, Any]:
        if conversation.role == ConversationRole.TOOL and conversation.tool_response:
            response = conversation.tool_response
            return {
                "role": "user",
                "parts": [{
                    "functionResponse": {
                        "name": response.tool,
                        "response": {"content": self._tool_result_text(response)},
                    },
                }],
            }

        parts: List[Dict[str, Any]] = []
        for data_file in conversation.data_files:
            if self._inlinable(data_file):
                parts.append({
                    "inline_data": {
                        "mime_type": data_file.mime_type,
                        "data": base64.b64encode(data_file.data).decode("ascii"),
                    },
                })
            else:
                parts.append({"text": self._unsupported_placeholder(data_file)})

        if conversation.content:
            parts.append({"text": conversation.content})

        if conversation.role == ConversationRole.ASSISTANT:
            for call in conversation.tool_calls:
                parts.append({
                    "functionCall": {"name": call.tool, "args": self._decode_arguments(call.arguments)},
                })

        if not parts:
            parts.append({"text": ""})
        role = "model" if conversation.role == ConversationRole.ASSISTANT else "user"
        return {"role": role, "parts": parts}

    def _build_payload(self, conversations: Sequence[Conversation], config: SessionConfig) -> Dict[str, Any]:
        system_parts = [config.system_prompt] if config.system_prompt else []
        contents = []
        for conversation in conversations:
            if conversation.role == ConversationRole.SYSTEM:
                system_parts.append(conversation.content)
            else:
                contents.append(self.convert(conversation))

        payload: Dict[str, Any] = {"contents": contents}
        if system_parts:
            payload["systemInstruction"] = {"parts": [{"text": "\n\n".join(system_parts)}]}

        generation = {
            "temperature": config.temperature,
            "topP": config.top_p,
            "frequencyPenalty": config.frequency_penalty,
            "presencePenalty": config.presence_penalty,
            "maxOutputTokens": config.max_tokens,
        }
        generation = {k: v for k, v in generation.items() if v is not None}
        if generation:
            payload["generationConfig"] = generation

        tools = self._tool_definitions(config)
        if tools:
            payload["tools"] = [{"functionDeclarations": tools}]
        return payload

    def _model_url(self, config: SessionConfig, method: str) -> str:
        return f"{self.base_url}/models/{config.model.code}:{method}"

    @staticmethod
    def _candidate_parts(chunk: Dict[str, Any]) -> List[Dict[str, Any]]:
        candidates = chunk.get("candidates") or []
        if not candidates:
            return []
        return ((candidates[0].get("content") or {}).get("parts")) or []

    @staticmethod
    def _usage(chunk: Dict[str, Any]) -> Dict[str, Any]:
        metadata = chunk.get("usageMetadata") or {}
        return {
            "prompt_tokens": metadata.get("promptTokenCount", 0),
            "completion_tokens": metadata.get("candidatesTokenCount", 0),
        }

    async def stream_response(
        self, conversations: Sequence[Conversation], config: SessionConfig
    ) -> AsyncIterator[StreamEvent]:
        start_time = time.time()
        url = self._model_url(config, "streamGenerateContent") + "?alt=sse"
        payload = self._build_payload(conversations, config)
        self._log_request("stream", url, payload)

        content_length = 0
        usage: Dict[str, Any] = {}
        calls: List[ToolCall] = []

        try:
            async for chunk in self._stream_sse(url, payload):
                if chunk.get("error"):
                    error = chunk["error"]
                    message = error.get("message") if isinstance(error, dict) else str(error)
                    raise ProviderError(self.name, message or "stream error")

                if chunk.get("usageMetadata"):
                    usage = self._usage(chunk)

                for part in self._candidate_parts(chunk):
                    if part.get("text"):
                        content_length += len(part["text"])
                        yield ContentDelta(part["text"])
                    elif part.get("functionCall"):
                        function = part["functionCall"]
                        calls.append(ToolCall(
                            tool_call_id=_new_call_id(),
                            tool=function.get("name", ""),
                            arguments=json.dumps(function.get("args") or {}),
                        ))

            if calls:
                yield ToolCallsRequested(calls)

            self._log_completed("stream", config.model.code, start_time, content_length, usage)
        except ProviderError as e:
            self._log_failed("stream", config.model.code, start_time, e)
            raise

    async def non_streaming_response(
        self, conversations: Sequence[Conversation], config: SessionConfig
    ) -> Response:
        start_time = time.time()
        url = self._model_url(config, "generateContent")
        payload = self._build_payload(conversations, config)
        self._log_request("call", url, payload)

        try:
            data = await self._post_json(url, payload)
        except ProviderError as e:
            self._log_failed("call", config.model.code, start_time, e)
            raise

        text = ""
        calls: List[ToolCall] = []
        for part in self._candidate_parts(data):
            if part.get("text"):
                text += part["text"]
            elif part.get("functionCall"):
                function = part["functionCall"]
                calls.append(ToolCall(
                    tool_call_id=_new_call_id(),
                    tool=function.get("name", ""),
                    arguments=json.dumps(function.get("args") or {}),
                ))

        self._log_completed("call", config.model.code, start_time, len(text), self._usage(data))
        if calls:
            return ToolCallsRequested(calls)
        return Content(text)

    async def refresh_models(self) -> List[AIModel]:
        models = []
        for item in await self._fetch_catalog(f"{self.base_url}/models", "models"):
            if not isinstance(item.get("name"), str) or not item["name"]:
                continue
            code = item["name"]
            if code.startswith("models/"):
                code = code[len("models/"):]
            models.append(AIModel(code=code, name=self._display_name(item, "displayName", code)))
        logger.debug(f"Model catalog for {self.provider.name or self.name}: {len(models)} entries")
        return models
