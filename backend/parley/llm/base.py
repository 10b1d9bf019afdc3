"""
LLM Provider Base - The capability contract every backend adapter implements.

Adapters translate canonical Conversations into a backend's wire shape and
normalize whatever comes back into a small tagged union of events:
``ContentDelta`` / ``ToolCallsRequested`` while streaming, ``Content`` /
``ToolCallsRequested`` for single-shot calls.
"""

import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Any, Optional, List, Union, AsyncIterator, Sequence

import httpx

from ..core.errors import ConversionError, ProviderError
from ..core.logging_config import filter_sensitive_data, truncate_large_data
from ..models.config import SessionConfig, SessionConfigPurpose
from ..models.conversation import Conversation, ConversationRole, ToolCall, ToolResponse, TypedData
from ..models.provider import AIModel, Provider
from ..tools.registry import ToolRegistry, get_tool_registry

logger = logging.getLogger(__name__)

TEST_PROMPT = "Respond with just the word Test"


@dataclass(frozen=True)
class ContentDelta:
    """A chunk of streamed assistant text."""
    text: str


@dataclass(frozen=True)
class Content:
    """The full assistant text of a non-streaming response."""
    text: str


@dataclass(frozen=True)
class ToolCallsRequested:
    """The model asked for one or more tool invocations."""
    calls: List[ToolCall] = field(default_factory=list)


StreamEvent = Union[ContentDelta, ToolCallsRequested]
Response = Union[Content, ToolCallsRequested]


class LLMProvider(ABC):
    """
    Abstract base class for backend adapters.

    One instance wraps one Provider record; model and sampling parameters come
    from the SessionConfig passed to each call.
    """

    name = "base"

    def __init__(
        self,
        provider: Provider,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        tool_registry: Optional[ToolRegistry] = None,
    ):
        self.provider = provider
        self.api_key = provider.api_key
        self.base_url = (provider.host or provider.type.default_host).rstrip("/")
        self.timeout = timeout
        self.transport = transport
        self._tool_registry = tool_registry

    @property
    def tool_registry(self) -> ToolRegistry:
        if self._tool_registry is None:
            self._tool_registry = get_tool_registry()
        return self._tool_registry

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    @abstractmethod
    def _get_headers(self) -> Dict[str, str]:
        pass

    # -- capability contract -------------------------------------------------

    @abstractmethod
    def convert(self, conversation: Conversation) -> Dict[str, Any]:
        """Map one canonical Conversation into this backend's message shape."""
        pass

    @abstractmethod
    async def refresh_models(self) -> List[AIModel]:
        """
        Query the backend's model catalog.

        Returns:
            Discovered models, or an empty list on any failure
        """
        pass

    @abstractmethod
    def stream_response(
        self, conversations: Sequence[Conversation], config: SessionConfig
    ) -> AsyncIterator[StreamEvent]:
        """
        Stream a response as normalized events.

        The iterator is finite: it ends when the backend completes, or raises
        ProviderError with the backend's diagnostic.
        """
        pass

    @abstractmethod
    async def non_streaming_response(
        self, conversations: Sequence[Conversation], config: SessionConfig
    ) -> Response:
        """Single-shot request resolving to Content or ToolCallsRequested."""
        pass

    async def test_model(self, model: AIModel) -> bool:
        """
        Send a minimal test prompt to ``model``.

        Returns:
            True if the backend answered with content; never raises
        """
        config = SessionConfig(
            provider=self.provider,
            model=model,
            purpose=SessionConfigPurpose.QUICK,
            stream=False,
            system_prompt="",
        )
        prompt = Conversation(role=ConversationRole.USER, content=TEST_PROMPT)
        try:
            response = await self.non_streaming_response([prompt], config)
        except Exception as e:
            logger.info(
                f"Model test failed: provider={self.name}, model={model.code}: {e}",
                extra={"extra_fields": {"provider": self.name, "model": model.code}},
            )
            return False
        return isinstance(response, Content)

    # -- shared helpers ------------------------------------------------------

    def _tool_definitions(self, config: SessionConfig) -> List[Dict[str, Any]]:
        return self.tool_registry.definitions(config.tools)

    @staticmethod
    def _unsupported_placeholder(data_file: TypedData) -> str:
        return ConversionError(data_file.file_extension).placeholder

    def _tool_result_text(self, response: ToolResponse) -> str:
        """Tool output for backends whose tool results carry text only; attachments become text."""
        parts = [response.processed_content] + [
            data_file.text() if data_file.is_text else self._unsupported_placeholder(data_file)
            for data_file in response.processed_data
        ]
        return "\n\n".join(part for part in parts if part)

    @staticmethod
    def _decode_arguments(arguments: str) -> Dict[str, Any]:
        try:
            decoded = json.loads(arguments) if arguments.strip() else {}
        except json.JSONDecodeError:
            return {}
        return decoded if isinstance(decoded, dict) else {}

    def _log_request(self, kind: str, url: str, payload: Dict[str, Any]) -> None:
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                f"LLM API {kind} starting: provider={self.name}, url={url}, "
                f"payload={truncate_large_data(json.dumps(filter_sensitive_data(payload), ensure_ascii=False))}"
            )

    def _log_completed(self, kind: str, model: str, start_time: float, content_length: int,
                       usage: Optional[Dict[str, Any]] = None) -> None:
        usage = usage or {}
        logger.info(
            f"LLM API {kind} completed",
            extra={"extra_fields": {
                "provider": self.name,
                "model": model,
                "prompt_tokens": usage.get("prompt_tokens", usage.get("input_tokens", 0)),
                "completion_tokens": usage.get("completion_tokens", usage.get("output_tokens", 0)),
                "duration_ms": round((time.time() - start_time) * 1000, 2),
                "content_length": content_length,
            }},
        )

    def _log_failed(self, kind: str, model: str, start_time: float, error: Exception) -> None:
        logger.error(
            f"LLM API {kind} failed: {error}",
            extra={"extra_fields": {
                "provider": self.name,
                "model": model,
                "duration_ms": round((time.time() - start_time) * 1000, 2),
                "error": str(error),
            }},
        )

    async def _raise_for_status(self, response: httpx.Response) -> None:
        """Turn a non-2xx response into ProviderError with the backend's diagnostic."""
        if response.is_success:
            return
        await response.aread()
        raise ProviderError(self.name, extract_diagnostic(response), status_code=response.status_code)

    def _parse_json(self, response: httpx.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(self.name, f"malformed response: {truncate_large_data(response.text, 200)}") from e
        if not isinstance(data, dict):
            raise ProviderError(self.name, "malformed response: expected a JSON object")
        return data

    async def _post_json(self, url: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST and decode a JSON response, mapping transport failures to ProviderError."""
        try:
            async with self._client() as client:
                resp = await client.post(url, json=payload, headers=self._get_headers())
                await self._raise_for_status(resp)
                return self._parse_json(resp)
        except httpx.HTTPError as e:
            raise ProviderError(self.name, str(e) or type(e).__name__) from e

    async def _get_json(self, url: str) -> Dict[str, Any]:
        try:
            async with self._client() as client:
                resp = await client.get(url, headers=self._get_headers())
                await self._raise_for_status(resp)
                return self._parse_json(resp)
        except httpx.HTTPError as e:
            raise ProviderError(self.name, str(e) or type(e).__name__) from e

    async def _fetch_catalog(self, url: str, key: str) -> List[Dict[str, Any]]:
        """
        GET a model catalog and return the entries listed under ``key``.

        Any failure, including a catalog of the wrong shape, is logged and
        yields an empty list.
        """
        try:
            data = await self._get_json(url)
        except ProviderError as e:
            logger.warning(f"Model refresh failed for {self.provider.name or self.name}: {e}")
            return []

        entries = data.get(key)
        if not isinstance(entries, list):
            logger.warning(
                f"Model refresh failed for {self.provider.name or self.name}: malformed catalog",
                extra={"extra_fields": {"provider": self.name, "key": key, "got": type(entries).__name__}},
            )
            return []
        return [item for item in entries if isinstance(item, dict)]

    @staticmethod
    def _display_name(item: Dict[str, Any], key: str, fallback: str) -> str:
        name = item.get(key)
        return name if isinstance(name, str) and name else fallback

    async def _stream_sse(self, url: str, payload: Dict[str, Any]) -> AsyncIterator[Dict[str, Any]]:
        """
        POST and yield each decoded ``data:`` payload of a server-sent-event stream.

        Stops at ``[DONE]`` or when the connection ends. Undecodable lines are
        skipped; transport failures become ProviderError.
        """
        try:
            async with self._client() as client:
                async with client.stream("POST", url, json=payload, headers=self._get_headers()) as response:
                    await self._raise_for_status(response)

                    async for line in response.aiter_lines():
                        if not line or not line.startswith("data:"):
                            continue
                        data_str = line[5:].strip()
                        if data_str == "[DONE]":
                            break
                        try:
                            chunk = json.loads(data_str)
                        except json.JSONDecodeError:
                            continue
                        if isinstance(chunk, dict):
                            yield chunk
        except httpx.HTTPError as e:
            raise ProviderError(self.name, str(e) or type(e).__name__) from e


def extract_diagnostic(response: httpx.Response) -> str:
    """Best human-readable error text from a JSON or plain-text error body."""
    text = response.text.strip()
    try:
        payload = json.loads(text) if text else None
    except json.JSONDecodeError:
        payload = None

    if isinstance(payload, list) and payload:
        payload = payload[0]
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
        for key in ("message", "detail"):
            if payload.get(key):
                return str(payload[key])

    if text:
        return truncate_large_data(text, 500)
    return response.reason_phrase or f"HTTP {response.status_code}"
