"""
Shared test fixtures and configuration.
"""

import asyncio
import os
from typing import Any, Dict, List, Sequence

import pytest

# Set test environment variables before importing app modules
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("LOCAL_STORAGE_PATH", "/tmp/parley_test_data")
os.environ.setdefault("LOG_FILE_ENABLED", "false")
os.environ.setdefault("AUTOGEN_TITLE", "false")

from parley.llm.base import LLMProvider, Content, ContentDelta, ToolCallsRequested  # noqa: E402
from parley.models.config import SessionConfig  # noqa: E402
from parley.models.conversation import Conversation  # noqa: E402
from parley.models.provider import Provider, ProviderType  # noqa: E402
from parley.models.session import Session  # noqa: E402
from parley.tools.base import ChatTool, ToolOutput  # noqa: E402
from parley.tools.executor import ToolExecutor  # noqa: E402
from parley.tools.registry import ToolRegistry  # noqa: E402


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedProvider(LLMProvider):
    """
    Provider whose streams follow a script.

    Each stream call consumes one turn. A turn is a list of steps:
    ContentDelta / ToolCallsRequested are yielded, a number advances the
    clock, an asyncio.Event is awaited and an exception is raised.
    """

    name = "scripted"

    def __init__(self, provider: Provider, turns=(), responses=(), clock=None, tool_registry=None):
        super().__init__(provider, tool_registry=tool_registry or ToolRegistry())
        self.turns: List[List[Any]] = list(turns)
        self.responses: List[Any] = list(responses)
        self.clock = clock or FakeClock()
        self.stream_requests: List[List[Conversation]] = []
        self.stream_snapshots: List[List[Dict[str, Any]]] = []
        self.calls: List[List[Conversation]] = []

    def _get_headers(self) -> Dict[str, str]:
        return {}

    def convert(self, conversation: Conversation) -> Dict[str, Any]:
        return {"role": conversation.role.value, "content": conversation.content}

    async def refresh_models(self):
        return []

    async def stream_response(self, conversations: Sequence[Conversation], config: SessionConfig):
        self.stream_requests.append(list(conversations))
        self.stream_snapshots.append([self.convert(c) for c in conversations])
        turn = self.turns.pop(0) if self.turns else [ContentDelta("ok")]
        for step in turn:
            if isinstance(step, (int, float)):
                self.clock.advance(step)
                await asyncio.sleep(0)
            elif isinstance(step, asyncio.Event):
                await step.wait()
            elif isinstance(step, BaseException):
                raise step
            else:
                yield step

    async def non_streaming_response(self, conversations: Sequence[Conversation], config: SessionConfig):
        self.calls.append(list(conversations))
        response = self.responses.pop(0) if self.responses else Content("ok")
        if isinstance(response, BaseException):
            raise response
        return response


class RecordingTool(ChatTool):
    """Tool that records invocation order and answers after an optional delay."""

    def __init__(self, name: str, log: List[str], delay: float = 0.0, result: str = "", fail: bool = False):
        self.name = name
        self.description = f"{name} test tool"
        self.log = log
        self.delay = delay
        self.result = result or f"{name} done"
        self.fail = fail

    async def process(self, arguments: Dict[str, Any]) -> ToolOutput:
        self.log.append(f"start:{self.name}")
        if self.delay:
            await asyncio.sleep(self.delay)
        self.log.append(f"end:{self.name}")
        if self.fail:
            raise RuntimeError(f"{self.name} exploded")
        return ToolOutput(string=self.result)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def provider():
    return Provider.factory(ProviderType.OPENAI, api_key="sk-test")


@pytest.fixture
def config(provider):
    return SessionConfig.for_provider(provider)


@pytest.fixture
def session(config):
    return Session(config=config)


@pytest.fixture
def tool_log():
    return []


@pytest.fixture
def make_tool(tool_log):
    def factory(name: str, **kwargs) -> RecordingTool:
        return RecordingTool(name, tool_log, **kwargs)
    return factory


@pytest.fixture
def make_scripted(provider, clock):
    def factory(turns=(), responses=(), registry=None) -> ScriptedProvider:
        return ScriptedProvider(provider, turns=turns, responses=responses, clock=clock, tool_registry=registry)
    return factory


@pytest.fixture
def make_executor():
    def factory(*tools: ChatTool) -> ToolExecutor:
        return ToolExecutor(ToolRegistry(tools))
    return factory


@pytest.fixture
def delta():
    return ContentDelta


@pytest.fixture
def tool_calls():
    return ToolCallsRequested
