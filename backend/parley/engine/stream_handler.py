"""
Stream Handler - Drives one generation run end-to-end.

A handler owns exactly one target assistant Conversation. It streams (or
single-shot calls) the provider, flushes accumulated text into the target at
a throttled rate, and when the model asks for tools, executes them in order,
appends their results to the tree and hands off to a fresh handler for the
continuation.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..core.context import select_context
from ..core.errors import ParleyError
from ..core.logging_config import SessionLoggerAdapter
from ..core.throttle import FlushThrottle
from ..llm.base import LLMProvider, Content, ContentDelta, ToolCallsRequested
from ..models.config import SessionConfig
from ..models.conversation import Conversation, ConversationRole, ToolCall, ToolResponse
from ..models.session import Session
from ..tools.executor import ToolExecutor

logger = logging.getLogger(__name__)

EventCallback = Callable[[Dict[str, Any]], None]


class RunState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    TOOL_DISPATCH = "tool_dispatch"
    FINALIZED = "finalized"
    CANCELLED = "cancelled"
    ERRORED = "errored"


class StreamHandler:
    """
    One generation attempt targeting one assistant Conversation.

    The config is the snapshot taken when the run started; it is passed
    unchanged to every continuation.
    """

    def __init__(
        self,
        session: Session,
        assistant: Conversation,
        provider: LLMProvider,
        tool_executor: ToolExecutor,
        config: Optional[SessionConfig] = None,
        flush_interval: float = 0.2,
        clock: Callable[[], float] = time.monotonic,
        on_event: Optional[EventCallback] = None,
        max_tool_rounds: int = 8,
        depth: int = 0,
    ):
        self.session = session
        self.assistant = assistant
        self.provider = provider
        self.tool_executor = tool_executor
        self.config = config or session.config
        self.flush_interval = flush_interval
        self.clock = clock
        self.on_event = on_event
        self.max_tool_rounds = max_tool_rounds
        self.depth = depth

        self.state = RunState.IDLE
        self.accumulated = ""
        self.pending_calls: List[ToolCall] = []
        self.flush_count = 0
        self._in_flight_tool: Optional[Conversation] = None
        self.log = SessionLoggerAdapter(logger, {"session_id": session.id, "depth": depth})

    async def handle_request(self, conversations: Sequence[Conversation]) -> RunState:
        """
        Run the state machine to a terminal state.

        Provider and unexpected failures end in ERRORED with the session's
        error message set. Cancellation cleans up and re-raises.

        Args:
            conversations: Context to send, already selected from the tree

        Returns:
            Terminal state of this run (or of its last continuation)
        """
        self.state = RunState.STREAMING
        self.assistant.is_replying = True
        self.session.streamer = self
        self.log.debug(f"Run started with {len(conversations)} messages")

        try:
            if self.config.stream:
                await self._stream(conversations)
            else:
                await self._single_shot(conversations)

            if self.pending_calls:
                return await self._dispatch_tools()
        except asyncio.CancelledError:
            self._cancel()
            raise
        except ParleyError as e:
            self._fail(e)
            return self.state
        except Exception as e:
            self.log.exception(f"Unexpected failure during run: {e}")
            self._fail(e)
            return self.state

        self._finish(RunState.FINALIZED)
        return self.state

    async def _stream(self, conversations: Sequence[Conversation]) -> None:
        throttle = FlushThrottle(self.flush_interval, self.clock)
        async for event in self.provider.stream_response(conversations, self.config):
            if isinstance(event, ContentDelta):
                self.accumulated += event.text
                if throttle.ready():
                    self._flush()
            elif isinstance(event, ToolCallsRequested):
                self.pending_calls.extend(event.calls)
        # Final flush always carries the complete text
        self._flush()

    async def _single_shot(self, conversations: Sequence[Conversation]) -> None:
        response = await self.provider.non_streaming_response(conversations, self.config)
        if isinstance(response, Content):
            self.accumulated = response.text
            self._flush()
        elif isinstance(response, ToolCallsRequested):
            self.pending_calls.extend(response.calls)

    def _flush(self) -> None:
        if self.assistant.content == self.accumulated:
            return
        self.assistant.content = self.accumulated
        self.flush_count += 1
        self._emit({"type": "content", "conversation_id": self.assistant.id, "content": self.accumulated})

    async def _dispatch_tools(self) -> RunState:
        if self.depth + 1 > self.max_tool_rounds:
            # The calls are never attached, so the tree holds no unanswered tool calls
            self.pending_calls = []
            raise ParleyError(f"Stopped after {self.max_tool_rounds} rounds of tool calls")

        self.state = RunState.TOOL_DISPATCH
        self.assistant.tool_calls = list(self.pending_calls)
        self.assistant.is_replying = False

        self.log.info(
            f"Dispatching {len(self.pending_calls)} tool calls",
            extra={"extra_fields": {"tools": [c.tool for c in self.pending_calls]}},
        )

        results = self.tool_executor.execute(
            self.pending_calls, self.config.tools, on_start=self._open_tool_slot,
        )
        async for response in results:
            placeholder = self._in_flight_tool
            self._in_flight_tool = None
            placeholder.tool_response = response
            placeholder.is_replying = False
            self._emit({
                "type": "tool",
                "conversation_id": placeholder.id,
                "tool": response.tool,
                "tool_call_id": response.tool_call_id,
                "is_error": response.is_error,
            })

        continuation = Conversation(
            role=ConversationRole.ASSISTANT,
            model=self.config.model.code,
            is_replying=True,
        )
        self.session.add_group(continuation)
        # Context excludes the empty placeholder just appended
        context = select_context(self.session)[:-1]

        child = StreamHandler(
            self.session,
            continuation,
            self.provider,
            self.tool_executor,
            config=self.config,
            flush_interval=self.flush_interval,
            clock=self.clock,
            on_event=self.on_event,
            max_tool_rounds=self.max_tool_rounds,
            depth=self.depth + 1,
        )
        self.state = RunState.FINALIZED
        return await child.handle_request(context)

    def _open_tool_slot(self, call: ToolCall) -> None:
        placeholder = Conversation(
            role=ConversationRole.TOOL,
            tool_response=ToolResponse(tool_call_id=call.tool_call_id, tool=call.tool),
            is_replying=True,
        )
        self.session.add_group(placeholder)
        self._in_flight_tool = placeholder

    def _cancel(self) -> None:
        if self._in_flight_tool is not None:
            tool_conversation = self._in_flight_tool
            self._in_flight_tool = None
            if tool_conversation.group is not None:
                tool_conversation.group.delete_conversation(tool_conversation)
        self._finish(RunState.CANCELLED)
        self.log.info("Run cancelled")

    def _fail(self, error: Exception) -> None:
        self.session.error_message = str(error)
        self._finish(RunState.ERRORED)
        self.log.warning(f"Run failed: {error}")
        self._emit({"type": "error", "error": str(error)})

    def _finish(self, state: RunState) -> None:
        self.state = state
        self.assistant.is_replying = False
        if state in (RunState.CANCELLED, RunState.ERRORED):
            self._discard_if_empty()

    def _discard_if_empty(self) -> None:
        """Drop the target variant if nothing was produced (its group too when it was the only one)."""
        group = self.assistant.group
        if self.assistant.is_empty and group is not None:
            group.delete_conversation(self.assistant)

    def _emit(self, event: Dict[str, Any]) -> None:
        if self.on_event is not None:
            self.on_event(event)
