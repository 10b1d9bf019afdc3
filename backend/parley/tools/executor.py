"""
Tool Executor - Runs model-requested tool calls one after another.
"""

import json
import logging
import time
from typing import AsyncIterator, Callable, Iterable, Optional

from ..core.errors import ToolExecutionError
from ..models.conversation import ToolCall, ToolResponse
from .registry import ToolRegistry, get_tool_registry

logger = logging.getLogger(__name__)


class ToolExecutor:
    """
    Executes tool calls strictly in request order.

    A failing call becomes an error-text result; it never stops the calls
    after it. Cancellation is not caught and propagates to the caller.
    """

    def __init__(self, registry: Optional[ToolRegistry] = None):
        self.registry = registry or get_tool_registry()

    async def execute(
        self,
        calls: Iterable[ToolCall],
        enabled: Iterable[str],
        on_start: Optional[Callable[[ToolCall], None]] = None,
    ) -> AsyncIterator[ToolResponse]:
        """
        Run every call sequentially, yielding one result per call in order.

        ``on_start`` is invoked with each call right before it runs, so the
        caller can show it as in progress.
        """
        enabled = tuple(enabled)
        for call in calls:
            if on_start is not None:
                on_start(call)
            yield await self.execute_one(call, enabled)

    async def execute_one(self, call: ToolCall, enabled: Iterable[str]) -> ToolResponse:
        """
        Run a single tool call.

        Args:
            call: The requested call
            enabled: Names of the tools enabled for the session

        Returns:
            ToolResponse keyed by the call id; ``is_error`` set on failure
        """
        start_time = time.time()
        try:
            output = await self._run(call, tuple(enabled))
        except ToolExecutionError as e:
            logger.warning(
                f"Tool call failed: {e}",
                extra={"extra_fields": {"tool": call.tool, "tool_call_id": call.tool_call_id}},
            )
            return ToolResponse(
                tool_call_id=call.tool_call_id,
                tool=call.tool,
                processed_content=f"Error: {e.reason}",
                is_error=True,
            )

        logger.info(
            "Tool call completed",
            extra={"extra_fields": {
                "tool": call.tool,
                "tool_call_id": call.tool_call_id,
                "duration_ms": round((time.time() - start_time) * 1000, 2),
                "content_length": len(output.string),
                "attachments": len(output.data),
            }},
        )
        return ToolResponse(
            tool_call_id=call.tool_call_id,
            tool=call.tool,
            processed_content=output.string,
            processed_data=output.data,
        )

    async def _run(self, call: ToolCall, enabled: tuple):
        if call.tool not in enabled:
            raise ToolExecutionError(call.tool, call.tool_call_id, f"tool '{call.tool}' is not enabled")

        tool = self.registry.get(call.tool)
        if tool is None:
            raise ToolExecutionError(call.tool, call.tool_call_id, f"unknown tool '{call.tool}'")

        try:
            arguments = json.loads(call.arguments) if call.arguments.strip() else {}
        except json.JSONDecodeError as e:
            raise ToolExecutionError(call.tool, call.tool_call_id, f"invalid arguments: {e}") from e
        if not isinstance(arguments, dict):
            raise ToolExecutionError(call.tool, call.tool_call_id, "arguments must be a JSON object")

        try:
            return await tool.process(arguments)
        except Exception as e:
            raise ToolExecutionError(call.tool, call.tool_call_id, str(e)) from e
