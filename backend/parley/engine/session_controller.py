"""
Session Controller - The operation surface that mutates conversation trees.

Every operation that changes a tree refuses to run while a generation is
active for that session, so a tree only ever has one writer: either the
controller (between runs) or the run's StreamHandler.
"""

import asyncio
import contextlib
import logging
import time
from typing import Any, Callable, Coroutine, Dict, Iterable, List, Optional, Set

from ..core.context import select_context
from ..core.errors import InvalidStateError
from ..core.logging_config import SessionLoggerAdapter
from ..core.tokens import estimate_schema_tokens
from ..llm.base import LLMProvider
from ..llm.factory import create_llm_provider
from ..models.config import SessionConfig, SessionConfigPurpose
from ..models.conversation import Conversation, ConversationGroup, ConversationRole, TypedData, utcnow
from ..models.provider import Provider
from ..models.session import Session
from ..storage.session_store import SessionStore
from ..tools.executor import ToolExecutor
from .stream_handler import RunState, StreamHandler
from .title_generator import generate_title, should_generate_title

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[Provider], LLMProvider]

INVALID_EDIT_MESSAGE = "Error: Invalid editing state"


class SessionController:
    """
    User-facing operations on sessions.

    At most one run per session: ``send`` and ``regenerate`` raise
    InvalidStateError while a run is active, as does every tree mutation.
    """

    def __init__(
        self,
        store: Optional[SessionStore] = None,
        tool_executor: Optional[ToolExecutor] = None,
        provider_factory: ProviderFactory = create_llm_provider,
        flush_interval: float = 0.2,
        autogen_title: bool = True,
        max_tool_rounds: int = 8,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.tool_executor = tool_executor or ToolExecutor()
        self.provider_factory = provider_factory
        self.flush_interval = flush_interval
        self.autogen_title = autogen_title
        self.max_tool_rounds = max_tool_rounds
        self.clock = clock

        self._runs: Dict[str, asyncio.Task] = {}
        self._background: Set[asyncio.Task] = set()
        self._listeners: Dict[str, List[asyncio.Queue]] = {}

    # -- run bookkeeping -----------------------------------------------------

    def is_streaming(self, session: Session) -> bool:
        task = self._runs.get(session.id)
        return task is not None and not task.done()

    def _ensure_idle(self, session: Session) -> None:
        if self.is_streaming(session):
            raise InvalidStateError(f"Session {session.id} is already generating a response")

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def wait_background(self) -> None:
        """Wait for pending title and save tasks."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # -- listeners -----------------------------------------------------------

    def subscribe(self, session: Session) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self._listeners.setdefault(session.id, []).append(queue)
        return queue

    def unsubscribe(self, session: Session, queue: asyncio.Queue) -> None:
        queues = self._listeners.get(session.id, [])
        if queue in queues:
            queues.remove(queue)
        if not queues:
            self._listeners.pop(session.id, None)

    def _publish(self, session: Session, event: Dict[str, Any]) -> None:
        for queue in self._listeners.get(session.id, []):
            queue.put_nowait({**event, "session_id": session.id})

    # -- sessions ------------------------------------------------------------

    async def create_session(
        self,
        provider: Optional[Provider] = None,
        purpose: SessionConfigPurpose = SessionConfigPurpose.CHAT,
        title: str = "Chat Session",
        **config,
    ) -> Session:
        if provider is None:
            if self.store is None:
                raise InvalidStateError("No provider given and no store to pick a default from")
            provider = self.store.default_provider()
        session = Session(config=SessionConfig.for_provider(provider, purpose, **config), title=title)
        session.is_quick = purpose == SessionConfigPurpose.QUICK
        self.refresh_tokens(session)
        if self.store is not None:
            await self.store.insert(session)
        return session

    async def delete_session(self, session: Session) -> None:
        await self.stop(session)
        if self.store is not None:
            await self.store.delete(session)

    def refresh_tokens(self, session: Session, input_text: str = "") -> int:
        definitions = self.tool_executor.registry.definitions(session.config.tools)
        return session.refresh_tokens(estimate_schema_tokens(definitions), input_text)

    async def _save(self, session: Session) -> None:
        if self.store is not None:
            await self.store.save(session)

    # -- generation ----------------------------------------------------------

    async def send(
        self,
        session: Session,
        prompt: str,
        data_files: Iterable[TypedData] = (),
    ) -> Optional[asyncio.Task]:
        """
        Append the user turn (or apply the pending edit) and start a run.

        Returns:
            The run task, or None when an invalid edit was rejected
        """
        self._ensure_idle(session)
        session.error_message = ""

        if session.editing_index is not None:
            try:
                self._apply_edit(session, prompt, list(data_files))
            except InvalidStateError as e:
                logger.warning(f"Edit rejected: {e}", extra={"extra_fields": {"session_id": session.id}})
                session.error_message = INVALID_EDIT_MESSAGE
                return None
        else:
            session.add_group(Conversation(
                role=ConversationRole.USER,
                content=prompt,
                data_files=list(data_files),
            ))

        return self._start(session)

    def _apply_edit(self, session: Session, prompt: str, data_files: List[TypedData]) -> None:
        index = session.editing_index
        session.editing_index = None
        groups = session.groups
        if index is None or not 0 <= index < len(groups) or groups[index].role != ConversationRole.USER:
            raise InvalidStateError(f"No user group at editing index {index}")

        group = groups[index]
        conversation = group.active_conversation
        conversation.content = prompt
        conversation.data_files = data_files
        session.unset_reset_marker(group)
        # An edit replaces history from this point on
        session.truncate_after(index)

    async def regenerate(self, session: Session, group: ConversationGroup) -> asyncio.Task:
        """Add a new variant to an assistant group and generate into it."""
        self._ensure_idle(session)
        if group.role != ConversationRole.ASSISTANT:
            raise InvalidStateError("Only assistant responses can be regenerated")

        index = session.index_of(group)
        session.error_message = ""
        session.unset_reset_marker(group)
        session.truncate_after(index)

        previous_user = next(
            (g for g in reversed(session.groups[:index]) if g.role == ConversationRole.USER),
            None,
        )
        regen_content = previous_user.active_conversation.content if previous_user else None
        return self._start(session, regen_content=regen_content, target_group=group)

    async def regenerate_last(self, session: Session) -> Optional[asyncio.Task]:
        """Regenerate the last reply, or re-send the last user turn if it has none."""
        self._ensure_idle(session)
        groups = session.groups
        if not groups:
            raise InvalidStateError("Nothing to regenerate")

        last = groups[-1]
        if last.role == ConversationRole.ASSISTANT:
            return await self.regenerate(session, last)
        if last.role == ConversationRole.USER:
            conversation = last.active_conversation
            self.begin_edit(session, last)
            return await self.send(session, conversation.content, list(conversation.data_files))
        raise InvalidStateError(f"Cannot regenerate a {last.role.value} group")

    def _start(
        self,
        session: Session,
        regen_content: Optional[str] = None,
        target_group: Optional[ConversationGroup] = None,
    ) -> asyncio.Task:
        if self.store is not None:
            self.store.move_to_top(session)
        else:
            session.order = 0
        session.date = utcnow()
        self.refresh_tokens(session)

        provider = self.provider_factory(session.config.provider)
        if self.autogen_title and should_generate_title(session):
            self._spawn(self._update_title(session, provider))

        context = select_context(session, regen_content)
        if target_group is not None:
            replaced = target_group.active_conversation
            context = [c for c in context if c is not replaced]
        assistant = Conversation(
            role=ConversationRole.ASSISTANT,
            model=session.config.model.code,
            is_replying=True,
        )
        if target_group is not None:
            target_group.add_conversation(assistant)
        else:
            session.add_group(assistant)

        handler = StreamHandler(
            session,
            assistant,
            provider,
            self.tool_executor,
            config=session.config,
            flush_interval=self.flush_interval,
            clock=self.clock,
            on_event=lambda event: self._publish(session, event),
            max_tool_rounds=self.max_tool_rounds,
        )
        task = asyncio.create_task(self._run(session, handler, context))
        self._runs[session.id] = task
        return task

    async def _run(self, session: Session, handler: StreamHandler, context: List[Conversation]) -> RunState:
        log = SessionLoggerAdapter(logger, {"session_id": session.id})
        state = RunState.CANCELLED
        try:
            state = await handler.handle_request(context)
            return state
        finally:
            session.streamer = None
            if self._runs.get(session.id) is asyncio.current_task():
                del self._runs[session.id]
            self.refresh_tokens(session)
            log.info(f"Run ended: {state.value}", extra={"extra_fields": {"state": state.value}})
            self._publish(session, {"type": "done", "state": state.value, "error": session.error_message})
            # Queues already hold "done"; listeners never outlive their run
            self._listeners.pop(session.id, None)
            self._spawn(self._save(session))

    async def stop(self, session: Session) -> bool:
        """
        Cancel the active run and wait for its cleanup.

        Returns:
            True if a run was cancelled
        """
        task = self._runs.get(session.id)
        if task is None or task.done():
            return False

        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

        # A run cancelled before it started never cleaned up its placeholder
        groups = session.groups
        if groups and groups[-1].role == ConversationRole.ASSISTANT:
            conversation = groups[-1].active_conversation
            conversation.is_replying = False
            if conversation.is_empty:
                groups[-1].delete_conversation(conversation)
        return True

    async def _update_title(self, session: Session, provider: LLMProvider) -> None:
        title = await generate_title(session, provider)
        if title:
            session.title = title
            self._publish(session, {"type": "title", "title": title})
            await self._save(session)

    async def generate_title(self, session: Session, forced: bool = True) -> Optional[str]:
        if not should_generate_title(session, forced):
            return None
        provider = self.provider_factory(session.config.provider)
        title = await generate_title(session, provider)
        if title:
            session.title = title
            await self._save(session)
        return title

    # -- editing -------------------------------------------------------------

    def begin_edit(self, session: Session, group: ConversationGroup) -> None:
        if group.role != ConversationRole.USER:
            raise InvalidStateError("Only user messages can be edited")
        session.editing_index = session.index_of(group)

    def cancel_edit(self, session: Session) -> None:
        session.editing_index = None

    # -- tree maintenance ----------------------------------------------------

    async def reset_context(self, session: Session, group: ConversationGroup) -> Optional[int]:
        """Toggle the context-reset marker at ``group``."""
        self._ensure_idle(session)
        index = session.index_of(group)
        session.reset_marker = None if session.reset_marker == index else index
        self.refresh_tokens(session)
        await self._save(session)
        return session.reset_marker

    async def delete_group(self, session: Session, group: ConversationGroup) -> List[ConversationGroup]:
        """
        Delete a group. Deleting an assistant group also deletes the replies
        before it in the same exchange (its tool results and the tool-calling
        assistant turns); the user turn is kept.

        Returns:
            The removed groups
        """
        self._ensure_idle(session)
        if group.role == ConversationRole.ASSISTANT:
            replies = session.exchange_of(group).replies
            position = next(i for i, g in enumerate(replies) if g is group)
            removed = replies[:position + 1]
        else:
            removed = [group]

        session.unset_reset_marker(removed[0])
        session.remove_groups(removed)
        self.refresh_tokens(session)
        await self._save(session)
        return removed

    async def delete_variant(self, session: Session, group: ConversationGroup, index: int) -> None:
        self._ensure_idle(session)
        if not 0 <= index < len(group.conversations):
            raise IndexError(f"Variant index {index} out of range")
        if len(group.conversations) == 1:
            session.unset_reset_marker(group)
        group.delete_conversation(group.conversations[index])
        self.refresh_tokens(session)
        await self._save(session)

    async def select_variant(self, session: Session, group: ConversationGroup, index: int) -> None:
        self._ensure_idle(session)
        group.set_active(index)
        self.refresh_tokens(session)
        await self._save(session)

    async def delete_all_conversations(self, session: Session) -> None:
        self._ensure_idle(session)
        session.clear()
        session.reset_marker = None
        session.error_message = ""
        session.editing_index = None
        self.refresh_tokens(session)
        await self._save(session)

    async def fork(
        self,
        session: Session,
        group: Optional[ConversationGroup] = None,
        purpose: SessionConfigPurpose = SessionConfigPurpose.CHAT,
    ) -> Session:
        """New session holding deep copies of the groups up to and including ``group``."""
        self._ensure_idle(session)
        forked = session.copy(from_group=group, purpose=purpose)
        self.refresh_tokens(forked)
        if self.store is not None:
            await self.store.insert(forked)
        return forked

    async def update_config(self, session: Session, **changes) -> SessionConfig:
        """Replace the session's config snapshot; only legal between runs."""
        self._ensure_idle(session)
        session.config = session.config.updated(**changes)
        self.refresh_tokens(session)
        await self._save(session)
        return session.config
