"""
Session API endpoints - Create, inspect and drive conversation sessions.
Sending supports Server-Sent Events for live content updates.
"""

import asyncio
import json
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from ..core.errors import InvalidStateError
from ..engine.session_controller import SessionController
from ..models.backup import export_backup, import_backup
from ..models.session import Session
from ..storage.session_store import SessionStore
from .deps import find_group, find_provider, find_session, get_controller, get_store
from .schemas import (
    ConfigUpdate, ForkRequest, MessageCreate, RegenerateRequest, SessionCreate, SessionSummary,
    SessionView, VariantSelect,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sessions", tags=["sessions"])


def _conflict(error: InvalidStateError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error))


def _view(session: Session, controller: SessionController) -> SessionView:
    return SessionView.from_session(session, controller.is_streaming(session))


def _sse(event: dict) -> str:
    return f"data: {json.dumps(event, ensure_ascii=False, default=str)}\n\n"


# -- backup (declared before /{session_id} routes) ------------------------------

@router.get("/backup/export")
async def export_sessions(store: SessionStore = Depends(get_store)):
    """Download every non-quick session in the flattened backup format."""
    return Response(
        content=export_backup(store.sessions),
        media_type="application/json",
        headers={"Content-Disposition": 'attachment; filename="sessions.json"'},
    )


@router.post("/backup/import", response_model=List[SessionSummary])
async def import_sessions(
    request: Request,
    store: SessionStore = Depends(get_store),
):
    """Restore sessions from a backup file posted as the raw request body."""
    payload = await request.body()
    try:
        sessions = import_backup(payload, store.providers)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid backup: {e}")

    for session in reversed(sessions):
        await store.insert(session)
    logger.info(f"Imported {len(sessions)} sessions from backup")
    return [SessionSummary.from_session(s) for s in sessions]


# -- sessions ------------------------------------------------------------------

@router.post("", response_model=SessionView, status_code=status.HTTP_201_CREATED)
async def create_session(
    body: SessionCreate,
    store: SessionStore = Depends(get_store),
    controller: SessionController = Depends(get_controller),
):
    provider = find_provider(store, body.provider_id) if body.provider_id else None
    config = {"tools": tuple(body.tools)}
    if body.system_prompt is not None:
        config["system_prompt"] = body.system_prompt
    try:
        session = await controller.create_session(provider, body.purpose, body.title, **config)
    except InvalidStateError as e:
        raise _conflict(e)
    return _view(session, controller)


@router.get("", response_model=List[SessionSummary])
async def list_sessions(
    include_quick: bool = Query(False),
    store: SessionStore = Depends(get_store),
    controller: SessionController = Depends(get_controller),
):
    return [
        SessionSummary.from_session(s, controller.is_streaming(s))
        for s in store.sessions
        if include_quick or not s.is_quick
    ]


@router.get("/{session_id}", response_model=SessionView)
async def get_session(
    session_id: str,
    store: SessionStore = Depends(get_store),
    controller: SessionController = Depends(get_controller),
):
    return _view(find_session(store, session_id), controller)


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(
    session_id: str,
    store: SessionStore = Depends(get_store),
    controller: SessionController = Depends(get_controller),
):
    await controller.delete_session(find_session(store, session_id))


@router.patch("/{session_id}/config", response_model=SessionView)
async def update_config(
    session_id: str,
    body: ConfigUpdate,
    store: SessionStore = Depends(get_store),
    controller: SessionController = Depends(get_controller),
):
    session = find_session(store, session_id)
    changes = body.model_dump(exclude_unset=True, exclude={"model_code"})
    if "tools" in changes:
        changes["tools"] = tuple(changes["tools"] or ())
    if body.model_code:
        model = session.config.provider.find_model(body.model_code)
        if model is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Model {body.model_code} not found")
        changes["model"] = model
    try:
        await controller.update_config(session, **changes)
    except InvalidStateError as e:
        raise _conflict(e)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    return _view(session, controller)


# -- generation ----------------------------------------------------------------

async def _respond(
    session: Session,
    controller: SessionController,
    queue: Optional[asyncio.Queue],
    task: Optional[asyncio.Task],
):
    """Await the run, or stream its events as SSE when a queue is attached."""
    if queue is None:
        if task is not None:
            # A /stop from another request cancels the run, not this response
            await asyncio.wait({task})
        return _view(session, controller)

    if task is None:
        controller.unsubscribe(session, queue)
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=session.error_message)

    async def event_generator():
        try:
            while True:
                event = await queue.get()
                yield _sse(event)
                if event["type"] == "done":
                    return
        finally:
            controller.unsubscribe(session, queue)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
        background=BackgroundTask(controller.unsubscribe, session, queue),
    )


@router.post("/{session_id}/messages")
async def send_message(
    session_id: str,
    body: MessageCreate,
    stream: bool = Query(False, description="Enable streaming output"),
    store: SessionStore = Depends(get_store),
    controller: SessionController = Depends(get_controller),
):
    """
    Send a user message (or apply a pending edit) and generate the reply.

    Returns:
        SessionView (stream=false) or StreamingResponse (stream=true)
    """
    session = find_session(store, session_id)
    queue = controller.subscribe(session) if stream else None
    try:
        task = await controller.send(session, body.content, [d.to_typed_data() for d in body.data_files])
    except InvalidStateError as e:
        if queue is not None:
            controller.unsubscribe(session, queue)
        raise _conflict(e)
    return await _respond(session, controller, queue, task)


@router.post("/{session_id}/stop", response_model=SessionView)
async def stop_generation(
    session_id: str,
    store: SessionStore = Depends(get_store),
    controller: SessionController = Depends(get_controller),
):
    session = find_session(store, session_id)
    await controller.stop(session)
    return _view(session, controller)


@router.post("/{session_id}/regenerate")
async def regenerate(
    session_id: str,
    body: Optional[RegenerateRequest] = None,
    stream: bool = Query(False),
    store: SessionStore = Depends(get_store),
    controller: SessionController = Depends(get_controller),
):
    session = find_session(store, session_id)
    body = body or RegenerateRequest()
    group = find_group(session, body.group_id) if body.group_id else None
    queue = controller.subscribe(session) if stream else None
    try:
        if group is None:
            task = await controller.regenerate_last(session)
        else:
            task = await controller.regenerate(session, group)
    except InvalidStateError as e:
        if queue is not None:
            controller.unsubscribe(session, queue)
        raise _conflict(e)
    return await _respond(session, controller, queue, task)


@router.post("/{session_id}/groups/{group_id}/edit")
async def edit_message(
    session_id: str,
    group_id: str,
    body: MessageCreate,
    stream: bool = Query(False),
    store: SessionStore = Depends(get_store),
    controller: SessionController = Depends(get_controller),
):
    """Replace a user message, drop everything after it and generate again."""
    session = find_session(store, session_id)
    group = find_group(session, group_id)
    queue = controller.subscribe(session) if stream else None
    try:
        controller.begin_edit(session, group)
        task = await controller.send(session, body.content, [d.to_typed_data() for d in body.data_files])
    except InvalidStateError as e:
        controller.cancel_edit(session)
        if queue is not None:
            controller.unsubscribe(session, queue)
        raise _conflict(e)
    return await _respond(session, controller, queue, task)


# -- tree maintenance ----------------------------------------------------------

@router.post("/{session_id}/fork", response_model=SessionView, status_code=status.HTTP_201_CREATED)
async def fork_session(
    session_id: str,
    body: Optional[ForkRequest] = None,
    store: SessionStore = Depends(get_store),
    controller: SessionController = Depends(get_controller),
):
    session = find_session(store, session_id)
    body = body or ForkRequest()
    group = find_group(session, body.group_id) if body.group_id else None
    try:
        forked = await controller.fork(session, group, body.purpose)
    except InvalidStateError as e:
        raise _conflict(e)
    return _view(forked, controller)


@router.post("/{session_id}/groups/{group_id}/reset-context", response_model=SessionView)
async def reset_context(
    session_id: str,
    group_id: str,
    store: SessionStore = Depends(get_store),
    controller: SessionController = Depends(get_controller),
):
    session = find_session(store, session_id)
    try:
        await controller.reset_context(session, find_group(session, group_id))
    except InvalidStateError as e:
        raise _conflict(e)
    return _view(session, controller)


@router.delete("/{session_id}/groups/{group_id}", response_model=SessionView)
async def delete_group(
    session_id: str,
    group_id: str,
    store: SessionStore = Depends(get_store),
    controller: SessionController = Depends(get_controller),
):
    session = find_session(store, session_id)
    try:
        await controller.delete_group(session, find_group(session, group_id))
    except InvalidStateError as e:
        raise _conflict(e)
    return _view(session, controller)


@router.put("/{session_id}/groups/{group_id}/active", response_model=SessionView)
async def select_variant(
    session_id: str,
    group_id: str,
    body: VariantSelect,
    store: SessionStore = Depends(get_store),
    controller: SessionController = Depends(get_controller),
):
    session = find_session(store, session_id)
    try:
        await controller.select_variant(session, find_group(session, group_id), body.index)
    except InvalidStateError as e:
        raise _conflict(e)
    except IndexError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    return _view(session, controller)


@router.delete("/{session_id}/conversations", response_model=SessionView)
async def delete_all_conversations(
    session_id: str,
    store: SessionStore = Depends(get_store),
    controller: SessionController = Depends(get_controller),
):
    session = find_session(store, session_id)
    try:
        await controller.delete_all_conversations(session)
    except InvalidStateError as e:
        raise _conflict(e)
    return _view(session, controller)
