"""
Full-fidelity JSON mapping for persisted sessions.

Unlike the backup format, every variant, tool call, tool result and
attachment is kept. Binary data is stored base64-encoded.
"""

import base64
from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from ..models.config import SessionConfig, SessionConfigPurpose
from ..models.conversation import (
    Conversation, ConversationGroup, ConversationRole, ToolCall, ToolResponse, TypedData,
)
from ..models.provider import AIModel, Provider, pick_default_provider
from ..models.session import Session

FORMAT_VERSION = 1


def _data_to_dict(data_file: TypedData) -> Dict[str, Any]:
    return {
        "file_name": data_file.file_name,
        "mime_type": data_file.mime_type,
        "data": base64.b64encode(data_file.data).decode("ascii"),
    }


def _data_from_dict(data: Dict[str, Any]) -> TypedData:
    return TypedData(
        data=base64.b64decode(data.get("data", "")),
        file_name=data.get("file_name", ""),
        mime_type=data.get("mime_type", "application/octet-stream"),
    )


def conversation_to_dict(conversation: Conversation) -> Dict[str, Any]:
    response = conversation.tool_response
    return {
        "id": conversation.id,
        "role": conversation.role.value,
        "content": conversation.content,
        "model": conversation.model,
        "date": conversation.date.isoformat(),
        "data_files": [_data_to_dict(d) for d in conversation.data_files],
        "tool_calls": [asdict(call) for call in conversation.tool_calls],
        "tool_response": None if response is None else {
            "tool_call_id": response.tool_call_id,
            "tool": response.tool,
            "processed_content": response.processed_content,
            "processed_data": [_data_to_dict(d) for d in response.processed_data],
            "is_error": response.is_error,
        },
    }


def conversation_from_dict(data: Dict[str, Any]) -> Conversation:
    response = data.get("tool_response")
    conversation = Conversation(
        role=ConversationRole(data["role"]),
        content=data.get("content", ""),
        data_files=[_data_from_dict(d) for d in data.get("data_files", [])],
        tool_calls=[ToolCall(**call) for call in data.get("tool_calls", [])],
        tool_response=None if response is None else ToolResponse(
            tool_call_id=response["tool_call_id"],
            tool=response["tool"],
            processed_content=response.get("processed_content", ""),
            processed_data=[_data_from_dict(d) for d in response.get("processed_data", [])],
            is_error=response.get("is_error", False),
        ),
        model=data.get("model"),
        date=datetime.fromisoformat(data["date"]),
    )
    if data.get("id"):
        conversation.id = data["id"]
    return conversation


def _config_to_dict(config: SessionConfig) -> Dict[str, Any]:
    data = config.model_dump(mode="json", exclude={"provider"})
    data["provider_id"] = config.provider.id
    return data


def _config_from_dict(data: Dict[str, Any], providers: Sequence[Provider]) -> SessionConfig:
    data = dict(data)
    provider_id = data.pop("provider_id", None)
    provider = find_provider(providers, provider_id)
    if provider is None:
        provider = pick_default_provider(providers)
        # The stored model belongs to a provider that is gone
        data["model"] = None

    purpose = SessionConfigPurpose(data.get("purpose", SessionConfigPurpose.CHAT.value))
    model = AIModel.model_validate(data["model"]) if data.get("model") else None
    if model is None:
        return SessionConfig.for_provider(provider, purpose, **_params(data))
    data["model"] = model
    data["provider"] = provider
    return SessionConfig.model_validate(data)


def _params(data: Dict[str, Any]) -> Dict[str, Any]:
    keys = ("stream", "temperature", "top_p", "frequency_penalty", "presence_penalty",
            "max_tokens", "system_prompt", "tools")
    return {k: data[k] for k in keys if k in data}


def session_to_dict(session: Session) -> Dict[str, Any]:
    return {
        "version": FORMAT_VERSION,
        "id": session.id,
        "date": session.date.isoformat(),
        "order": session.order,
        "title": session.title,
        "is_starred": session.is_starred,
        "is_quick": session.is_quick,
        "error_message": session.error_message,
        "reset_marker": session.reset_marker,
        "token_count": session.token_count,
        "config": _config_to_dict(session.config),
        "groups": [
            {
                "id": group.id,
                "date": group.date.isoformat(),
                "active_index": group.active_index,
                "conversations": [conversation_to_dict(c) for c in group.conversations],
            }
            for group in session.groups
        ],
    }


def session_from_dict(data: Dict[str, Any], providers: Sequence[Provider] = ()) -> Session:
    """
    Rebuild a session, rebinding its config to the stored provider id.

    Falls back to the default provider when that provider no longer exists.
    """
    session = Session(config=_config_from_dict(data["config"], providers), title=data.get("title", "Chat Session"))
    session.id = data["id"]
    session.date = datetime.fromisoformat(data["date"])
    session.order = data.get("order", 0)
    session.is_starred = data.get("is_starred", False)
    session.is_quick = data.get("is_quick", False)
    session.error_message = data.get("error_message", "")
    session.reset_marker = data.get("reset_marker")
    session.token_count = data.get("token_count", 0)

    groups: List[ConversationGroup] = []
    for group_data in data.get("groups", []):
        conversations = [conversation_from_dict(c) for c in group_data.get("conversations", [])]
        if not conversations:
            continue
        group = ConversationGroup(conversations[0], date=datetime.fromisoformat(group_data["date"]))
        for conversation in conversations[1:]:
            group.add_conversation(conversation)
        group.active_index = min(group_data.get("active_index", 0), len(conversations) - 1)
        if group_data.get("id"):
            group.id = group_data["id"]
        groups.append(group)
    session.attach_groups(groups)
    return session


def provider_to_dict(provider: Provider) -> Dict[str, Any]:
    return provider.model_dump(mode="json")


def provider_from_dict(data: Dict[str, Any]) -> Provider:
    return Provider.model_validate(data)


def find_provider(providers: Sequence[Provider], provider_id: Optional[str]) -> Optional[Provider]:
    return next((p for p in providers if p.id == provider_id), None)
