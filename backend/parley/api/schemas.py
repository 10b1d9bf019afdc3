"""
API schemas - request bodies and read-only views of the object graph.
"""

import base64
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..models.config import SessionConfigPurpose
from ..models.conversation import Conversation, ConversationGroup, TypedData
from ..models.provider import AIModel, Provider, ProviderType
from ..models.session import Session


class DataFileIn(BaseModel):
    file_name: str
    mime_type: str = "application/octet-stream"
    data: str  # base64

    def to_typed_data(self) -> TypedData:
        return TypedData(data=base64.b64decode(self.data), file_name=self.file_name, mime_type=self.mime_type)


class SessionCreate(BaseModel):
    provider_id: Optional[str] = None
    purpose: SessionConfigPurpose = SessionConfigPurpose.CHAT
    title: str = "Chat Session"
    system_prompt: Optional[str] = None
    tools: List[str] = Field(default_factory=list)


class MessageCreate(BaseModel):
    content: str
    data_files: List[DataFileIn] = Field(default_factory=list)


class RegenerateRequest(BaseModel):
    group_id: Optional[str] = None  # last group when omitted


class ForkRequest(BaseModel):
    group_id: Optional[str] = None
    purpose: SessionConfigPurpose = SessionConfigPurpose.CHAT


class VariantSelect(BaseModel):
    index: int


class ConfigUpdate(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    model_code: Optional[str] = None
    stream: Optional[bool] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    frequency_penalty: Optional[float] = None
    presence_penalty: Optional[float] = None
    max_tokens: Optional[int] = None
    system_prompt: Optional[str] = None
    tools: Optional[List[str]] = None


class ProviderCreate(BaseModel):
    type: ProviderType = ProviderType.OPENAI
    name: Optional[str] = None
    api_key: str = ""
    host: Optional[str] = None


class ModelTest(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    model_code: str


# -- views -------------------------------------------------------------------

class DataFileView(BaseModel):
    file_name: str
    mime_type: str
    size: int

    @classmethod
    def from_data(cls, data_file: TypedData) -> "DataFileView":
        return cls(file_name=data_file.file_name, mime_type=data_file.mime_type, size=len(data_file.data))


class ToolCallView(BaseModel):
    tool_call_id: str
    tool: str
    arguments: str


class ToolResponseView(BaseModel):
    tool_call_id: str
    tool: str
    processed_content: str
    is_error: bool
    data_files: List[DataFileView] = Field(default_factory=list)


class ConversationView(BaseModel):
    id: str
    role: str
    content: str
    model: Optional[str] = None
    date: datetime
    is_replying: bool
    data_files: List[DataFileView] = Field(default_factory=list)
    tool_calls: List[ToolCallView] = Field(default_factory=list)
    tool_response: Optional[ToolResponseView] = None

    @classmethod
    def from_conversation(cls, conversation: Conversation) -> "ConversationView":
        response = conversation.tool_response
        return cls(
            id=conversation.id,
            role=conversation.role.value,
            content=conversation.content,
            model=conversation.model,
            date=conversation.date,
            is_replying=conversation.is_replying,
            data_files=[DataFileView.from_data(d) for d in conversation.data_files],
            tool_calls=[
                ToolCallView(tool_call_id=c.tool_call_id, tool=c.tool, arguments=c.arguments)
                for c in conversation.tool_calls
            ],
            tool_response=None if response is None else ToolResponseView(
                tool_call_id=response.tool_call_id,
                tool=response.tool,
                processed_content=response.processed_content,
                is_error=response.is_error,
                data_files=[DataFileView.from_data(d) for d in response.processed_data],
            ),
        )


class GroupView(BaseModel):
    id: str
    role: str
    date: datetime
    active_index: int
    conversations: List[ConversationView]

    @classmethod
    def from_group(cls, group: ConversationGroup) -> "GroupView":
        return cls(
            id=group.id,
            role=group.role.value,
            date=group.date,
            active_index=group.active_index,
            conversations=[ConversationView.from_conversation(c) for c in group.conversations],
        )


class SessionSummary(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    id: str
    title: str
    date: datetime
    order: int
    is_starred: bool
    is_quick: bool
    is_streaming: bool = False
    error_message: str
    token_count: int
    provider_id: str
    model_code: str

    @classmethod
    def from_session(cls, session: Session, is_streaming: bool = False) -> "SessionSummary":
        return cls(
            id=session.id,
            title=session.title,
            date=session.date,
            order=session.order,
            is_starred=session.is_starred,
            is_quick=session.is_quick,
            is_streaming=is_streaming,
            error_message=session.error_message,
            token_count=session.token_count,
            provider_id=session.config.provider.id,
            model_code=session.config.model.code,
        )


class SessionView(SessionSummary):
    reset_marker: Optional[int] = None
    editing_index: Optional[int] = None
    system_prompt: str
    tools: List[str]
    groups: List[GroupView]

    @classmethod
    def from_session(cls, session: Session, is_streaming: bool = False) -> "SessionView":
        summary = SessionSummary.from_session(session, is_streaming)
        return cls(
            **summary.model_dump(),
            reset_marker=session.reset_marker,
            editing_index=session.editing_index,
            system_prompt=session.config.system_prompt,
            tools=list(session.config.tools),
            groups=[GroupView.from_group(g) for g in session.groups],
        )


class ProviderView(BaseModel):
    id: str
    name: str
    type: ProviderType
    host: str
    is_enabled: bool
    order: int
    chat_model: str
    quick_chat_model: str
    title_model: str
    models: List[AIModel]

    @classmethod
    def from_provider(cls, provider: Provider) -> "ProviderView":
        return cls(
            id=provider.id,
            name=provider.name,
            type=provider.type,
            host=provider.host,
            is_enabled=provider.is_enabled,
            order=provider.order,
            chat_model=provider.chat_model.code,
            quick_chat_model=provider.quick_chat_model.code,
            title_model=provider.title_model.code,
            models=provider.sorted_models,
        )
