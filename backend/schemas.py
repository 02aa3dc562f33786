from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Any, List
from datetime import datetime


# Mastodon entities (only the fields the bot reads)
class Account(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str
    username: str = ""
    acct: str = ""
    display_name: str = ""


class Status(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str
    url: Optional[str] = None
    in_reply_to_id: Optional[str] = None
    in_reply_to_account_id: Optional[str] = None
    content: str = ""
    account: Account
    visibility: str = "public"
    created_at: Optional[str] = None


class ReplyTree(BaseModel):
    ancestors: List[Status] = Field(default_factory=list)
    descendants: List[Status] = Field(default_factory=list)


class Notification(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str
    type: str
    account: Account
    status: Optional[Status] = None


class MediaAttachment(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str
    url: Optional[str] = None
    status: Optional[str] = None  # uploaded | uploading | error


# Chat completion wire types
class ToolCallFunction(BaseModel):
    name: str
    arguments: str = ""


class ToolCall(BaseModel):
    id: str
    type: str = "function"
    function: ToolCallFunction


class ChatMessagePayload(BaseModel):
    """Role/content/name body stored per turn and replayed verbatim to the model."""

    model_config = ConfigDict(extra="ignore")
    role: str
    content: Optional[str] = ""
    name: Optional[str] = None
    tool_calls: Optional[List[ToolCall]] = None
    tool_call_id: Optional[str] = None

    def to_api(self) -> dict:
        return self.model_dump(exclude_none=True)


class ToolFunctionSpec(BaseModel):
    name: str
    description: str
    parameters: Optional[dict[str, Any]] = None


class ToolSpec(BaseModel):
    type: str = "function"
    function: ToolFunctionSpec


class ChatContext(BaseModel):
    system_message: str
    history: List[ChatMessagePayload] = Field(default_factory=list)
    tools: List[ToolSpec] = Field(default_factory=list)


class ChatResponse(BaseModel):
    message: ChatMessagePayload
    image_urls: List[str] = Field(default_factory=list)
    history: List[ChatMessagePayload] = Field(default_factory=list)


# Inspection API responses
class StoredMessageResponse(BaseModel):
    id: str
    message_type: str
    user_name: str
    mastodon_status_id: Optional[str] = None
    timestamp: datetime
    privacy_level: str
    sequence_num: Optional[int] = None
    body: ChatMessagePayload

    model_config = ConfigDict(from_attributes=True)


class ThreadResponse(BaseModel):
    thread_id: str
    messages: List[StoredMessageResponse]
