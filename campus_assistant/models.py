from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

Role = Literal["user", "assistant"]


class ChatRequest(BaseModel):
    """Request payload for the chat API."""
    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(min_length=1, max_length=500)
    session_id: Optional[str] = Field(default=None, alias="sessionId")


class UserInfo(BaseModel):
    email: str = ""
    name: Optional[str] = None


class ChatResponse(BaseModel):
    """Response payload returned by the chat API."""
    model_config = ConfigDict(populate_by_name=True)

    response: str
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    user_info: UserInfo = Field(alias="userInfo")


class ClearSessionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: Optional[str] = Field(default=None, alias="sessionId")


class HistoryMessage(BaseModel):
    id: str
    role: Role
    content: str
    timestamp: datetime


class HistoryResponse(BaseModel):
    """Persisted conversation for the active session, oldest first."""
    model_config = ConfigDict(populate_by_name=True)

    messages: List[HistoryMessage]
    session_id: Optional[str] = Field(default=None, alias="sessionId")


class SessionSummary(BaseModel):
    """Lightweight session summary for the history sidebar."""
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId")
    is_active: bool = Field(alias="isActive")
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")
    message_count: int = Field(default=0, alias="messageCount")


class AuthenticatedUser(BaseModel):
    """Identity supplied by the upstream auth collaborator."""
    id: str
    email: str = ""


class Profile(BaseModel):
    """Row from the profiles table."""
    id: str
    email: str = ""
    username: Optional[str] = None
    full_name: Optional[str] = None
    university: Optional[str] = None
    avatar_url: Optional[str] = None
    created_at: Optional[datetime] = None


class Listing(BaseModel):
    """Row from the posts table; read-only to the assistant."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str
    description: str = ""
    price: Optional[float] = None
    category: str = Field(alias="main_category")
    subcategory: str = Field(default="", alias="sub_category")
    campus: str = ""
    photos: List[str] = Field(default_factory=list)
    seller_id: str
    seller_name: Optional[str] = None
    created_at: datetime

    @field_validator("description", "subcategory", "campus", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("photos", mode="before")
    @classmethod
    def _none_to_list(cls, value: Any) -> Any:
        return [] if value is None else value


class ChatSession(BaseModel):
    """Row from chat_sessions. At most one active row per user."""
    id: str
    user_id: str
    is_active: bool = True
    created_at: datetime
    updated_at: datetime


class ChatMessage(BaseModel):
    """Row from chat_messages; append-only."""
    id: str
    session_id: str
    user_id: Optional[str] = None
    role: Role
    content: str
    created_at: datetime
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("metadata", mode="before")
    @classmethod
    def _none_to_dict(cls, value: Any) -> Any:
        return {} if value is None else value


class SessionStats(BaseModel):
    message_count: int = 0
    first_message: Optional[datetime] = None
    last_message: Optional[datetime] = None
