from __future__ import annotations

from datetime import datetime
from typing import Any, ClassVar, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


Role = Literal["system", "user", "assistant"]


class CamelModel(BaseModel):
    """camelCase on the wire, snake_case in Python and in stored records."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Input shapes
# ---------------------------------------------------------------------------
class InputModel(CamelModel):
    """Base for create/update payloads.

    Unknown fields are rejected. Fields the server owns are dropped before
    validation so a client can never set them, even by echoing back a record
    it previously read.
    """

    model_config = ConfigDict(extra="forbid")

    server_fields: ClassVar[frozenset[str]] = frozenset({"id", "createdAt", "created_at"})

    @model_validator(mode="before")
    @classmethod
    def _strip_server_fields(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if k not in cls.server_fields}
        return data

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump()


class UpdateModel(InputModel):
    """Partial update: any subset of the create fields, none of them required."""

    nullable_fields: ClassVar[frozenset[str]] = frozenset()

    @model_validator(mode="after")
    def _reject_nulls(self) -> "UpdateModel":
        for name in sorted(self.model_fields_set):
            if getattr(self, name) is None and name not in self.nullable_fields:
                raise ValueError(f"{to_camel(name)} may not be null")
        return self

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class Message(CamelModel):
    model_config = ConfigDict(extra="forbid")

    role: Role
    content: str


_WRAPPER_OWNED = InputModel.server_fields | {"userId", "user_id"}
_CHILD_OWNED = InputModel.server_fields | {"wrapperId", "wrapper_id"}


class WrapperCreate(InputModel):
    server_fields: ClassVar[frozenset[str]] = _WRAPPER_OWNED

    name: str = Field(min_length=1)
    description: Optional[str] = None
    base_model: str = Field(min_length=1)
    system_prompt: Optional[str] = None
    # Sampling values are stored as 0-100 integers and scaled at call time.
    temperature: int = Field(default=70, ge=0, le=100, strict=True)
    max_tokens: int = Field(default=2048, ge=1, strict=True)
    top_p: int = Field(default=90, ge=0, le=100, strict=True)
    enable_memory: bool = True
    knowledge_base_integration: bool = False
    web_search_access: bool = False


class WrapperUpdate(UpdateModel):
    server_fields: ClassVar[frozenset[str]] = _WRAPPER_OWNED
    nullable_fields: ClassVar[frozenset[str]] = frozenset({"description", "system_prompt"})

    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    base_model: Optional[str] = Field(default=None, min_length=1)
    system_prompt: Optional[str] = None
    temperature: Optional[int] = Field(default=None, ge=0, le=100, strict=True)
    max_tokens: Optional[int] = Field(default=None, ge=1, strict=True)
    top_p: Optional[int] = Field(default=None, ge=0, le=100, strict=True)
    enable_memory: Optional[bool] = None
    knowledge_base_integration: Optional[bool] = None
    web_search_access: Optional[bool] = None


class PromptCreate(InputModel):
    server_fields: ClassVar[frozenset[str]] = _CHILD_OWNED

    name: str = Field(min_length=1)
    content: str
    description: Optional[str] = None
    tags: Optional[List[str]] = None


class PromptUpdate(UpdateModel):
    server_fields: ClassVar[frozenset[str]] = _CHILD_OWNED
    nullable_fields: ClassVar[frozenset[str]] = frozenset({"description", "tags"})

    name: Optional[str] = Field(default=None, min_length=1)
    content: Optional[str] = None
    description: Optional[str] = None
    tags: Optional[List[str]] = None


class IntegrationCreate(InputModel):
    server_fields: ClassVar[frozenset[str]] = _CHILD_OWNED

    name: str = Field(min_length=1)
    type: str = Field(min_length=1, description='e.g. "api", "database", "knowledge_base"')
    config: Dict[str, Any]


class IntegrationUpdate(UpdateModel):
    server_fields: ClassVar[frozenset[str]] = _CHILD_OWNED

    name: Optional[str] = Field(default=None, min_length=1)
    type: Optional[str] = Field(default=None, min_length=1)
    config: Optional[Dict[str, Any]] = None


class ConversationCreate(InputModel):
    server_fields: ClassVar[frozenset[str]] = _CHILD_OWNED

    messages: List[Message] = Field(default_factory=list)


class ChatRequest(CamelModel):
    wrapper_id: Optional[int] = None
    message: Optional[str] = None
    conversation_id: Optional[int] = None


# ---------------------------------------------------------------------------
# Stored entities
# ---------------------------------------------------------------------------
class User(CamelModel):
    id: int
    username: str
    password_hash: str = Field(exclude=True)


class Wrapper(CamelModel):
    id: int
    name: str
    description: Optional[str] = None
    base_model: str
    system_prompt: Optional[str] = None
    temperature: int = 70
    max_tokens: int = 2048
    top_p: int = 90
    enable_memory: bool = True
    knowledge_base_integration: bool = False
    web_search_access: bool = False
    user_id: int
    created_at: Optional[datetime] = None


class Prompt(CamelModel):
    id: int
    name: str
    content: str
    description: Optional[str] = None
    wrapper_id: int
    tags: Optional[List[str]] = None
    created_at: Optional[datetime] = None


class Integration(CamelModel):
    id: int
    name: str
    type: str
    config: Dict[str, Any]
    wrapper_id: int
    created_at: Optional[datetime] = None


class Conversation(CamelModel):
    id: int
    wrapper_id: int
    messages: List[Message] = Field(default_factory=list)
    created_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Chat response
# ---------------------------------------------------------------------------
class TokenUsage(BaseModel):
    """Character-based estimate; the provider does not report metered usage."""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    estimated: bool = True


class ChatResponse(CamelModel):
    message: str
    conversation_id: int
    usage: TokenUsage
    model: str


__all__ = [
    "ChatRequest",
    "ChatResponse",
    "Conversation",
    "ConversationCreate",
    "Integration",
    "IntegrationCreate",
    "IntegrationUpdate",
    "Message",
    "Prompt",
    "PromptCreate",
    "PromptUpdate",
    "Role",
    "TokenUsage",
    "User",
    "Wrapper",
    "WrapperCreate",
    "WrapperUpdate",
]
