"""
Typed records returned by the store

Rows are validated here when they leave the database so services never
handle loosely shaped ORM objects.
"""
from datetime import datetime
from typing import Optional, Literal, Any, Dict
from pydantic import BaseModel, Field, field_validator

VoteType = Literal['upvote', 'downvote']


class PostRecord(BaseModel):
    id: int
    title: str
    slug: str
    author_id: Optional[str] = None
    published: bool = True

    class Config:
        from_attributes = True


class UserRecord(BaseModel):
    id: str
    email: str
    name: Optional[str] = None
    role: str = 'user'

    class Config:
        from_attributes = True


class CommentRecord(BaseModel):
    """Comment as stored, including moderation and audit fields"""
    id: int
    post_id: int
    parent_id: Optional[int] = None
    content: str
    author_name: str
    author_email: str
    author_website: Optional[str] = None
    is_anonymous: bool = False
    user_id: Optional[str] = None
    approved: bool = False
    spam_score: int = 0
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    upvotes: int = Field(default=0, ge=0)
    downvotes: int = Field(default=0, ge=0)
    created_at: datetime

    class Config:
        from_attributes = True


class VoteRecord(BaseModel):
    id: int
    comment_id: int
    vote_type: VoteType
    user_id: Optional[str] = None
    voter_ip: Optional[str] = None
    voter_email: Optional[str] = None

    class Config:
        from_attributes = True


class AgentConfig(BaseModel):
    """Model settings of an agent; every field falls back to the backend default"""
    model: Optional[str] = None
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    max_tokens: Optional[int] = Field(default=None, gt=0, alias='maxTokens')

    class Config:
        populate_by_name = True

    def to_storage(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class AgentRecord(BaseModel):
    """Snapshot of an agent preset"""
    id: int
    name: str
    description: Optional[str] = None
    type: str
    system_prompt: str
    user_prompt: str = '{{content}}'
    enabled: bool = True
    config: AgentConfig = Field(default_factory=AgentConfig)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @field_validator('config', mode='before')
    @classmethod
    def _empty_config(cls, value):
        return value or {}

    @field_validator('user_prompt', mode='before')
    @classmethod
    def _default_user_prompt(cls, value):
        return value or '{{content}}'


class ExecutionRecord(BaseModel):
    id: int
    agent_id: Optional[int] = None
    content: str
    result: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    duration_ms: Optional[float] = None
    created_at: datetime
