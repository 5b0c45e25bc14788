"""
Database Schemas for TaskFlow

Each Pydantic model represents a MongoDB collection. The collection name is the
lowercased class name. Example: class User -> collection "user".

These models are the authoritative validation layer: request models in the
backend only shape the payload, everything written to the store goes through
one of the collection schemas first.
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class User(BaseModel):
    """
    Users collection schema
    Collection: "user"
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr = Field(..., description="Unique email address, stored lowercase")
    password_hash: str = Field(..., description="BCrypt password hash")
    avatar: str = Field(default="", description="Avatar URL")
    bio: str = Field(default="", max_length=250)

    @field_validator("email", mode="before")
    @classmethod
    def strip_email(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("email", mode="after")
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        return v.lower()


class Task(BaseModel):
    """
    Tasks collection schema
    Collection: "task"
    """
    model_config = ConfigDict(str_strip_whitespace=True, use_enum_values=True, validate_default=True)

    user_id: str = Field(..., description="Owner user id (stringified ObjectId)")
    title: str = Field(..., min_length=1, max_length=100)
    description: str = Field(default="", max_length=500)
    status: TaskStatus = Field(default=TaskStatus.PENDING)
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM)
    due_date: Optional[datetime] = None
    tags: List[str] = Field(default_factory=list)

    @field_validator("description", mode="before")
    @classmethod
    def empty_description(cls, v):
        return "" if v is None else v

    @field_validator("tags", mode="before")
    @classmethod
    def null_tags(cls, v):
        return [] if v is None else v

    @field_validator("tags")
    @classmethod
    def drop_blank_tags(cls, v: List[str]) -> List[str]:
        return [t for t in v if t]
