"""
devkeep/schemas.py

Pydantic request schemas for every DevKeep endpoint.
Strings are trimmed; emails are normalized to lowercase.
Update schemas leave every field optional and are applied with exclude_unset;
an explicit null is rejected unless the column can be cleared.
"""

from __future__ import annotations

from datetime import date
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

from devkeep.models import (
    CommandCategory,
    CommunityRole,
    Environment,
    ProjectRole,
    ProjectStatus,
    TaskPriority,
    TaskStatus,
)


def _strip(v):
    if isinstance(v, str):
        return v.strip()
    return v


def _reject_nulls(model: BaseModel, fields) -> None:
    """An explicit null is only accepted on columns that may be cleared."""
    nulled = [f for f in fields if f in model.model_fields_set and getattr(model, f) is None]
    if nulled:
        raise ValueError(f"{', '.join(nulled)} cannot be null")


class _Trimmed(BaseModel):
    """Trim every incoming string field."""

    @field_validator("*", mode="before")
    @classmethod
    def trim_strings(cls, v):
        return _strip(v)


# ========================================================================
# AUTH / USER
# ========================================================================

class SignupRequest(_Trimmed):
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)

    @field_validator("email")
    @classmethod
    def lower_email(cls, v):
        return v.lower()


class LoginRequest(_Trimmed):
    email: EmailStr
    password: str = Field(..., min_length=1)

    @field_validator("email")
    @classmethod
    def lower_email(cls, v):
        return v.lower()


class HiddenPasswordRequest(BaseModel):
    action: Literal["set", "verify"]
    password: str = Field(..., min_length=4, max_length=64, description="Hidden-space PIN (min 4 chars)")


class ProfileUpdateRequest(_Trimmed):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    birth_date: Optional[date] = None
    image: Optional[str] = None

    @model_validator(mode="after")
    def non_nullable_fields(self):
        _reject_nulls(self, ("name",))
        return self


# ========================================================================
# PROJECTS
# ========================================================================

class ProjectCreateRequest(_Trimmed):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    tech_stack: List[str] = Field(default_factory=list)
    repository_url: Optional[str] = None
    live_url: Optional[str] = None
    environment: Environment = Environment.local
    status: ProjectStatus = ProjectStatus.active
    community_id: Optional[int] = None
    logo: Optional[str] = None
    banner: Optional[str] = None


class ProjectUpdateRequest(_Trimmed):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    tech_stack: Optional[List[str]] = None
    repository_url: Optional[str] = None
    live_url: Optional[str] = None
    environment: Optional[Environment] = None
    status: Optional[ProjectStatus] = None
    community_id: Optional[int] = None
    logo: Optional[str] = None
    banner: Optional[str] = None

    @model_validator(mode="after")
    def non_nullable_fields(self):
        _reject_nulls(self, ("name", "tech_stack", "environment", "status"))
        return self


class ShareRequest(_Trimmed):
    email: EmailStr
    role: ProjectRole = ProjectRole.collaborator

    @field_validator("email")
    @classmethod
    def lower_email(cls, v):
        return v.lower()


# ========================================================================
# TASKS
# ========================================================================

class TaskCreateRequest(_Trimmed):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    status: TaskStatus = TaskStatus.todo
    priority: TaskPriority = TaskPriority.medium
    deadline: Optional[date] = None
    assignee_id: Optional[int] = None


class TaskUpdateRequest(_Trimmed):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    deadline: Optional[date] = None
    assignee_id: Optional[int] = None

    @model_validator(mode="after")
    def non_nullable_fields(self):
        _reject_nulls(self, ("title", "status", "priority"))
        return self


# ========================================================================
# MESSAGES
# ========================================================================

class MessageCreateRequest(_Trimmed):
    content: str = Field(..., min_length=1, max_length=5000)


# ========================================================================
# COMMUNITIES
# ========================================================================

class CommunityCreateRequest(_Trimmed):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field("", max_length=1000)
    icon: Optional[str] = None


class CommunityUpdateRequest(_Trimmed):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    icon: Optional[str] = None

    @model_validator(mode="after")
    def non_nullable_fields(self):
        _reject_nulls(self, ("name", "description"))
        return self


class MemberInviteRequest(_Trimmed):
    email: EmailStr
    role: CommunityRole = CommunityRole.member

    @field_validator("email")
    @classmethod
    def lower_email(cls, v):
        return v.lower()


class MemberRoleRequest(BaseModel):
    member_id: int
    role: CommunityRole


# ========================================================================
# PERSONAL RESOURCES
# ========================================================================

class CredentialCreateRequest(_Trimmed):
    platform: str = Field(..., min_length=1, max_length=100)
    username: Optional[str] = None
    email: Optional[str] = None
    password: str = Field(..., min_length=1)
    notes: Optional[str] = None
    project_id: Optional[int] = None
    is_hidden: bool = False


class CredentialUpdateRequest(_Trimmed):
    platform: Optional[str] = Field(None, min_length=1, max_length=100)
    username: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = Field(None, min_length=1)
    notes: Optional[str] = None
    project_id: Optional[int] = None
    is_hidden: Optional[bool] = None

    @model_validator(mode="after")
    def non_nullable_fields(self):
        _reject_nulls(self, ("platform", "password", "is_hidden"))
        return self


class CommandCreateRequest(_Trimmed):
    title: str = Field(..., min_length=1, max_length=200)
    command: str = Field(..., min_length=1)
    description: Optional[str] = None
    category: CommandCategory = CommandCategory.other
    tags: List[str] = Field(default_factory=list)
    project_id: Optional[int] = None


class CommandUpdateRequest(_Trimmed):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    command: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    category: Optional[CommandCategory] = None
    tags: Optional[List[str]] = None
    project_id: Optional[int] = None

    @model_validator(mode="after")
    def non_nullable_fields(self):
        _reject_nulls(self, ("title", "command", "category", "tags"))
        return self


class NoteCreateRequest(_Trimmed):
    title: str = Field(..., min_length=1, max_length=200)
    content: str = Field(..., min_length=1)
    attachments: List[str] = Field(default_factory=list)
    project_id: Optional[int] = None
    community_id: Optional[int] = None
    is_global: bool = False


class NoteUpdateRequest(_Trimmed):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    content: Optional[str] = Field(None, min_length=1)
    attachments: Optional[List[str]] = None
    project_id: Optional[int] = None
    community_id: Optional[int] = None
    is_global: Optional[bool] = None

    @model_validator(mode="after")
    def non_nullable_fields(self):
        _reject_nulls(self, ("title", "content", "attachments", "is_global"))
        return self


# ========================================================================
# MEETINGS
# ========================================================================

class MeetingRequest(BaseModel):
    project_id: Optional[int] = None
    community_id: Optional[int] = None

    @model_validator(mode="after")
    def exactly_one_target(self):
        if (self.project_id is None) == (self.community_id is None):
            raise ValueError("Provide exactly one of project_id or community_id")
        return self
