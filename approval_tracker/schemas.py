"""Pydantic schemas for request/response validation."""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from approval_tracker.lifecycle import LifecycleStep
from approval_tracker.models import (
    ApprovalMode,
    ApproverStatus,
    DocumentStatus,
    Priority,
    RoundState,
    UserRole,
)


# --- User Schemas ---


class UserCreate(BaseModel):
    id: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=200)
    email: str = Field(..., min_length=3, max_length=320)
    department: Optional[str] = None
    role: UserRole = UserRole.REQUESTER


class UserResponse(BaseModel):
    id: str
    name: str
    email: str
    department: Optional[str] = None
    role: UserRole
    initials: str

    model_config = {"from_attributes": True}


# --- Project Schemas ---


class ProjectCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    project_type: str = Field(default="Project", min_length=1, max_length=50)
    owner_id: str = Field(..., min_length=1)
    description: Optional[str] = None
    priority: Priority = Priority.MEDIUM


class ProjectUpdate(BaseModel):
    actor_id: str = Field(..., min_length=1)
    title: Optional[str] = Field(default=None, min_length=1, max_length=500)
    description: Optional[str] = None
    project_type: Optional[str] = Field(default=None, min_length=1, max_length=50)
    priority: Optional[Priority] = None


class ProjectResponse(BaseModel):
    id: int
    code: str
    title: str
    description: Optional[str] = None
    project_type: str
    status: LifecycleStep
    priority: Priority
    owner_id: str
    approval_mode: ApprovalMode
    archived: bool
    archived_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


# --- Document Schemas ---


class DocumentCreate(BaseModel):
    filename: str = Field(..., min_length=1, max_length=500)
    doc_type: str = Field(..., min_length=1, max_length=100)
    created_by_id: str = Field(..., min_length=1)
    lifecycle_step: Optional[LifecycleStep] = None
    storage_key: Optional[str] = None
    priority: Priority = Priority.MEDIUM


class DocumentResponse(BaseModel):
    id: int
    project_id: int
    filename: str
    doc_type: str
    storage_key: str
    lifecycle_step: LifecycleStep
    version: int
    status: DocumentStatus
    priority: Priority
    created_by_id: str
    created_at: datetime

    model_config = {"from_attributes": True}


# --- Approval Schemas ---


class ApprovalStep(BaseModel):
    user_id: str = Field(..., min_length=1)
    order: int


class ConfigureApprovers(BaseModel):
    approvers: List[str]
    approval_mode: ApprovalMode = ApprovalMode.SEQUENTIAL
    approval_steps: List[ApprovalStep] = []
    priority: Priority = Priority.MEDIUM
    requested_by_id: Optional[str] = None


class ApproverResponse(BaseModel):
    id: int
    user_id: str
    order_index: int
    status: ApproverStatus
    comment: Optional[str] = None
    decided_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ApproverDetailResponse(ApproverResponse):
    name: str
    email: Optional[str] = None
    initials: str
    is_current_turn: bool


class RoundResponse(BaseModel):
    id: int
    document_id: int
    mode: ApprovalMode
    state: RoundState
    resolved: bool
    requested_by_id: Optional[str] = None
    created_at: datetime
    approvers: List[ApproverResponse] = []

    model_config = {"from_attributes": True}


class DecisionRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    comment: Optional[str] = None


class DecisionResponse(BaseModel):
    document_id: int
    round_state: RoundState
    document_status: DocumentStatus
    lifecycle_step: LifecycleStep
    approver: ApproverResponse


class ApprovalModeResponse(BaseModel):
    mode: ApprovalMode


class ApprovalStatusResponse(BaseModel):
    mode: ApprovalMode
    state: RoundState
    total: int
    approved: int
    declined: int
    skipped: int
    pending: int
    next_user_id: Optional[str] = None

    model_config = {"from_attributes": True}


class PendingApprovalResponse(BaseModel):
    document_id: int
    project_id: int
    filename: str
    doc_type: str
    lifecycle_step: LifecycleStep
    priority: Priority
    mode: ApprovalMode
    round_id: int
    requested_at: datetime

    model_config = {"from_attributes": True}


# --- Project Approval Schemas ---


class ConfigureProjectApprovers(BaseModel):
    approvers: List[str]
    approval_mode: ApprovalMode = ApprovalMode.SEQUENTIAL
    actor_id: Optional[str] = None


class StatusChangeCreate(BaseModel):
    status: LifecycleStep
    requested_by_id: str = Field(..., min_length=1)


class StatusChangeRequestResponse(BaseModel):
    id: int
    project_id: int
    from_status: LifecycleStep
    to_status: LifecycleStep
    mode: ApprovalMode
    state: RoundState
    resolved: bool
    requested_by_id: str
    created_at: datetime
    resolved_at: Optional[datetime] = None
    approvers: List[ApproverResponse] = []

    model_config = {"from_attributes": True}


class StatusChangeResponse(BaseModel):
    requires_approval: bool
    project: ProjectResponse
    request: Optional[StatusChangeRequestResponse] = None


class PendingStatusChangeResponse(BaseModel):
    request_id: int
    project_id: int
    project_code: str
    project_title: str
    from_status: LifecycleStep
    to_status: LifecycleStep
    requested_by_id: str
    requester_name: str
    mode: ApprovalMode
    requested_at: datetime

    model_config = {"from_attributes": True}


# --- Comment Schemas ---


class CommentCreate(BaseModel):
    author_id: str = Field(..., min_length=1)
    body: str = Field(..., min_length=1)
    attachment_name: Optional[str] = None
    attachment_key: Optional[str] = None


class CommentResponse(BaseModel):
    id: int
    document_id: Optional[int] = None
    project_id: Optional[int] = None
    author_id: str
    author_name: str
    author_initials: str
    body: str
    attachment_name: Optional[str] = None
    attachment_key: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


# --- History Schemas ---


class AuditLogResponse(BaseModel):
    id: int
    actor_id: Optional[str] = None
    action: str
    target_type: str
    target_id: str
    details: dict[str, Any] = {}
    created_at: datetime

    model_config = {"from_attributes": True}


# --- Dashboard Schemas ---


class DashboardStatsResponse(BaseModel):
    my_requests: int
    pending_approvals: int
    pending_status_changes: int
    active_projects: int
    completed: int

    model_config = {"from_attributes": True}
