"""SQLAlchemy database models for projects, documents and their approvals."""

import enum
from datetime import datetime, timezone
from typing import Any, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_tracker.database import Base
from approval_tracker.lifecycle import FIRST_STEP, LifecycleStep


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserRole(str, enum.Enum):
    ADMIN = "ADMIN"
    APPROVER = "APPROVER"
    REQUESTER = "REQUESTER"


class Priority(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class DocumentStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ApprovalMode(str, enum.Enum):
    SEQUENTIAL = "SEQUENTIAL"
    PARALLEL = "PARALLEL"


class RoundState(str, enum.Enum):
    AWAITING_DECISIONS = "AWAITING_DECISIONS"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ApproverStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DECLINED = "DECLINED"
    SKIPPED = "SKIPPED"


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    department: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole), default=UserRole.REQUESTER, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )

    @property
    def initials(self) -> str:
        return initials_for(self.name or self.email)


def initials_for(display_name: str) -> str:
    return "".join(part[0] for part in display_name.split() if part).upper()


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    project_type: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[LifecycleStep] = mapped_column(
        Enum(LifecycleStep), default=FIRST_STEP, nullable=False
    )
    priority: Mapped[Priority] = mapped_column(
        Enum(Priority), default=Priority.MEDIUM, nullable=False
    )
    owner_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    approval_mode: Mapped[ApprovalMode] = mapped_column(
        Enum(ApprovalMode), default=ApprovalMode.SEQUENTIAL, nullable=False
    )
    archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    archived_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    documents: Mapped[List["Document"]] = relationship(
        back_populates="project",
        cascade="all, delete-orphan",
        order_by="Document.id",
    )
    approvers: Mapped[List["ProjectApprover"]] = relationship(
        back_populates="project",
        cascade="all, delete-orphan",
        order_by="ProjectApprover.order_index",
    )
    status_requests: Mapped[List["StatusChangeRequest"]] = relationship(
        back_populates="project",
        cascade="all, delete-orphan",
        order_by="StatusChangeRequest.id",
    )
    comments: Mapped[List["Comment"]] = relationship(
        foreign_keys="Comment.project_id", cascade="all, delete-orphan"
    )


class Document(Base):
    __tablename__ = "documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    doc_type: Mapped[str] = mapped_column(String(100), nullable=False)
    filename: Mapped[str] = mapped_column(String(500), nullable=False)
    storage_key: Mapped[str] = mapped_column(String(500), nullable=False)
    lifecycle_step: Mapped[LifecycleStep] = mapped_column(
        Enum(LifecycleStep), default=FIRST_STEP, nullable=False
    )
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    status: Mapped[DocumentStatus] = mapped_column(
        Enum(DocumentStatus), default=DocumentStatus.DRAFT, nullable=False
    )
    priority: Mapped[Priority] = mapped_column(
        Enum(Priority), default=Priority.MEDIUM, nullable=False
    )
    created_by_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )

    project: Mapped["Project"] = relationship(back_populates="documents")
    rounds: Mapped[List["ApprovalRound"]] = relationship(
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="ApprovalRound.id",
    )
    comments: Mapped[List["Comment"]] = relationship(
        foreign_keys="Comment.document_id", cascade="all, delete-orphan"
    )


class ApprovalRound(Base):
    __tablename__ = "approval_rounds"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    document_id: Mapped[int] = mapped_column(
        ForeignKey("documents.id", ondelete="CASCADE"), nullable=False
    )
    mode: Mapped[ApprovalMode] = mapped_column(
        Enum(ApprovalMode), default=ApprovalMode.SEQUENTIAL, nullable=False
    )
    state: Mapped[RoundState] = mapped_column(
        Enum(RoundState), default=RoundState.AWAITING_DECISIONS, nullable=False
    )
    resolved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    requested_by_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    resolved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_decision_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    document: Mapped["Document"] = relationship(back_populates="rounds")
    approvers: Mapped[List["Approver"]] = relationship(
        back_populates="round",
        cascade="all, delete-orphan",
        order_by="Approver.order_index",
    )

    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        # Only one unresolved round per document.
        Index(
            "uq_approval_rounds_active_document",
            "document_id",
            unique=True,
            sqlite_where=text("resolved = 0"),
            postgresql_where=text("NOT resolved"),
        ),
    )


class Approver(Base):
    __tablename__ = "approvers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    round_id: Mapped[int] = mapped_column(
        ForeignKey("approval_rounds.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id"), nullable=False, index=True
    )
    order_index: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[ApproverStatus] = mapped_column(
        Enum(ApproverStatus), default=ApproverStatus.PENDING, nullable=False
    )
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    decided_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    round: Mapped["ApprovalRound"] = relationship(back_populates="approvers")
    user: Mapped["User"] = relationship()

    __mapper_args__ = {"version_id_col": version_id}


class ProjectApprover(Base):
    """Standing approver for a project's lifecycle status changes."""

    __tablename__ = "project_approvers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    order_index: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )

    project: Mapped["Project"] = relationship(back_populates="approvers")
    user: Mapped["User"] = relationship()

    __table_args__ = (
        UniqueConstraint("project_id", "user_id", name="uq_project_approvers_user"),
    )


class StatusChangeRequest(Base):
    """A requested move of a project to another lifecycle step.

    Decided like an approval round: one entry per project approver, snapshot
    when the request is raised.
    """

    __tablename__ = "status_change_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    from_status: Mapped[LifecycleStep] = mapped_column(Enum(LifecycleStep), nullable=False)
    to_status: Mapped[LifecycleStep] = mapped_column(Enum(LifecycleStep), nullable=False)
    mode: Mapped[ApprovalMode] = mapped_column(
        Enum(ApprovalMode), default=ApprovalMode.SEQUENTIAL, nullable=False
    )
    state: Mapped[RoundState] = mapped_column(
        Enum(RoundState), default=RoundState.AWAITING_DECISIONS, nullable=False
    )
    resolved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    requested_by_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    resolved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_decision_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    project: Mapped["Project"] = relationship(back_populates="status_requests")
    approvers: Mapped[List["StatusChangeApprover"]] = relationship(
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="StatusChangeApprover.order_index",
    )

    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        Index(
            "uq_status_change_requests_active_project",
            "project_id",
            unique=True,
            sqlite_where=text("resolved = 0"),
            postgresql_where=text("NOT resolved"),
        ),
    )


class StatusChangeApprover(Base):
    __tablename__ = "status_change_approvers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    request_id: Mapped[int] = mapped_column(
        ForeignKey("status_change_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id"), nullable=False, index=True
    )
    order_index: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[ApproverStatus] = mapped_column(
        Enum(ApproverStatus), default=ApproverStatus.PENDING, nullable=False
    )
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    decided_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    request: Mapped["StatusChangeRequest"] = relationship(back_populates="approvers")

    __mapper_args__ = {"version_id_col": version_id}


class Comment(Base):
    __tablename__ = "comments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    document_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("documents.id", ondelete="CASCADE"), nullable=True, index=True
    )
    project_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"), nullable=True, index=True
    )
    author_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    attachment_key: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    attachment_name: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )

    author: Mapped["User"] = relationship()

    @property
    def author_name(self) -> str:
        if self.author is None:
            return self.author_id
        return self.author.name or self.author.email

    @property
    def author_initials(self) -> str:
        return initials_for(self.author_name)


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    action: Mapped[str] = mapped_column(String(200), nullable=False)
    target_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
