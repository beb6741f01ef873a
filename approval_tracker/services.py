"""Business logic for users, projects, documents, comments and history."""

import logging
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session

from approval_tracker.approval_service import ApprovalService
from approval_tracker.errors import InvalidConfiguration, NotFound, PermissionDenied
from approval_tracker.lifecycle import LifecycleStep
from approval_tracker.models import (
    AuditLog,
    Comment,
    Document,
    DocumentStatus,
    Priority,
    Project,
    User,
    UserRole,
)
from approval_tracker.project_approvals import ProjectApprovalService
from approval_tracker.repository import ApprovalRepository

logger = logging.getLogger(__name__)


# --- Users ---


def create_user(
    db: Session,
    user_id: str,
    name: str,
    email: str,
    department: Optional[str] = None,
    role: UserRole = UserRole.REQUESTER,
) -> User:
    if db.get(User, user_id) is not None:
        raise InvalidConfiguration(f"User '{user_id}' already exists")
    if db.scalars(select(User).where(User.email == email)).first() is not None:
        raise InvalidConfiguration(f"E-mail '{email}' is already in use")

    user = User(id=user_id, name=name, email=email, department=department, role=role)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def get_user(db: Session, user_id: str) -> User:
    user = db.get(User, user_id)
    if not user:
        raise NotFound(f"User '{user_id}' not found")
    return user


def list_users(db: Session) -> List[User]:
    return list(db.scalars(select(User).order_by(User.name)).all())


# --- Projects ---


def generate_project_code(db: Session, project_type: str, year: Optional[int] = None) -> str:
    """Next code in the PRJ-<year>-<seq> / NP-<year>-<seq> series."""
    year = year or datetime.now(timezone.utc).year
    prefix = "PRJ" if project_type == "Project" else "NP"
    stem = f"{prefix}-{year}-"
    existing = db.scalar(select(func.count(Project.id)).where(Project.code.like(f"{stem}%")))
    return f"{stem}{(existing or 0) + 1:03d}"


def create_project(
    db: Session,
    title: str,
    project_type: str,
    owner_id: str,
    description: Optional[str] = None,
    priority: Priority = Priority.MEDIUM,
) -> Project:
    """Create a project at the first lifecycle step."""
    get_user(db, owner_id)
    project = Project(
        code=generate_project_code(db, project_type),
        title=title,
        description=description,
        project_type=project_type,
        owner_id=owner_id,
        priority=priority,
        status=LifecycleStep.INITIATIVE_SUBMITTED,
    )
    db.add(project)
    db.flush()
    db.add(
        AuditLog(
            actor_id=owner_id,
            action="Project Created",
            target_type="project",
            target_id=str(project.id),
            details={"code": project.code, "title": title},
        )
    )
    db.commit()
    db.refresh(project)
    logger.info("Created project %s (%s)", project.code, project.id)
    return project


def get_project(db: Session, project_id: int) -> Project:
    project = db.get(Project, project_id)
    if not project:
        raise NotFound(f"Project {project_id} not found")
    return project


def list_projects(db: Session, owner_id: Optional[str] = None) -> List[Project]:
    query = select(Project).order_by(Project.created_at.desc(), Project.id.desc())
    if owner_id:
        query = query.where(Project.owner_id == owner_id)
    return list(db.scalars(query).all())


def update_project(
    db: Session,
    project_id: int,
    actor_id: str,
    title: Optional[str] = None,
    description: Optional[str] = None,
    project_type: Optional[str] = None,
    priority: Optional[Priority] = None,
) -> Project:
    """Update project details. The lifecycle step moves through status changes."""
    project = get_project(db, project_id)
    get_user(db, actor_id)

    changes = {}
    for field, value in (
        ("title", title),
        ("description", description),
        ("project_type", project_type),
        ("priority", priority),
    ):
        current = getattr(project, field)
        if value is not None and value != current:
            changes[field] = {"from": _plain(current), "to": _plain(value)}
            setattr(project, field, value)

    if changes:
        db.add(
            AuditLog(
                actor_id=actor_id,
                action="Project Updated",
                target_type="project",
                target_id=str(project.id),
                details={"changes": changes},
            )
        )
        db.commit()
        db.refresh(project)
    return project


def _plain(value):
    return getattr(value, "value", value)


def archive_project(db: Session, project_id: int, actor_id: str) -> Project:
    project = get_project(db, project_id)
    get_user(db, actor_id)
    if project.archived:
        return project

    project.archived = True
    project.archived_at = datetime.now(timezone.utc)
    db.add(
        AuditLog(
            actor_id=actor_id,
            action="Project Archived",
            target_type="project",
            target_id=str(project.id),
            details={"status": project.status.value},
        )
    )
    db.commit()
    db.refresh(project)
    logger.info("Archived project %s", project.code)
    return project


def delete_project(db: Session, project_id: int, actor_id: str) -> None:
    """Delete a project with its documents, rounds, comments and requests.

    Only an admin or the project owner may delete it. Audit entries are kept.
    """
    project = get_project(db, project_id)
    _require_admin_or_owner(get_user(db, actor_id), project)

    db.add(
        AuditLog(
            actor_id=actor_id,
            action="Project Deleted",
            target_type="project",
            target_id=str(project.id),
            details={"code": project.code, "title": project.title},
        )
    )
    db.delete(project)
    db.commit()
    logger.info("Deleted project %s (%s)", project.code, project_id)


def _require_admin_or_owner(user: User, project: Project) -> None:
    if user.role is not UserRole.ADMIN and user.id != project.owner_id:
        raise PermissionDenied("Only an admin or the project owner can do this")

# --- Documents ---


def generate_storage_key(filename: str, prefix: str = "documents") -> str:
    """Object-store key for an uploaded file; the extension is kept."""
    extension = filename.rsplit(".", 1)[-1] if "." in filename else "bin"
    return f"{prefix}/{int(time.time() * 1000)}-{secrets.token_hex(8)}.{extension}"


def create_document(
    db: Session,
    project_id: int,
    filename: str,
    doc_type: str,
    created_by_id: str,
    lifecycle_step: Optional[LifecycleStep] = None,
    storage_key: Optional[str] = None,
    priority: Priority = Priority.MEDIUM,
    key_prefix: str = "documents",
) -> Document:
    """Register an uploaded document in draft status."""
    project = get_project(db, project_id)
    get_user(db, created_by_id)

    step = lifecycle_step or project.status
    version = 1 + (
        db.scalar(
            select(func.count(Document.id)).where(
                Document.project_id == project_id,
                Document.filename == filename,
                Document.lifecycle_step == step,
            )
        )
        or 0
    )
    doc = Document(
        project_id=project.id,
        filename=filename,
        doc_type=doc_type,
        storage_key=storage_key or generate_storage_key(filename, key_prefix),
        lifecycle_step=step,
        version=version,
        status=DocumentStatus.DRAFT,
        priority=priority,
        created_by_id=created_by_id,
    )
    db.add(doc)
    db.flush()
    db.add(
        AuditLog(
            actor_id=created_by_id,
            action="Document Uploaded",
            target_type="document",
            target_id=str(doc.id),
            details={"filename": filename, "lifecycle_step": step.value, "version": version},
        )
    )
    db.commit()
    db.refresh(doc)
    return doc


def get_document(db: Session, document_id: int) -> Document:
    """Retrieve a document by ID or raise NotFound."""
    doc = db.get(Document, document_id)
    if not doc:
        raise NotFound(f"Document {document_id} not found")
    return doc


def list_documents(db: Session, project_id: int) -> List[Document]:
    get_project(db, project_id)
    query = select(Document).where(Document.project_id == project_id).order_by(Document.id)
    return list(db.scalars(query).all())


def delete_document(db: Session, document_id: int, actor_id: str) -> None:
    """Delete a document with its approval rounds and comments.

    Only an admin or the project owner may delete it. The deletion is logged
    against both the document and its project.
    """
    doc = get_document(db, document_id)
    _require_admin_or_owner(get_user(db, actor_id), doc.project)

    details = {
        "document_id": doc.id,
        "filename": doc.filename,
        "doc_type": doc.doc_type,
        "lifecycle_step": doc.lifecycle_step.value,
    }
    for target_type, target_id in (("document", doc.id), ("project", doc.project_id)):
        db.add(
            AuditLog(
                actor_id=actor_id,
                action="Document Deleted",
                target_type=target_type,
                target_id=str(target_id),
                details=details,
            )
        )
    db.delete(doc)
    db.commit()
    logger.info("Deleted document %s (%s)", document_id, details["filename"])


# --- Comments ---


def add_comment(
    db: Session,
    author_id: str,
    body: str,
    document_id: Optional[int] = None,
    project_id: Optional[int] = None,
    attachment_name: Optional[str] = None,
    attachment_key: Optional[str] = None,
) -> Comment:
    """Add a comment to a document or a project thread."""
    if (document_id is None) == (project_id is None):
        raise InvalidConfiguration("A comment belongs to exactly one document or project")
    if document_id is not None:
        get_document(db, document_id)
    else:
        get_project(db, project_id)
    get_user(db, author_id)

    if attachment_name and not attachment_key:
        attachment_key = generate_storage_key(attachment_name, prefix="comments")

    comment = Comment(
        document_id=document_id,
        project_id=project_id,
        author_id=author_id,
        body=body,
        attachment_name=attachment_name,
        attachment_key=attachment_key,
    )
    db.add(comment)
    db.commit()
    db.refresh(comment)
    return comment


def list_comments(
    db: Session, document_id: Optional[int] = None, project_id: Optional[int] = None
) -> List[Comment]:
    """Comments for a document or project, newest first."""
    query = select(Comment)
    if document_id is not None:
        get_document(db, document_id)
        query = query.where(Comment.document_id == document_id)
    elif project_id is not None:
        get_project(db, project_id)
        query = query.where(Comment.project_id == project_id)
    else:
        raise InvalidConfiguration("Either document_id or project_id is required")
    return list(db.scalars(query.order_by(Comment.created_at.desc(), Comment.id.desc())).all())


def delete_comment(db: Session, comment_id: int, user_id: str) -> None:
    comment = db.get(Comment, comment_id)
    if not comment:
        raise NotFound(f"Comment {comment_id} not found")
    if comment.author_id != user_id:
        raise PermissionDenied("Only the author can delete this comment")
    db.delete(comment)
    db.commit()


# --- History ---


def get_document_history(db: Session, document_id: int) -> List[AuditLog]:
    get_document(db, document_id)
    query = (
        select(AuditLog)
        .where(AuditLog.target_type == "document", AuditLog.target_id == str(document_id))
        .order_by(AuditLog.id)
    )
    return list(db.scalars(query).all())


def get_project_history(db: Session, project_id: int) -> List[AuditLog]:
    """Entries for the project and for its current documents, oldest first."""
    get_project(db, project_id)
    document_ids = [
        str(document_id)
        for document_id in db.scalars(
            select(Document.id).where(Document.project_id == project_id)
        ).all()
    ]
    query = (
        select(AuditLog)
        .where(
            or_(
                and_(AuditLog.target_type == "project", AuditLog.target_id == str(project_id)),
                and_(AuditLog.target_type == "document", AuditLog.target_id.in_(document_ids)),
            )
        )
        .order_by(AuditLog.id)
    )
    return list(db.scalars(query).all())


# --- Dashboard ---


COMPLETED_STEPS = (LifecycleStep.PTR, LifecycleStep.GO_LIVE)


@dataclass(frozen=True)
class DashboardStats:
    my_requests: int
    pending_approvals: int
    pending_status_changes: int
    active_projects: int
    completed: int


def get_dashboard_stats(db: Session, user_id: Optional[str] = None) -> DashboardStats:
    """Project counts plus the user's own requests and approval queues.

    Archived projects are never active; projects at PTR or Go Live count as
    completed.
    """
    pending_approvals = pending_status_changes = my_requests = 0
    if user_id:
        repo = ApprovalRepository(db)
        my_requests = db.scalar(
            select(func.count(Project.id)).where(Project.owner_id == user_id)
        )
        pending_approvals = len(ApprovalService(repo).get_pending_for_user(user_id))
        pending_status_changes = len(ProjectApprovalService(repo).get_pending_for_user(user_id))

    active = db.scalar(
        select(func.count(Project.id)).where(
            Project.status.not_in(COMPLETED_STEPS), Project.archived.is_(False)
        )
    )
    completed = db.scalar(
        select(func.count(Project.id)).where(Project.status.in_(COMPLETED_STEPS))
    )
    return DashboardStats(
        my_requests=my_requests or 0,
        pending_approvals=pending_approvals,
        pending_status_changes=pending_status_changes,
        active_projects=active or 0,
        completed=completed or 0,
    )
