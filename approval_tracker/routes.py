"""API routes for projects, documents and their approval workflows."""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from approval_tracker import services
from approval_tracker.approval_service import ApprovalService
from approval_tracker.config import get_settings
from approval_tracker.database import get_db
from approval_tracker.project_approvals import ProjectApprovalService
from approval_tracker.repository import ApprovalRepository
from approval_tracker.schemas import (
    ApprovalModeResponse,
    ApprovalStatusResponse,
    ApproverDetailResponse,
    ApproverResponse,
    AuditLogResponse,
    CommentCreate,
    CommentResponse,
    ConfigureApprovers,
    ConfigureProjectApprovers,
    DashboardStatsResponse,
    DecisionRequest,
    DecisionResponse,
    DocumentCreate,
    DocumentResponse,
    PendingApprovalResponse,
    PendingStatusChangeResponse,
    ProjectCreate,
    ProjectResponse,
    ProjectUpdate,
    RoundResponse,
    StatusChangeCreate,
    StatusChangeRequestResponse,
    StatusChangeResponse,
    UserCreate,
    UserResponse,
)

router = APIRouter()


def get_approval_service(db: Session = Depends(get_db)) -> ApprovalService:
    return ApprovalService(ApprovalRepository(db))


def get_project_approval_service(db: Session = Depends(get_db)) -> ProjectApprovalService:
    return ProjectApprovalService(ApprovalRepository(db))


# --- Users ---


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(payload: UserCreate, db: Session = Depends(get_db)):
    """Register a user who can own projects and approve documents."""
    return services.create_user(
        db,
        user_id=payload.id,
        name=payload.name,
        email=payload.email,
        department=payload.department,
        role=payload.role,
    )


@router.get("/users", response_model=List[UserResponse])
def list_users(db: Session = Depends(get_db)):
    """List users sorted by name."""
    return services.list_users(db)


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(user_id: str, db: Session = Depends(get_db)):
    """Retrieve a user by ID."""
    return services.get_user(db, user_id)


# --- Projects ---


@router.post("/projects", response_model=ProjectResponse, status_code=201)
def create_project(payload: ProjectCreate, db: Session = Depends(get_db)):
    """Create a project at the first lifecycle step."""
    return services.create_project(
        db,
        title=payload.title,
        project_type=payload.project_type,
        owner_id=payload.owner_id,
        description=payload.description,
        priority=payload.priority,
    )


@router.get("/projects", response_model=List[ProjectResponse])
def list_projects(owner_id: Optional[str] = None, db: Session = Depends(get_db)):
    """List projects, newest first, optionally for one owner."""
    return services.list_projects(db, owner_id=owner_id)


@router.get("/projects/{project_id}", response_model=ProjectResponse)
def get_project(project_id: int, db: Session = Depends(get_db)):
    """Retrieve a project by ID."""
    return services.get_project(db, project_id)


@router.put("/projects/{project_id}", response_model=ProjectResponse)
def update_project(project_id: int, payload: ProjectUpdate, db: Session = Depends(get_db)):
    """Update a project's title, description, type or priority."""
    return services.update_project(
        db,
        project_id,
        actor_id=payload.actor_id,
        title=payload.title,
        description=payload.description,
        project_type=payload.project_type,
        priority=payload.priority,
    )


@router.put("/projects/{project_id}/archive", response_model=ProjectResponse)
def archive_project(
    project_id: int,
    user_id: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
):
    """Archive a project."""
    return services.archive_project(db, project_id, user_id)


@router.delete("/projects/{project_id}", status_code=204)
def delete_project(
    project_id: int,
    user_id: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
):
    """Delete a project and everything under it."""
    services.delete_project(db, project_id, user_id)
    return Response(status_code=204)


@router.get("/projects/{project_id}/history", response_model=List[AuditLogResponse])
def get_project_history(project_id: int, db: Session = Depends(get_db)):
    """Audit entries for a project and its documents."""
    return services.get_project_history(db, project_id)


# --- Project Status Changes ---


@router.patch("/projects/{project_id}/status", response_model=StatusChangeResponse)
def change_project_status(
    project_id: int,
    payload: StatusChangeCreate,
    service: ProjectApprovalService = Depends(get_project_approval_service),
):
    """Move a project to another lifecycle step, via its approvers if it has any."""
    result = service.request_status_change(
        project_id, payload.status, payload.requested_by_id
    )
    request = None
    if result.request is not None:
        request = StatusChangeRequestResponse.model_validate(result.request)
    return StatusChangeResponse(
        requires_approval=result.requires_approval,
        project=ProjectResponse.model_validate(result.project),
        request=request,
    )


@router.get(
    "/projects/{project_id}/status-request",
    response_model=Optional[StatusChangeRequestResponse],
)
def get_status_request(
    project_id: int,
    service: ProjectApprovalService = Depends(get_project_approval_service),
):
    """Retrieve the project's pending status change request, if any."""
    return service.get_pending_request(project_id)


@router.post(
    "/projects/{project_id}/approvers",
    response_model=List[ApproverDetailResponse],
    status_code=201,
)
def configure_project_approvers(
    project_id: int,
    payload: ConfigureProjectApprovers,
    service: ProjectApprovalService = Depends(get_project_approval_service),
):
    """Replace the approvers who decide on the project's status changes."""
    return service.configure_approvers(
        project_id, payload.approvers, mode=payload.approval_mode, actor_id=payload.actor_id
    )


@router.get(
    "/projects/{project_id}/approvers", response_model=List[ApproverDetailResponse]
)
def get_project_approvers(
    project_id: int,
    service: ProjectApprovalService = Depends(get_project_approval_service),
):
    """List project approvers with their vote on the pending request."""
    return service.get_approvers(project_id)


@router.delete("/projects/{project_id}/approvers/{approver_id}", status_code=204)
def remove_project_approver(
    project_id: int,
    approver_id: int,
    user_id: Optional[str] = None,
    service: ProjectApprovalService = Depends(get_project_approval_service),
):
    """Remove one approver from a project."""
    service.remove_approver(project_id, approver_id, actor_id=user_id)
    return Response(status_code=204)


@router.get(
    "/projects/{project_id}/approval-status",
    response_model=Optional[ApprovalStatusResponse],
)
def get_project_approval_status(
    project_id: int,
    service: ProjectApprovalService = Depends(get_project_approval_service),
):
    """Summarise the project's latest status change request."""
    return service.get_approval_status(project_id)


@router.get(
    "/approvals/status-changes", response_model=List[PendingStatusChangeResponse]
)
def list_pending_status_changes(
    user_id: str = Query(..., min_length=1),
    service: ProjectApprovalService = Depends(get_project_approval_service),
):
    """Status change requests the user can decide on now."""
    return service.get_pending_for_user(user_id)


@router.post(
    "/approvals/status-changes/{request_id}/approve",
    response_model=StatusChangeRequestResponse,
)
def approve_status_change(
    request_id: int,
    payload: DecisionRequest,
    service: ProjectApprovalService = Depends(get_project_approval_service),
):
    """Approve a status change request."""
    return service.approve(request_id, payload.user_id, payload.comment)


@router.post(
    "/approvals/status-changes/{request_id}/reject",
    response_model=StatusChangeRequestResponse,
)
def reject_status_change(
    request_id: int,
    payload: DecisionRequest,
    service: ProjectApprovalService = Depends(get_project_approval_service),
):
    """Reject a status change request."""
    return service.decline(request_id, payload.user_id, payload.comment)


# --- Documents ---


@router.post(
    "/projects/{project_id}/documents", response_model=DocumentResponse, status_code=201
)
def create_document(
    project_id: int, payload: DocumentCreate, db: Session = Depends(get_db)
):
    """Register an uploaded document in draft status."""
    return services.create_document(
        db,
        project_id,
        filename=payload.filename,
        doc_type=payload.doc_type,
        created_by_id=payload.created_by_id,
        lifecycle_step=payload.lifecycle_step,
        storage_key=payload.storage_key,
        priority=payload.priority,
        key_prefix=get_settings().storage_key_prefix,
    )


@router.get("/projects/{project_id}/documents", response_model=List[DocumentResponse])
def list_documents(project_id: int, db: Session = Depends(get_db)):
    """List a project's documents."""
    return services.list_documents(db, project_id)


@router.get("/documents/{document_id}", response_model=DocumentResponse)
def get_document(document_id: int, db: Session = Depends(get_db)):
    """Retrieve a document by ID."""
    return services.get_document(db, document_id)


@router.delete("/documents/{document_id}", status_code=204)
def delete_document(
    document_id: int,
    user_id: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
):
    """Delete a document with its approval rounds and comments."""
    services.delete_document(db, document_id, user_id)
    return Response(status_code=204)


@router.get("/documents/{document_id}/history", response_model=List[AuditLogResponse])
def get_document_history(document_id: int, db: Session = Depends(get_db)):
    """Audit entries for a document, oldest first."""
    return services.get_document_history(db, document_id)


# --- Approvals ---


@router.post(
    "/documents/{document_id}/approvers", response_model=RoundResponse, status_code=201
)
def configure_approvers(
    document_id: int,
    payload: ConfigureApprovers,
    service: ApprovalService = Depends(get_approval_service),
):
    """Start a new approval round for a document."""
    return service.configure_approvers(
        document_id,
        payload.approvers,
        mode=payload.approval_mode,
        ordered_steps=payload.approval_steps,
        requested_by_id=payload.requested_by_id,
        priority=payload.priority,
    )


@router.get(
    "/documents/{document_id}/approvers", response_model=List[ApproverDetailResponse]
)
def get_approvers(
    document_id: int, service: ApprovalService = Depends(get_approval_service)
):
    """List the approvers of the document's latest round."""
    return service.get_approvers_for_document(document_id)


@router.get("/documents/{document_id}/approval-mode", response_model=ApprovalModeResponse)
def get_approval_mode(
    document_id: int, service: ApprovalService = Depends(get_approval_service)
):
    """Get the approval mode of the document's latest round."""
    return ApprovalModeResponse(mode=service.get_approval_mode(document_id))


@router.get(
    "/documents/{document_id}/approval-status",
    response_model=Optional[ApprovalStatusResponse],
)
def get_approval_status(
    document_id: int, service: ApprovalService = Depends(get_approval_service)
):
    """Summarise the document's latest round."""
    return service.get_approval_status(document_id)


def _decision_response(document_id: int, outcome, db: Session) -> DecisionResponse:
    document = services.get_document(db, document_id)
    return DecisionResponse(
        document_id=document.id,
        round_state=outcome.round_state,
        document_status=outcome.document_status,
        lifecycle_step=document.lifecycle_step,
        approver=ApproverResponse.model_validate(outcome.approver),
    )


@router.post("/documents/{document_id}/approve", response_model=DecisionResponse)
def approve_document(
    document_id: int,
    payload: DecisionRequest,
    db: Session = Depends(get_db),
    service: ApprovalService = Depends(get_approval_service),
):
    """Record an approval on the document's current round."""
    outcome = service.approve(document_id, payload.user_id, payload.comment)
    return _decision_response(document_id, outcome, db)


@router.post("/documents/{document_id}/decline", response_model=DecisionResponse)
def decline_document(
    document_id: int,
    payload: DecisionRequest,
    db: Session = Depends(get_db),
    service: ApprovalService = Depends(get_approval_service),
):
    """Record a decline, which rejects the document's current round."""
    outcome = service.decline(document_id, payload.user_id, payload.comment)
    return _decision_response(document_id, outcome, db)


@router.get("/approvals/pending", response_model=List[PendingApprovalResponse])
def list_pending_approvals(
    user_id: str = Query(..., min_length=1),
    service: ApprovalService = Depends(get_approval_service),
):
    """Documents the user can decide on now."""
    return service.get_pending_for_user(user_id)


@router.get("/approvals/completed", response_model=List[ApproverResponse])
def list_completed_approvals(
    user_id: str = Query(..., min_length=1),
    service: ApprovalService = Depends(get_approval_service),
):
    """Decisions the user has already made, newest first."""
    return service.get_completed_for_user(user_id)


# --- Comments ---


@router.post(
    "/documents/{document_id}/comments", response_model=CommentResponse, status_code=201
)
def add_document_comment(
    document_id: int, payload: CommentCreate, db: Session = Depends(get_db)
):
    """Add a comment to a document thread."""
    return services.add_comment(
        db,
        author_id=payload.author_id,
        body=payload.body,
        document_id=document_id,
        attachment_name=payload.attachment_name,
        attachment_key=payload.attachment_key,
    )


@router.get("/documents/{document_id}/comments", response_model=List[CommentResponse])
def list_document_comments(document_id: int, db: Session = Depends(get_db)):
    """List a document's comments, newest first."""
    return services.list_comments(db, document_id=document_id)


@router.post(
    "/projects/{project_id}/comments", response_model=CommentResponse, status_code=201
)
def add_project_comment(
    project_id: int, payload: CommentCreate, db: Session = Depends(get_db)
):
    """Add a comment to a project thread."""
    return services.add_comment(
        db,
        author_id=payload.author_id,
        body=payload.body,
        project_id=project_id,
        attachment_name=payload.attachment_name,
        attachment_key=payload.attachment_key,
    )


@router.get("/projects/{project_id}/comments", response_model=List[CommentResponse])
def list_project_comments(project_id: int, db: Session = Depends(get_db)):
    """List a project's comments, newest first."""
    return services.list_comments(db, project_id=project_id)


@router.delete("/comments/{comment_id}", status_code=204)
def delete_comment(
    comment_id: int,
    user_id: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
):
    """Delete a comment; only its author may do so."""
    services.delete_comment(db, comment_id, user_id)
    return Response(status_code=204)


# --- Dashboard ---


@router.get("/dashboard/stats", response_model=DashboardStatsResponse)
def get_dashboard_stats(user_id: Optional[str] = None, db: Session = Depends(get_db)):
    """Project counts and the user's approval queues."""
    return services.get_dashboard_stats(db, user_id=user_id)
