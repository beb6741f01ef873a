"""Persistence collaborator for the approval service."""

from typing import Any, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from approval_tracker.models import (
    ApprovalRound,
    Approver,
    ApproverStatus,
    AuditLog,
    Document,
    Project,
    ProjectApprover,
    RoundState,
    StatusChangeApprover,
    StatusChangeRequest,
    User,
)


class ApprovalRepository:
    """Reads and writes approval rounds, status change requests and their
    decision records.

    Wraps one SQLAlchemy session; the caller owns the session lifetime and the
    repository owns the transaction boundaries (``commit``/``rollback``).
    """

    def __init__(self, db: Session):
        self.db = db

    # --- Documents and users ---

    def get_document(self, document_id: int, for_update: bool = False) -> Optional[Document]:
        if for_update:
            return self.db.get(Document, document_id, with_for_update=True)
        return self.db.get(Document, document_id)

    def get_users(self, user_ids: Iterable[str]) -> dict[str, User]:
        ids = list(user_ids)
        if not ids:
            return {}
        users = self.db.scalars(select(User).where(User.id.in_(ids))).all()
        return {user.id: user for user in users}

    # --- Rounds ---

    def get_latest_round(
        self, document_id: int, for_update: bool = False
    ) -> Optional[ApprovalRound]:
        query = (
            select(ApprovalRound)
            .where(ApprovalRound.document_id == document_id)
            .order_by(ApprovalRound.id.desc())
            .limit(1)
            .options(selectinload(ApprovalRound.approvers))
        )
        if for_update:
            query = query.with_for_update()
        return self.db.scalars(query).first()

    def get_active_round(self, document_id: int) -> Optional[ApprovalRound]:
        query = select(ApprovalRound).where(
            ApprovalRound.document_id == document_id,
            ApprovalRound.resolved.is_(False),
        )
        return self.db.scalars(query).first()

    def create_round(self, round: ApprovalRound, approvers: List[Approver]) -> ApprovalRound:
        round.approvers = approvers
        self.db.add(round)
        self.db.flush()
        return round

    def delete_round(self, round: ApprovalRound) -> None:
        self.db.delete(round)
        # The partial unique index needs the old round gone before the new insert.
        self.db.flush()

    # --- Projects and status change requests ---

    def get_project(self, project_id: int, for_update: bool = False) -> Optional[Project]:
        if for_update:
            return self.db.get(Project, project_id, with_for_update=True)
        return self.db.get(Project, project_id)

    def replace_project_approvers(
        self, project: Project, approvers: List[ProjectApprover]
    ) -> None:
        project.approvers.clear()
        # Old rows must be gone before the same users are added again.
        self.db.flush()
        project.approvers.extend(approvers)
        self.db.flush()

    def get_status_request(
        self, request_id: int, for_update: bool = False
    ) -> Optional[StatusChangeRequest]:
        query = (
            select(StatusChangeRequest)
            .where(StatusChangeRequest.id == request_id)
            .options(selectinload(StatusChangeRequest.approvers))
        )
        if for_update:
            query = query.with_for_update()
        return self.db.scalars(query).first()

    def get_latest_status_request(self, project_id: int) -> Optional[StatusChangeRequest]:
        query = (
            select(StatusChangeRequest)
            .where(StatusChangeRequest.project_id == project_id)
            .order_by(StatusChangeRequest.id.desc())
            .limit(1)
            .options(selectinload(StatusChangeRequest.approvers))
        )
        return self.db.scalars(query).first()

    def get_active_status_request(self, project_id: int) -> Optional[StatusChangeRequest]:
        query = select(StatusChangeRequest).where(
            StatusChangeRequest.project_id == project_id,
            StatusChangeRequest.resolved.is_(False),
        )
        return self.db.scalars(query).first()

    def create_status_request(
        self, request: StatusChangeRequest, approvers: List[StatusChangeApprover]
    ) -> StatusChangeRequest:
        request.approvers = approvers
        self.db.add(request)
        self.db.flush()
        return request

    def get_pending_status_entries_for_user(self, user_id: str) -> List[StatusChangeApprover]:
        query = (
            select(StatusChangeApprover)
            .join(StatusChangeRequest, StatusChangeApprover.request_id == StatusChangeRequest.id)
            .where(
                StatusChangeApprover.user_id == user_id,
                StatusChangeApprover.status == ApproverStatus.PENDING,
                StatusChangeRequest.state == RoundState.AWAITING_DECISIONS,
            )
            .order_by(StatusChangeRequest.created_at, StatusChangeApprover.id)
        )
        return list(self.db.scalars(query).all())

    # --- Decision records ---

    def get_pending_entries_for_user(self, user_id: str) -> List[Approver]:
        query = (
            select(Approver)
            .join(ApprovalRound, Approver.round_id == ApprovalRound.id)
            .where(
                Approver.user_id == user_id,
                Approver.status == ApproverStatus.PENDING,
                ApprovalRound.state == RoundState.AWAITING_DECISIONS,
            )
            .order_by(ApprovalRound.created_at, Approver.id)
        )
        return list(self.db.scalars(query).all())

    def get_decided_entries_for_user(self, user_id: str) -> List[Approver]:
        query = (
            select(Approver)
            .where(
                Approver.user_id == user_id,
                Approver.status.in_([ApproverStatus.APPROVED, ApproverStatus.DECLINED]),
            )
            .order_by(Approver.decided_at.desc(), Approver.id.desc())
        )
        return list(self.db.scalars(query).all())

    # --- Audit ---

    def add_audit_log(
        self,
        action: str,
        target_type: str,
        target_id: Any,
        actor_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> AuditLog:
        entry = AuditLog(
            actor_id=actor_id,
            action=action,
            target_type=target_type,
            target_id=str(target_id),
            details=details or {},
        )
        self.db.add(entry)
        return entry

    # --- Transactions ---

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()

    def refresh(self, instance) -> None:
        self.db.refresh(instance)
