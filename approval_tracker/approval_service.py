"""Approval service: configures approval rounds and records decisions.

Every call re-reads the current round from the repository before validating,
and each mutating call is a single transaction that either commits fully or
rolls back.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from approval_tracker.errors import (
    AlreadyDecided,
    Conflict,
    InvalidConfiguration,
    NotAnApprover,
    NotFound,
    NotYourTurn,
    OutOfTurn,
    ServiceError,
)
from approval_tracker.lifecycle import advance
from approval_tracker.models import (
    ApprovalMode,
    ApprovalRound,
    Approver,
    ApproverStatus,
    Document,
    Priority,
    RoundState,
    User,
    initials_for,
)
from approval_tracker.repository import ApprovalRepository
from approval_tracker.state_machine import (
    ApprovalStateMachine,
    DecisionOutcome,
    RoundSummary,
    coerce_mode,
    derive_document_status,
    plan_approvers,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApproverView:
    """A decision record joined with the approver's display data."""

    id: int
    user_id: str
    name: str
    email: Optional[str]
    initials: str
    order_index: int
    status: ApproverStatus
    comment: Optional[str]
    decided_at: Optional[datetime]
    is_current_turn: bool


def display_name(user: Optional[User], user_id: str) -> str:
    if user is None:
        return user_id
    return user.name or user.email or user_id


@dataclass(frozen=True)
class PendingApproval:
    document_id: int
    project_id: int
    filename: str
    doc_type: str
    lifecycle_step: str
    priority: Priority
    mode: ApprovalMode
    round_id: int
    requested_at: datetime


class ApprovalService:
    def __init__(self, repository: ApprovalRepository):
        self.repo = repository

    # --- Configuration ---

    def configure_approvers(
        self,
        document_id: int,
        approver_user_ids: Sequence[str],
        mode=ApprovalMode.SEQUENTIAL,
        ordered_steps: Optional[Iterable] = None,
        requested_by_id: Optional[str] = None,
        priority=Priority.MEDIUM,
    ) -> ApprovalRound:
        """Start a fresh approval round for a document.

        An unresolved round for the same document is discarded together with
        its decision records. Resolved rounds stay as history.
        """
        document = self._get_document(document_id)
        plans = plan_approvers(approver_user_ids, mode, ordered_steps)
        try:
            priority = Priority(priority)
        except ValueError:
            raise InvalidConfiguration(f"Unknown priority '{priority}'") from None

        users = self.repo.get_users(plan.user_id for plan in plans)
        missing = [plan.user_id for plan in plans if plan.user_id not in users]
        if missing:
            raise InvalidConfiguration(
                "Unknown approver users", meta={"missing": missing}
            )

        try:
            # Serialises concurrent reconfigurations of the same document.
            self.repo.get_document(document_id, for_update=True)
            previous = self.repo.get_active_round(document_id)
            if previous is not None:
                logger.info(
                    "Discarding unresolved round %s for document %s", previous.id, document_id
                )
                self.repo.add_audit_log(
                    "Approval Round Reset",
                    "document",
                    document_id,
                    actor_id=requested_by_id,
                    details={
                        "round_id": previous.id,
                        "mode": previous.mode.value,
                        "discarded_approvers": [a.user_id for a in previous.approvers],
                    },
                )
                self.repo.delete_round(previous)

            round = self.repo.create_round(
                ApprovalRound(
                    document_id=document_id,
                    mode=coerce_mode(mode),
                    state=RoundState.AWAITING_DECISIONS,
                    resolved=False,
                    requested_by_id=requested_by_id,
                ),
                [
                    Approver(
                        user_id=plan.user_id,
                        order_index=plan.order_index,
                        status=ApproverStatus.PENDING,
                    )
                    for plan in plans
                ],
            )
            document.priority = priority
            document.status = derive_document_status(round.state)
            self.repo.add_audit_log(
                "Approval Workflow Configured",
                "document",
                document_id,
                actor_id=requested_by_id,
                details={
                    "round_id": round.id,
                    "mode": round.mode.value,
                    "priority": priority.value,
                    "approvers": [
                        {"user_id": plan.user_id, "order_index": plan.order_index}
                        for plan in plans
                    ],
                },
            )
            self.repo.commit()
        except IntegrityError as exc:
            self.repo.rollback()
            logger.warning(
                "Concurrent configuration of document %s lost the race", document_id
            )
            raise Conflict(
                f"Document {document_id} already has an unresolved round; reload and retry"
            ) from exc
        except ServiceError:
            self.repo.rollback()
            raise
        except Exception:
            logger.exception("Configuring approvers for document %s failed", document_id)
            self.repo.rollback()
            raise

        self.repo.refresh(round)
        logger.info(
            "Configured %s round %s for document %s with %d approvers",
            round.mode.value,
            round.id,
            document_id,
            len(plans),
        )
        return round

    # --- Queries ---

    def get_approvers_for_document(self, document_id: int) -> List[ApproverView]:
        self._get_document(document_id)
        round = self.repo.get_latest_round(document_id)
        if round is None:
            return []

        machine = ApprovalStateMachine(round)
        approvers = machine.ordered_approvers()
        users = self.repo.get_users(a.user_id for a in approvers)
        views = []
        for approver in approvers:
            user = users.get(approver.user_id)
            name = display_name(user, approver.user_id)
            views.append(
                ApproverView(
                    id=approver.id,
                    user_id=approver.user_id,
                    name=name,
                    email=user.email if user else None,
                    initials=initials_for(name),
                    order_index=approver.order_index,
                    status=approver.status,
                    comment=approver.comment,
                    decided_at=approver.decided_at,
                    is_current_turn=machine.can_decide(approver),
                )
            )
        return views

    def get_approval_mode(self, document_id: int) -> ApprovalMode:
        self._get_document(document_id)
        round = self.repo.get_latest_round(document_id)
        if round is None:
            return ApprovalMode.SEQUENTIAL
        return ApprovalMode(round.mode)

    def get_approval_status(self, document_id: int) -> Optional[RoundSummary]:
        self._get_document(document_id)
        round = self.repo.get_latest_round(document_id)
        if round is None:
            return None
        return ApprovalStateMachine(round).summary()

    def get_pending_for_user(self, user_id: str) -> List[PendingApproval]:
        """Documents the user can decide on right now."""
        results = []
        for entry in self.repo.get_pending_entries_for_user(user_id):
            round = entry.round
            if not ApprovalStateMachine(round).can_decide(entry):
                continue
            document = round.document
            results.append(
                PendingApproval(
                    document_id=document.id,
                    project_id=document.project_id,
                    filename=document.filename,
                    doc_type=document.doc_type,
                    lifecycle_step=document.lifecycle_step.value,
                    priority=document.priority,
                    mode=round.mode,
                    round_id=round.id,
                    requested_at=round.created_at,
                )
            )
        return results

    def get_completed_for_user(self, user_id: str) -> List[Approver]:
        return self.repo.get_decided_entries_for_user(user_id)

    # --- Decisions ---

    def approve(
        self, document_id: int, acting_user_id: str, comment: Optional[str] = None
    ) -> DecisionOutcome:
        return self._decide(document_id, acting_user_id, ApproverStatus.APPROVED, comment)

    def decline(
        self, document_id: int, acting_user_id: str, comment: Optional[str] = None
    ) -> DecisionOutcome:
        return self._decide(document_id, acting_user_id, ApproverStatus.DECLINED, comment)

    def _decide(
        self,
        document_id: int,
        acting_user_id: str,
        decision: ApproverStatus,
        comment: Optional[str],
    ) -> DecisionOutcome:
        try:
            document = self._get_document(document_id)
            round = self.repo.get_latest_round(document_id, for_update=True)
            if round is None:
                raise NotAnApprover(
                    f"Document {document_id} has no approval round",
                    meta={"user_id": acting_user_id},
                )

            entry = next((a for a in round.approvers if a.user_id == acting_user_id), None)
            if entry is None:
                raise NotAnApprover(
                    f"User '{acting_user_id}' is not an approver for document {document_id}"
                )
            if entry.status is not ApproverStatus.PENDING:
                raise AlreadyDecided(
                    f"User '{acting_user_id}' has already recorded a decision "
                    f"({entry.status.value}) for document {document_id}"
                )

            machine = ApprovalStateMachine(round)
            try:
                outcome = machine.record_decision(entry.id, decision, comment)
            except OutOfTurn as exc:
                raise NotYourTurn(
                    f"It is not {acting_user_id}'s turn to decide on document {document_id}",
                    meta=exc.meta,
                ) from exc

            self._apply_outcome(document, round, outcome, acting_user_id)
            self.repo.commit()
        except StaleDataError as exc:
            self.repo.rollback()
            logger.warning(
                "Concurrent decision on document %s lost the race for %s",
                document_id,
                acting_user_id,
            )
            raise Conflict(
                f"Document {document_id} was updated concurrently; reload and retry"
            ) from exc
        except ServiceError as exc:
            self.repo.rollback()
            logger.warning(
                "Decision by %s on document %s refused: %s",
                acting_user_id,
                document_id,
                exc.message,
            )
            raise
        except Exception:
            self.repo.rollback()
            logger.exception("Recording decision on document %s failed", document_id)
            raise

        logger.info(
            "User %s %s document %s; round %s is %s",
            acting_user_id,
            decision.value.lower(),
            document_id,
            round.id,
            outcome.round_state.value,
        )
        return outcome

    def _apply_outcome(
        self,
        document: Document,
        round: ApprovalRound,
        outcome: DecisionOutcome,
        acting_user_id: str,
    ) -> None:
        previous_step = document.lifecycle_step
        document.status = outcome.document_status

        self.repo.add_audit_log(
            "Document Approved"
            if outcome.approver.status is ApproverStatus.APPROVED
            else "Document Declined",
            "document",
            document.id,
            actor_id=acting_user_id,
            details={
                "round_id": round.id,
                "lifecycle_step": previous_step.value,
                "comment": outcome.approver.comment or "",
            },
        )

        if outcome.round_state is RoundState.APPROVED:
            document.lifecycle_step = advance(previous_step)
            project = document.project
            if project is not None and project.status == previous_step:
                project.status = advance(previous_step)
            self.repo.add_audit_log(
                "Document Fully Approved",
                "document",
                document.id,
                actor_id=acting_user_id,
                details={
                    "round_id": round.id,
                    "from_step": previous_step.value,
                    "to_step": document.lifecycle_step.value,
                    "total_approvers": len(round.approvers),
                },
            )
        elif outcome.round_state is RoundState.REJECTED:
            self.repo.add_audit_log(
                "Document Rejected",
                "document",
                document.id,
                actor_id=acting_user_id,
                details={
                    "round_id": round.id,
                    "skipped": [
                        a.user_id for a in round.approvers if a.status is ApproverStatus.SKIPPED
                    ],
                },
            )

    # --- Helpers ---

    def _get_document(self, document_id: int) -> Document:
        document = self.repo.get_document(document_id)
        if document is None:
            raise NotFound(f"Document {document_id} not found")
        return document

