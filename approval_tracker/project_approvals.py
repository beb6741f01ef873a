"""Project approvers and lifecycle status change requests.

A project with standing approvers cannot change its lifecycle step directly:
the change is raised as a request, snapshotting the approvers and the
project's approval mode, and decided with the same rules as a document round.
Without approvers the step is updated straight away.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from approval_tracker.approval_service import ApproverView, display_name
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
from approval_tracker.lifecycle import LifecycleStep
from approval_tracker.models import (
    ApprovalMode,
    ApproverStatus,
    Project,
    ProjectApprover,
    RoundState,
    StatusChangeApprover,
    StatusChangeRequest,
    initials_for,
)
from approval_tracker.repository import ApprovalRepository
from approval_tracker.state_machine import (
    ApprovalStateMachine,
    RoundSummary,
    coerce_mode,
    plan_approvers,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatusChangeResult:
    project: Project
    request: Optional[StatusChangeRequest]

    @property
    def requires_approval(self) -> bool:
        return self.request is not None


@dataclass(frozen=True)
class PendingStatusChange:
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


def coerce_step(step) -> LifecycleStep:
    try:
        return LifecycleStep(step)
    except ValueError:
        raise InvalidConfiguration(
            f"Unknown lifecycle step '{step}'",
            meta={"allowed": [s.value for s in LifecycleStep]},
        ) from None


class ProjectApprovalService:
    def __init__(self, repository: ApprovalRepository):
        self.repo = repository

    # --- Approvers ---

    def configure_approvers(
        self,
        project_id: int,
        approver_user_ids: Sequence[str],
        mode=ApprovalMode.SEQUENTIAL,
        actor_id: Optional[str] = None,
    ) -> List[ApproverView]:
        """Replace the project's standing approvers.

        A status change request already pending keeps the approvers it was
        raised with.
        """
        project = self._get_project(project_id)
        plans = plan_approvers(approver_user_ids, mode)
        users = self.repo.get_users(plan.user_id for plan in plans)
        missing = [plan.user_id for plan in plans if plan.user_id not in users]
        if missing:
            raise InvalidConfiguration("Unknown approver users", meta={"missing": missing})

        try:
            project.approval_mode = coerce_mode(mode)
            self.repo.replace_project_approvers(
                project,
                [
                    ProjectApprover(user_id=plan.user_id, order_index=plan.order_index)
                    for plan in plans
                ],
            )
            self.repo.add_audit_log(
                "Project Approvers Configured",
                "project",
                project_id,
                actor_id=actor_id,
                details={
                    "mode": project.approval_mode.value,
                    "approver_count": len(plans),
                    "approver_names": ", ".join(
                        display_name(users[plan.user_id], plan.user_id) for plan in plans
                    ),
                },
            )
            self.repo.commit()
        except Exception:
            logger.exception("Configuring approvers for project %s failed", project_id)
            self.repo.rollback()
            raise

        logger.info(
            "Configured %d %s approvers for project %s",
            len(plans),
            project.approval_mode.value,
            project_id,
        )
        return self.get_approvers(project_id)

    def get_approvers(self, project_id: int) -> List[ApproverView]:
        """Standing approvers with their vote on the pending request, if any."""
        project = self._get_project(project_id)
        active = self.repo.get_active_status_request(project_id)
        machine = ApprovalStateMachine(active) if active is not None else None
        entries = {a.user_id: a for a in active.approvers} if active is not None else {}
        users = self.repo.get_users(a.user_id for a in project.approvers)

        views = []
        for approver in project.approvers:
            user = users.get(approver.user_id)
            name = display_name(user, approver.user_id)
            entry = entries.get(approver.user_id)
            views.append(
                ApproverView(
                    id=approver.id,
                    user_id=approver.user_id,
                    name=name,
                    email=user.email if user else None,
                    initials=initials_for(name),
                    order_index=approver.order_index,
                    status=entry.status if entry else ApproverStatus.PENDING,
                    comment=entry.comment if entry else None,
                    decided_at=entry.decided_at if entry else None,
                    is_current_turn=bool(entry and machine.can_decide(entry)),
                )
            )
        return views

    def remove_approver(
        self, project_id: int, approver_id: int, actor_id: Optional[str] = None
    ) -> None:
        project = self._get_project(project_id)
        approver = next((a for a in project.approvers if a.id == approver_id), None)
        if approver is None:
            raise NotFound(f"Approver {approver_id} not found on project {project_id}")

        try:
            project.approvers.remove(approver)
            for index, remaining in enumerate(project.approvers):
                remaining.order_index = index
            self.repo.add_audit_log(
                "Project Approver Removed",
                "project",
                project_id,
                actor_id=actor_id,
                details={"user_id": approver.user_id},
            )
            self.repo.commit()
        except Exception:
            logger.exception("Removing approver %s from project %s failed", approver_id, project_id)
            self.repo.rollback()
            raise

    # --- Status changes ---

    def request_status_change(
        self, project_id: int, to_status, requested_by_id: str
    ) -> StatusChangeResult:
        """Move the project to another lifecycle step, through its approvers
        when it has any."""
        to_status = coerce_step(to_status)
        if requested_by_id not in self.repo.get_users([requested_by_id]):
            raise NotFound(f"User '{requested_by_id}' not found")

        request = None
        try:
            project = self.repo.get_project(project_id, for_update=True)
            if project is None:
                raise NotFound(f"Project {project_id} not found")
            if project.archived:
                raise InvalidConfiguration(f"Project {project_id} is archived")
            if project.status == to_status:
                raise InvalidConfiguration(
                    f"Project {project_id} is already at '{to_status.value}'"
                )
            pending = self.repo.get_active_status_request(project_id)
            if pending is not None:
                raise Conflict(
                    f"Project {project_id} already has a pending status change request",
                    meta={"request_id": pending.id},
                )

            from_status = project.status
            if project.approvers:
                request = self.repo.create_status_request(
                    StatusChangeRequest(
                        project_id=project_id,
                        from_status=from_status,
                        to_status=to_status,
                        mode=project.approval_mode,
                        state=RoundState.AWAITING_DECISIONS,
                        resolved=False,
                        requested_by_id=requested_by_id,
                    ),
                    [
                        StatusChangeApprover(
                            user_id=approver.user_id,
                            order_index=approver.order_index,
                            status=ApproverStatus.PENDING,
                        )
                        for approver in project.approvers
                    ],
                )
                self.repo.add_audit_log(
                    "Status Change Requested",
                    "project",
                    project_id,
                    actor_id=requested_by_id,
                    details={
                        "from_status": from_status.value,
                        "to_status": to_status.value,
                        "request_id": request.id,
                    },
                )
            else:
                project.status = to_status
                self.repo.add_audit_log(
                    "Status Updated",
                    "project",
                    project_id,
                    actor_id=requested_by_id,
                    details={"from": from_status.value, "to": to_status.value},
                )
            self.repo.commit()
        except IntegrityError as exc:
            self.repo.rollback()
            logger.warning("Concurrent status change on project %s lost the race", project_id)
            raise Conflict(
                f"Project {project_id} already has a pending status change request"
            ) from exc
        except ServiceError as exc:
            self.repo.rollback()
            logger.warning("Status change on project %s refused: %s", project_id, exc.message)
            raise
        except Exception:
            self.repo.rollback()
            logger.exception("Status change on project %s failed", project_id)
            raise

        if request is None:
            logger.info("Project %s moved to %s", project_id, to_status.value)
        else:
            logger.info(
                "Status change request %s raised for project %s (%s)",
                request.id,
                project_id,
                to_status.value,
            )
        return StatusChangeResult(project=project, request=request)

    def get_pending_request(self, project_id: int) -> Optional[StatusChangeRequest]:
        self._get_project(project_id)
        return self.repo.get_active_status_request(project_id)

    def get_approval_status(self, project_id: int) -> Optional[RoundSummary]:
        """Summary of the project's latest status change request."""
        self._get_project(project_id)
        request = self.repo.get_latest_status_request(project_id)
        if request is None:
            return None
        return ApprovalStateMachine(request).summary()

    def get_pending_for_user(self, user_id: str) -> List[PendingStatusChange]:
        """Status change requests the user can decide on right now."""
        entries = [
            entry
            for entry in self.repo.get_pending_status_entries_for_user(user_id)
            if ApprovalStateMachine(entry.request).can_decide(entry)
        ]
        requesters = self.repo.get_users(entry.request.requested_by_id for entry in entries)
        results = []
        for entry in entries:
            request = entry.request
            project = request.project
            results.append(
                PendingStatusChange(
                    request_id=request.id,
                    project_id=project.id,
                    project_code=project.code,
                    project_title=project.title,
                    from_status=request.from_status,
                    to_status=request.to_status,
                    requested_by_id=request.requested_by_id,
                    requester_name=display_name(
                        requesters.get(request.requested_by_id), request.requested_by_id
                    ),
                    mode=request.mode,
                    requested_at=request.created_at,
                )
            )
        return results

    # --- Decisions ---

    def approve(
        self, request_id: int, acting_user_id: str, comment: Optional[str] = None
    ) -> StatusChangeRequest:
        return self._decide(request_id, acting_user_id, ApproverStatus.APPROVED, comment)

    def decline(
        self, request_id: int, acting_user_id: str, comment: Optional[str] = None
    ) -> StatusChangeRequest:
        return self._decide(request_id, acting_user_id, ApproverStatus.DECLINED, comment)

    def _decide(
        self,
        request_id: int,
        acting_user_id: str,
        decision: ApproverStatus,
        comment: Optional[str],
    ) -> StatusChangeRequest:
        try:
            request = self.repo.get_status_request(request_id, for_update=True)
            if request is None:
                raise NotFound(f"Status change request {request_id} not found")

            entry = next((a for a in request.approvers if a.user_id == acting_user_id), None)
            if entry is None:
                raise NotAnApprover(
                    f"User '{acting_user_id}' is not an approver for status change "
                    f"request {request_id}"
                )
            if entry.status is not ApproverStatus.PENDING:
                raise AlreadyDecided(
                    f"User '{acting_user_id}' has already recorded a decision "
                    f"({entry.status.value}) on status change request {request_id}"
                )

            try:
                outcome = ApprovalStateMachine(request).record_decision(
                    entry.id, decision, comment
                )
            except OutOfTurn as exc:
                raise NotYourTurn(
                    f"It is not {acting_user_id}'s turn to decide on status change "
                    f"request {request_id}",
                    meta=exc.meta,
                ) from exc

            self._apply_outcome(request, outcome.round_state, entry, acting_user_id)
            self.repo.commit()
        except StaleDataError as exc:
            self.repo.rollback()
            logger.warning(
                "Concurrent decision on status change request %s lost the race for %s",
                request_id,
                acting_user_id,
            )
            raise Conflict(
                f"Status change request {request_id} was updated concurrently; "
                "reload and retry"
            ) from exc
        except ServiceError as exc:
            self.repo.rollback()
            logger.warning(
                "Decision by %s on status change request %s refused: %s",
                acting_user_id,
                request_id,
                exc.message,
            )
            raise
        except Exception:
            self.repo.rollback()
            logger.exception("Recording decision on status change request %s failed", request_id)
            raise

        logger.info(
            "User %s %s status change request %s; request is %s",
            acting_user_id,
            decision.value.lower(),
            request_id,
            outcome.round_state.value,
        )
        return request

    def _apply_outcome(
        self,
        request: StatusChangeRequest,
        state: RoundState,
        entry: StatusChangeApprover,
        acting_user_id: str,
    ) -> None:
        transition = {
            "from_status": request.from_status.value,
            "to_status": request.to_status.value,
            "request_id": request.id,
        }
        self.repo.add_audit_log(
            "Status Change Approved"
            if entry.status is ApproverStatus.APPROVED
            else "Status Change Rejected",
            "project",
            request.project_id,
            actor_id=acting_user_id,
            details={**transition, "comment": entry.comment or ""},
        )

        if state is RoundState.APPROVED:
            request.project.status = request.to_status
            self.repo.add_audit_log(
                "Status Updated",
                "project",
                request.project_id,
                actor_id=acting_user_id,
                details={
                    "from": request.from_status.value,
                    "to": request.to_status.value,
                    "request_id": request.id,
                    "total_approvers": len(request.approvers),
                },
            )
        elif state is RoundState.REJECTED:
            self.repo.add_audit_log(
                "Status Change Request Rejected",
                "project",
                request.project_id,
                actor_id=acting_user_id,
                details={**transition, "reason": entry.comment or "No reason provided"},
            )

    # --- Helpers ---

    def _get_project(self, project_id: int) -> Project:
        project = self.repo.get_project(project_id)
        if project is None:
            raise NotFound(f"Project {project_id} not found")
        return project
