"""Approval service tests against a real session."""

import pytest
from sqlalchemy import select

from approval_tracker import services
from approval_tracker.errors import (
    AlreadyDecided,
    InvalidConfiguration,
    NotAnApprover,
    NotFound,
    NotYourTurn,
    OutOfTurn,
)
from approval_tracker.lifecycle import LifecycleStep
from approval_tracker.models import (
    ApprovalMode,
    ApprovalRound,
    ApproverStatus,
    DocumentStatus,
    Priority,
    RoundState,
)


def rounds_for(db_session, document_id):
    query = (
        select(ApprovalRound)
        .where(ApprovalRound.document_id == document_id)
        .order_by(ApprovalRound.id)
    )
    return list(db_session.scalars(query).all())


def history_actions(db_session, document_id):
    return [entry.action for entry in services.get_document_history(db_session, document_id)]


class TestConfigureApprovers:
    def test_creates_pending_round(self, approval_service, db_session, document):
        round = approval_service.configure_approvers(
            document.id, ["alice", "bob"], requested_by_id="owner", priority=Priority.HIGH
        )

        assert round.mode is ApprovalMode.SEQUENTIAL
        assert round.state is RoundState.AWAITING_DECISIONS
        assert round.resolved is False
        assert [(a.user_id, a.order_index) for a in round.approvers] == [("alice", 0), ("bob", 1)]
        assert all(a.status is ApproverStatus.PENDING for a in round.approvers)

        db_session.refresh(document)
        assert document.status is DocumentStatus.PENDING
        assert document.priority is Priority.HIGH
        assert history_actions(db_session, document.id) == [
            "Document Uploaded",
            "Approval Workflow Configured",
        ]

    def test_ordered_steps(self, approval_service, document):
        round = approval_service.configure_approvers(
            document.id,
            ["alice", "bob", "carol"],
            ordered_steps=[
                {"user_id": "alice", "order": 2},
                {"user_id": "bob", "order": 3},
                {"user_id": "carol", "order": 1},
            ],
        )
        assert [a.user_id for a in round.approvers] == ["carol", "alice", "bob"]

    def test_unknown_users_are_rejected(self, approval_service, db_session, document):
        with pytest.raises(InvalidConfiguration) as exc_info:
            approval_service.configure_approvers(document.id, ["alice", "mallory"])

        assert exc_info.value.meta == {"missing": ["mallory"]}
        assert rounds_for(db_session, document.id) == []

    def test_invalid_list_leaves_document_untouched(
        self, approval_service, db_session, document
    ):
        with pytest.raises(InvalidConfiguration):
            approval_service.configure_approvers(document.id, ["alice", "alice"])

        db_session.refresh(document)
        assert document.status is DocumentStatus.DRAFT

    def test_unknown_document(self, approval_service, users):
        with pytest.raises(NotFound):
            approval_service.configure_approvers(404, ["alice"])

    def test_reconfigure_replaces_unresolved_round(
        self, approval_service, db_session, document
    ):
        approval_service.configure_approvers(document.id, ["alice", "bob"], ApprovalMode.PARALLEL)
        approval_service.approve(document.id, "alice")

        round = approval_service.configure_approvers(
            document.id, ["alice", "bob"], ApprovalMode.PARALLEL
        )

        rounds = rounds_for(db_session, document.id)
        assert [r.id for r in rounds] == [round.id]
        assert all(a.status is ApproverStatus.PENDING for a in round.approvers)
        assert "Approval Round Reset" in history_actions(db_session, document.id)

    def test_reconfigure_is_idempotent(self, approval_service, db_session, document):
        def snapshot(round):
            return [(a.user_id, a.order_index, a.status) for a in round.approvers]

        first = snapshot(approval_service.configure_approvers(document.id, ["alice", "bob"]))
        second = snapshot(approval_service.configure_approvers(document.id, ["alice", "bob"]))

        assert len(rounds_for(db_session, document.id)) == 1
        assert first == second

    def test_reconfigure_after_rejection_keeps_history(
        self, approval_service, db_session, document
    ):
        approval_service.configure_approvers(document.id, ["alice"])
        approval_service.decline(document.id, "alice", "wrong template")

        approval_service.configure_approvers(document.id, ["alice", "bob"], ApprovalMode.PARALLEL)

        rounds = rounds_for(db_session, document.id)
        assert [(r.state, r.resolved) for r in rounds] == [
            (RoundState.REJECTED, True),
            (RoundState.AWAITING_DECISIONS, False),
        ]
        assert approval_service.get_approval_mode(document.id) is ApprovalMode.PARALLEL
        db_session.refresh(document)
        assert document.status is DocumentStatus.PENDING


class TestSequentialScenario:
    def test_approve_then_decline(self, approval_service, db_session, document):
        approval_service.configure_approvers(document.id, ["alice", "bob"])

        outcome = approval_service.approve(document.id, "alice")
        assert outcome.round_state is RoundState.AWAITING_DECISIONS
        assert approval_service.get_approval_status(document.id).next_user_id == "bob"

        outcome = approval_service.decline(document.id, "bob", "scope unclear")
        assert outcome.round_state is RoundState.REJECTED
        assert outcome.document_status is DocumentStatus.REJECTED

        with pytest.raises(AlreadyDecided):
            approval_service.decline(document.id, "bob")
        with pytest.raises(AlreadyDecided):
            approval_service.approve(document.id, "alice")

        db_session.refresh(document)
        assert document.status is DocumentStatus.REJECTED
        assert document.lifecycle_step is LifecycleStep.INITIATIVE_SUBMITTED
        assert history_actions(db_session, document.id)[-3:] == [
            "Document Approved",
            "Document Declined",
            "Document Rejected",
        ]

    def test_out_of_turn_changes_nothing(self, approval_service, db_session, document):
        approval_service.configure_approvers(document.id, ["alice", "bob"])

        with pytest.raises(NotYourTurn) as exc_info:
            approval_service.approve(document.id, "bob")

        assert isinstance(exc_info.value, OutOfTurn)
        assert exc_info.value.meta == {"next_user_id": "alice"}
        summary = approval_service.get_approval_status(document.id)
        assert (summary.approved, summary.pending) == (0, 2)

    def test_decline_skips_later_approvers(self, approval_service, db_session, document):
        approval_service.configure_approvers(document.id, ["alice", "bob", "carol"])
        approval_service.decline(document.id, "alice")

        statuses = {
            view.user_id: view.status
            for view in approval_service.get_approvers_for_document(document.id)
        }
        assert statuses == {
            "alice": ApproverStatus.DECLINED,
            "bob": ApproverStatus.SKIPPED,
            "carol": ApproverStatus.SKIPPED,
        }
        with pytest.raises(AlreadyDecided):
            approval_service.approve(document.id, "carol")


class TestParallelScenario:
    def test_any_order_approves_and_advances(self, approval_service, db_session, document):
        approval_service.configure_approvers(document.id, ["alice", "bob"], ApprovalMode.PARALLEL)

        first = approval_service.approve(document.id, "bob")
        second = approval_service.approve(document.id, "alice", "looks good")

        assert first.round_state is RoundState.AWAITING_DECISIONS
        assert second.round_state is RoundState.APPROVED
        db_session.refresh(document)
        assert document.status is DocumentStatus.APPROVED
        assert document.lifecycle_step is LifecycleStep.DEMAND_PRIORITIZED
        assert document.project.status is LifecycleStep.DEMAND_PRIORITIZED
        assert history_actions(db_session, document.id)[-1] == "Document Fully Approved"

    def test_project_on_another_step_is_left_alone(
        self, approval_service, db_session, project
    ):
        doc = services.create_document(
            db_session,
            project.id,
            filename="arf.docx",
            doc_type="ARF",
            created_by_id="owner",
            lifecycle_step=LifecycleStep.ARF,
        )
        approval_service.configure_approvers(doc.id, ["alice"], ApprovalMode.PARALLEL)
        approval_service.approve(doc.id, "alice")

        db_session.refresh(doc)
        db_session.refresh(project)
        assert doc.lifecycle_step is LifecycleStep.DEPLOYMENT_PREPARATION
        assert project.status is LifecycleStep.INITIATIVE_SUBMITTED

    def test_final_step_stays_final(self, approval_service, db_session, project):
        doc = services.create_document(
            db_session,
            project.id,
            filename="go-live.pdf",
            doc_type="Go Live Checklist",
            created_by_id="owner",
            lifecycle_step=LifecycleStep.GO_LIVE,
        )
        approval_service.configure_approvers(doc.id, ["alice"])
        approval_service.approve(doc.id, "alice")

        db_session.refresh(doc)
        assert doc.lifecycle_step is LifecycleStep.GO_LIVE
        assert doc.status is DocumentStatus.APPROVED


class TestDecisionErrors:
    def test_not_an_approver(self, approval_service, document):
        approval_service.configure_approvers(document.id, ["alice"])
        with pytest.raises(NotAnApprover):
            approval_service.approve(document.id, "carol")

    def test_document_without_round(self, approval_service, document):
        with pytest.raises(NotAnApprover):
            approval_service.approve(document.id, "alice")

    def test_unknown_document(self, approval_service, users):
        with pytest.raises(NotFound):
            approval_service.decline(404, "alice")


class TestQueries:
    def test_approval_mode_defaults_to_sequential(self, approval_service, document):
        assert approval_service.get_approval_mode(document.id) is ApprovalMode.SEQUENTIAL
        assert approval_service.get_approval_status(document.id) is None
        assert approval_service.get_approvers_for_document(document.id) == []

    def test_approver_views(self, approval_service, document):
        approval_service.configure_approvers(document.id, ["bob", "alice"])

        views = approval_service.get_approvers_for_document(document.id)

        assert [(v.user_id, v.name, v.initials) for v in views] == [
            ("bob", "Bob Brown", "BB"),
            ("alice", "Alice Adams", "AA"),
        ]
        assert [v.is_current_turn for v in views] == [True, False]
        assert views[0].email == "bob@example.com"

    def test_pending_follows_the_turn(self, approval_service, document):
        approval_service.configure_approvers(document.id, ["alice", "bob"])

        assert [p.document_id for p in approval_service.get_pending_for_user("alice")] == [
            document.id
        ]
        assert approval_service.get_pending_for_user("bob") == []

        approval_service.approve(document.id, "alice")

        assert approval_service.get_pending_for_user("alice") == []
        pending = approval_service.get_pending_for_user("bob")
        assert [p.document_id for p in pending] == [document.id]
        assert pending[0].mode is ApprovalMode.SEQUENTIAL
        assert pending[0].lifecycle_step == "Initiative Submitted"

    def test_parallel_pending_for_everyone(self, approval_service, document):
        approval_service.configure_approvers(document.id, ["alice", "bob"], ApprovalMode.PARALLEL)
        assert len(approval_service.get_pending_for_user("alice")) == 1
        assert len(approval_service.get_pending_for_user("bob")) == 1

    def test_completed_lists_decided_entries(self, approval_service, document):
        approval_service.configure_approvers(document.id, ["alice", "bob"], ApprovalMode.PARALLEL)
        approval_service.decline(document.id, "alice", "no")

        completed = approval_service.get_completed_for_user("alice")
        assert [(c.status, c.comment) for c in completed] == [(ApproverStatus.DECLINED, "no")]
        # Skipped entries are not decisions.
        assert approval_service.get_completed_for_user("bob") == []
