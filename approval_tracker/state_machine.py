"""Approval routing state machine.

Pure logic over an approval round and its decision records. Nothing in this
module talks to the database: callers load the round, hand it to
``ApprovalStateMachine`` and persist whatever the machine mutated.

Round states::

    AWAITING_DECISIONS --(any decline)--------------> REJECTED
    AWAITING_DECISIONS --(last pending approves)----> APPROVED

Under SEQUENTIAL mode only the pending approver with the lowest
``order_index`` (ties broken by insertion order) may decide. Under PARALLEL
mode every pending approver may decide at any time.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence

from approval_tracker.errors import (
    AlreadyDecided,
    InvalidConfiguration,
    NotAnApprover,
    OutOfTurn,
    RoundClosed,
)
from approval_tracker.models import (
    ApprovalMode,
    ApprovalRound,
    Approver,
    ApproverStatus,
    DocumentStatus,
    RoundState,
)

logger = logging.getLogger(__name__)

DECISIONS = (ApproverStatus.APPROVED, ApproverStatus.DECLINED)


@dataclass(frozen=True)
class ApproverPlan:
    user_id: str
    order_index: int


@dataclass(frozen=True)
class DecisionOutcome:
    round_state: RoundState
    document_status: DocumentStatus
    approver: Approver

    @property
    def resolved(self) -> bool:
        return self.round_state is not RoundState.AWAITING_DECISIONS


@dataclass(frozen=True)
class RoundSummary:
    mode: ApprovalMode
    state: RoundState
    total: int
    approved: int
    declined: int
    skipped: int
    pending: int
    next_user_id: Optional[str]


def coerce_mode(mode) -> ApprovalMode:
    try:
        return ApprovalMode(mode)
    except ValueError:
        raise InvalidConfiguration(
            f"Unknown approval mode '{mode}'",
            meta={"allowed": [m.value for m in ApprovalMode]},
        ) from None


def coerce_decision(decision) -> ApproverStatus:
    try:
        value = ApproverStatus(decision)
    except ValueError:
        value = None
    if value not in DECISIONS:
        raise InvalidConfiguration(
            f"Decision must be one of {[d.value for d in DECISIONS]}, got '{decision}'"
        )
    return value


def plan_approvers(
    approver_user_ids: Sequence[str],
    mode,
    ordered_steps: Optional[Iterable] = None,
) -> List[ApproverPlan]:
    """Validate an approver configuration and assign order indexes.

    ``ordered_steps`` items expose ``user_id`` and a 1-based ``order`` (either
    as attributes or as mapping keys). They only matter in SEQUENTIAL mode,
    where they must name exactly the approver users and use every order from
    1 to n once.
    """
    mode = coerce_mode(mode)

    if not approver_user_ids:
        raise InvalidConfiguration("At least one approver is required")

    seen = set()
    for position, user_id in enumerate(approver_user_ids, start=1):
        if not user_id or not str(user_id).strip():
            raise InvalidConfiguration(f"Invalid approver ID at position {position}")
        if user_id in seen:
            raise InvalidConfiguration(f"Approver '{user_id}' is listed more than once")
        seen.add(user_id)

    if mode is ApprovalMode.PARALLEL:
        return [ApproverPlan(user_id, index) for index, user_id in enumerate(approver_user_ids)]
    elif mode is ApprovalMode.SEQUENTIAL:
        if not ordered_steps:
            return [ApproverPlan(user_id, index) for index, user_id in enumerate(approver_user_ids)]
        return _plan_from_steps(approver_user_ids, ordered_steps)
    raise InvalidConfiguration(f"Unknown approval mode '{mode}'")


def _step_field(step, name):
    if isinstance(step, dict):
        return step.get(name)
    return getattr(step, name, None)


def _plan_from_steps(approver_user_ids: Sequence[str], ordered_steps: Iterable) -> List[ApproverPlan]:
    steps = list(ordered_steps)
    step_users = [_step_field(step, "user_id") for step in steps]
    step_orders = [_step_field(step, "order") for step in steps]

    if len(set(step_users)) != len(step_users):
        raise InvalidConfiguration("An approver appears in more than one approval step")
    if set(step_users) != set(approver_user_ids):
        raise InvalidConfiguration(
            "Approval steps must list exactly the configured approvers",
            meta={
                "missing": sorted(set(approver_user_ids) - set(step_users)),
                "unexpected": sorted(u for u in set(step_users) - set(approver_user_ids) if u),
            },
        )
    if any(not isinstance(order, int) or isinstance(order, bool) for order in step_orders):
        raise InvalidConfiguration("Every approval step needs an integer order")
    if sorted(step_orders) != list(range(1, len(steps) + 1)):
        raise InvalidConfiguration(
            "Approval step orders must run from 1 to the number of approvers "
            "without gaps or duplicates",
            meta={"orders": sorted(step_orders)},
        )

    plans = [ApproverPlan(user, order - 1) for user, order in zip(step_users, step_orders)]
    return sorted(plans, key=lambda plan: plan.order_index)


def _turn_order(approvers: Iterable[Approver]) -> List[Approver]:
    return sorted(approvers, key=lambda a: (a.order_index, a.id is None, a.id or 0))


def derive_document_status(state: RoundState) -> DocumentStatus:
    if state is RoundState.AWAITING_DECISIONS:
        return DocumentStatus.PENDING
    elif state is RoundState.APPROVED:
        return DocumentStatus.APPROVED
    elif state is RoundState.REJECTED:
        return DocumentStatus.REJECTED
    raise ValueError(f"Unknown round state: {state}")


class ApprovalStateMachine:
    """Applies decisions to one approval round."""

    def __init__(self, round: ApprovalRound):
        self.round = round

    @property
    def mode(self) -> ApprovalMode:
        return coerce_mode(self.round.mode)

    @property
    def state(self) -> RoundState:
        return RoundState(self.round.state)

    @property
    def is_resolved(self) -> bool:
        return self.state is not RoundState.AWAITING_DECISIONS

    def ordered_approvers(self) -> List[Approver]:
        return _turn_order(self.round.approvers)

    def pending(self) -> List[Approver]:
        return [a for a in self.ordered_approvers() if a.status is ApproverStatus.PENDING]

    def next_in_turn(self) -> Optional[Approver]:
        """The approver who decides next under SEQUENTIAL mode."""
        if self.is_resolved:
            return None
        mode = self.mode
        if mode is ApprovalMode.SEQUENTIAL:
            pending = self.pending()
            return pending[0] if pending else None
        elif mode is ApprovalMode.PARALLEL:
            return None
        raise InvalidConfiguration(f"Unknown approval mode '{mode}'")

    def can_decide(self, approver: Approver) -> bool:
        if self.is_resolved or approver.status is not ApproverStatus.PENDING:
            return False
        mode = self.mode
        if mode is ApprovalMode.PARALLEL:
            return True
        elif mode is ApprovalMode.SEQUENTIAL:
            return self.next_in_turn() is approver
        raise InvalidConfiguration(f"Unknown approval mode '{mode}'")

    def find(self, approver_id: int) -> Approver:
        for approver in self.round.approvers:
            if approver.id == approver_id:
                return approver
        raise NotAnApprover(f"Approver entry {approver_id} is not part of this round")

    def record_decision(
        self,
        approver_id: int,
        decision,
        comment: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> DecisionOutcome:
        """Record one approver's vote and compute the round's next state.

        Raises:
            NotAnApprover: the entry does not belong to the round
            AlreadyDecided: the entry has already left PENDING
            RoundClosed: the round is resolved
            OutOfTurn: SEQUENTIAL mode and someone earlier is still pending
            InvalidConfiguration: the decision is not APPROVED/DECLINED
        """
        decision = coerce_decision(decision)
        approver = self.find(approver_id)

        if approver.status is not ApproverStatus.PENDING:
            raise AlreadyDecided(
                f"Approver '{approver.user_id}' has already recorded a decision "
                f"({approver.status.value})"
            )
        if self.is_resolved:
            raise RoundClosed(f"Approval round is already {self.state.value}")
        if not self.can_decide(approver):
            expected = self.next_in_turn()
            raise OutOfTurn(
                f"Approver '{approver.user_id}' must wait for earlier approvers",
                meta={"next_user_id": expected.user_id if expected else None},
            )

        now = now or datetime.now(timezone.utc)
        approver.status = decision
        approver.comment = comment
        approver.decided_at = now
        # Touching the round bumps its version so concurrent decisions collide.
        self.round.last_decision_at = now

        new_state = RoundState.AWAITING_DECISIONS
        if decision is ApproverStatus.DECLINED:
            for other in self.pending():
                other.status = ApproverStatus.SKIPPED
            new_state = RoundState.REJECTED
        elif not self.pending():
            new_state = RoundState.APPROVED

        if new_state is not RoundState.AWAITING_DECISIONS:
            self.round.state = new_state
            self.round.resolved = True
            self.round.resolved_at = now
            logger.info(
                "Approval round %s resolved as %s by %s",
                self.round.id,
                new_state.value,
                approver.user_id,
            )

        return DecisionOutcome(
            round_state=new_state,
            document_status=derive_document_status(new_state),
            approver=approver,
        )

    def summary(self) -> RoundSummary:
        approvers = self.ordered_approvers()
        counts = {status: 0 for status in ApproverStatus}
        for approver in approvers:
            counts[approver.status] += 1
        next_approver = self.next_in_turn()
        return RoundSummary(
            mode=self.mode,
            state=self.state,
            total=len(approvers),
            approved=counts[ApproverStatus.APPROVED],
            declined=counts[ApproverStatus.DECLINED],
            skipped=counts[ApproverStatus.SKIPPED],
            pending=counts[ApproverStatus.PENDING],
            next_user_id=next_approver.user_id if next_approver else None,
        )
