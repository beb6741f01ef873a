"""Project lifecycle steps.

A project moves through a fixed, ordered sequence of steps. Each document is
attached to one step; approving the document moves it to the following step.
"""

import enum
from typing import Optional


class LifecycleStep(str, enum.Enum):
    INITIATIVE_SUBMITTED = "Initiative Submitted"
    DEMAND_PRIORITIZED = "Demand Prioritized"
    INITIATIVE_APPROVED = "Initiative Approved"
    KICK_OFF = "Kick Off"
    ARF = "ARF"
    DEPLOYMENT_PREPARATION = "Deployment Preparation"
    RCB = "RCB"
    DEPLOYMENT = "Deployment"
    PTR = "PTR"
    GO_LIVE = "Go Live"


LIFECYCLE_STEPS: tuple[LifecycleStep, ...] = tuple(LifecycleStep)

FIRST_STEP = LIFECYCLE_STEPS[0]
FINAL_STEP = LIFECYCLE_STEPS[-1]


def step_index(step: LifecycleStep) -> int:
    return LIFECYCLE_STEPS.index(LifecycleStep(step))


def next_step(step: LifecycleStep) -> Optional[LifecycleStep]:
    """Return the step after ``step``, or None when ``step`` is the last one."""
    index = step_index(step)
    if index + 1 < len(LIFECYCLE_STEPS):
        return LIFECYCLE_STEPS[index + 1]
    return None


def advance(step: LifecycleStep) -> LifecycleStep:
    """Like next_step, but the final step advances to itself."""
    return next_step(step) or LifecycleStep(step)


def is_final(step: LifecycleStep) -> bool:
    return LifecycleStep(step) is FINAL_STEP
