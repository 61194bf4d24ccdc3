"""
Terminal invariant check.

Runs right before the summary read-back. Every participating required slot is
re-validated against its type rule using its final stored value. The first bad
slot is cleared and the flow is rewound to it, so the caller is asked again
instead of hearing an invalid value read back.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Optional

from constants.types import Flow, StepType
from .decision import participates
from .identity import DEFAULT_POLICY, IdentityKind, IdentityPolicy, check_identity
from .state import ConversationState, RejectReason
from .validators import check_type

logger = logging.getLogger("booking-engine")


@dataclass(frozen=True)
class Violation:
    step_id: str
    field_key: str
    value: Any
    reason: RejectReason


def run_terminal_check(
    flow: Flow,
    state: ConversationState,
    policy: Optional[IdentityPolicy] = None,
) -> List[Violation]:
    policy = policy or DEFAULT_POLICY
    for step in flow.steps:
        if not participates(step, state):
            continue
        value = state.value_of(step.field_key)
        reason = None
        outcome = check_type(step, step.field_key, value, state)
        if not outcome.valid:
            reason = outcome.reason
        elif step.is_name:
            reason = check_identity(IdentityKind.name, value, policy)
        if reason is None:
            continue

        violation = Violation(step_id=step.id, field_key=step.field_key, value=value, reason=reason)
        logger.warning("[Terminal] %s failed %s at confirmation time; rewinding", step.field_key, reason.value)
        state.clear(step.field_key)
        if step.type == StepType.address:
            state.address_validation = None
            state.address_needs_unit = False
        elif step.type == StepType.time:
            state.selected_slot = None
        state.current_step_id = step.id
        return [violation]
    return []
