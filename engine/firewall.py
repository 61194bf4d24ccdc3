"""
Write firewall. Every slot mutation made by the engine goes through `set_slot`.

Checks, first failure wins (a malformed source or confidence is refused up front):
  1. type plausibility        (engine.validators.check_type)
  2. step gate                (only the field being asked about may change mid-flow)
  3. identity protection      (engine.identity, name-like fields)
  4. immutability             (confirmed+immutable slots change only by correction)

A rejection is returned as a ValidationOutcome and leaves the state untouched.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from constants.types import Flow, NAME_TYPES
from utils.logger import truncate
from .identity import DEFAULT_POLICY, IdentityKind, IdentityPolicy, check_identity, identity_kind
from .state import (
    ConversationState,
    RejectReason,
    Slot,
    SlotSource,
    ValidationOutcome,
    has_value,
    provenance_problem,
)
from .validators import check_type, type_for

logger = logging.getLogger("booking-engine")

ALIAS_GROUPS = (
    frozenset({"name", "first_name", "last_name", "full_name"}),
    frozenset({"phone", "phone_number"}),
    frozenset({"time", "date_time"}),
)


def are_aliases(a: str, b: str) -> bool:
    if a == b:
        return True
    return any(a in g and b in g for g in ALIAS_GROUPS)


def _mask(field_key: str, value: Any) -> str:
    if identity_kind(field_key) == IdentityKind.phone:
        return "***" + str(value)[-4:]
    return truncate(value, 80)


class WriteFirewall:
    def __init__(self, flow: Flow, policy: Optional[IdentityPolicy] = None):
        self.flow = flow
        self.policy = policy or DEFAULT_POLICY

    def _step_gate(self, state: ConversationState, field_key: str) -> bool:
        if not state.current_step_id or state.complete or not state.booking_mode_locked:
            return True
        current = self.flow.step_by_id(state.current_step_id)
        if current is None:
            return True
        return are_aliases(current.field_key, field_key)

    def check(
        self,
        state: ConversationState,
        field_key: str,
        raw_value: Any,
        *,
        is_correction: bool = False,
        bypass_step_gate: bool = False,
    ) -> ValidationOutcome:
        step = self.flow.step_for_field(field_key)

        outcome = check_type(step, field_key, raw_value, state)
        if not outcome.valid:
            return outcome

        if not (bypass_step_gate or is_correction) and not self._step_gate(state, field_key):
            return ValidationOutcome.reject(RejectReason.step_gate, "step_gate")

        kind = identity_kind(field_key)
        if type_for(step, field_key) in NAME_TYPES:
            kind = IdentityKind.name
        if kind == IdentityKind.name:
            reason = check_identity(kind, raw_value, self.policy)
            if reason is not None:
                return ValidationOutcome.reject(reason, "identity")

        existing = state.slots.get(field_key)
        if existing is not None and existing.confirmed and existing.immutable and not is_correction:
            return ValidationOutcome.reject(RejectReason.immutable_slot, "immutable")

        return ValidationOutcome.ok()

    def set_slot(
        self,
        state: ConversationState,
        field_key: str,
        raw_value: Any,
        *,
        source: SlotSource,
        confidence: float,
        is_correction: bool = False,
        bypass_step_gate: bool = False,
    ) -> ValidationOutcome:
        bad = provenance_problem(source, confidence)
        outcome = ValidationOutcome.reject(bad, "type") if bad is not None else self.check(
            state, field_key, raw_value, is_correction=is_correction, bypass_step_gate=bypass_step_gate
        )
        if not outcome.valid:
            logger.info(
                "[Firewall] rejected %s=%s reason=%s by=%s",
                field_key, _mask(field_key, raw_value), outcome.reason.value, outcome.rejected_by,
            )
            return outcome

        existing = state.slots.get(field_key)
        value = raw_value.strip() if isinstance(raw_value, str) else raw_value
        state.slots[field_key] = Slot(
            value=value,
            confidence=confidence,
            source=SlotSource(source),
            confirmed=is_correction,
            immutable=is_correction,
            previous_value=existing.value if has_value(existing) else None,
        )
        logger.debug(
            "[Firewall] wrote %s=%s source=%s conf=%.2f correction=%s",
            field_key, _mask(field_key, value), SlotSource(source).value, confidence, is_correction,
        )
        return outcome


def set_slot(
    state: ConversationState,
    flow: Flow,
    field_key: str,
    raw_value: Any,
    *,
    source: SlotSource,
    confidence: float,
    is_correction: bool = False,
    bypass_step_gate: bool = False,
    policy: Optional[IdentityPolicy] = None,
) -> ValidationOutcome:
    return WriteFirewall(flow, policy).set_slot(
        state,
        field_key,
        raw_value,
        source=source,
        confidence=confidence,
        is_correction=is_correction,
        bypass_step_gate=bypass_step_gate,
    )
