"""
Decision procedure: given the flow and the slot store, pick the next thing to do.

    next_action(flow, state) -> None | NextAction(step, mode, reason)

Steps are scanned in order. A passed step is never revisited for confirmation:
if it holds a value it is silently confirmed (forward-only). `None` means every
participating required step is satisfied and the terminal check may run.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from common.config_loader import EngineSettings
from constants.types import Flow, Step, StepCondition, StepType
from constants.vocab import SIMILAR_NAME_GROUPS, US_STATES
from .state import ConversationState, Slot, SlotSource, has_value

logger = logging.getLogger("booking-engine")

# sources that count as the caller saying it directly, in this flow
DIRECT_SOURCES = frozenset({SlotSource.utterance, SlotSource.pre_extracted, SlotSource.calendar})

STATE_ABBREVS = frozenset(US_STATES.values())


class Mode(str, Enum):
    COLLECT = "COLLECT"
    CONFIRM = "CONFIRM"
    COLLECT_DETAILS = "COLLECT_DETAILS"


class DetailReason(str, Enum):
    SPELLING = "SPELLING"
    MISSING_LAST_NAME = "MISSING_LAST_NAME"
    MISSING_CITY_STATE = "MISSING_CITY_STATE"


@dataclass(frozen=True)
class NextAction:
    step: Step
    mode: Mode
    reason: Optional[DetailReason] = None
    existing_value: Any = None


# ---------------- conditions ----------------

def _lookup(state: ConversationState, path: str) -> Any:
    if path.startswith("collected."):
        return state.value_of(path[len("collected."):])
    cur: Any = state
    for part in path.split("."):
        if cur is None:
            return None
        if isinstance(cur, dict):
            cur = cur.get(part)
        else:
            cur = getattr(cur, part, None)
    return cur


def _norm(v: Any) -> Any:
    return v.strip().lower() if isinstance(v, str) else v


def evaluate_condition(condition: Optional[StepCondition], state: ConversationState) -> bool:
    if condition is None:
        return True
    actual = _lookup(state, condition.state_key)
    if condition.in_ is not None:
        return _norm(actual) in {_norm(x) for x in condition.in_}
    if condition.not_null:
        return actual is not None and actual != ""
    if condition.equals is not None:
        return _norm(actual) == _norm(condition.equals)
    return bool(actual)


def participates(step: Step, state: ConversationState) -> bool:
    return step.required and evaluate_condition(step.condition, state)


# ---------------- detail checks ----------------

def similar_names(first: str) -> tuple:
    key = (first or "").lower()
    for group in SIMILAR_NAME_GROUPS:
        if key in group:
            return tuple(n for n in group if n != key)
    return ()


def spelling_is_ambiguous(first: str) -> bool:
    letters = re.sub(r"[^A-Za-z]", "", first or "")
    return bool(letters) and (len(letters) <= 3 or bool(similar_names(letters)))


def address_has_city_state(value: Any, state: ConversationState) -> bool:
    validation = state.address_validation or {}
    comps = validation.get("components") or {}
    if comps.get("city") and comps.get("state"):
        return True
    text = str(value or "")
    parts = [p.strip() for p in text.split(",") if p.strip()]
    if len(parts) >= 2:
        return True
    # "... austin texas 78758" / "... Austin TX": state at the very end only
    tail = text.strip().rstrip(".")
    low = tail.lower()
    if any(re.search(r"\b" + re.escape(name) + r"(?:\s+\d{5}(?:-\d{4})?)?$", low) for name in US_STATES):
        return True
    m = re.search(r"\b([A-Z]{2})(?:\s+\d{5}(?:-\d{4})?)?$", tail)
    return bool(m and m.group(1) in STATE_ABBREVS)


def needs_detail(step: Step, slot: Slot, state: ConversationState, settings: EngineSettings) -> Optional[DetailReason]:
    value = str(slot.value or "").strip()
    opts = step.options
    if step.type == StepType.name:
        if opts.ask_full_name and opts.ask_missing_name_part and len(value.split()) == 1 and not slot.immutable:
            return DetailReason.MISSING_LAST_NAME
        if opts.confirm_spelling and spelling_is_ambiguous(value.split()[0] if value else ""):
            return DetailReason.SPELLING
        return None
    if step.type == StepType.first_name and opts.confirm_spelling and spelling_is_ambiguous(value):
        return DetailReason.SPELLING
    if step.type == StepType.address and settings.require_city_state:
        if not address_has_city_state(value, state):
            return DetailReason.MISSING_CITY_STATE
    return None


# ---------------- next action ----------------

def next_action(flow: Flow, state: ConversationState, settings: Optional[EngineSettings] = None) -> Optional[NextAction]:
    settings = settings or EngineSettings()
    current_idx = flow.index_of(state.current_step_id)

    for idx, step in enumerate(flow.steps):
        if not participates(step, state):
            continue
        slot = state.get(step.field_key)
        if slot is not None and slot.confirmed and has_value(slot):
            continue

        if has_value(slot) and 0 <= idx < current_idx:
            # forward-only: a passed step is never brought back for confirmation
            slot.confirmed = True
            logger.debug("[Decision] forward-only confirm of %s", step.id)
            continue

        if not has_value(slot):
            return NextAction(step=step, mode=Mode.COLLECT)

        reason = needs_detail(step, slot, state, settings)
        if reason is not None:
            return NextAction(step=step, mode=Mode.COLLECT_DETAILS, reason=reason, existing_value=slot.value)

        if slot.source in DIRECT_SOURCES and slot.confidence >= settings.auto_confirm_threshold:
            slot.confirmed = True
            logger.debug("[Decision] auto-confirm %s conf=%.2f", step.id, slot.confidence)
            continue

        return NextAction(step=step, mode=Mode.CONFIRM, existing_value=slot.value)

    return None
