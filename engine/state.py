from __future__ import annotations
from datetime import datetime
from enum import Enum
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional, Set

from common.utils import utcnow


class SlotSource(str, Enum):
    utterance = "utterance"
    caller_id = "caller_id"
    discovery = "discovery"
    pre_extracted = "pre_extracted"
    correction = "correction"
    crm = "crm"
    manual = "manual"
    geocoder = "geocoder"
    calendar = "calendar"


# Values that reached us from outside this engine's own collection turns.
EXTERNAL_SOURCES = frozenset({SlotSource.discovery, SlotSource.caller_id, SlotSource.crm})
SOURCE_VALUES = frozenset(s.value for s in SlotSource)


class Slot(BaseModel):
    value: Any = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    source: SlotSource = SlotSource.utterance
    confirmed: bool = False
    immutable: bool = False
    updated_at: datetime = Field(default_factory=utcnow)
    previous_value: Any = None


class RejectReason(str, Enum):
    empty = "empty"
    looks_like_phone_number = "looks_like_phone_number"
    stop_word = "stop_word"
    no_letters = "no_letters"
    invalid_name_format = "invalid_name_format"
    street_suffix_in_time = "street_suffix_in_time"
    bare_number_in_time = "bare_number_in_time"
    address_in_time = "address_in_time"
    unrecognized_time = "unrecognized_time"
    not_enough_digits = "not_enough_digits"
    too_many_digits = "too_many_digits"
    implausible_address = "implausible_address"
    invalid_email = "invalid_email"
    invalid_choice = "invalid_choice"
    invalid_yes_no = "invalid_yes_no"
    too_short = "too_short"
    pattern_mismatch = "pattern_mismatch"
    step_gate = "step_gate"
    immutable_slot = "immutable_slot"
    invalid_confidence = "invalid_confidence"
    invalid_source = "invalid_source"


class ValidationOutcome(BaseModel):
    valid: bool
    reason: Optional[RejectReason] = None
    rejected_by: Optional[str] = None  # "type" | "step_gate" | "identity" | "immutable"

    @classmethod
    def ok(cls) -> "ValidationOutcome":
        return cls(valid=True)

    @classmethod
    def reject(cls, reason: RejectReason, rejected_by: str) -> "ValidationOutcome":
        return cls(valid=False, reason=reason, rejected_by=rejected_by)

    def __bool__(self) -> bool:
        return self.valid


class PendingConfirmation(BaseModel):
    field_key: str
    step_id: str
    value: Any = None


class PendingPreconfirm(BaseModel):
    field_key: str
    step_id: str
    value: Any = None
    retries: int = 0


class PendingSpellingConfirm(BaseModel):
    field_key: str
    step_id: str
    value: str
    mode: str = "letters"  # "letters" | "choice" | "spell_out"
    alternatives: List[str] = Field(default_factory=list)


class SubDialogueKind(str, Enum):
    address = "address"
    phone = "phone"
    name = "name"


class SubDialogue(BaseModel):
    kind: SubDialogueKind
    phase: str
    field_key: str
    step_id: str
    partial: Dict[str, str] = Field(default_factory=dict)
    phases: List[str] = Field(default_factory=list)
    ask_count: int = 0


class ConversationState(BaseModel):
    tenant_id: Optional[str] = None
    flow_id: Optional[str] = None
    current_step_id: Optional[str] = None
    slots: Dict[str, Slot] = Field(default_factory=dict)
    ask_count: Dict[str, int] = Field(default_factory=dict)
    attempts: Dict[str, int] = Field(default_factory=dict)

    pending_confirmation: Optional[PendingConfirmation] = None
    pending_preconfirm: Optional[PendingPreconfirm] = None
    pending_spelling_confirm: Optional[PendingSpellingConfirm] = None
    sub_dialogue: Optional[SubDialogue] = None

    address_validation: Optional[Dict[str, Any]] = None
    address_needs_unit: bool = False
    offered_slots: List[Dict[str, Any]] = Field(default_factory=list)
    selected_slot: Optional[Dict[str, Any]] = None

    preconfirm_done: bool = False
    awaiting_final_confirmation: bool = False
    awaiting_change_selection: bool = False
    booking_mode_locked: bool = True
    complete: bool = False
    escalated: bool = False
    escalation_reason: Optional[str] = None
    turn: int = 0
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    # ---- derived views (never stored) ----
    @property
    def confirmed_slots(self) -> Set[str]:
        return {k for k, s in self.slots.items() if s.confirmed and has_value(s)}

    def collected(self) -> Dict[str, Any]:
        return {k: s.value for k, s in self.slots.items() if has_value(s)}

    # ---- store access ----
    def get(self, field_key: str) -> Optional[Slot]:
        return self.slots.get(field_key)

    def value_of(self, field_key: str) -> Any:
        slot = self.slots.get(field_key)
        return slot.value if slot is not None else None

    def has(self, field_key: str) -> bool:
        slot = self.slots.get(field_key)
        return slot is not None and has_value(slot)

    def clear(self, field_key: str) -> Optional[Slot]:
        return self.slots.pop(field_key, None)

    def mark_confirmed(self, field_key: str, *, immutable: bool = False) -> None:
        slot = self.slots.get(field_key)
        if slot is None:
            return
        slot.confirmed = True
        if immutable:
            slot.immutable = True
            slot.confidence = 1.0

    def bump_ask(self, step_id: str) -> int:
        self.ask_count[step_id] = self.ask_count.get(step_id, 0) + 1
        return self.ask_count[step_id]

    def bump_attempt(self, step_id: str) -> int:
        self.attempts[step_id] = self.attempts.get(step_id, 0) + 1
        return self.attempts[step_id]

    def reset_step_counters(self, step_id: str) -> None:
        self.ask_count.pop(step_id, None)
        self.attempts.pop(step_id, None)


def has_value(slot: Optional[Slot]) -> bool:
    if slot is None or slot.value is None:
        return False
    if isinstance(slot.value, str) and not slot.value.strip():
        return False
    return True


def provenance_problem(source: Any, confidence: Any) -> Optional[RejectReason]:
    """Reason a (source, confidence) pair cannot be stored on a Slot, or None."""
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        return RejectReason.invalid_confidence
    # NaN fails both comparisons
    if not 0.0 <= confidence <= 1.0:
        return RejectReason.invalid_confidence
    if isinstance(source, SlotSource) or (isinstance(source, str) and source in SOURCE_VALUES):
        return None
    return RejectReason.invalid_source
