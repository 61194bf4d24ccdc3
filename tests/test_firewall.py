# tests/test_firewall.py
import pytest

from engine.firewall import WriteFirewall, are_aliases, set_slot
from engine.identity import IdentityPolicy
from engine.state import ConversationState, RejectReason, Slot, SlotSource


def test_phone_shaped_name_is_rejected_and_store_unchanged(simple_flow, state):
    before = state.model_dump()

    outcome = set_slot(state, simple_flow, "name", "555-123-4567",
                       source=SlotSource.utterance, confidence=0.9)

    assert not outcome.valid
    assert outcome.reason == RejectReason.looks_like_phone_number
    assert state.model_dump() == before


def test_accepted_write_reflects_arguments(simple_flow, state):
    outcome = set_slot(state, simple_flow, "name", "  Mark  ",
                       source=SlotSource.caller_id, confidence=0.7)

    assert outcome.valid
    slot = state.slots["name"]
    assert slot.value == "Mark"
    assert slot.source == SlotSource.caller_id
    assert slot.confidence == pytest.approx(0.7)
    assert not slot.confirmed and not slot.immutable


def test_correction_marks_confirmed_and_immutable(simple_flow, state):
    set_slot(state, simple_flow, "name", "Mark", source=SlotSource.utterance, confidence=0.9)

    outcome = set_slot(state, simple_flow, "name", "Marc", source=SlotSource.correction,
                       confidence=1.0, is_correction=True)

    assert outcome.valid
    slot = state.slots["name"]
    assert slot.value == "Marc"
    assert slot.previous_value == "Mark"
    assert slot.confirmed and slot.immutable


def test_immutable_slot_only_changes_by_correction(simple_flow, state):
    state.slots["name"] = Slot(value="Mark", confidence=1.0, source=SlotSource.correction,
                               confirmed=True, immutable=True)

    outcome = set_slot(state, simple_flow, "name", "Bob", source=SlotSource.utterance, confidence=0.9)

    assert outcome.reason == RejectReason.immutable_slot
    assert outcome.rejected_by == "immutable"
    assert state.value_of("name") == "Mark"


def test_step_gate_blocks_other_fields_mid_flow(simple_flow, state):
    state.current_step_id = "phone"

    blocked = set_slot(state, simple_flow, "name", "Bob", source=SlotSource.utterance, confidence=0.9)
    allowed = set_slot(state, simple_flow, "phone", "(512) 555-1234", source=SlotSource.utterance, confidence=0.9)

    assert blocked.reason == RejectReason.step_gate
    assert "name" not in state.slots
    assert allowed.valid


def test_step_gate_bypass_and_unlocked_flow(simple_flow, state):
    state.current_step_id = "phone"
    fw = WriteFirewall(simple_flow)

    assert fw.set_slot(state, "name", "Bob", source=SlotSource.utterance, confidence=0.9,
                       bypass_step_gate=True).valid

    state.booking_mode_locked = False
    assert fw.set_slot(state, "address", "12155 Metro Parkway", source=SlotSource.utterance,
                       confidence=0.9).valid


def test_type_check_runs_before_step_gate(simple_flow, state):
    state.current_step_id = "phone"
    outcome = set_slot(state, simple_flow, "phone", "12", source=SlotSource.utterance, confidence=0.9)
    assert outcome.reason == RejectReason.not_enough_digits
    assert outcome.rejected_by == "type"


def test_name_alias_passes_gate(simple_flow, state):
    state.current_step_id = "name"
    assert are_aliases("name", "last_name")
    outcome = set_slot(state, simple_flow, "last_name", "Smith", source=SlotSource.utterance, confidence=0.9)
    assert outcome.valid


def test_tenant_stop_words_are_applied(simple_flow, state):
    policy = IdentityPolicy.for_tenant("acme", ["plumbing"])
    outcome = set_slot(state, simple_flow, "name", "plumbing", source=SlotSource.utterance,
                       confidence=0.9, policy=policy)
    assert outcome.reason == RejectReason.stop_word

    fresh = ConversationState()
    assert set_slot(fresh, simple_flow, "name", "Plumbing", source=SlotSource.utterance, confidence=0.9).valid


@pytest.mark.parametrize("source, confidence, reason", [
    (SlotSource.utterance, 1.2, RejectReason.invalid_confidence),
    (SlotSource.utterance, -0.1, RejectReason.invalid_confidence),
    (SlotSource.utterance, float("nan"), RejectReason.invalid_confidence),
    (SlotSource.utterance, "high", RejectReason.invalid_confidence),
    ("sms_reply", 0.9, RejectReason.invalid_source),
    (None, 0.9, RejectReason.invalid_source),
])
def test_bad_provenance_is_rejected_without_raising(simple_flow, state, source, confidence, reason):
    before = state.model_dump()

    outcome = set_slot(state, simple_flow, "name", "Mark", source=source, confidence=confidence)

    assert not outcome.valid
    assert outcome.reason == reason
    assert outcome.rejected_by == "type"
    assert state.model_dump() == before


def test_source_given_as_its_string_value_is_accepted(simple_flow, state):
    outcome = set_slot(state, simple_flow, "name", "Mark", source="crm", confidence=1)
    assert outcome.valid
    assert state.slots["name"].source == SlotSource.crm
