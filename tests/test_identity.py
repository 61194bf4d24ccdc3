# tests/test_identity.py
from engine.identity import (
    DEFAULT_POLICY,
    IdentityKind,
    IdentityPolicy,
    check_identity,
    merged_stop_words,
    safe_set_identity_slot,
)
from engine.state import RejectReason, Slot, SlotSource


def test_crm_prefill_accepts_a_real_name():
    slots = {}
    res = safe_set_identity_slot(slots, "name", "Mark Smith", source=SlotSource.crm, confidence=0.85)
    assert res.accepted
    assert slots["name"].value == "Mark Smith"
    assert slots["name"].source == SlotSource.crm


def test_rejections_leave_slots_untouched():
    slots = {}
    for value, reason in (
        ("555-123-4567", RejectReason.looks_like_phone_number),
        ("yes", RejectReason.stop_word),
        ("the customer", RejectReason.stop_word),
        ("", RejectReason.empty),
    ):
        res = safe_set_identity_slot(slots, "name", value)
        assert not res.accepted
        assert res.reason == reason
    assert slots == {}


def test_identity_respects_immutability():
    slots = {"name": Slot(value="Mark", confidence=1.0, source=SlotSource.correction, confirmed=True, immutable=True)}
    assert safe_set_identity_slot(slots, "name", "Bob").reason == RejectReason.immutable_slot
    assert safe_set_identity_slot(slots, "name", "Bob", is_correction=True).accepted
    assert slots["name"].previous_value == "Mark"


def test_phone_and_address_rules():
    assert check_identity(IdentityKind.phone, "555 1234") is None
    assert check_identity(IdentityKind.phone, "12345") == RejectReason.not_enough_digits
    assert check_identity(IdentityKind.address, "555-123-4567") == RejectReason.implausible_address
    assert check_identity(IdentityKind.address, "12155 Metro Parkway") is None


def test_stop_words_are_memoised_per_tenant():
    a = IdentityPolicy.for_tenant("acme", ["plumbing", "hvac"])
    b = IdentityPolicy.for_tenant("acme", ["hvac", "plumbing"])
    assert a == b
    assert a.stop_words is b.stop_words
    assert "plumbing" in a.stop_words
    assert "plumbing" not in DEFAULT_POLICY.stop_words
    assert merged_stop_words("acme", ("hvac", "plumbing")) is a.stop_words


def test_bad_source_or_confidence_is_a_rejection():
    slots = {}
    res = safe_set_identity_slot(slots, "name", "Mark", source=SlotSource.crm, confidence=1.5)
    assert not res.accepted
    assert res.reason == RejectReason.invalid_confidence

    res = safe_set_identity_slot(slots, "name", "Mark", source="sms_reply", confidence=0.9)
    assert not res.accepted
    assert res.reason == RejectReason.invalid_source
    assert slots == {}
