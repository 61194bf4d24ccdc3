# tests/test_validators.py
import pytest

from constants.types import Step
from engine.extractors import (
    ConfirmationReply,
    UTTERANCE_HIGH,
    UTTERANCE_LOW,
    extract,
    extract_address,
    extract_name,
    extract_phone,
    parse_confirmation_response,
    spoken_digits,
    strip_confirmation_words,
)
from engine.state import ConversationState, RejectReason, Slot
from engine.validators import check_type, format_phone, is_time_expression, looks_like_phone


TIME = Step(id="time", field_key="time", type="time")
ADDRESS = Step(id="address", field_key="address", type="address")


@pytest.mark.parametrize("value, reason", [
    ("12155 Metro Parkway", RejectReason.street_suffix_in_time),
    ("12155", RejectReason.bare_number_in_time),
    ("purple", RejectReason.unrecognized_time),
])
def test_time_rejections(value, reason):
    assert check_type(TIME, "time", value).reason == reason


def test_time_accepts_ordinary_preferences():
    for value in ("tomorrow morning", "Tuesday at 3 pm", "as soon as possible", "next week"):
        assert check_type(TIME, "time", value).valid, value


def test_time_refuses_the_stored_address():
    state = ConversationState(slots={"address": Slot(value="Metro Center Mall")})
    outcome = check_type(TIME, "time", "metro center mall", state)
    assert outcome.reason == RejectReason.address_in_time
    # a whole-word run of the address is still refused
    assert check_type(TIME, "time", "metro center", state).reason == RejectReason.address_in_time


def test_time_matching_digits_inside_the_address_is_accepted():
    state = ConversationState(slots={"address": Slot(value="2110 Amsterdam Ave, New York, NY")})
    assert check_type(TIME, "time", "10 am", state).valid
    assert check_type(TIME, "time", "tomorrow at 10 am", state).valid


def test_address_rules():
    assert check_type(ADDRESS, "address", "12155 Metro Parkway").valid
    assert check_type(ADDRESS, "address", "tomorrow morning").reason == RejectReason.implausible_address
    assert check_type(ADDRESS, "address", "512 555 1234").reason == RejectReason.implausible_address


def test_step_rules_follow_type_rules():
    step = Step(id="name", field_key="name", type="name", validation={"min_length": 3})
    assert check_type(step, "name", "Al").reason == RejectReason.too_short
    gate = Step(id="gate_code", field_key="gate_code", type="text", validation={"pattern": r"^\d{4}$"})
    assert check_type(gate, "gate_code", "12a4").reason == RejectReason.pattern_mismatch


def test_phone_shape_helpers():
    assert looks_like_phone("555-123-4567")
    assert not looks_like_phone("12155 Metro Parkway")
    assert format_phone("15125551234") == "(512) 555-1234"
    assert is_time_expression("Friday afternoon")


def test_name_extraction():
    got = extract_name("my name is Mark")
    assert got.value == "Mark" and got.confidence == UTTERANCE_HIGH
    assert extract_name("uh, it's mary-jane o'neil").value == "Mary-Jane O'Neil"
    assert extract_name("yes") is None
    assert extract_name("I'm calling about my furnace") is None
    rambling = extract_name("Mark is what people call me")
    assert rambling.value == "Mark" and rambling.confidence == UTTERANCE_LOW


def test_phone_extraction():
    assert extract_phone("it's 512 555 1234").value == "(512) 555-1234"
    assert spoken_digits("five one two") == "512"
    partial = extract_phone("five one two")
    assert partial.partial and partial.value == "512"


def test_address_extraction_drops_lead_in():
    got = extract_address("my address is 12155 Metro Parkway.")
    assert got.value == "12155 Metro Parkway"
    assert got.confidence == UTTERANCE_HIGH


def test_confirmation_parsing():
    assert parse_confirmation_response("Yeah, that's right") == ConfirmationReply.yes
    assert parse_confirmation_response("no, that's not right") == ConfirmationReply.no
    assert parse_confirmation_response("not quite") == ConfirmationReply.no
    assert parse_confirmation_response("hmm") == ConfirmationReply.unclear
    assert strip_confirmation_words("no, it's 555 222 3333") == "it's 555 222 3333"


def test_select_synonyms():
    step = Step(id="property_type", field_key="property_type", type="select",
                options={"choices": ["house", "apartment", "commercial"]})
    assert extract(step, "it's my office").value == "commercial"
    assert extract(step, "a boat") is None
