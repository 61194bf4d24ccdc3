# tests/test_booking_engine.py
import asyncio

import pytest

from common.config_loader import EngineSettings
from common.event_bus import EventBus
from common.models import Collaborators
from constants.types import unconfigured_flow
from engine import booking
from engine.booking import run_turn
from engine.context import TurnAction
from engine.state import ConversationState, Slot, SlotSource

from conftest import FakeGeocoder, FakeNotifier, validated

pytestmark = pytest.mark.asyncio


async def converse(flow, utterances, state=None, **kwargs):
    """Run one turn per utterance, threading the returned state through."""
    state = state or ConversationState(tenant_id="acme")
    results = []
    for text in utterances:
        result = await run_turn(flow, state, text, **kwargs)
        results.append(result)
        state = result.state
    return results


BOOKING_SCRIPT = ["", "my name is Mark", "512 555 1234", "12155 Metro Parkway, Austin, TX"]


async def test_first_turn_asks_for_name_then_phone(simple_flow):
    first, second = await converse(simple_flow, ["", "my name is Mark"])

    assert first.action == TurnAction.COLLECT
    assert first.reply == "May I have your name, please?"
    assert first.current_step == "name"

    slot = second.state.slots["name"]
    assert slot.value == "Mark"
    assert slot.source == SlotSource.utterance
    assert slot.confidence >= 0.85
    assert slot.confirmed
    assert second.current_step == "phone"
    assert second.reply == "Thanks, Mark. And what's the best phone number to reach you?"


async def test_empty_input_repeats_the_reprompt(simple_flow):
    results = await converse(simple_flow, ["", "", "", ""])

    assert results[0].reply == "May I have your name, please?"
    assert results[1].reply == "I didn't quite catch that. Could you tell me your name?"
    assert results[2].reply == results[1].reply
    assert results[3].reply == results[1].reply
    assert results[3].state.slots == {}
    assert results[3].state.attempts == {}


async def test_run_turn_does_not_mutate_the_callers_state(simple_flow, state):
    result = await run_turn(simple_flow, state, "")
    assert state.turn == 0 and state.current_step_id is None
    assert result.state.turn == 1


async def test_discovery_name_is_preconfirmed_before_anything_else(simple_flow):
    state = ConversationState(
        tenant_id="acme",
        slots={"name": Slot(value="Mark", source=SlotSource.discovery, confidence=0.7)},
    )
    first, second = await converse(simple_flow, ["", "yes"], state=state)

    assert first.action == TurnAction.CONFIRM
    assert "Mark" in first.reply
    assert "phone" not in first.reply.lower()

    name = second.state.slots["name"]
    assert name.confirmed and name.immutable
    assert second.current_step == "phone"
    assert second.reply.endswith("And what's the best phone number to reach you?")


async def test_denied_preconfirm_recollects_the_field(simple_flow):
    state = ConversationState(
        tenant_id="acme",
        slots={"name": Slot(value="Mark", source=SlotSource.caller_id, confidence=0.7)},
    )
    _, denied = await converse(simple_flow, ["", "no"], state=state)

    assert "name" not in denied.state.slots
    assert denied.reply == "Sorry about that. May I have your name, please?"


async def test_preconfirmed_value_reclassified_as_last_name(simple_flow):
    state = ConversationState(
        tenant_id="acme",
        slots={"name": Slot(value="Mark", source=SlotSource.discovery, confidence=0.7)},
    )
    _, reclassified, answered = await converse(
        simple_flow, ["", "no, that's my last name", "John"], state=state
    )

    assert reclassified.action == TurnAction.COLLECT_DETAILS
    assert "first name" in reclassified.reply
    assert answered.state.value_of("name") == "John Mark"
    assert answered.current_step == "phone"


async def test_full_booking_completes_and_sends_confirmation(simple_flow):
    notifier = FakeNotifier()
    collaborators = Collaborators(notifier=notifier)
    settings = EngineSettings(sms_enabled=True)

    results = await converse(simple_flow, BOOKING_SCRIPT + ["yes"],
                             collaborators=collaborators, settings=settings)
    summary, done = results[-2], results[-1]

    assert summary.action == TurnAction.CONFIRM
    assert "Let me confirm: I have Mark at (512) 555-1234" in summary.reply
    assert "12155 Metro Parkway, Austin, TX" in summary.reply

    assert done.action == TurnAction.COMPLETE
    assert done.is_complete
    assert done.booking.customer_name == "Mark"
    assert done.booking.customer_phone == "(512) 555-1234"
    assert not done.state.booking_mode_locked

    await asyncio.gather(*list(booking._background))
    assert [b.customer_name for b in notifier.sent] == ["Mark"]


async def test_completed_call_stays_complete(simple_flow):
    results = await converse(simple_flow, BOOKING_SCRIPT + ["yes", "hello?"])
    assert results[-1].action == TurnAction.COMPLETE
    assert results[-1].state.value_of("name") == "Mark"


async def test_correction_at_read_back_updates_the_field(simple_flow):
    results = await converse(simple_flow, BOOKING_SCRIPT + ["no, the phone number is 512 555 9999"])
    corrected = results[-1]

    assert corrected.action == TurnAction.CONFIRM
    assert corrected.state.value_of("phone") == "(512) 555-9999"
    assert "(512) 555-9999" in corrected.reply
    assert corrected.state.awaiting_final_confirmation


async def test_plain_no_at_read_back_asks_what_to_change(simple_flow):
    results = await converse(simple_flow, BOOKING_SCRIPT + ["no", "the address"])
    change, reopened = results[-2], results[-1]

    assert change.reply == EngineSettings().change_prompt
    assert reopened.action == TurnAction.COLLECT
    assert reopened.reply == "No problem. What is the service address?"
    assert "address" not in reopened.state.slots


async def test_exhausted_step_escalates(simple_flow):
    results = await converse(simple_flow, ["", "555 123 4567", "555 123 4567", "555 123 4567"])

    assert [r.action for r in results[1:3]] == [TurnAction.COLLECT, TurnAction.COLLECT]
    assert results[1].reply.startswith("Sorry, I didn't catch that.")
    last = results[-1]
    assert last.action == TurnAction.ESCALATE
    assert last.requires_transfer
    assert last.transfer_reason == "max_attempts:name"
    assert last.state.escalated and not last.state.booking_mode_locked


async def test_unconfigured_flow_requests_transfer(state):
    result = await run_turn(unconfigured_flow("acme"), state, "hi")
    assert result.action == TurnAction.ERROR
    assert result.requires_transfer
    assert result.transfer_reason == "unconfigured_flow"


async def test_pre_extracted_values_are_merged(simple_flow, state):
    result = await run_turn(simple_flow, state, "",
                            pre_extracted={"name": "Mark", "phone": "512 555 1234"})

    assert result.state.slots["name"].source == SlotSource.pre_extracted
    assert result.state.confirmed_slots == {"name", "phone"}
    assert result.reply == "What is the service address?"


async def test_pre_extracted_value_for_another_field_is_gated(simple_flow):
    first, = await converse(simple_flow, [""])
    result = await run_turn(simple_flow, first.state, "", pre_extracted={"phone": "512 555 1234"})

    assert "phone" not in result.state.slots
    assert result.debug["rejections"][0]["rejected_by"] == "step_gate"


async def test_terminal_violation_rewinds_instead_of_reading_back(default_flow):
    def ok(value):
        return Slot(value=value, confidence=1.0, confirmed=True)

    state = ConversationState(
        tenant_id="acme",
        current_step_id="time",
        slots={
            "name": ok("Mark Smith"),
            "phone": ok("(512) 555-1234"),
            "address": ok("12155 Metro Parkway, Austin, TX"),
            "time": ok("12155 Metro Parkway"),
        },
    )
    bus = EventBus()
    seen = []
    bus.on("terminal_violation", lambda payload: seen.append(payload))

    result = await run_turn(default_flow, state, "", Collaborators(events=bus))

    assert result.action == TurnAction.COLLECT
    assert "Let me confirm" not in result.reply
    assert result.reply == "I'm sorry, I need to get your preferred time again. When would work best for you?"
    assert "time" not in result.state.slots
    assert seen == [{"field_key": "time", "reason": "street_suffix_in_time"}]


async def test_geocoded_address_is_stored_formatted(simple_flow):
    geocoder = FakeGeocoder(validated("12155 Metro Pkwy, Austin, TX 78758, USA"))
    results = await converse(simple_flow, BOOKING_SCRIPT[:3] + ["12155 metro parkway"],
                             collaborators=Collaborators(address_validator=geocoder))
    last = results[-1]

    assert geocoder.calls == ["12155 metro parkway"]
    assert last.state.value_of("address") == "12155 Metro Pkwy, Austin, TX 78758, USA"
    assert last.state.address_validation["validated"]
    assert last.state.awaiting_final_confirmation


async def test_geocoder_failure_keeps_the_raw_address(simple_flow):
    geocoder = FakeGeocoder(error=RuntimeError("geocoder down"))
    results = await converse(simple_flow, BOOKING_SCRIPT,
                             collaborators=Collaborators(address_validator=geocoder))

    assert results[-1].state.value_of("address") == "12155 Metro Parkway, Austin, TX"
    assert results[-1].action == TurnAction.CONFIRM


async def test_yes_that_names_a_wrong_field_reopens_it(simple_flow):
    results = await converse(simple_flow, BOOKING_SCRIPT + ["yes, but the address is wrong"])
    reopened = results[-1]

    assert reopened.action == TurnAction.COLLECT
    assert not reopened.is_complete
    assert reopened.reply == "No problem. What is the service address?"
    assert "address" not in reopened.state.slots


async def test_yes_with_a_corrected_value_updates_it(simple_flow):
    results = await converse(simple_flow, BOOKING_SCRIPT + ["yes, but the phone number should be 512 555 9999"])
    corrected = results[-1]

    assert corrected.action == TurnAction.CONFIRM
    assert corrected.state.value_of("phone") == "(512) 555-9999"


async def test_unusable_confirmation_template_falls_back_to_the_default(simple_flow):
    flow = simple_flow.model_copy(update={"confirmation_template": "Thanks {name}! Your code is {0}."})
    results = await converse(flow, BOOKING_SCRIPT)
    summary = results[-1]

    assert summary.action == TurnAction.CONFIRM
    assert "Let me confirm: I have Mark at (512) 555-1234" in summary.reply
    assert "{0}" not in summary.reply
