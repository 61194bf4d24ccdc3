# tests/test_flow_resolver.py
from common.config_loader import BookingConfig, TenantConfig
from services.flow_resolver import FlowResolver, build_steps, resolve

CFG = {
    "tenants": {
        "acme": {
            "name": "Acme Heating",
            "trade": "hvac",
            "booking": {
                "service_type": "hvac",
                "confirmation_template": "So {name} at {address}. Right?",
                "slots": [
                    {"id": "address", "type": "address", "order": 3, "question": "Where should we send the tech?"},
                    {"id": "name", "type": "name", "order": 1},
                    {"id": "phone", "type": "phone", "order": 2},
                    {"id": "gate_code", "type": "text", "order": 4, "validation": r"^\d{4}$", "required": False},
                    {"id": "notes", "type": "wiring", "order": 5},
                    {"label": "no id at all"},
                ],
            },
        },
        "empty": {"booking": {"slots": []}},
        "broken": {"engine": {"max_attempts": 0}},
    }
}


def test_tenant_slots_become_an_ordered_flow():
    flow = FlowResolver(CFG).resolve("acme")

    assert flow.flow_id == "acme_booking"
    assert flow.source == "tenant_config"
    assert flow.service_type == "hvac"
    assert flow.confirmation_template == "So {name} at {address}. Right?"
    assert [s.id for s in flow.steps] == ["name", "phone", "address", "gate_code", "notes"]


def test_prompts_come_from_the_slot_then_the_defaults():
    flow = resolve("acme", CFG)
    address, name = flow.step_by_id("address"), flow.step_by_id("name")

    assert address.prompt == "Where should we send the tech?"
    assert address.reprompt.startswith("I want to make sure I have the right address")
    assert name.prompt == "May I have your name, please?"


def test_slot_details_are_normalized():
    flow = resolve("acme", CFG)
    gate = flow.step_by_id("gate_code")

    assert not gate.required
    assert gate.validation.pattern == r"^\d{4}$"
    assert flow.step_by_id("notes").type == "text"


def test_required_slot_sorts_first_on_a_tie():
    steps = build_steps([
        {"id": "email", "type": "email", "order": 2, "required": False},
        {"id": "phone", "type": "phone", "order": 2},
        {"id": "name", "type": "name"},
    ])
    assert [s.id for s in steps] == ["phone", "email", "name"]


def test_fails_closed_without_booking_config():
    for tenant in ("ghost", "empty", "broken", None):
        flow = FlowResolver(CFG).resolve(tenant)
        assert flow.source == "unconfigured"
        assert not flow.is_configured


def test_default_flow_only_when_explicitly_allowed():
    flow = FlowResolver(CFG, allow_default=True).resolve("ghost")
    assert flow.source == "default"
    assert flow.tenant_id == "ghost"
    assert flow.step_by_id("time") is not None


def test_disabled_booking_is_unconfigured():
    tenant = TenantConfig(tenant_id="acme", booking=BookingConfig(enabled=False, slots=[{"id": "name"}]))
    assert FlowResolver().resolve(tenant).source == "unconfigured"

    tenant = TenantConfig(tenant_id="acme", booking=BookingConfig(slots=[{"id": "name", "type": "name"}]))
    assert FlowResolver().resolve(tenant).flow_id == "acme_booking"
