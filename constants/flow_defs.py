from __future__ import annotations
from typing import Any, Dict, Optional

from .types import Flow, Step
from .flows import FLOWS as FLOW_DEFS, DEFAULT_STEP_PROMPTS


def step_from_dict(raw: Dict[str, Any]) -> Step:
    data = dict(raw)
    prompts = DEFAULT_STEP_PROMPTS.get(data["field_key"], {})
    data.setdefault("prompt", prompts.get("prompt"))
    data.setdefault("reprompt", prompts.get("reprompt"))
    return Step.model_validate(data)


def build_default_flow(tenant_id: Optional[str] = None, flow_key: str = "BOOK") -> Flow:
    """The stock booking flow. Only used when a host asks for it explicitly."""
    spec = FLOW_DEFS[flow_key]
    return Flow(
        flow_id="default_booking_v2",
        flow_name="Default Booking Flow",
        steps=tuple(step_from_dict(s) for s in spec["steps"]),
        confirmation_template=spec["templates"]["confirmation"],
        completion_template=spec["templates"]["completion"],
        source="default",
        tenant_id=tenant_id,
    )
