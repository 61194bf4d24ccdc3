from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from common.config_loader import TenantConfig, load_tenant_config
from constants.flow_defs import build_default_flow, step_from_dict
from constants.types import Flow, Step, StepType, unconfigured_flow

logger = logging.getLogger("booking-engine")

_KNOWN_TYPES = {t.value for t in StepType}
# fallback sort position for slots without an explicit order
_NO_ORDER = 999


def _sort_key(slot: Dict[str, Any]):
    order = slot.get("order")
    order = order if isinstance(order, int) else _NO_ORDER
    return (order, 0 if slot.get("required", True) is not False else 1)


def _normalize_slot(slot: Dict[str, Any], position: int) -> Dict[str, Any]:
    """Map a tenant booking slot (as authored in YAML) onto Step fields."""
    slot_id = slot.get("id") or slot.get("slot_id") or slot.get("field_key") or slot.get("type")
    if not slot_id:
        raise ValueError("slot has no id, field_key or type")
    slot_type = slot.get("type") or slot_id
    if slot_type not in _KNOWN_TYPES:
        logger.warning("[FlowResolver] slot %s has unknown type %r; treating as text", slot_id, slot_type)
        slot_type = StepType.text.value

    validation = slot.get("validation") or {}
    if isinstance(validation, str):
        # a bare string in the UI is a custom regex
        validation = {"pattern": validation}

    data: Dict[str, Any] = {
        "id": slot_id,
        "field_key": slot.get("field_key") or slot_id,
        "type": slot_type,
        "label": slot.get("label"),
        "required": slot.get("required", True) is not False,
        "order": slot["order"] if isinstance(slot.get("order"), int) else position,
        "validation": validation,
        "options": slot.get("options") or {},
    }
    for key in ("confirm_prompt", "condition", "max_attempts"):
        if slot.get(key) is not None:
            data[key] = slot[key]
    prompt = slot.get("question") or slot.get("prompt")
    reprompt = slot.get("reprompt") or slot.get("confirm_prompt")
    if prompt:
        data["prompt"] = prompt
    if reprompt:
        data["reprompt"] = reprompt
    return data


def build_steps(slots: List[Dict[str, Any]]) -> List[Step]:
    steps: List[Step] = []
    for position, slot in enumerate(sorted(slots, key=_sort_key), start=1):
        if not isinstance(slot, dict):
            logger.warning("[FlowResolver] ignoring non-mapping slot %r", slot)
            continue
        try:
            steps.append(step_from_dict(_normalize_slot(slot, position)))
        except (ValueError, ValidationError) as e:
            logger.warning("[FlowResolver] ignoring invalid slot %r: %s", slot.get("id") or slot.get("type"), e)
    return steps


class FlowResolver:
    """
    Turns a tenant's booking configuration into a Flow.

    Fails closed: a tenant with no usable booking slots gets the zero-step
    `unconfigured` flow, which the engine answers with a transfer. The stock
    flow is only returned when the host passes allow_default=True.
    """

    def __init__(self, cfg: Optional[Dict[str, Any]] = None, *, allow_default: bool = False):
        self.cfg = cfg
        self.allow_default = allow_default

    def resolve(self, tenant_context: Union[TenantConfig, str, None]) -> Flow:
        tenant = tenant_context
        if isinstance(tenant_context, str):
            tenant = load_tenant_config(tenant_context, self.cfg)
        tenant_id = tenant.tenant_id if isinstance(tenant, TenantConfig) else (
            tenant_context if isinstance(tenant_context, str) else None
        )

        if not isinstance(tenant, TenantConfig) or not tenant.booking.enabled:
            return self._fallback(tenant_id, "no booking configuration")

        steps = build_steps(tenant.booking.slots)
        if not steps:
            return self._fallback(tenant_id, "no usable booking slots")

        booking = tenant.booking
        extra: Dict[str, Any] = {}
        if booking.confirmation_template:
            extra["confirmation_template"] = booking.confirmation_template
        if booking.completion_template:
            extra["completion_template"] = booking.completion_template
        flow = Flow(
            flow_id=f"{tenant.tenant_id}_booking",
            flow_name=f"{tenant.name or tenant.tenant_id} Booking",
            steps=tuple(steps),
            source="tenant_config",
            tenant_id=tenant.tenant_id,
            trade=tenant.trade,
            service_type=booking.service_type,
            **extra,
        )
        logger.info("[FlowResolver] tenant=%s flow=%s steps=%s",
                    tenant.tenant_id, flow.flow_id, [s.field_key for s in flow.steps])
        return flow

    def _fallback(self, tenant_id: Optional[str], why: str) -> Flow:
        if self.allow_default:
            logger.warning("[FlowResolver] tenant=%s %s; using default flow (explicitly allowed)", tenant_id, why)
            return build_default_flow(tenant_id)
        logger.error("[FlowResolver] tenant=%s %s; booking is unavailable", tenant_id, why)
        return unconfigured_flow(tenant_id)


def resolve(tenant_context: Union[TenantConfig, str, None], cfg: Optional[Dict[str, Any]] = None) -> Flow:
    return FlowResolver(cfg).resolve(tenant_context)
