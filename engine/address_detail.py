"""
Address breakdown: street -> city_state -> unit.

Components are kept in `state.sub_dialogue.partial` and assembled into one
string only when every configured phase is answered. The assembled string is
geocoded (non-blocking: any failure keeps the raw string) and written through
the firewall.
"""
from __future__ import annotations

import logging
import re
from typing import Optional

from common.models import AddressConfidence, AddressValidation
from constants.types import Step
from constants.vocab import NO_UNIT_ANSWERS
from .context import HandlerResult, TurnAction, TurnContext
from .decision import address_has_city_state
from .extractors import (
    UNIT_LEAD_RE,
    UTTERANCE_HIGH,
    UTTERANCE_LOW,
    ConfirmationReply,
    clean,
    extract_address,
    parse_confirmation_response,
)
from .prompts import REASK_PREFIX, collect_prompt, join_reply
from .state import SlotSource, SubDialogue, SubDialogueKind, ValidationOutcome
from .validators import check_type, has_letters, is_time_expression, looks_like_phone

logger = logging.getLogger("booking-engine")

STREET, CITY_STATE, UNIT = "street", "city_state", "unit"
CITY_LEAD_RE = re.compile(r"^(?:it'?s\s+|that'?s\s+|we'?re\s+)?(?:in\s+|located\s+in\s+)?", re.IGNORECASE)

CONFIDENCE_BY_TIER = {
    AddressConfidence.HIGH: 0.95,
    AddressConfidence.MEDIUM: UTTERANCE_HIGH,
    AddressConfidence.LOW: UTTERANCE_LOW,
}


def assemble(partial: dict) -> str:
    parts = [partial.get(STREET), partial.get(UNIT), partial.get(CITY_STATE)]
    return ", ".join(p.strip() for p in parts if p and p.strip())


def _wants_unit(ctx: TurnContext, step: Step) -> bool:
    if step.options.ask_unit:
        return True
    # the geocoder asked for a unit and no flow step will collect it
    return ctx.state.address_needs_unit and ctx.flow.step_for_field("unit") is None


def start(ctx: TurnContext, step: Step, *, street: Optional[str] = None) -> HandlerResult:
    phases = [STREET, CITY_STATE]
    if _wants_unit(ctx, step):
        phases.append(UNIT)
    partial = {}
    phase = STREET
    if street:
        partial[STREET] = street
        phase = CITY_STATE
    ctx.state.sub_dialogue = SubDialogue(
        kind=SubDialogueKind.address,
        phase=phase,
        field_key=step.field_key,
        step_id=step.id,
        partial=partial,
        phases=phases,
    )
    ctx.state.current_step_id = step.id
    logger.info("[Address] breakdown started at %s for %s", phase, step.id)
    return HandlerResult.say(phase_prompt(ctx, step), TurnAction.COLLECT_DETAILS)


def phase_prompt(ctx: TurnContext, step: Step) -> str:
    sub = ctx.state.sub_dialogue
    if sub.phase == STREET:
        # first ask is the step's own question, repeats ask for the street explicitly
        return collect_prompt(step, ctx.state) if sub.ask_count == 0 else ctx.settings.street_prompt
    if sub.phase == CITY_STATE:
        return ctx.settings.missing_city_state_prompt
    return ctx.settings.unit_prompt


def _advance(sub: SubDialogue) -> Optional[str]:
    for phase in sub.phases:
        if phase not in sub.partial:
            return phase
    return None


def _reask(ctx: TurnContext, step: Step, *, failed: bool) -> HandlerResult:
    sub = ctx.state.sub_dialogue
    if failed and ctx.register_failure(step):
        return HandlerResult.escalate()
    sub.ask_count += 1
    prompt = phase_prompt(ctx, step)
    return HandlerResult.say(join_reply(REASK_PREFIX, prompt) if failed else prompt, TurnAction.COLLECT_DETAILS)


async def handle(ctx: TurnContext, utterance: str) -> HandlerResult:
    sub = ctx.state.sub_dialogue
    step = ctx.flow.step_by_id(sub.step_id)
    text = (utterance or "").strip()
    if not text:
        # silence: same sub-step again, never the top of the address question
        return _reask(ctx, step, failed=False)

    if sub.phase == STREET:
        got = extract_address(text)
        if got is None or not check_type(step, step.field_key, got.value, ctx.state).valid:
            return _reask(ctx, step, failed=True)
        sub.partial[STREET] = got.value
        if address_has_city_state(got.value, ctx.state):
            sub.partial[CITY_STATE] = ""
    elif sub.phase == CITY_STATE:
        city = CITY_LEAD_RE.sub("", clean(text)).strip()
        if not city or not has_letters(city) or looks_like_phone(city) or is_time_expression(city):
            return _reask(ctx, step, failed=True)
        sub.partial[CITY_STATE] = city
    else:
        sub.partial[UNIT] = _unit_from(text)
        if sub.partial[UNIT] and ctx.flow.step_for_field("unit") is not None:
            await ctx.write("unit", sub.partial[UNIT], confidence=UTTERANCE_HIGH, bypass_step_gate=True)

    nxt = _advance(sub)
    if nxt is not None:
        sub.phase = nxt
        sub.ask_count = 0
        return HandlerResult.say(phase_prompt(ctx, step), TurnAction.COLLECT_DETAILS)

    assembled = assemble(sub.partial)
    ctx.state.sub_dialogue = None
    outcome = await store_address(ctx, step, assembled, bypass_step_gate=True)
    if not outcome.valid:
        logger.warning("[Address] assembled address rejected: %s", outcome.reason)
        if ctx.register_failure(step):
            return HandlerResult.escalate()
        return start(ctx, step)
    return HandlerResult.advance("Got it.")


def _unit_from(text: str) -> str:
    low = clean(text).lower()
    if low in NO_UNIT_ANSWERS or parse_confirmation_response(low) == ConfirmationReply.no:
        return ""
    unit = UNIT_LEAD_RE.sub("", clean(text)).strip()
    return f"Unit {unit.upper()}" if unit else ""


async def geocode(ctx: TurnContext, raw: str) -> Optional[AddressValidation]:
    validator = ctx.collaborators.address_validator
    if validator is None:
        return None
    try:
        result = await validator.validate(
            raw, tenant_id=ctx.state.tenant_id, enabled=ctx.settings.geocoding_enabled
        )
    except Exception as e:  # noqa: BLE001 - collaborator failure degrades to the raw value
        logger.warning("[Address] validator failed, keeping raw value: %s", e)
        return AddressValidation.failed_result(raw, "validator_error")
    await ctx.emit("address_validated", {
        "success": result.success,
        "validated": result.validated,
        "confidence": result.confidence.value,
        "needs_unit": result.needs_unit,
    })
    return result


async def store_address(ctx: TurnContext, step: Step, raw: str, *, bypass_step_gate: bool = False) -> ValidationOutcome:
    """Geocode `raw`, then write the best available form of it through the firewall."""
    result = await geocode(ctx, raw)
    value, confidence = raw, UTTERANCE_HIGH
    if result is not None:
        ctx.state.address_validation = result.model_dump(mode="json")
        has_unit = bool(result.components.unit) or bool(ctx.state.value_of("unit"))
        ctx.state.address_needs_unit = result.needs_unit and not has_unit
        if result.success and result.validated and result.formatted_address:
            value = result.formatted_address
            confidence = CONFIDENCE_BY_TIER[result.confidence]
        elif result.success:
            confidence = CONFIDENCE_BY_TIER[result.confidence]
    return await ctx.write(
        step.field_key,
        value,
        source=SlotSource.utterance,
        confidence=confidence,
        bypass_step_gate=bypass_step_gate,
    )
