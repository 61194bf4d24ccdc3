"""
Pre-confirmation queue.

Values that reached the call from outside this flow (discovery phase, caller
ID, CRM) are never final. Before the decision procedure runs, each such value
on a required step is read back, one per turn, in the order
name -> phone -> address -> time.
"""
from __future__ import annotations

import logging
import re
from typing import Optional

from constants.types import Flow, Step, StepType
from .context import HandlerResult, TurnAction, TurnContext
from .decision import participates
from . import name_detail
from .extractors import (
    CONFIRMED,
    ConfirmationReply,
    extract,
    parse_confirmation_response,
    strip_confirmation_words,
)
from .prompts import acknowledgement, join_reply, preconfirm_prompt
from .state import EXTERNAL_SOURCES, ConversationState, PendingPreconfirm, SlotSource, has_value

logger = logging.getLogger("booking-engine")

PRIORITY = (
    (StepType.name, StepType.first_name, StepType.last_name),
    (StepType.phone,),
    (StepType.address,),
    (StepType.time,),
)

LAST_NAME_RE = re.compile(r"\b(?:last|sur|family)\s*name\b", re.IGNORECASE)
MAX_UNCLEAR = 2


def next_candidate(flow: Flow, state: ConversationState) -> Optional[Step]:
    for types in PRIORITY:
        for step in flow.steps:
            if step.type not in types or not participates(step, state):
                continue
            slot = state.get(step.field_key)
            if has_value(slot) and not slot.confirmed and slot.source in EXTERNAL_SOURCES:
                return step
    return None


def ask(ctx: TurnContext, step: Step, ack: str = "") -> HandlerResult:
    value = ctx.state.value_of(step.field_key)
    ctx.state.pending_preconfirm = PendingPreconfirm(field_key=step.field_key, step_id=step.id, value=value)
    logger.info("[Preconfirm] asking about %s (source=%s)", step.id, ctx.state.get(step.field_key).source.value)
    return HandlerResult.say(join_reply(ack, preconfirm_prompt(step, value)), TurnAction.CONFIRM)


async def _reclassify_as_last_name(ctx: TurnContext, step: Step, value: str) -> HandlerResult:
    """'No, that's my last name': move the value and ask for the first name."""
    logger.info("[Preconfirm] %s value reclassified as last name", step.id)
    ctx.state.pending_preconfirm = None
    ctx.state.clear(step.field_key)
    last_step = ctx.flow.step_for_field("last_name")
    if last_step is None or last_step.id == step.id:
        return name_detail.start_missing_part(ctx, step, last=value)
    await ctx.write("last_name", value, source=SlotSource.correction, confidence=CONFIRMED,
                    is_correction=True, bypass_step_gate=True)
    return ctx.ask_step(step, "Thanks.")


async def handle_reply(ctx: TurnContext, utterance: str) -> HandlerResult:
    pending = ctx.state.pending_preconfirm
    step = ctx.flow.step_by_id(pending.step_id)
    text = (utterance or "").strip()
    if step is None:
        ctx.state.pending_preconfirm = None
        return HandlerResult.advance()
    if not text:
        return HandlerResult.say(preconfirm_prompt(step, pending.value), TurnAction.CONFIRM)

    reply = parse_confirmation_response(text)

    if step.is_name and step.type != StepType.last_name and LAST_NAME_RE.search(text) and reply != ConfirmationReply.yes:
        return await _reclassify_as_last_name(ctx, step, str(pending.value))

    if reply == ConfirmationReply.yes:
        ctx.state.pending_preconfirm = None
        ctx.state.mark_confirmed(step.field_key, immutable=True)
        return HandlerResult.advance(acknowledgement(step, pending.value) if step.is_name else "Great.")

    remainder = strip_confirmation_words(text) if reply == ConfirmationReply.no else text
    got = extract(step, remainder) if remainder else None
    if got is not None and not got.partial and str(got.value) != str(pending.value):
        outcome = await ctx.write(step.field_key, got.value, source=SlotSource.correction, confidence=CONFIRMED,
                                  is_correction=True, bypass_step_gate=True)
        if outcome.valid:
            ctx.state.pending_preconfirm = None
            return HandlerResult.advance(join_reply("Thanks for the correction.", acknowledgement(step, got.value)
                                                    if step.is_name else ""))

    if reply == ConfirmationReply.no:
        ctx.state.pending_preconfirm = None
        ctx.state.clear(step.field_key)
        ctx.state.current_step_id = step.id
        return HandlerResult.advance("Sorry about that.")

    pending.retries += 1
    if pending.retries >= MAX_UNCLEAR:
        # still unclear: drop the inherited value and collect it the ordinary way
        ctx.state.pending_preconfirm = None
        ctx.state.clear(step.field_key)
        ctx.state.current_step_id = step.id
        return HandlerResult.advance()
    return HandlerResult.say(join_reply("Sorry, was that a yes or a no?", preconfirm_prompt(step, pending.value)),
                             TurnAction.CONFIRM)
