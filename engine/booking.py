"""
Turn runner for the booking engine.

    result = await run_turn(flow, state, "my name is Mark", collaborators)

One call is one sequence of turns; each turn is processed to completion on a
copy of the incoming state and the new state is returned in the result. The
host owns persistence of that state between turns.

Per turn:
  1. pre-extracted values from the host are merged through the firewall
  2. whatever is pending consumes the utterance (summary, change request,
     pre-confirmation, spelling, sub-dialogue, calendar offer, confirmation)
  3. the pre-confirmation queue runs until exhausted
  4. the decision procedure picks the next step and mode, and its handler runs
  5. with nothing left, the terminal check runs and the summary is read back
"""
from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from pydantic import BaseModel, ConfigDict, Field

from common.config_loader import EngineSettings
from common.models import BookingRecord, Collaborators, NotificationSender
from common.utils import utcnow
from constants.types import Flow, Step, StepType
from utils.logger import TurnLogger
from . import address_detail, name_detail, phone_detail, preconfirm, scheduling
from .context import HandlerResult, TurnAction, TurnContext
from .decision import DetailReason, Mode, NextAction, next_action, participates
from .extractors import (
    CONFIRMED,
    ConfirmationReply,
    extract,
    parse_confirmation_response,
    strip_confirmation_words,
)
from .firewall import WriteFirewall
from .identity import IdentityPolicy
from .prompts import REASK_PREFIX, acknowledgement, completion, confirm_prompt, join_reply, summary
from .state import ConversationState, PendingConfirmation, SlotSource, SubDialogueKind
from .terminal import run_terminal_check

logger = logging.getLogger("booking-engine")

_background: Set[asyncio.Task] = set()

FIELD_WORDS = (
    (re.compile(r"\b(?:name|spell(?:ed|ing)?)\b", re.I), (StepType.name, StepType.first_name, StepType.last_name)),
    (re.compile(r"\b(?:phone|number|cell|callback)\b", re.I), (StepType.phone,)),
    (re.compile(r"\b(?:address|street|city|zip|unit|apartment)\b", re.I), (StepType.address,)),
    (re.compile(r"\b(?:time|day|date|appointment|schedule|when)\b", re.I), (StepType.time,)),
    (re.compile(r"\b(?:email|e-mail)\b", re.I), (StepType.email,)),
)
NOTHING_RE = re.compile(r"\b(?:nothing|never\s*mind|it'?s\s+(?:fine|good)|all\s+good|no\s+changes?)\b", re.I)
CHANGE_LEAD_RE = re.compile(
    r"^(?:(?:change|fix|update)\s+)?(?:the\s+|my\s+)?"
    r"(?:(?:first\s+|last\s+)?name|phone(?:\s+number)?|number|address|street|time|day|date|appointment|e-?mail)\b"
    r"[\s,]*(?:is|should\s+be|to|was|it'?s)?[\s,]*",
    re.I,
)
# "yes, but the address is wrong": a field named next to a yes still reopens it
CHANGE_CUE_RE = re.compile(r"\b(?:but|wrong|incorrect|not\s+right|change|fix|update|actually|mistake|should\s+be)\b", re.I)
LEAD_FILLER_RE = re.compile(r"^(?:(?:but|and|actually|well|oh|um)\b[\s,]*)+", re.I)
COMPLAINT_RE = re.compile(
    r"^(?:(?:is\s+)?(?:wrong|incorrect|not\s+right|a\s+mistake)\b[\s,.]*(?:(?:it\s+)?should\s+be|it'?s)?[\s,]*)",
    re.I,
)


class TurnResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    reply: str
    state: ConversationState
    action: TurnAction
    is_complete: bool = False
    current_step: Optional[str] = None
    requires_transfer: bool = False
    transfer_reason: Optional[str] = None
    booking: Optional[BookingRecord] = None
    debug: Dict[str, Any] = Field(default_factory=dict)


def _prefixed(res: HandlerResult, ack: str) -> HandlerResult:
    if res.reply is not None and ack:
        res.reply = join_reply(ack, res.reply)
    elif res.reply is None and ack:
        res.ack = join_reply(ack, res.ack)
    return res


# ---------------- mode handlers ----------------

async def _take_answer(ctx: TurnContext, step: Step, text: str, ack: str) -> HandlerResult:
    """The caller answered the question we asked for `step`."""
    got = extract(step, text)
    if got is None:
        if ctx.register_failure(step):
            return HandlerResult.escalate()
        return ctx.ask_step(step, ack, failed=True)

    if step.type == StepType.phone and got.partial and phone_detail.needs_breakdown(got.value):
        return _prefixed(phone_detail.start(ctx, step, got.value), ack)

    if step.type == StepType.address:
        outcome = await address_detail.store_address(ctx, step, got.value)
    else:
        outcome = await ctx.write(step.field_key, got.value, source=SlotSource.utterance, confidence=got.confidence)
    if not outcome.valid:
        if ctx.register_failure(step):
            return HandlerResult.escalate()
        return ctx.ask_step(step, ack, failed=True)

    ack = join_reply(ack, acknowledgement(step, ctx.state.value_of(step.field_key)))
    if step.type == StepType.time:
        offer = await scheduling.maybe_offer(ctx, step, ack)
        if offer is not None:
            return offer
    return HandlerResult.advance(ack)


async def _collect(ctx: TurnContext, action: NextAction, text: str, ack: str) -> HandlerResult:
    step = action.step
    if text and ctx.state.current_step_id == step.id:
        return await _take_answer(ctx, step, text, ack)
    if step.type == StepType.address and step.options.address_breakdown:
        res = address_detail.start(ctx, step)
        ctx.state.bump_ask(step.id)
        return _prefixed(res, ack)
    return ctx.ask_step(step, ack)


async def _confirm(ctx: TurnContext, action: NextAction, text: str, ack: str) -> HandlerResult:
    step = action.step
    ctx.state.pending_confirmation = PendingConfirmation(
        field_key=step.field_key, step_id=step.id, value=action.existing_value
    )
    ctx.state.current_step_id = step.id
    return HandlerResult.say(join_reply(ack, confirm_prompt(step, action.existing_value)), TurnAction.CONFIRM)


async def _details(ctx: TurnContext, action: NextAction, text: str, ack: str) -> HandlerResult:
    step, value = action.step, str(action.existing_value or "")
    logger.info("[Engine] %s needs detail: %s", step.id, action.reason.value)
    if action.reason == DetailReason.SPELLING:
        res = name_detail.start_spelling(ctx, step, value)
    elif action.reason == DetailReason.MISSING_LAST_NAME:
        res = name_detail.start_missing_part(ctx, step, first=value)
    else:
        res = address_detail.start(ctx, step, street=value)
    return _prefixed(res, ack)


MODE_HANDLERS: Dict[Mode, Callable[[TurnContext, NextAction, str, str], Awaitable[HandlerResult]]] = {
    Mode.COLLECT: _collect,
    Mode.CONFIRM: _confirm,
    Mode.COLLECT_DETAILS: _details,
}


# ---------------- pending-state handlers ----------------

async def _confirm_reply(ctx: TurnContext, text: str) -> HandlerResult:
    pending = ctx.state.pending_confirmation
    step = ctx.flow.step_by_id(pending.step_id)
    if step is None:
        ctx.state.pending_confirmation = None
        return HandlerResult.advance()
    if not text:
        return HandlerResult.say(confirm_prompt(step, pending.value), TurnAction.CONFIRM)

    reply = parse_confirmation_response(text)
    if reply == ConfirmationReply.yes:
        ctx.state.pending_confirmation = None
        ctx.state.mark_confirmed(step.field_key, immutable=True)
        return HandlerResult.advance("Great.")

    remainder = strip_confirmation_words(text) if reply == ConfirmationReply.no else text
    got = extract(step, remainder) if remainder else None
    if got is not None and not got.partial and str(got.value) != str(pending.value):
        outcome = await ctx.write(step.field_key, got.value, source=SlotSource.correction, confidence=CONFIRMED,
                                  is_correction=True, bypass_step_gate=True)
        if outcome.valid:
            ctx.state.pending_confirmation = None
            return HandlerResult.advance(join_reply("Thanks for the correction.", acknowledgement(step, got.value)))

    if reply == ConfirmationReply.no:
        ctx.state.pending_confirmation = None
        ctx.state.clear(step.field_key)
        ctx.state.current_step_id = step.id
        return HandlerResult.advance("Sorry about that.")

    if ctx.register_failure(step):
        return HandlerResult.escalate()
    return HandlerResult.say(join_reply("Sorry, was that a yes or a no?", confirm_prompt(step, pending.value)),
                             TurnAction.CONFIRM)


def _mentioned_step(flow: Flow, state: ConversationState, text: str) -> Optional[Step]:
    for rx, types in FIELD_WORDS:
        if rx.search(text):
            for step in flow.steps:
                if step.type in types and participates(step, state):
                    return step
    return None


async def _reopen(ctx: TurnContext, step: Step, text: str) -> HandlerResult:
    """Caller wants to change `step` after the read-back."""
    state = ctx.state
    state.awaiting_final_confirmation = False
    state.awaiting_change_selection = False
    state.clear(step.field_key)
    state.reset_step_counters(step.id)
    state.current_step_id = step.id
    if step.type == StepType.time:
        state.selected_slot = None
    if step.type == StepType.address:
        state.address_validation = None
        state.address_needs_unit = False

    remainder = LEAD_FILLER_RE.sub("", strip_confirmation_words(text))
    remainder = COMPLAINT_RE.sub("", CHANGE_LEAD_RE.sub("", remainder)).strip()
    got = extract(step, remainder) if remainder else None
    if got is not None and not got.partial:
        if step.type == StepType.address:
            outcome = await address_detail.store_address(ctx, step, got.value, bypass_step_gate=True)
        else:
            outcome = await ctx.write(step.field_key, got.value, source=SlotSource.correction,
                                      confidence=CONFIRMED, is_correction=True, bypass_step_gate=True)
        if outcome.valid:
            return HandlerResult.advance("Thanks, I've updated that.")
    return HandlerResult.advance("No problem.")


def _summary_retry(ctx: TurnContext, reply: str, key: str) -> HandlerResult:
    n = ctx.state.bump_attempt(key)
    if n >= ctx.settings.max_attempts:
        return HandlerResult.escalate()
    return HandlerResult.say(join_reply(REASK_PREFIX, reply), TurnAction.CONFIRM)


async def _final_confirmation_reply(ctx: TurnContext, text: str) -> HandlerResult:
    read_back = summary(ctx.flow, ctx.state)
    if not text:
        return HandlerResult.say(read_back, TurnAction.CONFIRM)
    reply = parse_confirmation_response(text)
    step = _mentioned_step(ctx.flow, ctx.state, text)
    if step is not None and (reply != ConfirmationReply.yes or CHANGE_CUE_RE.search(text)):
        return await _reopen(ctx, step, text)
    if reply == ConfirmationReply.yes:
        return HandlerResult(reply=None, action=TurnAction.COMPLETE)
    if reply == ConfirmationReply.no:
        ctx.state.awaiting_final_confirmation = False
        ctx.state.awaiting_change_selection = True
        return HandlerResult.say(ctx.settings.change_prompt, TurnAction.CONFIRM)
    return _summary_retry(ctx, read_back, "summary")


async def _change_selection_reply(ctx: TurnContext, text: str) -> HandlerResult:
    if not text:
        return HandlerResult.say(ctx.settings.change_prompt, TurnAction.CONFIRM)
    step = _mentioned_step(ctx.flow, ctx.state, text)
    if step is not None:
        return await _reopen(ctx, step, text)
    if NOTHING_RE.search(text):
        ctx.state.awaiting_change_selection = False
        ctx.state.awaiting_final_confirmation = True
        return HandlerResult.say(summary(ctx.flow, ctx.state), TurnAction.CONFIRM)
    return _summary_retry(ctx, ctx.settings.change_prompt, "change")


async def _sub_dialogue_reply(ctx: TurnContext, text: str) -> HandlerResult:
    kind = ctx.state.sub_dialogue.kind
    if kind == SubDialogueKind.address:
        return await address_detail.handle(ctx, text)
    if kind == SubDialogueKind.phone:
        return await phone_detail.handle(ctx, text)
    return await name_detail.handle(ctx, text)


PENDING_HANDLERS = (
    (lambda s: s.awaiting_final_confirmation, _final_confirmation_reply),
    (lambda s: s.awaiting_change_selection, _change_selection_reply),
    (lambda s: s.pending_preconfirm is not None, preconfirm.handle_reply),
    (lambda s: s.pending_spelling_confirm is not None, name_detail.handle_spelling_reply),
    (lambda s: s.sub_dialogue is not None, _sub_dialogue_reply),
    (lambda s: bool(s.offered_slots), scheduling.handle_offer_reply),
    (lambda s: s.pending_confirmation is not None, _confirm_reply),
)


# ---------------- flow advance ----------------

async def _advance(ctx: TurnContext, text: str, ack: str, policy: IdentityPolicy) -> HandlerResult:
    flow, state = ctx.flow, ctx.state
    for _ in range(len(flow.steps) * 4 + 4):
        if not state.preconfirm_done:
            candidate = preconfirm.next_candidate(flow, state)
            if candidate is not None:
                return preconfirm.ask(ctx, candidate, ack)
            state.preconfirm_done = True

        action = next_action(flow, state, ctx.settings)
        if action is None:
            violations = run_terminal_check(flow, state, policy)
            if violations:
                v = violations[0]
                await ctx.emit("terminal_violation", {"field_key": v.field_key, "reason": v.reason.value})
                step = flow.step_by_id(v.step_id)
                ack = join_reply(ack, f"I'm sorry, I need to get your {step.display_label.lower()} again.")
                text = ""
                continue
            state.awaiting_final_confirmation = True
            return HandlerResult.say(join_reply(ack, summary(flow, state)), TurnAction.CONFIRM)

        res = await MODE_HANDLERS[action.mode](ctx, action, text, ack)
        if res.reply is not None or res.action != TurnAction.CONTINUE:
            return res
        ack, text = res.ack, ""

    logger.error("[Engine] flow %s did not settle within one turn", flow.flow_id)
    return HandlerResult(reply=None, action=TurnAction.ERROR)


# ---------------- terminal outcomes ----------------

def _slot_for(flow: Flow, state: ConversationState, *types: StepType) -> Optional[str]:
    for step in flow.steps:
        if step.type in types and state.has(step.field_key):
            return str(state.value_of(step.field_key))
    return None


def build_booking(flow: Flow, state: ConversationState) -> BookingRecord:
    name = _slot_for(flow, state, StepType.name)
    if name is None:
        parts = [_slot_for(flow, state, StepType.first_name), _slot_for(flow, state, StepType.last_name)]
        name = " ".join(p for p in parts if p) or None
    validation = state.address_validation or {}
    return BookingRecord(
        tenant_id=state.tenant_id,
        flow_id=flow.flow_id,
        customer_name=name,
        customer_phone=_slot_for(flow, state, StepType.phone),
        address=_slot_for(flow, state, StepType.address),
        time_preference=_slot_for(flow, state, StepType.time),
        selected_slot=state.selected_slot,
        address_validated=bool(validation.get("validated")),
        fields=state.collected(),
    )


def _schedule_notification(notifier: NotificationSender, tenant_id: Optional[str], booking: BookingRecord) -> None:
    async def _send() -> None:
        try:
            result = await notifier.send_booking_confirmation(tenant_id, booking)
            logger.info("[Booking] confirmation via %s success=%s", result.method, result.success)
        except Exception:  # noqa: BLE001 - notification must never affect the call
            logger.exception("[Booking] confirmation send failed")

    task = asyncio.create_task(_send())
    _background.add(task)
    task.add_done_callback(_background.discard)


async def _complete(ctx: TurnContext) -> TurnResult:
    state = ctx.state
    state.awaiting_final_confirmation = False
    state.complete = True
    state.booking_mode_locked = False
    state.completed_at = utcnow()
    booking = build_booking(ctx.flow, state)
    await ctx.emit("booking_completed", {"tenant_id": state.tenant_id, "flow_id": ctx.flow.flow_id})
    notifier = ctx.collaborators.notifier
    if ctx.settings.sms_enabled and notifier is not None:
        _schedule_notification(notifier, state.tenant_id, booking)
    return TurnResult(
        reply=completion(ctx.flow),
        state=state,
        action=TurnAction.COMPLETE,
        is_complete=True,
        current_step=state.current_step_id,
        booking=booking,
    )


async def _escalate(ctx: TurnContext, reason: str) -> TurnResult:
    state = ctx.state
    state.escalated = True
    state.booking_mode_locked = False
    state.escalation_reason = reason
    await ctx.emit("escalated", {"reason": reason, "step_id": state.current_step_id})
    return TurnResult(
        reply=ctx.settings.escalation_message,
        state=state,
        action=TurnAction.ESCALATE,
        current_step=state.current_step_id,
        requires_transfer=True,
        transfer_reason=reason,
    )


def _error(state: ConversationState, settings: EngineSettings, reason: str) -> TurnResult:
    return TurnResult(
        reply=settings.error_message,
        state=state,
        action=TurnAction.ERROR,
        current_step=state.current_step_id,
        requires_transfer=True,
        transfer_reason=reason,
    )


# ---------------- entry point ----------------

async def run_turn(
    flow: Flow,
    state: ConversationState,
    utterance: Optional[str],
    collaborators: Optional[Collaborators] = None,
    *,
    pre_extracted: Optional[Dict[str, Any]] = None,
    settings: Optional[EngineSettings] = None,
) -> TurnResult:
    settings = settings or EngineSettings()
    collaborators = collaborators or Collaborators()
    state = state.model_copy(deep=True)
    state.turn += 1
    state.tenant_id = state.tenant_id or flow.tenant_id
    state.flow_id = flow.flow_id
    text = (utterance or "").strip()

    turn_log = TurnLogger(logger, f"{state.tenant_id or '-'}:{flow.flow_id}")
    turn_log.turn_start(state.turn, state.current_step_id, text)

    if not flow.is_configured:
        logger.error("[Engine] flow %s for tenant %s has no steps", flow.flow_id, state.tenant_id)
        return _error(state, settings, "unconfigured_flow")
    if state.complete:
        return TurnResult(reply=completion(flow), state=state, action=TurnAction.COMPLETE,
                          is_complete=True, current_step=state.current_step_id)
    if state.escalated:
        return TurnResult(reply=settings.escalation_message, state=state, action=TurnAction.ESCALATE,
                          requires_transfer=True, transfer_reason=state.escalation_reason)

    policy = IdentityPolicy.for_tenant(state.tenant_id, settings.extra_stop_words)
    ctx = TurnContext(
        flow=flow,
        state=state,
        settings=settings,
        collaborators=collaborators,
        firewall=WriteFirewall(flow, policy),
    )

    for field_key, value in (pre_extracted or {}).items():
        if value is None or (isinstance(value, str) and not value.strip()):
            continue
        await ctx.write(field_key, value, source=SlotSource.pre_extracted, confidence=settings.pre_extracted_confidence)

    ack = ""
    res: Optional[HandlerResult] = None
    for applies, handler in PENDING_HANDLERS:
        if applies(state):
            res = await handler(ctx, text)
            if res.reply is None and res.action == TurnAction.CONTINUE:
                ack, text = res.ack, ""
                res = None
            break

    if res is None:
        res = await _advance(ctx, text, ack, policy)

    if res.action == TurnAction.COMPLETE:
        result = await _complete(ctx)
    elif res.action == TurnAction.ESCALATE:
        result = await _escalate(ctx, f"max_attempts:{state.current_step_id}")
    elif res.action == TurnAction.ERROR:
        result = _error(state, settings, "engine_error")
    else:
        result = TurnResult(reply=res.reply, state=state, action=res.action, current_step=state.current_step_id)

    for r in ctx.rejections:
        turn_log.rejected(r["field_key"], r["reason"], r["rejected_by"])
    result.debug = {
        "turn": state.turn,
        "rejections": ctx.rejections,
        "events": ctx.events,
        "confirmed": sorted(state.confirmed_slots),
    }
    turn_log.turn_result(state.turn, result.action.value, state.current_step_id, result.reply, result.debug)
    return result
