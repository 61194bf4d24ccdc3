"""Phone breakdown for partial numbers: area_code -> remainder."""
from __future__ import annotations

import logging

from constants.types import Step
from .context import HandlerResult, TurnAction, TurnContext
from .extractors import UTTERANCE_HIGH, spoken_digits
from .prompts import REASK_PREFIX, join_reply
from .state import SlotSource, SubDialogue, SubDialogueKind
from .validators import digits_of, format_phone

logger = logging.getLogger("booking-engine")

AREA_CODE, REMAINDER = "area_code", "remainder"


def needs_breakdown(digits: str) -> bool:
    return 3 <= len(digits) <= 9


def start(ctx: TurnContext, step: Step, digits: str) -> HandlerResult:
    partial = {}
    if len(digits) == 3:
        partial[AREA_CODE] = digits
    elif len(digits) == 7:
        # a local number: keep it and only ask for the area code
        partial[REMAINDER] = digits
    phase = REMAINDER if AREA_CODE in partial else AREA_CODE
    ctx.state.sub_dialogue = SubDialogue(
        kind=SubDialogueKind.phone,
        phase=phase,
        field_key=step.field_key,
        step_id=step.id,
        partial=partial,
        phases=[AREA_CODE, REMAINDER],
    )
    ctx.state.current_step_id = step.id
    logger.info("[Phone] breakdown started at %s (%d digits captured)", phase, len(digits))
    return HandlerResult.say(_prompt(ctx), TurnAction.COLLECT_DETAILS)


def _prompt(ctx: TurnContext) -> str:
    if ctx.state.sub_dialogue.phase == AREA_CODE:
        return ctx.settings.area_code_prompt
    return ctx.settings.phone_remainder_prompt


async def _finish(ctx: TurnContext, step: Step, digits: str) -> HandlerResult:
    ctx.state.sub_dialogue = None
    outcome = await ctx.write(
        step.field_key, format_phone(digits), source=SlotSource.utterance,
        confidence=UTTERANCE_HIGH, bypass_step_gate=True,
    )
    if not outcome.valid:
        if ctx.register_failure(step):
            return HandlerResult.escalate()
        return start(ctx, step, "")
    return HandlerResult.advance("Got it.")


async def handle(ctx: TurnContext, utterance: str) -> HandlerResult:
    sub = ctx.state.sub_dialogue
    step = ctx.flow.step_by_id(sub.step_id)
    text = (utterance or "").strip()
    if not text:
        sub.ask_count += 1
        return HandlerResult.say(_prompt(ctx), TurnAction.COLLECT_DETAILS)

    digits = digits_of(text) or spoken_digits(text)
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    if len(digits) == 10:
        # the caller gave the whole number this time
        return await _finish(ctx, step, digits)

    wanted = 3 if sub.phase == AREA_CODE else 7
    if len(digits) != wanted:
        if ctx.register_failure(step):
            return HandlerResult.escalate()
        sub.ask_count += 1
        return HandlerResult.say(join_reply(REASK_PREFIX, _prompt(ctx)), TurnAction.COLLECT_DETAILS)

    sub.partial[sub.phase] = digits
    if AREA_CODE in sub.partial and REMAINDER in sub.partial:
        return await _finish(ctx, step, sub.partial[AREA_CODE] + sub.partial[REMAINDER])
    sub.phase = REMAINDER if sub.phase == AREA_CODE else AREA_CODE
    sub.ask_count = 0
    return HandlerResult.say(_prompt(ctx), TurnAction.COLLECT_DETAILS)
