"""
Name detail collection.

  missing part  - "ask full name" is on and one token was given: ask for the
                  last name (or, after a "that's my last name" reclassification,
                  for the first name) and join the two.
  spelling      - variant-prone first names get a forced choice between two
                  spellings; very short ones are read back letter by letter,
                  and a "no" asks the caller to spell it.
"""
from __future__ import annotations

import logging
import re
from typing import Optional

from constants.types import Step
from .context import HandlerResult, TurnAction, TurnContext
from .decision import similar_names
from .extractors import (
    CONFIRMED,
    UTTERANCE_HIGH,
    ConfirmationReply,
    extract_name,
    parse_confirmation_response,
    strip_confirmation_words,
    title_name,
)
from .prompts import REASK_PREFIX, join_reply, spell_out
from .state import PendingSpellingConfirm, SlotSource, SubDialogue, SubDialogueKind

logger = logging.getLogger("booking-engine")

FIRST, LAST = "first", "last"
LETTERS, CHOICE, SPELL_OUT = "letters", "choice", "spell_out"

DEFAULT_LAST_NAME_QUESTION = "And what's your last name?"
DEFAULT_FIRST_NAME_QUESTION = "Thanks. And what's your first name?"
DEFAULT_SPELLING_PROMPT = "Let me confirm the spelling: {spelled}. Is that correct?"
SPELL_REQUEST = "Could you please spell your name for me?"

REFUSAL_RE = re.compile(
    r"\b(?:don'?t\s+have|do\s+not\s+have|rather\s+not|skip\s+it|no\s+last\s+name|that'?s\s+(?:it|all))\b", re.I
)
HINT_RE = re.compile(r"\bwith\s+an?\s+([a-z])\b", re.I)
SPELL_FILLERS = {"it's", "its", "is", "it", "that's", "thats", "spelled", "spelt", "like", "as", "that", "uh", "um"}


def letters_from_spelling(text: str) -> Optional[str]:
    """'M - A - R - C' / 'm a r c' -> 'marc'. None when the text isn't spelled out."""
    toks = [t for t in re.split(r"[\s\-,.]+", (text or "").lower()) if t]
    toks = [t for t in toks if not (len(t) > 1 and t in SPELL_FILLERS)]
    letters = [t for t in toks if len(t) == 1 and t.isalpha()]
    if len(letters) >= 2 and len(letters) == len(toks):
        return "".join(letters)
    return None


# ---------------- missing part ----------------

def start_missing_part(ctx: TurnContext, step: Step, *, first: Optional[str] = None, last: Optional[str] = None) -> HandlerResult:
    partial = {}
    if first:
        partial[FIRST] = first
    if last:
        partial[LAST] = last
    phase = LAST if FIRST in partial else FIRST
    ctx.state.sub_dialogue = SubDialogue(
        kind=SubDialogueKind.name,
        phase=phase,
        field_key=step.field_key,
        step_id=step.id,
        partial=partial,
        phases=[FIRST, LAST],
    )
    ctx.state.current_step_id = step.id
    return HandlerResult.say(_part_prompt(step, phase), TurnAction.COLLECT_DETAILS)


def _part_prompt(step: Step, phase: str) -> str:
    if phase == LAST:
        return step.options.last_name_question or DEFAULT_LAST_NAME_QUESTION
    return step.options.first_name_question or DEFAULT_FIRST_NAME_QUESTION


async def handle(ctx: TurnContext, utterance: str) -> HandlerResult:
    sub = ctx.state.sub_dialogue
    step = ctx.flow.step_by_id(sub.step_id)
    text = (utterance or "").strip()
    if not text:
        sub.ask_count += 1
        return HandlerResult.say(_part_prompt(step, sub.phase), TurnAction.COLLECT_DETAILS)

    refused = REFUSAL_RE.search(text) or parse_confirmation_response(text) == ConfirmationReply.no
    if sub.phase == LAST and FIRST in sub.partial and refused:
        # caller keeps a single name; take it as given
        ctx.state.sub_dialogue = None
        ctx.state.mark_confirmed(step.field_key)
        return HandlerResult.advance("No problem.")

    got = extract_name(text)
    if got is None:
        if ctx.register_failure(step):
            return HandlerResult.escalate()
        sub.ask_count += 1
        return HandlerResult.say(join_reply(REASK_PREFIX, _part_prompt(step, sub.phase)), TurnAction.COLLECT_DETAILS)

    sub.partial[sub.phase] = got.value
    full = f"{sub.partial.get(FIRST, '')} {sub.partial.get(LAST, '')}".strip()
    ctx.state.sub_dialogue = None
    outcome = await ctx.write(
        step.field_key, full, source=SlotSource.utterance, confidence=UTTERANCE_HIGH, bypass_step_gate=True,
    )
    if not outcome.valid:
        if ctx.register_failure(step):
            return HandlerResult.escalate()
        ctx.state.sub_dialogue = sub
        sub.partial.pop(sub.phase, None)
        return HandlerResult.say(join_reply(REASK_PREFIX, _part_prompt(step, sub.phase)), TurnAction.COLLECT_DETAILS)
    return HandlerResult.advance(f"Thanks, {full.split()[0]}.")


# ---------------- spelling ----------------

def start_spelling(ctx: TurnContext, step: Step, value: str) -> HandlerResult:
    first = value.split()[0]
    alternatives = [title_name(n) for n in similar_names(first)]
    if alternatives:
        pending = PendingSpellingConfirm(
            field_key=step.field_key, step_id=step.id, value=value, mode=CHOICE, alternatives=alternatives[:1],
        )
    else:
        pending = PendingSpellingConfirm(field_key=step.field_key, step_id=step.id, value=value, mode=LETTERS)
    ctx.state.pending_spelling_confirm = pending
    ctx.state.current_step_id = step.id
    return HandlerResult.say(spelling_prompt(step, pending), TurnAction.CONFIRM_SPELLING)


def spelling_prompt(step: Step, pending: PendingSpellingConfirm) -> str:
    first = pending.value.split()[0]
    if pending.mode == CHOICE:
        other = pending.alternatives[0]
        return f"Is that {first}, {spell_out(first)}, or {other}, {spell_out(other)}?"
    if pending.mode == SPELL_OUT:
        return SPELL_REQUEST
    template = step.options.spelling_confirm_prompt or DEFAULT_SPELLING_PROMPT
    return template.replace("{spelled}", spell_out(first)).replace("{value}", first)


def _pick_choice(text: str, current: str, other: str) -> Optional[str]:
    low = text.lower()
    spelled = letters_from_spelling(low)
    if spelled:
        if spelled == other.lower():
            return other
        if spelled == current.lower():
            return current
    hint = HINT_RE.search(low)
    if hint:
        ch = hint.group(1)
        in_cur, in_other = ch in current.lower(), ch in other.lower()
        if in_other and not in_cur:
            return other
        if in_cur and not in_other:
            return current
    words = set(re.findall(r"[a-z]+", low))
    if other.lower() in words and current.lower() not in words:
        return other
    if current.lower() in words and other.lower() not in words:
        return current
    if re.search(r"\b(?:second|latter|last\s+one)\b", low):
        return other
    if re.search(r"\b(?:first|former)\b", low):
        return current
    reply = parse_confirmation_response(text)
    if reply == ConfirmationReply.yes:
        return current
    return None


async def _apply_spelling(ctx: TurnContext, step: Step, pending: PendingSpellingConfirm, first: str) -> HandlerResult:
    rest = pending.value.split()[1:]
    corrected = " ".join([title_name(first)] + rest)
    ctx.state.pending_spelling_confirm = None
    if corrected == pending.value:
        ctx.state.mark_confirmed(step.field_key, immutable=True)
        return HandlerResult.advance("Thank you.")
    outcome = await ctx.write(
        step.field_key, corrected, source=SlotSource.correction, confidence=CONFIRMED,
        is_correction=True, bypass_step_gate=True,
    )
    if not outcome.valid:
        logger.info("[Name] spelling correction rejected: %s", outcome.reason)
        ctx.state.pending_spelling_confirm = pending.model_copy(update={"mode": SPELL_OUT})
        return HandlerResult.say(join_reply(REASK_PREFIX, SPELL_REQUEST), TurnAction.CONFIRM_SPELLING)
    return HandlerResult.advance(f"Thank you, {title_name(first)}.")


async def handle_spelling_reply(ctx: TurnContext, utterance: str) -> HandlerResult:
    pending = ctx.state.pending_spelling_confirm
    step = ctx.flow.step_by_id(pending.step_id)
    text = (utterance or "").strip()
    if not text:
        return HandlerResult.say(spelling_prompt(step, pending), TurnAction.CONFIRM_SPELLING)

    current = pending.value.split()[0]
    if pending.mode == CHOICE:
        picked = _pick_choice(text, current, pending.alternatives[0])
        if picked is None:
            spelled = letters_from_spelling(text)
            if spelled:
                return await _apply_spelling(ctx, step, pending, spelled)
            return _spelling_retry(ctx, step, pending)
        return await _apply_spelling(ctx, step, pending, picked)

    if pending.mode == LETTERS:
        reply = parse_confirmation_response(text)
        if reply == ConfirmationReply.yes:
            return await _apply_spelling(ctx, step, pending, current)
        spelled = letters_from_spelling(strip_confirmation_words(text))
        if spelled:
            return await _apply_spelling(ctx, step, pending, spelled)
        if reply == ConfirmationReply.no:
            ctx.state.pending_spelling_confirm = pending.model_copy(update={"mode": SPELL_OUT})
            return HandlerResult.say(SPELL_REQUEST, TurnAction.CONFIRM_SPELLING)
        return _spelling_retry(ctx, step, pending)

    # SPELL_OUT
    spelled = letters_from_spelling(text)
    if spelled is None:
        got = extract_name(text)
        spelled = got.value.split()[0] if got is not None else None
    if spelled:
        return await _apply_spelling(ctx, step, pending, spelled)
    return _spelling_retry(ctx, step, pending)


def _spelling_retry(ctx: TurnContext, step: Step, pending: PendingSpellingConfirm) -> HandlerResult:
    if ctx.register_failure(step):
        # spelling is a refinement: keep what we heard rather than dropping the call
        logger.info("[Name] spelling unresolved for %s, keeping %s", step.id, pending.value)
        ctx.state.pending_spelling_confirm = None
        ctx.state.mark_confirmed(step.field_key)
        return HandlerResult.advance()
    return HandlerResult.say(join_reply(REASK_PREFIX, spelling_prompt(step, pending)), TurnAction.CONFIRM_SPELLING)
