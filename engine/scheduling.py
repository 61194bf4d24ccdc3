"""
Calendar offers for the time step.

After a time preference is accepted, the calendar collaborator is asked for
openings. Up to `offer_count` of them are read out and parked in
`state.offered_slots`; the next answer picks one by ordinal, weekday or hour.
Any calendar failure keeps the stated preference.
"""
from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from common.models import CalendarResult, CalendarSlot
from common.utils import as_utc, utcnow
from constants.types import Step
from constants.vocab import WEEKDAYS
from .context import HandlerResult, TurnAction, TurnContext
from .extractors import CONFIRMED, ConfirmationReply, parse_confirmation_response
from .prompts import REASK_PREFIX, join_reply
from .state import SlotSource

logger = logging.getLogger("booking-engine")

ORDINALS = {
    "first": 0, "1st": 0, "one": 0, "1": 0,
    "second": 1, "2nd": 1, "two": 1, "2": 1,
    "third": 2, "3rd": 2, "three": 2, "3": 2,
}
NONE_RE = re.compile(r"\b(?:none|neither|no(?:ne)?\s+of\s+(?:those|them|these)|something\s+else|other\s+time)\b", re.I)
HOUR_RE = re.compile(r"\b(\d{1,2})(?::(\d{2}))?\s*(a\.?m\.?|p\.?m\.?)?\b", re.I)


def _zone(name: str):
    try:
        return ZoneInfo(name)
    except ZoneInfoNotFoundError:
        logger.warning("[Calendar] unknown timezone %s, using UTC", name)
        return timezone.utc


def slot_label(start: datetime, tz_name: str = "UTC") -> str:
    local = start.astimezone(_zone(tz_name))
    hour = local.hour % 12 or 12
    minute = f":{local.minute:02d}" if local.minute else ""
    meridiem = "AM" if local.hour < 12 else "PM"
    return f"{local:%A}, {local:%B} {local.day} at {hour}{minute} {meridiem}"


def offer_prompt(offered: List[dict]) -> str:
    labels = [o["label"] for o in offered]
    if len(labels) == 1:
        listing = labels[0]
    else:
        listing = ", ".join(labels[:-1]) + ", or " + labels[-1]
    return f"I have the following available: {listing}. Which works best for you?"


async def lookup(ctx: TurnContext, step: Step) -> Optional[CalendarResult]:
    calendar = ctx.collaborators.calendar
    if calendar is None or not ctx.settings.calendar_enabled:
        return None
    service_type = step.options.service_type or ctx.flow.service_type
    try:
        return await calendar.find_available_slots(ctx.state.tenant_id, utcnow(), service_type)
    except Exception as e:  # noqa: BLE001 - calendar failure falls back to open preference capture
        logger.warning("[Calendar] lookup failed, keeping stated preference: %s", e)
        return CalendarResult.fallback_result("calendar_error")


async def maybe_offer(ctx: TurnContext, step: Step, ack: str = "") -> Optional[HandlerResult]:
    """Offer openings after a preference was stored. None when there is nothing to offer."""
    result = await lookup(ctx, step)
    if result is None or result.fallback or not result.slots:
        if result is not None:
            logger.info("[Calendar] no offers (%s)", result.reason)
        return None
    offered = [_offer(s, ctx.settings.timezone) for s in result.slots[: ctx.settings.offer_count]]
    ctx.state.offered_slots = offered
    ctx.state.current_step_id = step.id
    return HandlerResult.say(join_reply(ack, offer_prompt(offered)), TurnAction.COLLECT)


def _offer(slot: CalendarSlot, tz_name: str) -> dict:
    return {
        "start": slot.start.isoformat(),
        "end": slot.end.isoformat(),
        "tech_id": slot.tech_id,
        "label": slot_label(slot.start, tz_name),
    }


def pick_offer(text: str, offered: List[dict], tz_name: str = "UTC") -> Optional[int]:
    low = (text or "").lower()
    words = re.findall(r"[a-z0-9]+", low)
    # "the last one": "one" here is not an ordinal
    if re.search(r"\b(?:last|latter)\b", low):
        return len(offered) - 1
    for w in words:
        if w in ORDINALS and not w.isdigit() and ORDINALS[w] < len(offered):
            return ORDINALS[w]
    # bare digits are hours unless said as "option 2" / "number 2" / just "2"
    m = re.search(r"(?:\b(?:number|option)\s+|^)(\d)$", low.strip())
    if m and m.group(1) in ORDINALS and ORDINALS[m.group(1)] < len(offered):
        return ORDINALS[m.group(1)]
    for day in WEEKDAYS:
        if day in words:
            hits = [i for i, o in enumerate(offered) if o["label"].lower().startswith(day)]
            if len(hits) == 1:
                return hits[0]
    m = HOUR_RE.search(low)
    if m:
        hour = int(m.group(1)) % 12
        if m.group(3) and m.group(3).lower().startswith("p"):
            hour += 12
        for i, o in enumerate(offered):
            local = as_utc(o["start"]).astimezone(_zone(tz_name))
            if local.hour == hour or (not m.group(3) and local.hour % 12 == hour % 12):
                return i
    return None


async def handle_offer_reply(ctx: TurnContext, utterance: str) -> HandlerResult:
    offered = ctx.state.offered_slots
    step = ctx.flow.step_by_id(ctx.state.current_step_id) or ctx.flow.step_for_field("time")
    text = (utterance or "").strip()
    if not text:
        return HandlerResult.say(offer_prompt(offered), TurnAction.COLLECT)

    idx = pick_offer(text, offered, ctx.settings.timezone)
    if idx is None and parse_confirmation_response(text) == ConfirmationReply.yes and len(offered) == 1:
        idx = 0
    if idx is not None:
        chosen = offered[idx]
        ctx.state.offered_slots = []
        ctx.state.selected_slot = chosen
        await ctx.write(step.field_key, chosen["label"], source=SlotSource.calendar, confidence=CONFIRMED,
                        is_correction=True, bypass_step_gate=True)
        return HandlerResult.advance(f"Great, {chosen['label']} it is.")

    if NONE_RE.search(text) or parse_confirmation_response(text) == ConfirmationReply.no:
        # keep the stated preference and let the office follow up
        ctx.state.offered_slots = []
        return HandlerResult.advance("No problem, I'll note your preference.")

    if ctx.register_failure(step):
        return HandlerResult.escalate()
    return HandlerResult.say(join_reply(REASK_PREFIX, offer_prompt(offered)), TurnAction.COLLECT)
