"""
Everything the engine says, built from the step configuration.

Missing configuration never aborts a call: a step without prompt text falls
back to its label and the gap is logged once per build.
"""
from __future__ import annotations

import logging
import re
from collections import defaultdict
from typing import Any, Dict, Optional

from constants.types import Flow, Step, StepType, NAME_TYPES
from .state import ConversationState

logger = logging.getLogger("booking-engine")

CONFIRM_DEFAULTS = {
    StepType.name: "I have your name as {value}. Is that correct?",
    StepType.first_name: "I have your first name as {value}. Is that correct?",
    StepType.last_name: "I have your last name as {value}. Is that correct?",
    StepType.phone: "I have your phone number as {value}. Is that the best number to reach you?",
    StepType.address: "I have the service address as {value}. Is that correct?",
    StepType.time: "You'd like {value}. Is that right?",
    StepType.email: "I have your email as {value}. Is that correct?",
}

PRECONFIRM_DEFAULTS = {
    StepType.name: "Before we get started, I have your name as {value}. Is that right?",
    StepType.first_name: "Before we get started, I have your first name as {value}. Is that right?",
    StepType.last_name: "Before we get started, I have your last name as {value}. Is that right?",
    StepType.phone: "Is {value} the best number to reach you?",
    StepType.address: "I have the service address as {value}. Is that correct?",
    StepType.time: "I have you down for {value}. Does that still work?",
}

REASK_PREFIX = "Sorry, I didn't catch that."
DEFAULT_CONFIRMATION_TEMPLATE = Flow.model_fields["confirmation_template"].default


def _fill(template: str, value: Any) -> str:
    return template.replace("{value}", str(value) if value is not None else "")


def collect_prompt(step: Step, state: ConversationState) -> str:
    """First ask uses the prompt; every later ask uses the reprompt, so repeats are stable."""
    asked = state.ask_count.get(step.id, 0)
    text = (step.reprompt or step.prompt) if asked >= 1 else (step.prompt or step.reprompt)
    if text:
        return text
    logger.warning("[Prompts] step %s has no prompt configured; using its label", step.id)
    return f"Could you tell me your {step.display_label.lower()}?"


def confirm_prompt(step: Step, value: Any) -> str:
    if step.confirm_prompt:
        return _fill(step.confirm_prompt, value)
    template = CONFIRM_DEFAULTS.get(step.type)
    if template is None:
        return f"I have your {step.display_label.lower()} as {value}. Is that correct?"
    return _fill(template, value)


def preconfirm_prompt(step: Step, value: Any) -> str:
    template = PRECONFIRM_DEFAULTS.get(step.type) or CONFIRM_DEFAULTS.get(step.type)
    if template is None:
        return confirm_prompt(step, value)
    return _fill(template, value)


def acknowledgement(step: Step, value: Any) -> str:
    if step.type in NAME_TYPES and value:
        first = str(value).split()[0]
        return f"Thanks, {first}."
    return "Got it."


def spell_out(name: str) -> str:
    return " - ".join(ch.upper() for ch in name if ch.isalpha())


def join_reply(*parts: Optional[str]) -> str:
    out = []
    for p in parts:
        p = (p or "").strip()
        if not p:
            continue
        # "Got it." + "Got it. What city..." is said once
        if out and p.startswith(out[-1]):
            out[-1] = p
            continue
        out.append(p)
    return " ".join(out)


def _display(value: Any) -> str:
    if value is None:
        return ""
    return re.sub(r"[\s.,;!?]+$", "", str(value))


def summary(flow: Flow, state: ConversationState) -> str:
    values: Dict[str, str] = defaultdict(str)
    for k, v in state.collected().items():
        values[k] = _display(v)
    if state.selected_slot and state.selected_slot.get("label"):
        values["time"] = state.selected_slot["label"]
    try:
        text = flow.confirmation_template.format_map(values)
    except (ValueError, IndexError, KeyError, AttributeError) as e:
        logger.warning("[Prompts] flow %s has an unusable confirmation template (%s); using the default", flow.flow_id, e)
        text = DEFAULT_CONFIRMATION_TEMPLATE.format_map(values)
    # collapse what empty placeholders leave behind
    text = re.sub(r"\s+,", ",", text)
    text = re.sub(r",\s*,", ",", text)
    text = re.sub(r",\s*\.", ".", text)
    return re.sub(r"\s{2,}", " ", text).strip()


def completion(flow: Flow) -> str:
    return flow.completion_template
