"""
Deterministic per-type extraction from a transcribed utterance.

Each extractor returns an Extraction (value, confidence) or None. Confidence
follows the levels used across the engine:
  explicit statement ("my name is Mark")  -> UTTERANCE_HIGH
  bare / partial answer                   -> UTTERANCE_LOW
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from constants.types import Step, StepType, NAME_TYPES
from constants.vocab import NAME_STOP_WORDS
from .validators import digits_of, format_phone, has_letters

CALLER_ID_CONFIDENCE = 0.7
UTTERANCE_LOW = 0.6
UTTERANCE_HIGH = 0.9
CRM_CONFIDENCE = 0.85
CONFIRMED = 1.0

NAME_LEAD_RE = re.compile(
    r"\b(?:my\s+(?:full\s+|first\s+|last\s+)?name\s+is|my\s+name'?s|name'?s|name\s+is|this\s+is|call\s+me|"
    r"i\s+am|i'?m|it'?s|it\s+is)\s+(?P<rest>.+)$",
    re.IGNORECASE,
)
FILLER_RE = re.compile(r"^(?:(?:uh+|um+|er+|oh|okay|ok|yeah|yes|sure|so|well|hi|hello|hey)[\s,.!]+)+", re.IGNORECASE)
ADDRESS_LEAD_RE = re.compile(
    r"^(?:(?:my|the)\s+(?:service\s+|home\s+)?address\s+is|(?:i\s+)?live\s+at|i'?m\s+at|we'?re\s+at|it'?s\s+at|"
    r"it'?s|it\s+is|that'?s|at)\s+",
    re.IGNORECASE,
)
TIME_LEAD_RE = re.compile(
    r"^(?:how\s+about|what\s+about|maybe|i'?d\s+(?:like|prefer)|i\s+(?:would\s+)?prefer|can\s+you\s+do|"
    r"could\s+you\s+do|let'?s\s+do|let'?s\s+say|probably|ideally)\s+",
    re.IGNORECASE,
)
UNIT_LEAD_RE = re.compile(r"^(?:it'?s\s+)?(?:apartment|apt\.?|unit|suite|ste\.?|number|no\.?|#)\s*", re.IGNORECASE)
TRAILING_RE = re.compile(r"[\s,.!?;:]+$")

NUMBER_WORDS = {
    "zero": "0", "oh": "0", "o": "0", "one": "1", "two": "2", "three": "3", "four": "4",
    "five": "5", "six": "6", "seven": "7", "eight": "8", "nine": "9",
}

SELECT_SYNONYMS = {
    "home": "house",
    "single family": "house",
    "apt": "apartment",
    "business": "commercial",
    "office": "commercial",
    "store": "commercial",
    "restaurant": "commercial",
    "mobile": "mobile home",
    "trailer": "mobile home",
}


class ConfirmationReply(str, Enum):
    yes = "yes"
    no = "no"
    unclear = "unclear"


YES_RE = re.compile(
    r"^(?:yes|yeah|yea|yep|yup|ya|sure|correct|right|that'?s\s+right|that'?s\s+correct|that\s+is\s+correct|"
    r"absolutely|affirmative|exactly|perfect|ok|okay|sounds\s+good|uh[\s-]?huh|you\s+got\s+it|definitely|"
    r"it\s+is|that'?s\s+it|yes\s+it\s+is)\b",
    re.IGNORECASE,
)
NO_RE = re.compile(
    r"^(?:no|nope|nah|negative|wrong|incorrect|not\s+(?:quite|really|right|correct)|that'?s\s+(?:not|wrong|incorrect)|"
    r"that\s+is\s+(?:not|wrong))\b",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class Extraction:
    value: str
    confidence: float
    partial: bool = False


def clean(utterance: Optional[str]) -> str:
    s = (utterance or "").strip()
    s = FILLER_RE.sub("", s)
    return TRAILING_RE.sub("", s).strip()


def parse_confirmation_response(utterance: Optional[str]) -> ConfirmationReply:
    s = (utterance or "").strip().lower()
    s = re.sub(r"^(?:uh+|um+|well|oh)[\s,]+", "", s)
    if not s:
        return ConfirmationReply.unclear
    # negation first: "not correct", "no that's right" reads as a correction
    if NO_RE.match(s):
        return ConfirmationReply.no
    if YES_RE.match(s):
        return ConfirmationReply.yes
    return ConfirmationReply.unclear


def strip_confirmation_words(utterance: Optional[str]) -> str:
    """'no, it's 555 222 3333' -> "it's 555 222 3333"."""
    s = (utterance or "").strip()
    for rx in (NO_RE, YES_RE):
        m = rx.match(s)
        if m:
            s = s[m.end():]
            break
    return re.sub(r"^[\s,.!]+", "", s).strip()


# ---------------- name ----------------

def _name_tokens(text: str) -> list:
    out = []
    for raw in re.split(r"\s+", text.strip()):
        tok = raw.strip(",.!?;:\"")
        if not tok:
            continue
        if not re.match(r"^[^\W\d_][\w'\-\.]*$", tok) or tok.lower() in NAME_STOP_WORDS:
            break
        out.append(tok)
        if len(out) == 3:
            break
    return out


def title_name(s: str) -> str:
    def cap(word: str) -> str:
        parts = re.split(r"([\-'])", word)
        return "".join(p[:1].upper() + p[1:].lower() if p not in ("-", "'") else p for p in parts)
    return " ".join(cap(w) for w in s.split())


def extract_name(utterance: str) -> Optional[Extraction]:
    text = clean(utterance)
    if not text:
        return None
    m = NAME_LEAD_RE.search(text)
    if m:
        toks = _name_tokens(m.group("rest"))
        if toks:
            return Extraction(title_name(" ".join(toks)), UTTERANCE_HIGH)
        return None
    words = text.split()
    toks = _name_tokens(text)
    if not toks:
        return None
    # a short bare answer to "what's your name" is as good as a statement
    confidence = UTTERANCE_HIGH if len(words) <= 3 and len(toks) == len(words) else UTTERANCE_LOW
    return Extraction(title_name(" ".join(toks)), confidence)


# ---------------- phone ----------------

def spoken_digits(utterance: str) -> str:
    out = []
    words = re.findall(r"[a-z]+|\d+", (utterance or "").lower())
    i = 0
    while i < len(words):
        w = words[i]
        if w.isdigit():
            out.append(w)
        elif w in ("double", "triple") and i + 1 < len(words) and words[i + 1] in NUMBER_WORDS:
            out.append(NUMBER_WORDS[words[i + 1]] * (2 if w == "double" else 3))
            i += 1
        elif w in NUMBER_WORDS and not (w == "o" and not out):
            out.append(NUMBER_WORDS[w])
        i += 1
    return "".join(out)


def extract_phone(utterance: str) -> Optional[Extraction]:
    digits = digits_of(utterance) or spoken_digits(utterance)
    if not digits:
        return None
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    if 10 <= len(digits) <= 15:
        return Extraction(format_phone(digits) if len(digits) == 10 else digits, UTTERANCE_HIGH)
    if 3 <= len(digits) <= 9:
        return Extraction(digits, UTTERANCE_LOW, partial=True)
    return Extraction(digits, UTTERANCE_LOW)


# ---------------- address ----------------

def extract_address(utterance: str) -> Optional[Extraction]:
    text = ADDRESS_LEAD_RE.sub("", clean(utterance)).strip()
    if not text or not has_letters(text):
        return None
    confidence = UTTERANCE_HIGH if re.match(r"^\d+", text) else UTTERANCE_LOW
    return Extraction(text, confidence)


# ---------------- time ----------------

def extract_time(utterance: str) -> Optional[Extraction]:
    text = TIME_LEAD_RE.sub("", clean(utterance)).strip()
    if not text:
        return None
    return Extraction(text, UTTERANCE_HIGH)


# ---------------- others ----------------

def extract_email(utterance: str) -> Optional[Extraction]:
    s = (utterance or "").lower()
    s = re.sub(r"\s+at\s+", "@", s)
    s = re.sub(r"\s+dot\s+", ".", s)
    m = re.search(r"[\w.+\-]+\s*@\s*[\w\-]+(?:\s*\.\s*[\w\-]+)+", s)
    if not m:
        return None
    return Extraction(re.sub(r"\s+", "", m.group(0)), UTTERANCE_HIGH)


def extract_choice(utterance: str, step: Step) -> Optional[Extraction]:
    text = clean(utterance).lower()
    if not text:
        return None
    for choice in sorted(step.options.choices, key=len, reverse=True):
        if re.search(r"\b" + re.escape(choice.lower()) + r"\b", text):
            return Extraction(choice, UTTERANCE_HIGH)
    for word, choice in SELECT_SYNONYMS.items():
        if choice in step.options.choices and re.search(r"\b" + re.escape(word) + r"\b", text):
            return Extraction(choice, UTTERANCE_HIGH)
    return None


def extract_yes_no(utterance: str) -> Optional[Extraction]:
    reply = parse_confirmation_response(utterance)
    if reply == ConfirmationReply.unclear:
        if re.search(r"\b(?:there'?s\s+a\s+gate|gated|we\s+have\s+one|there\s+is)\b", (utterance or "").lower()):
            return Extraction("yes", UTTERANCE_LOW)
        return None
    return Extraction(reply.value, UTTERANCE_HIGH)


def extract_text(utterance: str, step: Step) -> Optional[Extraction]:
    text = clean(utterance)
    if step.field_key == "unit":
        text = UNIT_LEAD_RE.sub("", text).strip()
    if step.field_key == "gate_code":
        digits = digits_of(text) or spoken_digits(text)
        if digits:
            text = digits
    if not text:
        return None
    return Extraction(text, UTTERANCE_HIGH)


def extract(step: Step, utterance: Optional[str]) -> Optional[Extraction]:
    if not (utterance or "").strip():
        return None
    if step.type in NAME_TYPES:
        return extract_name(utterance)
    if step.type == StepType.phone:
        return extract_phone(utterance)
    if step.type == StepType.address:
        return extract_address(utterance)
    if step.type == StepType.time:
        return extract_time(utterance)
    if step.type == StepType.email:
        return extract_email(utterance)
    if step.type == StepType.select:
        return extract_choice(utterance, step)
    if step.type == StepType.yesno:
        return extract_yes_no(utterance)
    return extract_text(utterance, step)
