import re
from typing import Any, List, Optional

from constants.types import Step, StepType, NAME_TYPES
from constants.vocab import (
    MONTHS,
    RELATIVE_DAYS,
    STREET_SUFFIXES,
    TIME_OF_DAY_WORDS,
    URGENCY_PHRASES,
    WEEKDAYS,
)
from .state import ConversationState, RejectReason, ValidationOutcome

TOKEN_RE = re.compile(r"[a-z0-9']+(?:\.[a-z]\.)?")
DIGIT_RE = re.compile(r"\d")
LETTER_RE = re.compile(r"[^\W\d_]")
NAME_CHARS_RE = re.compile(r"^[^\W\d_]+(?:[ '\-\.]+[^\W\d_]+)*\.?$")
EMAIL_RE = re.compile(r"^[\w.+\-]+@[\w\-]+(?:\.[\w\-]+)+$")
STREET_NUMBER_RE = re.compile(r"^\s*\d+[a-z]?\b", re.IGNORECASE)
CLOCK_RE = re.compile(
    r"\b(?:\d{1,2}(?::\d{2})?\s*(?:a\.?m\.?|p\.?m\.?)|\d{1,2}:\d{2}|noon|midnight)(?=\W|$)",
    re.IGNORECASE,
)
DATE_RE = re.compile(r"\b(?:\d{1,2}/\d{1,2}(?:/\d{2,4})?|\d{4}-\d{2}-\d{2}|\d{1,2}(?:st|nd|rd|th))\b", re.IGNORECASE)
BARE_NUMBER_RE = re.compile(r"^\d{3,}$")

YES_NO_VALUES = {"yes": "yes", "no": "no", "true": "yes", "false": "no"}

TYPE_BY_FIELD = {
    "name": StepType.name,
    "full_name": StepType.name,
    "customer_name": StepType.name,
    "first_name": StepType.first_name,
    "last_name": StepType.last_name,
    "phone": StepType.phone,
    "phone_number": StepType.phone,
    "address": StepType.address,
    "time": StepType.time,
    "date_time": StepType.time,
    "email": StepType.email,
}


def digits_of(s: Any) -> str:
    return re.sub(r"\D", "", str(s or ""))


def tokens_of(s: Any) -> list:
    return TOKEN_RE.findall(str(s or "").lower())


def has_letters(s: Any) -> bool:
    return bool(LETTER_RE.search(str(s or "")))


def looks_like_phone(s: Any) -> bool:
    """More than half of the non-space characters are digits, and at least 7 of them."""
    compact = re.sub(r"\s", "", str(s or ""))
    if not compact:
        return False
    digits = len(DIGIT_RE.findall(compact))
    return digits >= 7 and digits / len(compact) > 0.5


def format_phone(digits: str) -> str:
    d = digits_of(digits)
    if len(d) == 11 and d.startswith("1"):
        d = d[1:]
    if len(d) != 10:
        return d
    return f"({d[:3]}) {d[3:6]}-{d[6:]}"


def is_time_expression(s: Any) -> bool:
    text = str(s or "").lower()
    toks = set(tokens_of(text))
    if toks & TIME_OF_DAY_WORDS:
        return True
    if any(_has_phrase(text, p) for p in URGENCY_PHRASES):
        return True
    if CLOCK_RE.search(text) or DATE_RE.search(text):
        return True
    if toks & set(WEEKDAYS) or toks & set(MONTHS):
        return True
    return any(_has_phrase(text, d) for d in RELATIVE_DAYS)


def _has_phrase(text: str, phrase: str) -> bool:
    return re.search(r"(?<![a-z])" + re.escape(phrase) + r"(?![a-z])", text) is not None


def type_for(step: Optional[Step], field_key: str) -> StepType:
    if step is not None:
        return step.type
    return TYPE_BY_FIELD.get(field_key, StepType.text)


# ---------------- per-type rules ----------------

def _check_name(v: str) -> Optional[RejectReason]:
    # phone-shaped first: a number read back into the name field is the common failure
    if looks_like_phone(v):
        return RejectReason.looks_like_phone_number
    if not has_letters(v):
        return RejectReason.no_letters
    if not NAME_CHARS_RE.match(v):
        return RejectReason.invalid_name_format
    return None


def _check_phone(v: str) -> Optional[RejectReason]:
    n = len(digits_of(v))
    if n < 10:
        return RejectReason.not_enough_digits
    if n > 15:
        return RejectReason.too_many_digits
    return None


def _check_address(v: str) -> Optional[RejectReason]:
    if looks_like_phone(v) or not has_letters(v):
        return RejectReason.implausible_address
    toks = tokens_of(v)
    if STREET_NUMBER_RE.match(v) and len(toks) >= 2:
        return None
    if len(v) < 5:
        return RejectReason.implausible_address
    # "tomorrow morning" is an answer to the wrong question
    if is_time_expression(v) and not (set(toks) & STREET_SUFFIXES):
        return RejectReason.implausible_address
    return None


def _check_time(v: str, state: Optional[ConversationState]) -> Optional[RejectReason]:
    toks = tokens_of(v)
    if any(t in STREET_SUFFIXES for t in toks):
        return RejectReason.street_suffix_in_time
    if BARE_NUMBER_RE.match(re.sub(r"[\s\-,.]", "", v)):
        return RejectReason.bare_number_in_time
    if state is not None and _overlaps_address(v, state.value_of("address")):
        return RejectReason.address_in_time
    if not is_time_expression(v):
        return RejectReason.unrecognized_time
    return None


def _contains_run(haystack: List[str], needle: List[str]) -> bool:
    n = len(needle)
    return any(haystack[i:i + n] == needle for i in range(len(haystack) - n + 1))


def _overlaps_address(value: str, address: Any) -> bool:
    if not address:
        return False
    a = tokens_of(address)
    t = tokens_of(value)
    if not a or not t:
        return False
    if a == t:
        return True
    shorter, longer = (t, a) if len(t) <= len(a) else (a, t)
    # whole tokens only: "10 am" is not inside "2110 amsterdam"
    return len(" ".join(shorter)) >= 5 and _contains_run(longer, shorter)


def _check_email(v: str) -> Optional[RejectReason]:
    return None if EMAIL_RE.match(v.strip()) else RejectReason.invalid_email


def _check_select(v: str, step: Optional[Step]) -> Optional[RejectReason]:
    if step is None or not step.options.choices:
        return None
    wanted = v.strip().lower()
    if any(c.lower() == wanted for c in step.options.choices):
        return None
    return RejectReason.invalid_choice


def _check_yesno(v: str) -> Optional[RejectReason]:
    return None if v.strip().lower() in YES_NO_VALUES else RejectReason.invalid_yes_no


def _check_step_rules(v: str, step: Optional[Step]) -> Optional[RejectReason]:
    if step is None:
        return None
    rules = step.validation
    if rules.min_length is not None and len(v.strip()) < rules.min_length:
        return RejectReason.too_short
    if rules.min_digits is not None and len(digits_of(v)) < rules.min_digits:
        return RejectReason.not_enough_digits
    if rules.pattern and not re.search(rules.pattern, v):
        return RejectReason.pattern_mismatch
    return None


def check_type(
    step: Optional[Step],
    field_key: str,
    value: Any,
    state: Optional[ConversationState] = None,
) -> ValidationOutcome:
    """
    Type plausibility for one value. Pure: never touches state, never raises.
    `state` is only read, for the time rule that refuses the stored address.
    """
    if value is None:
        return ValidationOutcome.reject(RejectReason.empty, "type")
    v = str(value).strip()
    if not v:
        return ValidationOutcome.reject(RejectReason.empty, "type")

    kind = type_for(step, field_key)
    if kind in NAME_TYPES:
        reason = _check_name(v)
    elif kind == StepType.phone:
        reason = _check_phone(v)
    elif kind == StepType.address:
        reason = _check_address(v)
    elif kind == StepType.time:
        reason = _check_time(v, state)
    elif kind == StepType.email:
        reason = _check_email(v)
    elif kind == StepType.select:
        reason = _check_select(v, step)
    elif kind == StepType.yesno:
        reason = _check_yesno(v)
    else:
        reason = None

    reason = reason or _check_step_rules(v, step)
    if reason is not None:
        return ValidationOutcome.reject(reason, "type")
    return ValidationOutcome.ok()
