"""
Identity firewall: the name / phone / address specific write rules.

Shared between the booking engine (through engine.firewall) and any other caller
that writes caller identity into a slot map, e.g. a CRM lookup that pre-fills
the caller's name before the engine starts.

Stop words are tenant-configurable. The merged set is a pure function of the
tenant key and its extra words, memoised per (tenant, extras); nothing here
holds a mutable process-wide set.
"""
from __future__ import annotations

import logging
from enum import Enum
from functools import lru_cache
from typing import Any, Dict, FrozenSet, Iterable, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from constants.vocab import NAME_STOP_WORDS
from .state import RejectReason, Slot, SlotSource, has_value, provenance_problem
from .validators import digits_of, has_letters, looks_like_phone, tokens_of

logger = logging.getLogger("booking-engine")

NAME_FIELDS = frozenset({"name", "full_name", "customer_name", "caller_name", "first_name", "last_name"})
PHONE_FIELDS = frozenset({"phone", "phone_number", "callback_number"})
ADDRESS_FIELDS = frozenset({"address", "service_address", "street"})


class IdentityKind(str, Enum):
    name = "name"
    phone = "phone"
    address = "address"


@lru_cache(maxsize=256)
def merged_stop_words(tenant_key: str, extras: Tuple[str, ...] = ()) -> FrozenSet[str]:
    merged = NAME_STOP_WORDS | frozenset(w.strip().lower() for w in extras if w and w.strip())
    logger.debug("[Identity] stop words for tenant=%s: %d (+%d)", tenant_key, len(merged), len(extras))
    return merged


class IdentityPolicy(BaseModel):
    """Per-call identity settings, built from tenant config."""
    model_config = ConfigDict(frozen=True)

    tenant_key: str = "default"
    extra_stop_words: Tuple[str, ...] = ()

    @classmethod
    def for_tenant(cls, tenant_key: Optional[str], extras: Iterable[str] = ()) -> "IdentityPolicy":
        return cls(tenant_key=tenant_key or "default", extra_stop_words=tuple(sorted(set(extras))))

    @property
    def stop_words(self) -> FrozenSet[str]:
        return merged_stop_words(self.tenant_key, self.extra_stop_words)


DEFAULT_POLICY = IdentityPolicy()


class IdentityWriteResult(BaseModel):
    accepted: bool
    reason: Optional[RejectReason] = None


def identity_kind(field_key: str) -> Optional[IdentityKind]:
    key = (field_key or "").lower()
    if key in NAME_FIELDS:
        return IdentityKind.name
    if key in PHONE_FIELDS:
        return IdentityKind.phone
    if key in ADDRESS_FIELDS:
        return IdentityKind.address
    return None


def is_stop_word_value(value: str, policy: IdentityPolicy) -> bool:
    toks = tokens_of(value)
    if not toks:
        return False
    stop = policy.stop_words
    # "yes", "it's", "the customer": led by a filler, or nothing but fillers
    return toks[0] in stop or all(t in stop for t in toks)


def check_identity(kind: Optional[IdentityKind], value: Any, policy: IdentityPolicy = DEFAULT_POLICY) -> Optional[RejectReason]:
    if kind is None:
        return None
    v = str(value or "").strip()
    if not v:
        return RejectReason.empty
    if kind == IdentityKind.name:
        if looks_like_phone(v):
            return RejectReason.looks_like_phone_number
        if is_stop_word_value(v, policy):
            return RejectReason.stop_word
        if not has_letters(v):
            return RejectReason.no_letters
        return None
    if kind == IdentityKind.phone:
        return None if len(digits_of(v)) >= 7 else RejectReason.not_enough_digits
    if kind == IdentityKind.address:
        return RejectReason.implausible_address if looks_like_phone(v) or not has_letters(v) else None
    return None


def safe_set_identity_slot(
    slots: Dict[str, Slot],
    field_key: str,
    value: Any,
    *,
    source: SlotSource = SlotSource.utterance,
    confidence: float = 0.0,
    is_correction: bool = False,
    policy: IdentityPolicy = DEFAULT_POLICY,
) -> IdentityWriteResult:
    """Write one identity value into `slots` if it passes the identity rules. Never raises."""
    bad = provenance_problem(source, confidence)
    if bad is not None:
        logger.info("[Identity] rejected %s reason=%s", field_key, bad.value)
        return IdentityWriteResult(accepted=False, reason=bad)
    reason = check_identity(identity_kind(field_key), value, policy)
    if reason is not None:
        logger.info("[Identity] rejected %s reason=%s", field_key, reason.value)
        return IdentityWriteResult(accepted=False, reason=reason)

    existing = slots.get(field_key)
    if existing is not None and existing.confirmed and existing.immutable and not is_correction:
        logger.info("[Identity] rejected %s reason=immutable_slot", field_key)
        return IdentityWriteResult(accepted=False, reason=RejectReason.immutable_slot)

    slots[field_key] = Slot(
        value=str(value).strip(),
        confidence=confidence,
        source=source,
        confirmed=is_correction,
        immutable=is_correction,
        previous_value=existing.value if has_value(existing) else None,
    )
    return IdentityWriteResult(accepted=True)
