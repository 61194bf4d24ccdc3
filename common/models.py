## common/models.py
"""
Contracts between the engine and its collaborators, and the record handed off
when a booking completes.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

import yaml
from pydantic import BaseModel, Field

from common.event_bus import EventBus
from common.utils import utcnow


# ---------- Address validation ----------
class AddressConfidence(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class AddressComponents(BaseModel):
    street_number: Optional[str] = None
    street: Optional[str] = None
    unit: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    country: Optional[str] = None


class AddressValidation(BaseModel):
    success: bool
    validated: bool = False
    skipped: bool = False
    confidence: AddressConfidence = AddressConfidence.LOW
    normalized: Optional[str] = None
    formatted_address: Optional[str] = None
    components: AddressComponents = Field(default_factory=AddressComponents)
    needs_unit: bool = False
    place_id: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def skipped_result(cls, raw: str, reason: str) -> "AddressValidation":
        # nothing was checked, so the raw value is usable but unverified
        return cls(success=True, validated=False, skipped=True, confidence=AddressConfidence.MEDIUM,
                   normalized=raw, formatted_address=raw, reason=reason)

    @classmethod
    def failed_result(cls, raw: str, reason: str) -> "AddressValidation":
        return cls(success=False, validated=False, confidence=AddressConfidence.LOW,
                   normalized=raw, formatted_address=raw, reason=reason)

    @property
    def has_city_state(self) -> bool:
        return bool(self.components.city and self.components.state)


# ---------- Calendar ----------
class CalendarSlot(BaseModel):
    start: datetime
    end: datetime
    tech_id: Optional[str] = None


class CalendarResult(BaseModel):
    slots: List[CalendarSlot] = Field(default_factory=list)
    fallback: bool = False
    reason: Optional[str] = None

    @classmethod
    def fallback_result(cls, reason: str) -> "CalendarResult":
        return cls(slots=[], fallback=True, reason=reason)


# ---------- Notifications ----------
class NotificationResult(BaseModel):
    success: bool
    method: str = "sms"
    reason: Optional[str] = None
    message_id: Optional[str] = None


# ---------- Booking hand-off ----------
@dataclass
class BookingRecord:
    tenant_id: Optional[str]
    flow_id: Optional[str]
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    address: Optional[str] = None
    time_preference: Optional[str] = None
    selected_slot: Optional[Dict[str, Any]] = None
    address_validated: bool = False
    fields: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)

    def summarize(self) -> str:
        data = {
            "customer": {
                "name": self.customer_name or "unknown",
                "phone": self.customer_phone or "unknown",
            },
            "address": {
                "value": self.address or "unknown",
                "validated": self.address_validated,
            },
            "appointment": {
                "preference": self.time_preference or None,
                "slot": self.selected_slot or None,
            },
            "fields": self.fields or {},
        }
        return yaml.dump(data, sort_keys=False)


# ---------- Collaborator contracts ----------
@runtime_checkable
class AddressValidator(Protocol):
    async def validate(self, raw_address: str, *, tenant_id: Optional[str] = None, enabled: bool = True) -> AddressValidation: ...


@runtime_checkable
class CalendarLookup(Protocol):
    async def find_available_slots(
        self, tenant_id: Optional[str], date_from: Optional[datetime] = None, service_type: Optional[str] = None
    ) -> CalendarResult: ...


@runtime_checkable
class NotificationSender(Protocol):
    async def send_booking_confirmation(self, tenant_id: Optional[str], booking: BookingRecord) -> NotificationResult: ...


@dataclass
class Collaborators:
    address_validator: Optional[AddressValidator] = None
    calendar: Optional[CalendarLookup] = None
    notifier: Optional[NotificationSender] = None
    events: Optional[EventBus] = None
