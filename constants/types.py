from __future__ import annotations
from enum import Enum
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class StepType(str, Enum):
    name = "name"
    first_name = "first_name"
    last_name = "last_name"
    phone = "phone"
    address = "address"
    time = "time"
    email = "email"
    select = "select"
    yesno = "yesno"
    text = "text"


NAME_TYPES = frozenset({StepType.name, StepType.first_name, StepType.last_name})


class StepValidation(BaseModel):
    model_config = ConfigDict(frozen=True)

    min_length: Optional[int] = None
    min_digits: Optional[int] = None
    pattern: Optional[str] = None


class StepOptions(BaseModel):
    """Per-type knobs authored in the tenant's booking UI."""
    model_config = ConfigDict(frozen=True)

    # name
    ask_full_name: bool = False
    ask_missing_name_part: bool = True
    last_name_question: Optional[str] = None
    first_name_question: Optional[str] = None
    confirm_spelling: bool = False
    spelling_confirm_prompt: Optional[str] = None
    # address
    address_breakdown: bool = False
    ask_unit: bool = False
    # select
    choices: Tuple[str, ...] = ()
    # time
    service_type: Optional[str] = None


class StepCondition(BaseModel):
    """
    Makes a step's participation depend on current state.
      {state_key: "collected.gate_access", equals: "yes"}
      {state_key: "address_validation.needs_unit", equals: true}
      {state_key: "collected.property_type", in: ["apartment", "condo"]}
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    state_key: str
    equals: Any = None
    in_: Optional[Tuple[Any, ...]] = Field(default=None, alias="in")
    not_null: bool = False


class Step(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    field_key: str
    type: StepType = StepType.text
    label: Optional[str] = None
    prompt: Optional[str] = None
    reprompt: Optional[str] = None
    confirm_prompt: Optional[str] = None
    required: bool = True
    order: int = 0
    validation: StepValidation = Field(default_factory=StepValidation)
    options: StepOptions = Field(default_factory=StepOptions)
    condition: Optional[StepCondition] = None
    max_attempts: Optional[int] = None

    @property
    def display_label(self) -> str:
        return self.label or self.field_key.replace("_", " ")

    @property
    def is_name(self) -> bool:
        return self.type in NAME_TYPES


class Flow(BaseModel):
    model_config = ConfigDict(frozen=True)

    flow_id: str
    flow_name: str = "Booking Flow"
    steps: Tuple[Step, ...] = ()
    confirmation_template: str = (
        "Let me confirm: I have {name} at {phone}, service address {address}. Is that correct?"
    )
    completion_template: str = (
        "Your appointment has been scheduled. Is there anything else I can help you with?"
    )
    source: str = "tenant_config"  # or "default" | "unconfigured"
    tenant_id: Optional[str] = None
    trade: Optional[str] = None
    service_type: Optional[str] = None

    @field_validator("steps")
    @classmethod
    def _sorted_by_order(cls, steps: Tuple[Step, ...]) -> Tuple[Step, ...]:
        return tuple(sorted(steps, key=lambda s: s.order))

    @property
    def is_configured(self) -> bool:
        return len(self.steps) > 0

    def step_by_id(self, step_id: Optional[str]) -> Optional[Step]:
        if not step_id:
            return None
        for s in self.steps:
            if s.id == step_id:
                return s
        return None

    def step_for_field(self, field_key: str) -> Optional[Step]:
        for s in self.steps:
            if s.field_key == field_key:
                return s
        return None

    def step_of_type(self, step_type: StepType) -> Optional[Step]:
        for s in self.steps:
            if s.type == step_type:
                return s
        return None

    def index_of(self, step_id: Optional[str]) -> int:
        for i, s in enumerate(self.steps):
            if s.id == step_id or s.field_key == step_id:
                return i
        return -1

    def required_steps(self) -> List[Step]:
        return [s for s in self.steps if s.required]


def unconfigured_flow(tenant_id: Optional[str] = None) -> Flow:
    return Flow(flow_id="unconfigured", flow_name="Unconfigured", steps=(), source="unconfigured", tenant_id=tenant_id)
