from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from common.config_loader import EngineSettings
from common.models import Collaborators
from constants.types import Flow, Step
from .firewall import WriteFirewall
from .prompts import REASK_PREFIX, collect_prompt, join_reply
from .state import ConversationState, SlotSource, ValidationOutcome

logger = logging.getLogger("booking-engine")


class TurnAction(str, Enum):
    COLLECT = "COLLECT"
    CONFIRM = "CONFIRM"
    COLLECT_DETAILS = "COLLECT_DETAILS"
    CONFIRM_SPELLING = "CONFIRM_SPELLING"
    CONTINUE = "CONTINUE"
    COMPLETE = "COMPLETE"
    ESCALATE = "ESCALATE"
    ERROR = "ERROR"


@dataclass
class HandlerResult:
    """
    What a turn handler decided.
    reply set     -> speak it now and end the turn with `action`.
    reply is None -> the utterance was consumed; keep advancing the flow,
                     prefixing `ack` to whatever is said next.
    """
    reply: Optional[str] = None
    action: TurnAction = TurnAction.CONTINUE
    ack: str = ""

    @classmethod
    def say(cls, reply: str, action: TurnAction) -> "HandlerResult":
        return cls(reply=reply, action=action)

    @classmethod
    def advance(cls, ack: str = "") -> "HandlerResult":
        return cls(reply=None, action=TurnAction.CONTINUE, ack=ack)

    @classmethod
    def escalate(cls) -> "HandlerResult":
        return cls(reply=None, action=TurnAction.ESCALATE)


@dataclass
class TurnContext:
    flow: Flow
    state: ConversationState
    settings: EngineSettings
    collaborators: Collaborators
    firewall: WriteFirewall
    rejections: List[Dict[str, Any]] = field(default_factory=list)
    events: List[str] = field(default_factory=list)

    async def emit(self, name: str, payload: dict) -> None:
        self.events.append(name)
        bus = self.collaborators.events
        if bus is not None:
            await bus.emit(name, payload)

    async def write(
        self,
        field_key: str,
        value: Any,
        *,
        source: SlotSource = SlotSource.utterance,
        confidence: float,
        is_correction: bool = False,
        bypass_step_gate: bool = False,
    ) -> ValidationOutcome:
        outcome = self.firewall.set_slot(
            self.state,
            field_key,
            value,
            source=source,
            confidence=confidence,
            is_correction=is_correction,
            bypass_step_gate=bypass_step_gate,
        )
        if not outcome.valid:
            entry = {"field_key": field_key, "reason": outcome.reason.value, "rejected_by": outcome.rejected_by}
            self.rejections.append(entry)
            await self.emit("slot_rejected", entry)
        return outcome

    def ask_step(self, step: Step, ack: str = "", *, failed: bool = False) -> HandlerResult:
        """Ask a step's own question and make it the current step."""
        prompt = collect_prompt(step, self.state)
        self.state.bump_ask(step.id)
        self.state.current_step_id = step.id
        return HandlerResult.say(join_reply(ack, REASK_PREFIX if failed else "", prompt), TurnAction.COLLECT)

    def max_attempts(self, step: Step) -> int:
        return step.max_attempts or self.settings.max_attempts

    def register_failure(self, step: Step) -> bool:
        """Count a rejected answer for `step`. True when the step is exhausted."""
        n = self.state.bump_attempt(step.id)
        limit = self.max_attempts(step)
        if n >= limit:
            logger.warning("[Engine] step %s exhausted after %d attempts", step.id, n)
            return True
        return False
