# common/event_bus.py
from __future__ import annotations
import asyncio
import logging
from typing import Awaitable, Callable, Dict, List

logger = logging.getLogger("booking-engine")

Handler = Callable[[dict], "Awaitable[None] | None"]


class EventBus:
    """
    Small async event bus for per-call notifications.
    Usage:
        bus = EventBus()
        async def on_ev(payload): ...
        bus.on("slot_rejected", on_ev)
        await bus.emit("slot_rejected", {"field_key": "name", "reason": "stop_word"})

    Events emitted by the engine: slot_rejected, address_validated,
    terminal_violation, booking_completed, escalated.
    """
    def __init__(self) -> None:
        self._handlers: Dict[str, List[Handler]] = {}

    def on(self, name: str, handler: Handler) -> None:
        self._handlers.setdefault(name, []).append(handler)

    def off(self, name: str, handler: Handler) -> None:
        handlers = self._handlers.get(name, [])
        if handler in handlers:
            handlers.remove(handler)

    async def emit(self, name: str, payload: dict) -> None:
        for h in list(self._handlers.get(name, [])):
            try:
                res = h(payload)
                if asyncio.iscoroutine(res):
                    await res
            except Exception:  # noqa: BLE001 - a listener must not break the call
                logger.exception("[EventBus] handler error for %s", name)
