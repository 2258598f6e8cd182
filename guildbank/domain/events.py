"""Domain event dispatch."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, DefaultDict, Iterable, Mapping

EventPayload = Mapping[str, Any]
EventListener = Callable[[EventPayload], Awaitable[None]]

BALANCE_UPDATED = "ledger.balance.updated"
LOAN_TAKEN = "ledger.loan.taken"
LOAN_DELINQUENT = "ledger.loan.delinquent"
LOAN_PAID = "ledger.loan.paid"
TRANSFER_COMPLETED = "ledger.transfer.completed"
BANK_EXPANDED = "ledger.bank.expanded"

LEDGER_EVENTS = frozenset(
    {BALANCE_UPDATED, LOAN_TAKEN, LOAN_DELINQUENT, LOAN_PAID, TRANSFER_COMPLETED, BANK_EXPANDED}
)

logger = logging.getLogger(__name__)


class EventBus:
    """Async pub-sub for committed ledger changes.

    Events are published after the transaction commits; a failing listener is
    logged and never undoes the ledger change.
    """

    def __init__(self) -> None:
        self._listeners: DefaultDict[str, list[EventListener]] = defaultdict(list)

    def subscribe(self, event_name: str, listener: EventListener) -> None:
        if event_name not in LEDGER_EVENTS:
            raise ValueError(f"Unknown ledger event '{event_name}'")
        self._listeners[event_name].append(listener)

    def unsubscribe(self, event_name: str, listener: EventListener) -> None:
        listeners = self._listeners.get(event_name)
        if listeners and listener in listeners:
            listeners.remove(listener)

    async def publish(self, event_name: str, payload: EventPayload) -> int:
        """Deliver ``payload``; return how many listeners handled it."""
        delivered = 0
        for listener in list(self._listeners.get(event_name, ())):
            try:
                await listener(payload)
            except Exception:
                logger.exception("Listener for '%s' failed.", event_name)
            else:
                delivered += 1
        return delivered

    def clear(self) -> None:
        self._listeners.clear()

    def listeners(self, event_name: str) -> Iterable[EventListener]:
        return tuple(self._listeners.get(event_name, ()))
