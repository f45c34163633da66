# Overview: Event sink for committed mutations; audit storage lives outside the engine.

"""
Audit event sink.

The engine does not store audit logs. After each committed unit of work it
hands one MutationEvent per touched entity to every registered listener,
with before/after field snapshots. Listeners run after commit, so a failing
listener cannot undo the mutation; its error is logged and the remaining
listeners still run.

Usage:
    audit_hooks.register_listener(my_callable)   # my_callable(event)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

from flask import current_app

Listener = Callable[["MutationEvent"], None]

_listeners: list[Listener] = []


@dataclass
class MutationEvent:
    entity_type: str
    entity_id: int | None
    action: str
    actor: Any = None
    before: dict | None = None
    after: dict | None = None
    _entity: Any = field(default=None, repr=False)

    def freeze(self) -> None:
        """Resolve id and after-snapshot from the flushed entity."""
        if self._entity is not None:
            self.entity_id = self._entity.id
            if self.after is None and self.action != "deleted":
                self.after = self._entity.to_dict()
            self._entity = None

    def to_dict(self) -> dict:
        return {
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor": self.actor.to_dict() if self.actor is not None else None,
            "before": self.before,
            "after": self.after,
        }


def register_listener(listener: Listener) -> Listener:
    """Register a listener; returns it so this can be used as a decorator."""
    if listener not in _listeners:
        _listeners.append(listener)
    return listener


def unregister_listener(listener: Listener) -> None:
    if listener in _listeners:
        _listeners.remove(listener)


def clear_listeners() -> None:
    _listeners.clear()


def dispatch(events: list[MutationEvent]) -> None:
    for ev in events:
        for listener in list(_listeners):
            try:
                listener(ev)
            except Exception:
                current_app.logger.exception(
                    "Audit listener %r failed for %s %s", listener, ev.entity_type, ev.entity_id
                )


def log_listener(event: MutationEvent) -> None:
    """Default listener: one INFO line per committed mutation."""
    actor_id = event.actor.user_id if event.actor is not None else None
    current_app.logger.info(
        "audit %s %s#%s by user %s", event.action, event.entity_type, event.entity_id, actor_id
    )
