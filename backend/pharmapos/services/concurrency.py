# Overview: Transaction, locking and retry helpers shared by the engine services.

from __future__ import annotations

import time
from contextlib import contextmanager

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from . import audit_hooks
from .errors import AlreadyProcessed


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; atomic() takes the database
    write lock up front there instead.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute an idempotent READ with retry on transient storage failures.

    Never wrap anything that writes: a commit that failed halfway must be
    resubmitted by the actor, not replayed here.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except OperationalError as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def _begin_immediate() -> None:
    """Take SQLite's RESERVED lock before the first read of the unit of work."""
    if db.engine.dialect.name != "sqlite":
        return
    raw = db.session.connection().connection.dbapi_connection
    if not raw.in_transaction:
        db.session.execute(text("BEGIN IMMEDIATE"))


class UnitOfWork:
    """Collects audit events while a transaction is open."""

    def __init__(self, actor=None):
        self.actor = actor
        self.events: list[audit_hooks.MutationEvent] = []

    def record(self, entity, action: str, before: dict | None = None, after: dict | None = None) -> None:
        """
        Queue an audit event for entity. `after` defaults to a snapshot taken
        at commit time, so ids and flushed values are filled in.
        """
        self.events.append(
            audit_hooks.MutationEvent(
                entity_type=type(entity).__tablename__,
                entity_id=None,
                action=action,
                actor=self.actor,
                before=before,
                after=after,
                _entity=entity,
            )
        )


@contextmanager
def atomic(actor=None):
    """
    Run a block as one database transaction.

    Commits on success and then notifies audit listeners; rolls back on any
    exception. A lost optimistic-lock race (StaleDataError) means another
    transaction already moved the row, surfaced as AlreadyProcessed.
    """
    uow = UnitOfWork(actor)
    try:
        _begin_immediate()
        yield uow
        db.session.flush()
        for ev in uow.events:
            ev.freeze()
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        raise AlreadyProcessed(
            "Record was modified by a concurrent transaction",
            details={"reason": str(exc)},
        ) from exc
    except BaseException:
        db.session.rollback()
        raise

    audit_hooks.dispatch(uow.events)
