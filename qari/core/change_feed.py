"""
In-process change notifications backing live queries.

Sessions created with info={"change_feed": feed} record which tables each flush
touched and publish those collection names to the feed once the transaction
commits. A rolled back transaction publishes nothing.
"""

import asyncio
import logging
from itertools import chain
from typing import FrozenSet, Iterable, Set

from sqlalchemy import event
from sqlalchemy.orm import ORMExecuteState, Session

logger = logging.getLogger(__name__)

FEED_INFO_KEY = "change_feed"
_PENDING_INFO_KEY = "pending_collections"


class Subscription:
    """Interest in a set of collections. wait() returns once any of them changed."""

    def __init__(self, collections: FrozenSet[str]) -> None:
        self.collections = collections
        self._changed = asyncio.Event()

    def matches(self, changed: FrozenSet[str]) -> bool:
        return not self.collections.isdisjoint(changed)

    def notify(self) -> None:
        self._changed.set()

    async def wait(self) -> None:
        await self._changed.wait()
        self._changed.clear()


class ChangeFeed:
    def __init__(self) -> None:
        self._subscriptions: Set[Subscription] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, collections: Iterable[str]) -> Subscription:
        subscription = Subscription(frozenset(collections))
        self._subscriptions.add(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        self._subscriptions.discard(subscription)

    def publish(self, collections: Iterable[str]) -> None:
        changed = frozenset(collections)
        if not changed:
            return
        logger.debug("Committed changes to %s", ", ".join(sorted(changed)))
        for subscription in list(self._subscriptions):
            if subscription.matches(changed):
                subscription.notify()


def _record_changes(session: Session, collections: Iterable[str]) -> None:
    session.info.setdefault(_PENDING_INFO_KEY, set()).update(collections)


@event.listens_for(Session, "after_flush")
def _collect_flushed_tables(session: Session, flush_context) -> None:
    if FEED_INFO_KEY not in session.info:
        return
    touched = {
        obj.__table__.name
        for obj in chain(session.new, session.dirty, session.deleted)
        if hasattr(obj, "__table__")
    }
    _record_changes(session, touched)


@event.listens_for(Session, "do_orm_execute")
def _collect_statement_tables(state: ORMExecuteState) -> None:
    # Conditional UPDATE / DELETE statements bypass the unit of work
    if FEED_INFO_KEY not in state.session.info:
        return
    if state.is_update or state.is_delete:
        table = getattr(state.statement, "table", None)
        if table is not None:
            _record_changes(state.session, {table.name})


@event.listens_for(Session, "after_commit")
def _publish_committed(session: Session) -> None:
    pending = session.info.pop(_PENDING_INFO_KEY, None)
    feed = session.info.get(FEED_INFO_KEY)
    if feed is not None and pending:
        feed.publish(pending)


@event.listens_for(Session, "after_rollback")
def _discard_rolled_back(session: Session) -> None:
    session.info.pop(_PENDING_INFO_KEY, None)
