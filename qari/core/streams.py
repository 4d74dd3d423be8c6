"""
Async-iterator combinators used to compose live query subscriptions into view models.

combine_latest: wait for every source, then emit the latest values on any change.
switch_map:     follow the latest outer value, re-subscribing the inner stream each time.
fan_out:        switch_map over a list, one inner subscription per item, recombined.
live_query:     snapshot of a query, re-run after each committed change to its collections.

Closing (aclose) any combined stream cancels its pump tasks and closes every
source it subscribed to, inner subscriptions included.
"""

import asyncio
import enum
import logging
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Iterable,
    List,
    Optional,
    Sequence,
    Tuple,
    TypeVar,
)

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from qari.core.change_feed import ChangeFeed

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

_DONE = object()
_MISSING = object()
_OUTER = "outer"


async def _close(source: Any) -> None:
    aclose = getattr(source, "aclose", None)
    if aclose is not None:
        await aclose()


async def _pump(source: AsyncIterator[Any], queue: asyncio.Queue, tag: Any) -> None:
    """Forward every item of `source` into `queue` as (tag, item, error) triples."""
    try:
        async for item in source:
            await queue.put((tag, item, None))
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        await queue.put((tag, None, exc))
    else:
        await queue.put((tag, _DONE, None))
    finally:
        await _close(source)


async def _cancel(tasks: Iterable[asyncio.Task]) -> None:
    tasks = [t for t in tasks if t is not None]
    for task in tasks:
        task.cancel()
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)


async def just(value: T) -> AsyncIterator[T]:
    yield value


async def amap(source: AsyncIterator[T], fn: Callable[[T], R]) -> AsyncIterator[R]:
    try:
        async for item in source:
            yield fn(item)
    finally:
        await _close(source)


async def distinct_until_changed(source: AsyncIterator[T]) -> AsyncIterator[T]:
    previous: Any = _MISSING
    try:
        async for item in source:
            if item != previous:
                previous = item
                yield item
    finally:
        await _close(source)


async def combine_latest(*sources: AsyncIterator[Any]) -> AsyncIterator[Tuple[Any, ...]]:
    """
    Emit a tuple of the latest value of every source.
    Nothing is emitted until each source produced at least one value; afterwards
    every emission of any source produces a new tuple. The first source error is raised.
    """
    if not sources:
        return
    queue: asyncio.Queue = asyncio.Queue()
    tasks = [asyncio.create_task(_pump(source, queue, index)) for index, source in enumerate(sources)]
    latest: List[Any] = [_MISSING] * len(sources)
    active = len(sources)
    try:
        while active:
            index, item, error = await queue.get()
            if error is not None:
                raise error
            if item is _DONE:
                active -= 1
                if latest[index] is _MISSING:
                    # A source ended without a value: the join can never be complete
                    return
                continue
            latest[index] = item
            if all(value is not _MISSING for value in latest):
                yield tuple(latest)
    finally:
        await _cancel(tasks)


class SwitchState(enum.Enum):
    IDLE = "idle"  # waiting for an outer value
    SUBSCRIBED = "subscribed"  # inner subscription open for the latest outer value
    DRAINING = "draining"  # outer ended, inner still open
    DONE = "done"


class SwitchMap:
    """
    Re-subscribe on outer change.

    Every outer value closes the current inner subscription and opens
    project(value). Items from a superseded inner subscription are dropped by
    generation number. Ends when the outer stream and the last inner stream
    have both ended.
    """

    def __init__(
        self,
        outer: AsyncIterator[T],
        project: Callable[[T], AsyncIterator[R]],
    ) -> None:
        self._outer = outer
        self._project = project
        self.state = SwitchState.IDLE
        self.generation = 0
        self._queue: asyncio.Queue = asyncio.Queue()
        self._outer_task: Optional[asyncio.Task] = None
        self._inner_task: Optional[asyncio.Task] = None

    def __aiter__(self) -> AsyncIterator[R]:
        return self._run()

    async def _resubscribe(self, value: Any) -> None:
        await _cancel([self._inner_task])
        self.generation += 1
        inner = self._project(value)
        self._inner_task = asyncio.create_task(_pump(inner, self._queue, self.generation))
        self.state = SwitchState.SUBSCRIBED

    async def _run(self) -> AsyncIterator[R]:
        self._outer_task = asyncio.create_task(_pump(self._outer, self._queue, _OUTER))
        try:
            while self.state is not SwitchState.DONE:
                tag, item, error = await self._queue.get()
                if tag != _OUTER and tag != self.generation:
                    continue  # stale inner subscription
                if error is not None:
                    raise error
                if tag == _OUTER:
                    if item is _DONE:
                        self.state = (
                            SwitchState.DRAINING
                            if self.state is SwitchState.SUBSCRIBED
                            else SwitchState.DONE
                        )
                    else:
                        await self._resubscribe(item)
                    continue
                if item is _DONE:
                    self._inner_task = None
                    self.state = (
                        SwitchState.DONE
                        if self.state is SwitchState.DRAINING
                        else SwitchState.IDLE
                    )
                    continue
                yield item
        finally:
            await _cancel([self._inner_task, self._outer_task])
            self._inner_task = None
            self.state = SwitchState.DONE


def switch_map(outer: AsyncIterator[T], project: Callable[[T], AsyncIterator[R]]) -> AsyncIterator[R]:
    return SwitchMap(outer, project).__aiter__()


def fan_out(
    outer: AsyncIterator[Sequence[T]],
    inner_for_item: Callable[[T], AsyncIterator[Any]],
    combine: Callable[[List[Any]], R] = list,
) -> AsyncIterator[R]:
    """
    For each outer list, subscribe one inner stream per item and emit combine([latest per item]).
    An empty list emits combine([]) once without opening any inner subscription.
    """

    def project(items: Sequence[T]) -> AsyncIterator[R]:
        items = list(items)
        if not items:
            return just(combine([]))
        return amap(
            combine_latest(*(inner_for_item(item) for item in items)),
            lambda values: combine(list(values)),
        )

    return switch_map(outer, project)


async def live_query(
    session_factory: async_sessionmaker,
    feed: ChangeFeed,
    collections: Iterable[str],
    fetch: Callable[[AsyncSession], Awaitable[T]],
) -> AsyncIterator[T]:
    """Initial snapshot of fetch(), then a fresh snapshot after every committed change to `collections`."""
    collections = tuple(collections)
    # Subscribe before the first read so no commit between read and wait is missed
    subscription = feed.subscribe(collections)
    try:
        while True:
            async with session_factory() as session:
                snapshot = await fetch(session)
            yield snapshot
            await subscription.wait()
    finally:
        feed.unsubscribe(subscription)
        logger.debug("Released live query on %s", ", ".join(collections))
