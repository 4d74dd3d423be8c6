"""Stream combinators over controllable in-memory sources."""

import asyncio
from typing import List

import pytest

from qari.core.streams import SwitchMap, SwitchState, combine_latest, distinct_until_changed, fan_out

END = object()


async def from_queue(queue: asyncio.Queue, closed: List[str], name: str):
    """Yield queue items until END; record `name` in `closed` when finalized."""
    try:
        while True:
            item = await queue.get()
            if item is END:
                return
            if isinstance(item, Exception):
                raise item
            yield item
    finally:
        closed.append(name)


async def next_item(stream, timeout: float = 2.0):
    return await asyncio.wait_for(stream.__anext__(), timeout)


# ----- combine_latest -----
@pytest.mark.asyncio
async def test_combine_latest_waits_for_every_source() -> None:
    closed: List[str] = []
    qa, qb = asyncio.Queue(), asyncio.Queue()
    combined = combine_latest(from_queue(qa, closed, "a"), from_queue(qb, closed, "b"))

    qa.put_nowait(1)
    pending = asyncio.create_task(next_item(combined))
    await asyncio.sleep(0.05)
    assert not pending.done()

    qb.put_nowait("x")
    assert await pending == (1, "x")

    qa.put_nowait(2)
    assert await next_item(combined) == (2, "x")
    qb.put_nowait("y")
    assert await next_item(combined) == (2, "y")

    await combined.aclose()
    assert sorted(closed) == ["a", "b"]


@pytest.mark.asyncio
async def test_combine_latest_raises_source_error_and_closes_others() -> None:
    closed: List[str] = []
    qa, qb = asyncio.Queue(), asyncio.Queue()
    combined = combine_latest(from_queue(qa, closed, "a"), from_queue(qb, closed, "b"))
    qa.put_nowait(1)
    qb.put_nowait(2)
    assert await next_item(combined) == (1, 2)

    qb.put_nowait(RuntimeError("listener failed"))
    with pytest.raises(RuntimeError, match="listener failed"):
        await next_item(combined)
    assert sorted(closed) == ["a", "b"]


@pytest.mark.asyncio
async def test_combine_latest_ends_when_a_source_ends_empty() -> None:
    closed: List[str] = []
    qa, qb = asyncio.Queue(), asyncio.Queue()
    combined = combine_latest(from_queue(qa, closed, "a"), from_queue(qb, closed, "b"))
    qa.put_nowait(1)
    qb.put_nowait(END)
    with pytest.raises(StopAsyncIteration):
        await next_item(combined)


# ----- switch_map -----
@pytest.mark.asyncio
async def test_switch_map_resubscribes_and_releases_previous_inner() -> None:
    closed: List[str] = []
    outer_q = asyncio.Queue()
    inner_qs = {"a": asyncio.Queue(), "b": asyncio.Queue()}
    switch = SwitchMap(
        from_queue(outer_q, closed, "outer"),
        lambda key: from_queue(inner_qs[key], closed, key),
    )
    stream = switch.__aiter__()

    outer_q.put_nowait("a")
    inner_qs["a"].put_nowait(1)
    assert await next_item(stream) == 1
    assert switch.state is SwitchState.SUBSCRIBED
    assert switch.generation == 1

    outer_q.put_nowait("b")
    inner_qs["b"].put_nowait(10)
    assert await next_item(stream) == 10
    assert switch.generation == 2
    assert closed == ["a"]

    # The superseded subscription is gone: nothing it could produce reaches the consumer
    inner_qs["a"].put_nowait(2)
    inner_qs["b"].put_nowait(11)
    assert await next_item(stream) == 11

    await stream.aclose()
    assert switch.state is SwitchState.DONE
    assert sorted(closed) == ["a", "b", "outer"]


@pytest.mark.asyncio
async def test_switch_map_drains_last_inner_after_outer_ends() -> None:
    closed: List[str] = []
    outer_q = asyncio.Queue()
    inner_q = asyncio.Queue()
    switch = SwitchMap(from_queue(outer_q, closed, "outer"), lambda _: from_queue(inner_q, closed, "inner"))
    stream = switch.__aiter__()

    outer_q.put_nowait("only")
    outer_q.put_nowait(END)
    inner_q.put_nowait(1)
    assert await next_item(stream) == 1
    inner_q.put_nowait(2)
    assert await next_item(stream) == 2

    inner_q.put_nowait(END)
    with pytest.raises(StopAsyncIteration):
        await next_item(stream)
    assert switch.state is SwitchState.DONE


@pytest.mark.asyncio
async def test_switch_map_propagates_inner_error() -> None:
    closed: List[str] = []
    outer_q, inner_q = asyncio.Queue(), asyncio.Queue()
    switch = SwitchMap(from_queue(outer_q, closed, "outer"), lambda _: from_queue(inner_q, closed, "inner"))
    stream = switch.__aiter__()
    outer_q.put_nowait("x")
    inner_q.put_nowait(ValueError("bad snapshot"))
    with pytest.raises(ValueError):
        await next_item(stream)
    assert "outer" in closed


# ----- fan_out -----
@pytest.mark.asyncio
async def test_fan_out_empty_list_emits_once_without_inner() -> None:
    closed: List[str] = []
    outer_q = asyncio.Queue()
    opened: List[str] = []

    def inner(item):
        opened.append(item)
        raise AssertionError("no inner subscription expected")

    stream = fan_out(from_queue(outer_q, closed, "outer"), inner)
    outer_q.put_nowait([])
    assert await next_item(stream) == []
    assert opened == []
    await stream.aclose()


@pytest.mark.asyncio
async def test_fan_out_combines_one_subscription_per_item() -> None:
    closed: List[str] = []
    outer_q = asyncio.Queue()
    inner_qs = {name: asyncio.Queue() for name in ("omar", "aisha", "zaid")}
    stream = fan_out(
        from_queue(outer_q, closed, "outer"),
        lambda name: from_queue(inner_qs[name], closed, name),
        combine=lambda values: sorted(values),
    )

    outer_q.put_nowait(["omar", "aisha"])
    inner_qs["omar"].put_nowait("omar:absent")
    inner_qs["aisha"].put_nowait("aisha:present")
    assert await next_item(stream) == ["aisha:present", "omar:absent"]

    inner_qs["omar"].put_nowait("omar:present")
    assert await next_item(stream) == ["aisha:present", "omar:present"]

    # Roster change: every per-item subscription is replaced
    outer_q.put_nowait(["zaid"])
    inner_qs["zaid"].put_nowait("zaid:present")
    assert await next_item(stream) == ["zaid:present"]
    assert sorted(closed) == ["aisha", "omar"]

    await stream.aclose()
    assert sorted(closed) == ["aisha", "omar", "outer", "zaid"]


# ----- distinct_until_changed -----
@pytest.mark.asyncio
async def test_distinct_until_changed_drops_repeats() -> None:
    async def source():
        for item in (1, 1, 2, 2, 2, 1):
            yield item

    assert [x async for x in distinct_until_changed(source())] == [1, 2, 1]
