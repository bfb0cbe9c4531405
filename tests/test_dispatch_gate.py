import asyncio

from app.services.dispatch_gate import DispatchGate


def test_wait_turn_spaces_consecutive_starts(clock):
    gate = DispatchGate(max_parallel=2, min_spacing_seconds=1.0, clock=clock, sleep=clock.sleep)

    async def scenario():
        starts = []
        for _ in range(3):
            await gate.wait_turn()
            starts.append(clock.now)
        return starts

    starts = asyncio.run(scenario())
    assert starts[1] - starts[0] >= 1.0
    assert starts[2] - starts[1] >= 1.0
    assert clock.sleeps == [1.0, 1.0]


def test_wait_turn_skips_sleep_when_spacing_elapsed(clock):
    gate = DispatchGate(min_spacing_seconds=1.0, clock=clock, sleep=clock.sleep)

    async def scenario():
        await gate.wait_turn()
        clock.advance(5)
        await gate.wait_turn()

    asyncio.run(scenario())
    assert clock.sleeps == []


def test_slot_caps_parallel_calls():
    gate = DispatchGate(max_parallel=2)
    peak = 0

    async def worker():
        nonlocal peak
        async with gate.slot():
            peak = max(peak, gate.active)
            await asyncio.sleep(0.01)

    async def scenario():
        await asyncio.gather(*(worker() for _ in range(5)))

    asyncio.run(scenario())
    assert peak == 2
    assert gate.active == 0


def test_slot_holds_release_delay(clock):
    gate = DispatchGate(max_parallel=1, release_delay_seconds=2.0, clock=clock, sleep=clock.sleep)

    async def scenario():
        async with gate.slot():
            pass

    asyncio.run(scenario())
    assert clock.sleeps == [2.0]
    assert gate.active == 0
