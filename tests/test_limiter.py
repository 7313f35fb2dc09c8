import asyncio
import pytest

from core.limiter import ConcurrencyLimiter


class TestConcurrencyLimiter:
    """Test suite for ConcurrencyLimiter."""

    def test_rejects_non_positive_limit(self):
        with pytest.raises(ValueError):
            ConcurrencyLimiter(max_concurrent=0)

    def test_initial_status(self):
        limiter = ConcurrencyLimiter(max_concurrent=4)
        assert limiter.status() == {"active": 0, "queued": 0, "max_concurrent": 4}

    @pytest.mark.asyncio
    async def test_acquire_below_limit_is_immediate(self):
        limiter = ConcurrencyLimiter(max_concurrent=2)
        await limiter.acquire()
        await limiter.acquire()
        assert limiter.status()["active"] == 2
        limiter.release()
        limiter.release()
        assert limiter.status()["active"] == 0

    def test_release_without_acquire_raises(self):
        limiter = ConcurrencyLimiter(max_concurrent=1)
        with pytest.raises(RuntimeError):
            limiter.release()

    @pytest.mark.asyncio
    async def test_never_exceeds_limit_and_serves_fifo(self):
        """Max 3 of 10 callers run at once; queued callers start in arrival order."""
        limiter = ConcurrencyLimiter(max_concurrent=3)
        running = 0
        peak = 0
        started = []

        async def worker(index):
            nonlocal running, peak
            async with limiter.slot():
                started.append(index)
                running += 1
                peak = max(peak, running)
                assert limiter.status()["active"] <= 3
                await asyncio.sleep(0.01)
                running -= 1

        tasks = []
        for index in range(10):
            tasks.append(asyncio.create_task(worker(index)))
            # Let each task reach acquire() before the next is created
            await asyncio.sleep(0)
        await asyncio.gather(*tasks)

        assert peak == 3
        assert started == list(range(10))
        assert limiter.status() == {"active": 0, "queued": 0, "max_concurrent": 3}

    @pytest.mark.asyncio
    async def test_queued_count_reflects_waiters(self):
        limiter = ConcurrencyLimiter(max_concurrent=1)
        await limiter.acquire()

        waiter = asyncio.create_task(limiter.acquire())
        await asyncio.sleep(0)
        assert limiter.status() == {"active": 1, "queued": 1, "max_concurrent": 1}

        limiter.release()
        await waiter
        # Slot was handed over, not freed
        assert limiter.status() == {"active": 1, "queued": 0, "max_concurrent": 1}
        limiter.release()

    @pytest.mark.asyncio
    async def test_new_caller_cannot_overtake_queue(self):
        limiter = ConcurrencyLimiter(max_concurrent=1)
        order = []
        await limiter.acquire()

        async def take(name):
            await limiter.acquire()
            order.append(name)

        first = asyncio.create_task(take("queued"))
        await asyncio.sleep(0)
        limiter.release()
        late = asyncio.create_task(take("late"))
        await first
        assert order == ["queued"]
        limiter.release()
        await late
        assert order == ["queued", "late"]
        limiter.release()

    @pytest.mark.asyncio
    async def test_cancelled_waiter_leaves_queue(self):
        limiter = ConcurrencyLimiter(max_concurrent=1)
        await limiter.acquire()

        waiter = asyncio.create_task(limiter.acquire())
        await asyncio.sleep(0)
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        assert limiter.status()["queued"] == 0
        limiter.release()
        assert limiter.status()["active"] == 0

    @pytest.mark.asyncio
    async def test_cancel_after_handoff_passes_slot_on(self):
        """A slot handed to a waiter that is then cancelled reaches the next waiter."""
        limiter = ConcurrencyLimiter(max_concurrent=1)
        await limiter.acquire()

        doomed = asyncio.create_task(limiter.acquire())
        survivor = asyncio.create_task(limiter.acquire())
        await asyncio.sleep(0)

        limiter.release()  # hands the slot to `doomed`
        doomed.cancel()    # before it gets to run
        with pytest.raises(asyncio.CancelledError):
            await doomed

        await asyncio.wait_for(survivor, timeout=1)
        assert limiter.status() == {"active": 1, "queued": 0, "max_concurrent": 1}
        limiter.release()
        assert limiter.status()["active"] == 0

    @pytest.mark.asyncio
    async def test_slot_releases_on_exception(self):
        limiter = ConcurrencyLimiter(max_concurrent=1)
        with pytest.raises(ValueError):
            async with limiter.slot():
                raise ValueError("session blew up")
        assert limiter.status()["active"] == 0
