import asyncio

import pytest

from switchboard.timers import Debouncer, TimerHandle


class TestTimerHandle:
    @pytest.mark.asyncio
    async def test_fires_after_delay(self):
        calls = []

        async def callback():
            calls.append("fired")

        handle = TimerHandle(0.01, callback)
        await handle.wait()
        assert handle.fired
        assert calls == ["fired"]

    @pytest.mark.asyncio
    async def test_cancel_before_fire(self):
        calls = []

        async def callback():
            calls.append("fired")

        handle = TimerHandle(0.05, callback)
        assert handle.cancel() is True
        await handle.wait()
        assert calls == []
        assert not handle.fired

    @pytest.mark.asyncio
    async def test_cancel_after_fire_lets_callback_finish(self):
        started = asyncio.Event()
        calls = []

        async def callback():
            started.set()
            await asyncio.sleep(0.02)
            calls.append("done")

        handle = TimerHandle(0, callback)
        await started.wait()
        assert handle.cancel() is False
        await handle.wait()
        assert calls == ["done"]

    @pytest.mark.asyncio
    async def test_callback_error_is_logged(self, caplog):
        async def callback():
            raise RuntimeError("boom")

        handle = TimerHandle(0, callback, label="analysis")
        await handle.wait()
        assert "analysis callback failed" in caplog.text


class TestDebouncer:
    @pytest.mark.asyncio
    async def test_burst_collapses_to_one_run(self):
        runs = []

        async def action():
            runs.append(1)

        debouncer = Debouncer(0.03, action)
        for _ in range(5):
            debouncer.trigger()
            await asyncio.sleep(0.005)
        assert debouncer.pending
        await asyncio.sleep(0.08)
        assert runs == [1]

    @pytest.mark.asyncio
    async def test_runs_never_overlap(self):
        active = 0
        max_active = 0

        async def action():
            nonlocal active, max_active
            active += 1
            max_active = max(max_active, active)
            await asyncio.sleep(0.03)
            active -= 1

        debouncer = Debouncer(0, action)
        debouncer.trigger()
        await asyncio.sleep(0.005)
        debouncer.trigger()
        await debouncer.run_now()
        await asyncio.sleep(0.05)
        await debouncer.drain()
        assert max_active == 1

    @pytest.mark.asyncio
    async def test_drain_waits_for_running_pass(self):
        finished = []

        async def action():
            await asyncio.sleep(0.03)
            finished.append(1)

        debouncer = Debouncer(0, action)
        debouncer.trigger()
        await asyncio.sleep(0.005)
        await debouncer.drain()
        assert finished == [1]
        assert not debouncer.pending

    @pytest.mark.asyncio
    async def test_cancel_pending(self):
        runs = []

        async def action():
            runs.append(1)

        debouncer = Debouncer(0.02, action)
        debouncer.trigger()
        debouncer.cancel_pending()
        await asyncio.sleep(0.04)
        assert runs == []

    @pytest.mark.asyncio
    async def test_abort_interrupts_running_pass(self):
        finished = []

        async def action():
            await asyncio.sleep(0.5)
            finished.append(1)

        debouncer = Debouncer(0, action)
        debouncer.trigger()
        await asyncio.sleep(0.01)
        debouncer.abort()
        await asyncio.sleep(0.02)
        assert finished == []
        assert not debouncer.lock.locked()

    @pytest.mark.asyncio
    async def test_run_now_with_override(self):
        calls = []

        async def action():
            calls.append("debounced")

        async def final():
            calls.append("final")

        debouncer = Debouncer(1.0, action)
        await debouncer.run_now(final)
        assert calls == ["final"]
