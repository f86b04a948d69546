import asyncio

from debounce import Debouncer


def recorder(calls, value):
    async def job():
        calls.append(value)
    return job


async def test_only_last_call_in_window_runs():
    debouncer = Debouncer()
    calls = []
    for q in (1, 2, 3):
        debouncer.schedule(("upsert", "u1", "A"), 0.02, recorder(calls, q))
    await asyncio.sleep(0.08)

    assert calls == [3]
    assert not debouncer.pending(("upsert", "u1", "A"))


async def test_keys_do_not_coalesce_with_each_other():
    debouncer = Debouncer()
    calls = []
    debouncer.schedule(("upsert", "u1", "A"), 0.01, recorder(calls, "A"))
    debouncer.schedule(("upsert", "u1", "B"), 0.01, recorder(calls, "B"))
    await asyncio.sleep(0.05)

    assert sorted(calls) == ["A", "B"]


async def test_cancel_drops_pending_call():
    debouncer = Debouncer()
    calls = []
    debouncer.schedule("k", 0.01, recorder(calls, 1))
    debouncer.cancel("k")
    await asyncio.sleep(0.03)

    assert calls == []


async def test_flush_runs_pending_calls_now():
    debouncer = Debouncer()
    calls = []
    debouncer.schedule("a", 10, recorder(calls, "a"))
    debouncer.schedule("b", 10, recorder(calls, "b"))
    assert debouncer.pending_keys == ["a", "b"]

    await debouncer.flush()

    assert calls == ["a", "b"]
    assert debouncer.pending_keys == []


async def test_failing_job_does_not_break_flush(caplog):
    debouncer = Debouncer()

    async def boom():
        raise RuntimeError("offline")

    debouncer.schedule("k", 10, boom)
    await debouncer.flush()

    assert "Debounced job 'k' failed" in caplog.text
