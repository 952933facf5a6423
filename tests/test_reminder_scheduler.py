import asyncio

import pytest

from datamodel import Event
from events import bus, E
from world.reminder import ReminderScheduler, format_reminder

from conftest import FakeSink, jst, read_events, write_events

NOW = jst(2026, 1, 12, 9, 30, 15)


def record(event_id, scheduled_at, title, notified=False) -> dict:
    return {"id": event_id, "scheduledAt": scheduled_at, "title": title, "notified": notified}


def make_scheduler(store, sink, now=NOW) -> ReminderScheduler:
    return ReminderScheduler(store, sink, interval_seconds=0.01, clock=lambda: now)


@pytest.fixture
def seeded(events_path):
    def seed(*records):
        events_path.parent.mkdir(parents=True, exist_ok=True)
        write_events(events_path, list(records))
    return seed


class TestTick:
    async def test_delivers_due_event(self, store, sink, seeded, events_path):
        seeded(record(1, "2026-01-12T09:30:00+09:00", "Standup"))
        scheduler = make_scheduler(store, sink)

        assert await scheduler.tick() == 1
        assert len(sink.sent) == 1
        channel, text = sink.sent[0]
        assert channel == "C0TARGET"
        assert "Standup" in text
        assert "2026-01-12 09:30" in text
        assert read_events(events_path)[0]["notified"] is True

    async def test_same_minute_batch_single_save(self, store, sink, seeded, backend, events_path):
        seeded(
            record(1, "2026-01-12T09:30:00+09:00", "a"),
            record(2, "2026-01-12T09:30:00+09:00", "b"),
            record(3, "2026-01-12T09:31:00+09:00", "c"),
        )
        scheduler = make_scheduler(store, sink)

        assert await scheduler.tick() == 2
        assert backend.write_count == 1
        assert [r["notified"] for r in read_events(events_path)] == [True, True, False]

    async def test_not_due_means_no_send_and_no_save(self, store, sink, seeded, backend):
        seeded(
            record(1, "2026-01-12T09:29:00+09:00", "past"),
            record(2, "2026-01-12T09:31:00+09:00", "future"),
        )
        scheduler = make_scheduler(store, sink)

        assert await scheduler.tick() == 0
        assert sink.sent == []
        assert backend.write_count == 0

    async def test_missed_minute_is_never_retried(self, store, sink, seeded, events_path):
        seeded(record(1, "2026-01-12T09:29:00+09:00", "missed"))
        for minute in (30, 31, 45):
            await make_scheduler(store, sink, now=jst(2026, 1, 12, 9, minute)).tick()
        assert sink.sent == []
        assert read_events(events_path)[0]["notified"] is False

    async def test_already_notified_is_skipped(self, store, sink, seeded):
        seeded(record(1, "2026-01-12T09:30:00+09:00", "done", notified=True))
        assert await make_scheduler(store, sink).tick() == 0
        assert sink.sent == []

    async def test_second_tick_in_same_minute_does_not_resend(self, store, sink, seeded):
        seeded(record(1, "2026-01-12T09:30:00+09:00", "once"))
        scheduler = make_scheduler(store, sink)
        await scheduler.tick()
        await scheduler.tick()
        assert len(sink.sent) == 1

    async def test_failure_does_not_block_others(self, store, seeded, backend, events_path):
        seeded(
            record(1, "2026-01-12T09:30:00+09:00", "fails"),
            record(2, "2026-01-12T09:30:00+09:00", "raises"),
            record(3, "2026-01-12T09:30:00+09:00", "works"),
        )
        sink = FakeSink(results=[False, RuntimeError("boom"), True])
        scheduler = make_scheduler(store, sink)

        assert await scheduler.tick() == 1
        assert len(sink.sent) == 3
        assert [r["notified"] for r in read_events(events_path)] == [False, False, True]
        assert backend.write_count == 1

    async def test_failed_delivery_retried_within_same_minute(self, store, seeded, events_path):
        seeded(record(1, "2026-01-12T09:30:00+09:00", "flaky"))
        sink = FakeSink(results=[False, True])
        scheduler = make_scheduler(store, sink)

        assert await scheduler.tick() == 0
        assert await scheduler.tick() == 1
        assert read_events(events_path)[0]["notified"] is True

    async def test_all_failures_skip_save(self, store, seeded, backend):
        seeded(record(1, "2026-01-12T09:30:00+09:00", "a"))
        await make_scheduler(store, FakeSink(results=[False])).tick()
        assert backend.write_count == 0

    async def test_delivery_disabled_without_channel(self, store, seeded, events_path, log_messages):
        seeded(record(1, "2026-01-12T09:30:00+09:00", "a"))
        sink = FakeSink(channel_id="")
        assert await make_scheduler(store, sink).tick() == 0
        assert sink.sent == []
        assert read_events(events_path)[0]["notified"] is False
        assert any("TARGET_CHANNEL_ID" in m for m in log_messages)

    async def test_idle_tick_without_channel_does_not_warn(self, store, seeded, log_messages):
        seeded(record(1, "2026-01-12T09:31:00+09:00", "later"))
        assert await make_scheduler(store, FakeSink(channel_id="")).tick() == 0
        assert not any("TARGET_CHANNEL_ID" in m for m in log_messages)

    async def test_unparsable_time_is_skipped(self, store, sink, seeded, events_path):
        seeded(
            record(1, "garbage", "broken"),
            record(2, "2026-01-12T09:30:00+09:00", "ok"),
        )
        assert await make_scheduler(store, sink).tick() == 1
        assert [r["notified"] for r in read_events(events_path)] == [False, True]
        assert read_events(events_path)[0]["scheduledAt"] == "garbage"

    async def test_due_key_uses_fixed_offset(self, store, sink, seeded):
        seeded(record(1, "2026-01-12T00:30:00+00:00", "utc stored"))
        assert await make_scheduler(store, sink).tick() == 1

    async def test_concurrent_add_is_not_lost(self, store, seeded, events_path):
        seeded(record(1, "2026-01-12T09:30:00+09:00", "due"))

        class SlowSink(FakeSink):
            async def send(self, text):
                await store.add("2026-02-01T10:00:00+09:00", "added meanwhile")
                return await super().send(text)

        await make_scheduler(store, SlowSink()).tick()
        records = read_events(events_path)
        assert [(r["id"], r["notified"]) for r in records] == [(1, True), (2, False)]


class TestOverlapGuard:
    async def test_overlapping_tick_is_skipped(self, store, seeded):
        seeded(record(1, "2026-01-12T09:30:00+09:00", "a"))
        release = asyncio.Event()
        entered = asyncio.Event()

        class BlockingSink(FakeSink):
            async def send(self, text):
                entered.set()
                await release.wait()
                return await super().send(text)

        sink = BlockingSink()
        scheduler = make_scheduler(store, sink)

        first = asyncio.create_task(scheduler.tick())
        await asyncio.wait_for(entered.wait(), timeout=2)
        assert scheduler.get_status()["tick_in_progress"] is True
        assert await scheduler.tick() == 0

        release.set()
        assert await first == 1
        assert len(sink.sent) == 1


class TestMainLoop:
    async def test_loop_survives_tick_errors_and_stops(self, store, sink):
        scheduler = make_scheduler(store, sink)
        calls = 0
        shutdown = asyncio.Event()

        async def failing_tick():
            nonlocal calls
            calls += 1
            if calls >= 3:
                shutdown.set()
            raise RuntimeError("tick failed")

        scheduler.tick = failing_tick
        await asyncio.wait_for(scheduler.main_loop(shutdown), timeout=2)
        assert calls >= 3
        assert scheduler.get_status()["running"] is False

    async def test_status_while_running(self, store, sink):
        scheduler = make_scheduler(store, sink)
        shutdown = asyncio.Event()
        task = asyncio.create_task(scheduler.main_loop(shutdown))
        await asyncio.sleep(0.05)

        status = scheduler.get_status()
        assert status["running"] is True
        assert status["tick_count"] >= 1
        assert status["delivery_enabled"] is True

        shutdown.set()
        await asyncio.wait_for(task, timeout=2)


class TestBusEvents:
    async def test_emits_sent_and_failed(self, store, seeded):
        seeded(
            record(1, "2026-01-12T09:30:00+09:00", "ok"),
            record(2, "2026-01-12T09:30:00+09:00", "bad"),
        )
        seen = []

        def on_sent(record):
            seen.append(("sent", record.id))

        def on_failed(record):
            seen.append(("failed", record.id))

        bus.add_listener(E.REMINDER_SENT, on_sent)
        bus.add_listener(E.REMINDER_FAILED, on_failed)
        try:
            await make_scheduler(store, FakeSink(results=[True, False])).tick()
        finally:
            bus.remove_listener(E.REMINDER_SENT, on_sent)
            bus.remove_listener(E.REMINDER_FAILED, on_failed)

        assert seen == [("sent", 1), ("failed", 2)]

    async def test_listeners_do_not_break_delivery_or_flags(self, store, sink, seeded, events_path):
        seeded(
            record(1, "2026-01-12T09:30:00+09:00", "first"),
            record(2, "2026-01-12T09:30:00+09:00", "second"),
        )
        payloads = []

        def on_sent(**kwargs):
            payloads.append(kwargs)

        bus.add_listener(E.REMINDER_SENT, on_sent)
        try:
            scheduler = make_scheduler(store, sink)
            assert await scheduler.tick() == 2
            assert await scheduler.tick() == 0
        finally:
            bus.remove_listener(E.REMINDER_SENT, on_sent)

        assert len(sink.sent) == 2
        assert [p["record"].title for p in payloads] == ["first", "second"]
        assert [r["notified"] for r in read_events(events_path)] == [True, True]

    async def test_add_emits_created_record(self, store):
        created = []

        def on_created(record):
            created.append(record)

        bus.add_listener(E.EVENT_CREATED, on_created)
        try:
            event = await store.add("2026-01-12T09:30:00+09:00", "Standup")
        finally:
            bus.remove_listener(E.EVENT_CREATED, on_created)

        assert created == [event]


def test_format_reminder():
    text = format_reminder(Event(id=1, scheduled_at="2026-01-12T09:30:00+09:00", title="Standup"))
    assert text == "⏰ 事件提醒\n2026-01-12 09:30  Standup"
