import asyncio
import unittest

from worklogbot.geo_sampler import FAILURE_TIMEOUT, SampleResult
from worklogbot.models import STATE_IDLE, STATE_WORKING, ZONE_CRITICAL, ZONE_FAR, Coordinate
from worklogbot.session_store import SessionStore
from worklogbot.settings_provider import SettingsProvider
from worklogbot.storage import KeyValueStore
from worklogbot.tracker import TRANSITION_AUTO_START, TRANSITION_AUTO_STOP, WorkTracker

WORK = Coordinate(0.0, 0.0)
# ~6004 m к северу от WORK
FAR_AWAY = Coordinate(0.054, 0.0)
# ~2001 m
APPROACHING = Coordinate(0.018, 0.0)


class DummyLogger:
    def __init__(self):
        self.infos = []

    def debug(self, *args, **kwargs):
        pass

    def info(self, msg, *args):
        self.infos.append(msg % args if args else msg)

    def warning(self, *args, **kwargs):
        pass

    def error(self, *args, **kwargs):
        pass

    def exception(self, *args, **kwargs):
        pass


class ScriptedSampler:
    def __init__(self, results=None):
        self.results = list(results or [])
        self.calls = 0

    def queue(self, *results):
        self.results.extend(results)

    async def request_sample(self):
        self.calls += 1
        return self.results.pop(0)


class GatedSampler:
    def __init__(self, coordinate):
        self.coordinate = coordinate
        self.gate = asyncio.Event()

    async def request_sample(self):
        await self.gate.wait()
        return SampleResult(coordinate=self.coordinate)


class Clock:
    def __init__(self, start=1_700_000_000_000):
        self.now = start

    def __call__(self):
        return self.now


async def never_sleep(delay):
    await asyncio.Event().wait()


def fix(coordinate):
    return SampleResult(coordinate=coordinate)


def failure():
    return SampleResult(failure=FAILURE_TIMEOUT)


class TrackerTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.logger = DummyLogger()
        self.kv = KeyValueStore(None, self.logger)
        self.settings = SettingsProvider(self.kv, self.logger)
        self.settings.load()
        self.sessions = SessionStore(self.kv, self.logger)
        self.sessions.init()
        self.clock = Clock()
        self.transitions = []

    def build(self, sampler, sleep=never_sleep):
        tracker = WorkTracker(
            self.sessions,
            self.settings,
            sampler,
            self.logger,
            clock=self.clock,
            sleep=sleep,
        )

        async def on_transition(kind, session, distance):
            self.transitions.append((kind, session.id))

        tracker.add_transition_listener(on_transition)
        tracker.start(sample_immediately=False)
        self.addAsyncCleanup(tracker.stop)
        return tracker


class AutoDetectionScenarioTests(TrackerTestCase):
    async def test_arrival_starts_and_departure_stops(self):
        self.settings.update(work_location=WORK, radius_meters=200, auto_log=True)
        sampler = ScriptedSampler([fix(WORK)])
        tracker = self.build(sampler)

        await tracker.run_sample()

        self.assertEqual(self.sessions.state, STATE_WORKING)
        self.assertEqual(len(self.sessions.sessions), 1)
        opened = self.sessions.sessions[0]
        self.assertIsNone(opened.end_time)
        self.assertEqual(tracker.scheduler.next_delay_ms, 20_000)
        await tracker.drain_notifications()
        self.assertEqual(self.transitions, [(TRANSITION_AUTO_START, opened.id)])

        t0 = self.clock.now
        self.clock.now += 45 * 60_000
        sampler.queue(fix(FAR_AWAY))
        await tracker.run_sample()

        self.assertEqual(tracker.scheduler.next_delay_ms, 300_000)
        self.assertEqual(self.sessions.state, STATE_IDLE)
        closed = self.sessions.sessions[0]
        self.assertEqual(closed.id, opened.id)
        self.assertEqual(closed.end_time, self.clock.now)
        self.assertEqual(closed.duration_minutes, (self.clock.now - t0) / 60000)
        self.assertIsNone(self.sessions.active_session_id)
        await tracker.drain_notifications()
        self.assertEqual(self.transitions[-1], (TRANSITION_AUTO_STOP, opened.id))

    async def test_no_work_location_keeps_default_cadence(self):
        sampler = ScriptedSampler([fix(WORK), fix(FAR_AWAY), fix(APPROACHING)])
        tracker = self.build(sampler)

        for _ in range(3):
            await tracker.run_sample()
            self.assertEqual(tracker.scheduler.next_delay_ms, 60_000)

        self.assertTrue(self.settings.current().auto_log)
        self.assertEqual(self.sessions.sessions, [])
        self.assertEqual(self.transitions, [])

    async def test_repeated_failures_rearm_at_default_without_transitions(self):
        self.settings.update(work_location=WORK, radius_meters=200, auto_log=True)
        sampler = ScriptedSampler([fix(APPROACHING), failure(), failure(), failure()])
        tracker = self.build(sampler)

        await tracker.run_sample()
        self.assertEqual(tracker.scheduler.next_delay_ms, 120_000)
        armed = tracker.scheduler.armed_count

        for attempt in range(1, 4):
            result = await tracker.run_sample()
            self.assertFalse(result.ok)
            self.assertEqual(tracker.scheduler.next_delay_ms, 60_000)
            self.assertEqual(tracker.scheduler.armed_count, armed + attempt)
            self.assertTrue(tracker.scheduler.has_pending)

        self.assertEqual(self.sessions.sessions, [])
        self.assertEqual(self.transitions, [])
        # последняя известная точка остаётся для отображения
        self.assertEqual(tracker.current_location, APPROACHING)
        self.assertEqual(tracker.snapshot().last_sample_failure, FAILURE_TIMEOUT)

    async def test_failure_while_working_does_not_stop(self):
        self.settings.update(work_location=WORK, radius_meters=200, auto_log=True)
        tracker = self.build(ScriptedSampler([fix(WORK), failure()]))

        await tracker.run_sample()
        await tracker.run_sample()

        self.assertEqual(self.sessions.state, STATE_WORKING)
        await tracker.drain_notifications()
        self.assertEqual(len(self.transitions), 1)

    async def test_auto_log_disabled_leaves_manual_state(self):
        self.settings.update(work_location=WORK, radius_meters=200, auto_log=False)
        sampler = ScriptedSampler([fix(WORK)])
        tracker = self.build(sampler)

        await tracker.run_sample()
        self.assertEqual(self.sessions.state, STATE_IDLE)
        self.assertEqual(tracker.scheduler.next_delay_ms, 20_000)

        tracker.toggle()
        sampler.queue(fix(FAR_AWAY))
        await tracker.run_sample()

        self.assertEqual(self.sessions.state, STATE_WORKING)
        self.assertEqual(tracker.scheduler.next_delay_ms, 300_000)
        self.assertEqual(self.transitions, [])

    async def test_stays_working_inside_radius(self):
        self.settings.update(work_location=WORK, radius_meters=200, auto_log=True)
        tracker = self.build(ScriptedSampler([fix(WORK), fix(Coordinate(0.001, 0.0))]))

        await tracker.run_sample()
        await tracker.run_sample()

        self.assertEqual(len(self.sessions.sessions), 1)
        self.assertEqual(self.sessions.state, STATE_WORKING)

    async def test_critical_buffer_does_not_start_session(self):
        # 400 m: внутри буфера, но вне радиуса
        self.settings.update(work_location=WORK, radius_meters=200, auto_log=True)
        tracker = self.build(ScriptedSampler([fix(Coordinate(0.0036, 0.0))]))

        await tracker.run_sample()

        self.assertEqual(tracker.scheduler.next_delay_ms, 20_000)
        self.assertEqual(self.sessions.state, STATE_IDLE)


class ReschedulingTests(TrackerTestCase):
    async def test_startup_arms_default_delay(self):
        tracker = self.build(ScriptedSampler())
        self.assertEqual(tracker.scheduler.next_delay_ms, 60_000)
        self.assertTrue(tracker.scheduler.has_pending)

    async def test_settings_change_rearms_with_latest_fix(self):
        tracker = self.build(ScriptedSampler([fix(FAR_AWAY)]))
        await tracker.run_sample()
        self.assertEqual(tracker.scheduler.next_delay_ms, 60_000)

        self.settings.update(work_location=WORK)
        self.assertEqual(tracker.scheduler.next_delay_ms, 300_000)

        self.settings.update(radius_meters=5_600)
        self.assertEqual(tracker.scheduler.next_delay_ms, 20_000)
        self.assertEqual(tracker.snapshot().zone, ZONE_CRITICAL)
        # настройки сами по себе не переключают состояние
        self.assertEqual(self.sessions.state, STATE_IDLE)

    async def test_settings_change_during_sample_applies_after_it(self):
        sampler = GatedSampler(FAR_AWAY)
        tracker = self.build(sampler)
        armed = tracker.scheduler.armed_count

        task = asyncio.create_task(tracker.run_sample())
        await asyncio.sleep(0)
        self.settings.update(work_location=WORK)
        self.assertEqual(tracker.scheduler.armed_count, armed)

        sampler.gate.set()
        await task

        self.assertEqual(tracker.scheduler.armed_count, armed + 1)
        self.assertEqual(tracker.scheduler.next_delay_ms, 300_000)
        self.assertEqual(tracker.snapshot().zone, ZONE_FAR)

    async def test_stop_cancels_pending_timer(self):
        tracker = self.build(ScriptedSampler())
        await tracker.stop()
        self.assertFalse(tracker.scheduler.has_pending)

        self.settings.update(radius_meters=300)
        self.assertFalse(tracker.scheduler.has_pending)

    async def test_snapshot_exposes_state_for_ui(self):
        self.settings.update(work_location=WORK, radius_meters=200, auto_log=True)
        tracker = self.build(ScriptedSampler([fix(WORK)]))
        await tracker.run_sample()

        snapshot = tracker.snapshot()
        self.assertTrue(snapshot.is_working)
        self.assertTrue(snapshot.at_work)
        self.assertEqual(snapshot.distance_m, 0.0)
        self.assertEqual(snapshot.active_session_start, self.clock.now)
        self.assertEqual(len(snapshot.sessions), 1)


class TransitionNotificationTests(TrackerTestCase):
    async def test_slow_notification_does_not_hold_sampling_task(self):
        self.settings.update(work_location=WORK, radius_meters=200, auto_log=True)
        sampler = ScriptedSampler([fix(WORK)])
        sleeps = []

        async def first_sleep_only(delay):
            sleeps.append(delay)
            if len(sleeps) > 1:
                await asyncio.Event().wait()

        tracker = self.build(sampler, sleep=first_sleep_only)
        started = asyncio.Event()
        cancelled = []

        async def slow_listener(kind, session, distance):
            started.set()
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                cancelled.append(kind)
                raise

        tracker.add_transition_listener(slow_listener)

        await asyncio.wait_for(started.wait(), timeout=1)
        for _ in range(5):
            await asyncio.sleep(0)

        self.assertEqual(sampler.calls, 1)
        self.assertFalse(tracker.scheduler.in_flight)
        self.assertTrue(tracker.scheduler.has_pending)
        self.assertEqual(tracker.scheduler.next_delay_ms, 20_000)
        self.assertEqual(tracker.pending_notifications, 1)
        self.assertEqual(self.transitions, [(TRANSITION_AUTO_START, self.sessions.sessions[0].id)])

        await tracker.stop()
        self.assertEqual(cancelled, [TRANSITION_AUTO_START])
        self.assertEqual(tracker.pending_notifications, 0)
        self.assertFalse(tracker.scheduler.has_pending)
        self.assertEqual(sampler.calls, 1)

    async def test_failing_listener_does_not_block_others(self):
        self.settings.update(work_location=WORK, radius_meters=200, auto_log=True)
        tracker = self.build(ScriptedSampler([fix(WORK)]))
        received = []

        async def broken(kind, session, distance):
            raise RuntimeError("send failed")

        async def after(kind, session, distance):
            received.append(kind)

        tracker.add_transition_listener(broken)
        tracker.add_transition_listener(after)

        await tracker.run_sample()
        await tracker.drain_notifications()

        self.assertEqual(received, [TRANSITION_AUTO_START])
        self.assertEqual(tracker.pending_notifications, 0)


if __name__ == "__main__":
    unittest.main()
