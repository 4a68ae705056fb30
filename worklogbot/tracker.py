import asyncio
import contextlib
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Set

from worklogbot.geo import distance_m
from worklogbot.geo_sampler import SampleResult
from worklogbot.models import Coordinate, UserSettings, WorkSession, now_ms
from worklogbot.scheduler import AdaptiveScheduler, classify_zone, next_delay_ms

TRANSITION_AUTO_START = "auto_start"
TRANSITION_AUTO_STOP = "auto_stop"

TransitionListener = Callable[[str, WorkSession, float], Awaitable[None]]


@dataclass
class TrackerSnapshot:
    state: str
    is_working: bool
    active_session_start: Optional[int]
    current_location: Optional[Coordinate]
    distance_m: Optional[float]
    zone: Optional[str]
    at_work: bool
    next_delay_ms: Optional[int]
    last_sample_failure: Optional[str]
    settings: UserSettings
    sessions: List[WorkSession] = field(default_factory=list)


class WorkTracker:
    """Drives sampling cadence and geofence auto-detection.

    Every completed sample (success or failure) re-arms the scheduler first
    and then runs the auto-detection policy, so the next sample never starts
    before both have run. Transition notifications are sent from their own
    tasks; a slow send never keeps the sampling task alive.
    """

    def __init__(
        self,
        session_store,
        settings_provider,
        sampler,
        logger,
        *,
        clock: Callable[[], int] = now_ms,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self.session_store = session_store
        self.settings_provider = settings_provider
        self.sampler = sampler
        self.logger = logger
        self.clock = clock
        self.scheduler = AdaptiveScheduler(self.run_sample, logger, sleep=sleep)

        self.current_location: Optional[Coordinate] = None
        self.last_sample: Optional[SampleResult] = None
        self._fresh_location: Optional[Coordinate] = None
        self._sampling = False
        self._running = False
        self._listeners: List[TransitionListener] = []
        self._notify_tasks: Set[asyncio.Task] = set()

        settings_provider.subscribe(self._on_settings_changed)

    def add_transition_listener(self, listener: TransitionListener) -> None:
        self._listeners.append(listener)

    @property
    def running(self) -> bool:
        return self._running

    def distance_to_work(self, location: Optional[Coordinate] = None) -> Optional[float]:
        location = location or self.current_location
        work_location = self.settings_provider.current().work_location
        if location is None or work_location is None:
            return None
        return distance_m(location, work_location)

    def start(self, *, sample_immediately: bool = True) -> None:
        if self._running:
            return
        self._running = True
        if sample_immediately:
            self.scheduler.rearm(0, zone="startup")
        else:
            self._rearm()
        self.logger.info("TRACKER_STARTED immediate=%s", sample_immediately)

    @property
    def pending_notifications(self) -> int:
        return len(self._notify_tasks)

    async def stop(self) -> None:
        self._running = False
        await self.scheduler.stop()
        tasks, self._notify_tasks = list(self._notify_tasks), set()
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self.logger.info("TRACKER_STOPPED")

    def _rearm(self) -> None:
        settings = self.settings_provider.current()
        distance = self.distance_to_work(self._fresh_location) if self._fresh_location else None
        self.scheduler.rearm(
            next_delay_ms(distance, settings.radius_meters),
            zone=classify_zone(distance, settings.radius_meters),
        )

    def _on_settings_changed(self, settings: UserSettings) -> None:
        if not self._running:
            return
        if self._sampling:
            # текущая выборка перезапустит таймер уже с новыми настройками
            self.logger.info("SETTINGS_CHANGED_DURING_SAMPLE -> rearm after sample")
            return
        self._rearm()

    async def run_sample(self) -> SampleResult:
        self._sampling = True
        try:
            result = await self.sampler.request_sample()
        finally:
            self._sampling = False

        self.last_sample = result
        if result.ok:
            self.current_location = result.coordinate
            self._fresh_location = result.coordinate
        else:
            self._fresh_location = None

        if self._running:
            self._rearm()

        transition = self._apply_auto_policy(result)
        if transition is not None:
            task = asyncio.create_task(self._notify(*transition), name="worklog-transition-notify")
            self._notify_tasks.add(task)
            task.add_done_callback(self._notify_tasks.discard)
        return result

    def _apply_auto_policy(self, result: SampleResult):
        settings = self.settings_provider.current()
        if not settings.auto_log or settings.work_location is None or not result.ok:
            return None

        distance = distance_m(result.coordinate, settings.work_location)
        at_work = distance <= settings.radius_meters
        now = self.clock()

        if at_work and not self.session_store.is_working:
            session = self.session_store.start(now, reason=TRANSITION_AUTO_START)
            self.logger.info("AUTO_START distance_m=%.1f radius_m=%s", distance, settings.radius_meters)
            return TRANSITION_AUTO_START, session, distance
        if not at_work and self.session_store.is_working:
            session = self.session_store.stop(now, reason=TRANSITION_AUTO_STOP)
            self.logger.info("AUTO_STOP distance_m=%.1f radius_m=%s", distance, settings.radius_meters)
            return TRANSITION_AUTO_STOP, session, distance
        return None

    async def drain_notifications(self) -> None:
        while self._notify_tasks:
            await asyncio.gather(*list(self._notify_tasks), return_exceptions=True)

    async def _notify(self, kind: str, session: Optional[WorkSession], distance: float) -> None:
        if session is None:
            return
        for listener in list(self._listeners):
            try:
                await listener(kind, session, distance)
            except Exception as exc:
                self.logger.error("TRANSITION_NOTIFY_FAILED kind=%s error=%s", kind, exc)

    def toggle(self) -> Optional[WorkSession]:
        return self.session_store.toggle(self.clock(), reason="manual")

    def snapshot(self) -> TrackerSnapshot:
        settings = self.settings_provider.current()
        distance = self.distance_to_work()
        active = self.session_store.active_session()
        return TrackerSnapshot(
            state=self.session_store.state,
            is_working=self.session_store.is_working,
            active_session_start=active.start_time if active else None,
            current_location=self.current_location,
            distance_m=distance,
            zone=classify_zone(distance, settings.radius_meters),
            at_work=distance is not None and distance <= settings.radius_meters,
            next_delay_ms=self.scheduler.next_delay_ms,
            last_sample_failure=self.last_sample.failure if self.last_sample else None,
            settings=settings,
            sessions=self.session_store.sessions,
        )
