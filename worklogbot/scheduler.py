import asyncio
import contextlib
from typing import Awaitable, Callable, Optional

from worklogbot import config
from worklogbot.models import ZONE_APPROACHING, ZONE_CRITICAL, ZONE_FAR


def classify_zone(distance_m: Optional[float], radius_m: float) -> Optional[str]:
    if distance_m is None:
        return None
    if distance_m <= radius_m + config.CRITICAL_BUFFER_M:
        return ZONE_CRITICAL
    if distance_m <= config.APPROACHING_LIMIT_M:
        return ZONE_APPROACHING
    return ZONE_FAR


def next_delay_ms(distance_m: Optional[float], radius_m: float) -> int:
    zone = classify_zone(distance_m, radius_m)
    if zone == ZONE_CRITICAL:
        return config.CRITICAL_DELAY_MS
    if zone == ZONE_APPROACHING:
        return config.APPROACHING_DELAY_MS
    if zone == ZONE_FAR:
        return config.FAR_DELAY_MS
    return config.DEFAULT_DELAY_MS


class AdaptiveScheduler:
    """Keeps at most one pending sample timer.

    ``rearm()`` cancels the pending timer before arming a new one. When a
    timer fires it stops being "pending" and becomes the in-flight sample,
    so the sample callback may call ``rearm()`` without cancelling itself.
    """

    def __init__(
        self,
        fire: Callable[[], Awaitable[object]],
        logger,
        *,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self._fire = fire
        self.logger = logger
        self._sleep = sleep
        self._timer: Optional[asyncio.Task] = None
        self._in_flight: Optional[asyncio.Task] = None
        self.next_delay_ms: Optional[int] = None
        self.armed_count = 0

    @property
    def has_pending(self) -> bool:
        return self._timer is not None and not self._timer.done()

    @property
    def in_flight(self) -> bool:
        return self._in_flight is not None and not self._in_flight.done()

    def cancel_pending(self) -> bool:
        timer, self._timer = self._timer, None
        if timer is None or timer.done():
            return False
        timer.cancel()
        return True

    def rearm(self, delay_ms: int, *, zone: Optional[str] = None) -> None:
        superseded = self.cancel_pending()
        self.next_delay_ms = delay_ms
        self.armed_count += 1
        self._timer = asyncio.create_task(self._wait_and_fire(delay_ms), name="worklog-sample-timer")
        self.logger.info(
            "SCHEDULE_NEXT delay_ms=%s zone=%s superseded=%s",
            delay_ms,
            zone or "-",
            superseded,
        )

    async def _wait_and_fire(self, delay_ms: int) -> None:
        await self._sleep(delay_ms / 1000.0)
        task = asyncio.current_task()
        if self._timer is task:
            self._timer = None
        self._in_flight = task
        try:
            await self._fire()
        except Exception:
            self.logger.exception("SAMPLE_CALLBACK_FAILED")
            if not self.has_pending:
                self.rearm(config.DEFAULT_DELAY_MS)
        finally:
            if self._in_flight is task:
                self._in_flight = None

    async def stop(self) -> None:
        tasks = [task for task in (self._timer, self._in_flight) if task is not None and not task.done()]
        self._timer = None
        self._in_flight = None
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if tasks:
            self.logger.info("SCHEDULER_STOPPED cancelled=%s", len(tasks))
