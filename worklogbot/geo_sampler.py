import asyncio
from dataclasses import dataclass
from typing import List, Optional

from worklogbot import config
from worklogbot.api_client import ApiClient, ApiUnavailableError
from worklogbot.models import Coordinate

FAILURE_UNSUPPORTED = "unsupported"
FAILURE_PERMISSION_DENIED = "permission_denied"
FAILURE_TIMEOUT = "timeout"
FAILURE_UNAVAILABLE = "unavailable"


class LocationError(RuntimeError):
    def __init__(self, reason: str, message: str = "") -> None:
        super().__init__(message or reason)
        self.reason = reason


@dataclass(frozen=True)
class SampleResult:
    coordinate: Optional[Coordinate] = None
    failure: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.coordinate is not None


class LiveLocationSource:
    """Fixes pushed from Telegram location / live-location updates.

    A request only resolves with a fix pushed after the request was made;
    the last known fix is never handed out again.
    """

    def __init__(self, logger) -> None:
        self.logger = logger
        self.last_fix: Optional[Coordinate] = None
        self.sharing = True
        self._waiters: List[asyncio.Future] = []

    @property
    def pending(self) -> int:
        return len(self._waiters)

    def push(self, coordinate: Coordinate) -> None:
        self.last_fix = coordinate
        self.sharing = True
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(coordinate)
        self.logger.debug("LIVE_FIX lat=%.6f lon=%.6f waiters=%s", coordinate.latitude, coordinate.longitude, len(waiters))

    async def get_current_position(self) -> Coordinate:
        if not self.sharing:
            raise LocationError(FAILURE_PERMISSION_DENIED, "live location sharing stopped")
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            return await waiter
        finally:
            if waiter in self._waiters:
                self._waiters.remove(waiter)

    def stop_sharing(self) -> None:
        self.sharing = False
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_exception(LocationError(FAILURE_PERMISSION_DENIED, "live location sharing stopped"))
        self.logger.info("LIVE_SHARING_STOPPED waiters=%s", len(waiters))

    async def aclose(self) -> None:
        for waiter in self._waiters:
            waiter.cancel()
        self._waiters = []


class HttpLocationSource(ApiClient):
    """Polls a device endpoint that returns the phone's current position."""

    async def get_current_position(self) -> Coordinate:
        params = {"high_accuracy": 1, "max_age": 0}
        if self.api_key:
            params["key"] = self.api_key
        try:
            payload = await self._request("GET", params=params, headers={"Cache-Control": "no-cache"})
        except ApiUnavailableError as exc:
            raise LocationError(FAILURE_UNAVAILABLE, str(exc)) from exc

        if payload.get("success") is False:
            status = payload.get("status")
            if status in {401, 403}:
                raise LocationError(FAILURE_PERMISSION_DENIED, f"status={status}")
            raise LocationError(FAILURE_UNAVAILABLE, f"status={status}")

        coordinate = Coordinate.from_dict(payload.get("location") or payload)
        if coordinate is None:
            raise LocationError(FAILURE_UNAVAILABLE, "no coordinates in response")
        return coordinate


class GeoSampler:
    def __init__(self, source, logger, timeout_sec: float = config.GEO_TIMEOUT_SEC) -> None:
        self.source = source
        self.logger = logger
        self.timeout_sec = timeout_sec

    def _failed(self, reason: str, error=None) -> SampleResult:
        self.logger.warning("SAMPLE_FAILED reason=%s error=%s", reason, error)
        return SampleResult(failure=reason)

    async def request_sample(self) -> SampleResult:
        if self.source is None:
            return self._failed(FAILURE_UNSUPPORTED)

        try:
            coordinate = await asyncio.wait_for(self.source.get_current_position(), timeout=self.timeout_sec)
        except asyncio.TimeoutError:
            return self._failed(FAILURE_TIMEOUT, f"no fix in {self.timeout_sec:g}s")
        except LocationError as exc:
            return self._failed(exc.reason, exc)

        self.logger.info("SAMPLE_OK lat=%.6f lon=%.6f", coordinate.latitude, coordinate.longitude)
        return SampleResult(coordinate=coordinate)
