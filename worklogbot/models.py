import time
import uuid
from dataclasses import dataclass
from typing import Optional

from worklogbot import config

STATE_IDLE = "idle"
STATE_WORKING = "working"

ZONE_CRITICAL = "critical"
ZONE_APPROACHING = "approaching"
ZONE_FAR = "far"

MODE_IDLE = "idle"
MODE_AWAITING_WORK_LOCATION = "awaiting_work_location"


def now_ms() -> int:
    return int(time.time() * 1000)


def new_session_id() -> str:
    return str(uuid.uuid4())


def _as_float(value):
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class Coordinate:
    latitude: float
    longitude: float

    def to_dict(self) -> dict:
        return {"latitude": self.latitude, "longitude": self.longitude}

    @classmethod
    def from_dict(cls, raw) -> Optional["Coordinate"]:
        if not isinstance(raw, dict):
            return None
        lat = _as_float(raw.get("latitude", raw.get("lat")))
        lon = _as_float(raw.get("longitude", raw.get("lon")))
        if lat is None or lon is None:
            return None
        return cls(latitude=lat, longitude=lon)


@dataclass(frozen=True)
class WorkSession:
    id: str
    start_time: int
    end_time: Optional[int] = None
    duration_minutes: float = 0.0

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "durationMinutes": self.duration_minutes,
        }

    @classmethod
    def from_dict(cls, raw) -> Optional["WorkSession"]:
        if not isinstance(raw, dict) or not raw.get("id"):
            return None
        try:
            start_time = int(raw["startTime"])
        except (KeyError, TypeError, ValueError):
            return None
        end_raw = raw.get("endTime")
        try:
            end_time = int(end_raw) if end_raw is not None else None
        except (TypeError, ValueError):
            end_time = None
        return cls(
            id=str(raw["id"]),
            start_time=start_time,
            end_time=end_time,
            duration_minutes=_as_float(raw.get("durationMinutes")) or 0.0,
        )


@dataclass(frozen=True)
class UserSettings:
    work_location: Optional[Coordinate] = None
    radius_meters: float = config.DEFAULT_RADIUS_M
    auto_log: bool = config.DEFAULT_AUTO_LOG

    def to_dict(self) -> dict:
        return {
            "workLocation": self.work_location.to_dict() if self.work_location else None,
            "radiusMeters": self.radius_meters,
            "autoLog": self.auto_log,
        }

    @classmethod
    def from_dict(cls, raw) -> "UserSettings":
        if not isinstance(raw, dict):
            return cls()
        radius = _as_float(raw.get("radiusMeters"))
        if radius is None or radius <= 0:
            radius = config.DEFAULT_RADIUS_M
        return cls(
            work_location=Coordinate.from_dict(raw.get("workLocation")),
            radius_meters=radius,
            auto_log=bool(raw.get("autoLog", config.DEFAULT_AUTO_LOG)),
        )
