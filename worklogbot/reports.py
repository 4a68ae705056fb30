from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple

from worklogbot.models import WorkSession

MS_PER_HOUR = 60 * 60 * 1000


def format_duration(ms: float) -> str:
    total_seconds = max(int(ms // 1000), 0)
    hours, rest = divmod(total_seconds, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def _local(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000.0)


def _day_start(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def _closed_ms(session: WorkSession) -> int:
    return session.end_time - session.start_time if session.end_time is not None else 0


def today_summary(sessions: Iterable[WorkSession], now: int) -> Tuple[int, int]:
    """Returns (worked_ms, session_count) for the local day containing ``now``.

    The open session contributes its running time up to ``now``.
    """

    day_start = _day_start(_local(now))
    worked_ms = 0
    count = 0
    for session in sessions:
        if _local(session.start_time) < day_start:
            continue
        count += 1
        worked_ms += _closed_ms(session) if not session.is_open else max(now - session.start_time, 0)
    return worked_ms, count


def last_days_hours(sessions: Iterable[WorkSession], now: int, days: int = 7) -> List[Tuple[str, float]]:
    sessions = [s for s in sessions if not s.is_open]
    today = _day_start(_local(now))
    data = []
    for offset in range(days - 1, -1, -1):
        day = today - timedelta(days=offset)
        day_ms = sum(_closed_ms(s) for s in sessions if _day_start(_local(s.start_time)) == day)
        data.append((day.strftime("%d.%m"), round(day_ms / MS_PER_HOUR, 1)))
    return data


def month_summary(sessions: Iterable[WorkSession], now: int) -> Tuple[float, int]:
    current = _local(now)
    monthly = [
        s
        for s in sessions
        if not s.is_open
        and _local(s.start_time).month == current.month
        and _local(s.start_time).year == current.year
    ]
    total_ms = sum(_closed_ms(s) for s in monthly)
    return round(total_ms / MS_PER_HOUR, 1), len(monthly)


def format_report(sessions: List[WorkSession], now: int, active_start: Optional[int] = None) -> str:
    month_hours, month_count = month_summary(sessions, now)
    today_ms, today_count = today_summary(sessions, now)
    lines = [
        "📊 Отчёт",
        f"Сегодня: {format_duration(today_ms)} (сессий: {today_count})",
        f"Этот месяц: {month_hours:.1f} ч, сессий: {month_count}",
        "",
        "Последние 7 дней:",
    ]
    for label, hours in last_days_hours(sessions, now):
        bar = "▇" * int(round(hours))
        lines.append(f"{label}  {hours:>4.1f} ч {bar}")
    if active_start is not None:
        lines.append("")
        lines.append(f"Текущая сессия: {format_duration(now - active_start)}")
    return "\n".join(lines)
