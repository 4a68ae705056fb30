import json
from datetime import datetime
from typing import Iterable, List

from worklogbot import config
from worklogbot.api_client import ApiClient, ApiUnavailableError
from worklogbot.models import WorkSession

NO_SESSIONS_TEXT = "Пока нет ни одной рабочей сессии."
EMPTY_ANSWER_TEXT = "Не удалось сформировать сводку."
UNAVAILABLE_TEXT = "Сейчас не получается получить AI-сводку. Проверьте соединение и попробуйте позже."

PROMPT_TEMPLATE = """
Проанализируй журнал рабочих сессий за месяц.
Данные: {data}

Дай дружелюбную сводку из двух абзацев.
1. Первый абзац: сколько всего часов отработано, среднее число часов в день и заметные закономерности (поздние начала, длинные дни).
2. Второй абзац: короткий совет по балансу работы и отдыха на основе этих данных.

Тон профессиональный, но ободряющий.
"""


def summarize_sessions(sessions: Iterable[WorkSession]) -> List[dict]:
    summary = []
    for session in sessions:
        if session.is_open:
            continue
        start = datetime.fromtimestamp(session.start_time / 1000.0)
        end = datetime.fromtimestamp(session.end_time / 1000.0)
        summary.append(
            {
                "date": start.strftime("%Y-%m-%d"),
                "start": start.strftime("%H:%M:%S"),
                "end": end.strftime("%H:%M:%S"),
                "durationMinutes": round((session.end_time - session.start_time) / 60000),
            }
        )
    return summary


def build_prompt(sessions: Iterable[WorkSession]) -> str:
    return PROMPT_TEMPLATE.format(data=json.dumps(summarize_sessions(sessions), ensure_ascii=False))


class InsightClient(ApiClient):
    def __init__(
        self,
        api_key: str,
        logger,
        *,
        model: str = config.GEMINI_MODEL,
        base_url: str = config.GEMINI_API_BASE,
    ) -> None:
        super().__init__(base_url, api_key, logger)
        self.model = model

    async def generate_content(self, prompt: str) -> str:
        if not self.api_key:
            raise ApiUnavailableError("GEMINI_API_KEY is not configured")
        payload = await self._request(
            "POST",
            f"models/{self.model}:generateContent",
            params={"key": self.api_key},
            json_data={"contents": [{"parts": [{"text": prompt}]}]},
        )
        if payload.get("success") is False:
            raise ApiUnavailableError(f"generate_content status={payload.get('status')}")

        parts = []
        for candidate in payload.get("candidates") or []:
            content = candidate.get("content") if isinstance(candidate, dict) else None
            for part in (content or {}).get("parts") or []:
                if isinstance(part, dict) and part.get("text"):
                    parts.append(part["text"])
            if parts:
                break
        return "".join(parts).strip()

    async def generate_work_insight(self, sessions: List[WorkSession]) -> str:
        if not sessions:
            return NO_SESSIONS_TEXT

        try:
            text = await self.generate_content(build_prompt(sessions))
        except ApiUnavailableError as exc:
            self.logger.error("INSIGHT_FAILED model=%s error=%s", self.model, exc)
            return UNAVAILABLE_TEXT

        self.logger.info("INSIGHT_OK model=%s sessions=%s chars=%s", self.model, len(sessions), len(text))
        return text or EMPTY_ANSWER_TEXT
