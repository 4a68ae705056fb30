import json
import unittest
from datetime import datetime

import httpx

from worklogbot.insight_client import (
    NO_SESSIONS_TEXT,
    UNAVAILABLE_TEXT,
    InsightClient,
    summarize_sessions,
)
from worklogbot.models import WorkSession


class DummyLogger:
    def __init__(self):
        self.errors = []

    def debug(self, *args, **kwargs):
        pass

    def info(self, *args, **kwargs):
        pass

    def warning(self, *args, **kwargs):
        pass

    def error(self, msg, *args):
        self.errors.append(msg % args if args else msg)


def ms(*args) -> int:
    return int(datetime(*args).timestamp() * 1000)


SESSIONS = [
    WorkSession("a", ms(2026, 10, 1, 9, 0), ms(2026, 10, 1, 17, 29, 40), 509.67),
    WorkSession("b", ms(2026, 10, 2, 9, 0)),
]


class SummaryTests(unittest.TestCase):
    def test_only_closed_sessions_are_summarized(self):
        self.assertEqual(
            summarize_sessions(SESSIONS),
            [{"date": "2026-10-01", "start": "09:00:00", "end": "17:29:40", "durationMinutes": 510}],
        )


class InsightClientTests(unittest.IsolatedAsyncioTestCase):
    def build(self, handler, api_key="secret"):
        self.logger = DummyLogger()
        client = InsightClient(api_key, self.logger, model="test-model", base_url="https://ai.example.com/v1beta")
        client._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        self.addAsyncCleanup(client.aclose)
        return client

    async def test_generate_work_insight_posts_prompt(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["path"] = request.url.path
            captured["key"] = request.url.params.get("key")
            captured["body"] = json.loads(request.content.decode())
            return httpx.Response(
                200,
                json={"candidates": [{"content": {"parts": [{"text": "Абзац 1. "}, {"text": "Абзац 2."}]}}]},
            )

        text = await self.build(handler).generate_work_insight(SESSIONS)

        self.assertEqual(text, "Абзац 1. Абзац 2.")
        self.assertEqual(captured["path"], "/v1beta/models/test-model:generateContent")
        self.assertEqual(captured["key"], "secret")
        prompt = captured["body"]["contents"][0]["parts"][0]["text"]
        self.assertIn('"durationMinutes": 510', prompt)
        self.assertNotIn("2026-10-02", prompt)

    async def test_empty_history_skips_request(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        self.assertEqual(await self.build(handler).generate_work_insight([]), NO_SESSIONS_TEXT)

    async def test_api_error_returns_fallback_text(self):
        client = self.build(lambda request: httpx.Response(400, json={"error": {"message": "bad key"}}))
        self.assertEqual(await client.generate_work_insight(SESSIONS), UNAVAILABLE_TEXT)
        self.assertEqual(len(self.logger.errors), 1)

    async def test_missing_key_returns_fallback_text(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        self.assertEqual(await self.build(handler, api_key="").generate_work_insight(SESSIONS), UNAVAILABLE_TEXT)


if __name__ == "__main__":
    unittest.main()
