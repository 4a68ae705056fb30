from typing import Optional
import asyncio

import httpx

from worklogbot import config


class ApiUnavailableError(RuntimeError):
    pass


class ApiClient:
    """Shared httpx transport with retry/backoff for the bot's HTTP collaborators."""

    def __init__(self, base_url: str, api_key: str, logger, *, user_agent: str = "worklogbot/1.0") -> None:
        self.base_url = str(base_url or "").rstrip("/")
        self.api_key = api_key
        self.logger = logger
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(config.HTTP_TIMEOUT_SEC, connect=5.0),
            headers={"User-Agent": user_agent},
            follow_redirects=True,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def _require_config(self) -> None:
        if not self.base_url:
            raise ApiUnavailableError("base_url is not configured")

    def _build_url(self, endpoint_path: str) -> str:
        endpoint = endpoint_path.lstrip("/")
        return f"{self.base_url}/{endpoint}" if endpoint else self.base_url

    async def _request(
        self,
        method: str,
        endpoint_path: str = "",
        params: Optional[dict] = None,
        json_data: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> dict:
        self._require_config()
        url = self._build_url(endpoint_path)

        network_backoff = [0.3, 0.8, 1.8]
        status_backoff = [0.3, 0.8]
        network_errors = (
            httpx.ConnectTimeout,
            httpx.ReadTimeout,
            httpx.WriteTimeout,
            httpx.PoolTimeout,
            httpx.ConnectError,
            httpx.ReadError,
            httpx.RemoteProtocolError,
        )

        for attempt in range(1, len(network_backoff) + 2):
            self.logger.debug("API_REQUEST attempt=%s method=%s url=%s", attempt, method, url)
            try:
                response = await self._client.request(
                    method,
                    url,
                    params=params,
                    json=json_data,
                    headers=headers,
                )
            except network_errors as exc:
                self.logger.warning(
                    "API_REQUEST_EXCEPTION attempt=%s method=%s error_type=%s error=%s",
                    attempt,
                    method,
                    type(exc).__name__,
                    exc,
                )
                if attempt <= len(network_backoff):
                    await asyncio.sleep(network_backoff[attempt - 1])
                    continue
                raise ApiUnavailableError("temporary_api_error") from exc
            except httpx.HTTPError as exc:
                self.logger.warning(
                    "API_REQUEST_EXCEPTION attempt=%s method=%s error_type=%s error=%s",
                    attempt,
                    method,
                    type(exc).__name__,
                    exc,
                )
                raise ApiUnavailableError("temporary_api_error") from exc

            if response.status_code in {502, 503, 504}:
                if attempt <= len(status_backoff):
                    self.logger.warning(
                        "API_REQUEST_RETRY_STATUS attempt=%s method=%s url=%s status=%s",
                        attempt,
                        method,
                        url,
                        response.status_code,
                    )
                    await asyncio.sleep(status_backoff[attempt - 1])
                    continue
                raise ApiUnavailableError(f"temporary_api_error status={response.status_code}")

            if response.status_code >= 500:
                self.logger.error("API_ERROR_STATUS method=%s url=%s status=%s", method, url, response.status_code)
                raise ApiUnavailableError(f"temporary_api_error status={response.status_code}")

            if response.status_code >= 400:
                payload = None
                try:
                    parsed = response.json()
                    payload = parsed if isinstance(parsed, dict) else None
                except ValueError:
                    payload = None
                self.logger.warning(
                    "API_NON_2XX method=%s url=%s status=%s body=%s",
                    method,
                    url,
                    response.status_code,
                    response.text[:300],
                )
                return {
                    "success": False,
                    "status": response.status_code,
                    "json": payload,
                    "text": response.text,
                }

            try:
                payload = response.json()
            except ValueError as exc:
                self.logger.error("API_ERROR_JSON method=%s url=%s error=%s", method, url, exc)
                raise ApiUnavailableError("temporary_api_error") from exc

            return payload if isinstance(payload, dict) else {}

        raise ApiUnavailableError("temporary_api_error")
