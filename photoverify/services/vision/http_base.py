from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from photoverify.errors import MalformedResponse, ProviderError, ProviderRateLimited

log = logging.getLogger(__name__)


def _retry_after(resp: httpx.Response) -> Optional[float]:
    raw = resp.headers.get("retry-after")
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


class HttpVisionProvider:
    """
    Shared plumbing for providers spoken to over plain HTTPS.
    - One shared httpx.AsyncClient, owned by the registry.
    - Never logs request bodies or API keys.
    - Transport failures and non-2xx statuses become ProviderError.
    """

    name = "http"

    def __init__(
        self,
        api_key: str,
        *,
        http_client: httpx.AsyncClient,
        base_url: str,
        max_tokens: int = 2000,
        temperature: float = 0.1,
        timeout: float = 30.0,
    ) -> None:
        if not api_key:
            raise ValueError(f"{self.name} api key missing")
        self._api_key = api_key
        self._client = http_client
        self.base_url = base_url.rstrip("/")
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout = timeout

    async def _post_json(
        self, url: str, *, headers: Dict[str, str], payload: Dict[str, Any]
    ) -> Dict[str, Any]:
        try:
            resp = await self._client.post(url, headers=headers, json=payload, timeout=self.timeout)
        except httpx.TimeoutException as exc:
            raise ProviderError(f"{self.name} request timed out", provider=self.name) from exc
        except httpx.HTTPError as exc:
            raise ProviderError(
                f"{self.name} transport error: {exc.__class__.__name__}", provider=self.name
            ) from exc

        if resp.status_code == 429:
            raise ProviderRateLimited(
                f"{self.name} rate limited", provider=self.name, retry_after_s=_retry_after(resp)
            )
        if resp.status_code >= 400:
            log.warning(
                "vision provider returned error status",
                extra={"provider": self.name, "status": resp.status_code},
            )
            raise ProviderError(
                f"{self.name} returned HTTP {resp.status_code}", provider=self.name
            )
        try:
            data = resp.json()
        except ValueError as exc:
            raise MalformedResponse(
                f"{self.name} returned a non-JSON body", provider=self.name
            ) from exc
        if not isinstance(data, dict):
            raise MalformedResponse(f"{self.name} returned an unexpected body", provider=self.name)
        return data


def as_int(value: Any) -> int:
    try:
        return max(0, int(value or 0))
    except (TypeError, ValueError):
        return 0
